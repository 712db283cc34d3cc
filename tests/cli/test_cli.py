"""Tests for the steprun CLI via typer's CliRunner.

Covers render (yaml/json, entrypoint options, resolution failures),
results extraction and config inspection.
"""

from __future__ import annotations

import json

import pytest
import yaml
from typer.testing import CliRunner

from steprun import __version__
from steprun.cli.app import app
from steprun.cli.render import StaticRegistry, parse_image_option, placeholder_digest
from steprun.pod.reference import ImageReference

runner = CliRunner()

TASK = """\
apiVersion: tekton.dev/v1alpha1
kind: Task
metadata:
  name: build
spec:
  inputs:
    params:
      - name: flags
        default: "-v"
  steps:
    - name: compile
      image: golang
      command: [go]
      args: [build, $(inputs.params.flags)]
    - name: check
      image: busybox
"""

RUN = """\
apiVersion: tekton.dev/v1alpha1
kind: TaskRun
metadata:
  name: build-1
spec:
  taskRef:
    name: build
"""


@pytest.fixture
def manifests(tmp_path):
    task = tmp_path / "task.yaml"
    run = tmp_path / "run.yaml"
    task.write_text(TASK)
    run.write_text(RUN)
    return [str(run), str(task)]


# ─── Root ────────────────────────────────────────────────────────────────


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.stdout.strip() == f"steprun {__version__}"

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "render" in result.output


# ─── render ──────────────────────────────────────────────────────────────


class TestRender:
    def test_json(self, manifests):
        result = runner.invoke(
            app,
            ["render", *manifests, "--image", "busybox=/bin/sh -c true", "--format", "json", "--seed", "1"],
        )
        assert result.exit_code == 0, result.output
        pod = json.loads(result.stdout)

        assert pod["kind"] == "Pod"
        assert pod["metadata"]["name"].startswith("build-1-pod-")
        assert pod["metadata"]["labels"]["tekton.dev/taskRun"] == "build-1"
        compile_step, check_step = pod["spec"]["containers"]
        assert compile_step["name"] == "step-compile"
        assert compile_step["args"][-4:] == ["go", "--", "build", "-v"]
        assert check_step["image"] == "index.docker.io/library/busybox@" + placeholder_digest(
            "index.docker.io/library/busybox"
        )
        assert check_step["args"][-4:] == ["/bin/sh", "--", "-c", "true"]

    def test_yaml_is_default(self, manifests):
        result = runner.invoke(app, ["render", *manifests, "-i", "busybox=sh"])
        assert result.exit_code == 0, result.output
        pod = yaml.safe_load(result.stdout)
        assert [c["name"] for c in pod["spec"]["initContainers"]] == ["place-tools"]

    def test_seed_makes_names_reproducible(self, manifests):
        args = ["render", *manifests, "-i", "busybox=sh", "-f", "json", "--seed", "7"]
        first = json.loads(runner.invoke(app, args).stdout)
        second = json.loads(runner.invoke(app, args).stdout)
        assert first["metadata"]["name"] == second["metadata"]["name"]

    def test_missing_entrypoint_fails(self, manifests):
        result = runner.invoke(app, ["render", *manifests])
        assert result.exit_code == 1
        assert "busybox" in result.output
        assert "--image" in result.output

    def test_missing_task_fails(self, tmp_path):
        run = tmp_path / "run.yaml"
        run.write_text(RUN)
        result = runner.invoke(app, ["render", str(run)])
        assert result.exit_code == 1
        assert "Task default/build not found" in result.output

    def test_bad_image_option(self, manifests):
        result = runner.invoke(app, ["render", *manifests, "-i", "busybox"])
        assert result.exit_code == 2

    def test_unknown_format(self, manifests):
        result = runner.invoke(app, ["render", *manifests, "-f", "xml"])
        assert result.exit_code == 2


class TestRenderHelpers:
    def test_parse_image_option(self):
        assert parse_image_option("ubuntu=/bin/bash -lc 'echo hi'") == ("ubuntu", ("/bin/bash", "-lc", "echo hi"))

    @pytest.mark.asyncio
    async def test_static_registry_canonicalizes(self):
        registry = StaticRegistry({"busybox": ("sh",)})
        config = await registry.config(ImageReference.parse("docker.io/library/busybox:1.36"), None)
        assert config.entrypoint == ("sh",)
        assert config.digest.startswith("sha256:")


# ─── results ─────────────────────────────────────────────────────────────


class TestResults:
    def test_json(self, tmp_path):
        log = tmp_path / "exporter.log"
        log.write_text('pushing...\n[{"name": "app-image", "digest": "sha256:1234"}]\n')
        result = runner.invoke(app, ["results", str(log), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == [{"name": "app-image", "digest": "sha256:1234"}]

    def test_table(self, tmp_path):
        log = tmp_path / "exporter.log"
        log.write_text('[{"name": "version", "value": "1.2.3"}]')
        result = runner.invoke(app, ["results", str(log)])
        assert result.exit_code == 0
        assert "version" in result.stdout
        assert "1.2.3" in result.stdout

    def test_no_results(self, tmp_path):
        log = tmp_path / "exporter.log"
        log.write_text("nothing to see\n")
        result = runner.invoke(app, ["results", str(log)])
        assert result.exit_code == 1
        assert "no JSON array" in result.output


# ─── config ──────────────────────────────────────────────────────────────


class TestConfig:
    def test_show_json(self, monkeypatch):
        monkeypatch.setenv("STEPRUN_WORKERS", "5")
        result = runner.invoke(app, ["config", "show", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["workers"] == 5
        assert "entrypoint" in data["images"]

    def test_show_env(self):
        result = runner.invoke(app, ["config", "show", "-f", "env"])
        assert result.exit_code == 0
        lines = result.stdout.splitlines()
        assert any(line.startswith("STEPRUN_DEFAULT_TIMEOUT_MINUTES=60") for line in lines)
        assert any(line.startswith("STEPRUN_IMAGES__GIT=") for line in lines)

    def test_show_table(self):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "Default timeout" in result.stdout
