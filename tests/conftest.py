"""
Shared pytest fixtures for steprun tests.

This module provides:
- Settings isolated from the environment and any ``.env`` file
- In-memory collaborators from ``steprun.testing``
- A sample task template and run
- A controllable clock and a fully wired ``Reconciler``

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    def test_something(reconciler, runs, pods):
        ...
"""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from steprun.core.config.settings import StepRunSettings, clear_settings_cache
from steprun.models import (
    Container,
    ParamSpec,
    Run,
    RunSpec,
    Task,
    TaskRef,
    TaskSpec,
)
from steprun.pod.entrypoint import EntrypointCache
from steprun.protocols import ImageConfig
from steprun.reconciler.notifications import NotificationDispatcher
from steprun.reconciler.reconciler import Reconciler
from steprun.reconciler.timeout import TimeoutHandler
from steprun.testing import (
    FakeCredentialResolver,
    FakePodStore,
    FakeRegistry,
    FakeTemplateSource,
    InMemoryRunStore,
    RecordingEventSink,
    SequenceNameGenerator,
)


# =============================================================================
# Markers
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark reconciler/controller tests as integration, everything else as unit."""
    for item in items:
        name = Path(item.fspath).name
        if name in ("test_reconciler.py", "test_controller.py"):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_settings():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> StepRunSettings:
    return StepRunSettings(_env_file=None)


# =============================================================================
# Collaborators
# =============================================================================


class Clock:
    """Settable clock; starts at a fixed instant."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def names() -> SequenceNameGenerator:
    return SequenceNameGenerator()


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry(
        default=ImageConfig(digest=FakeRegistry.DIGEST, entrypoint=("/bin/sh",), cmd=("-c", "true")),
    )


@pytest.fixture
def credentials() -> FakeCredentialResolver:
    return FakeCredentialResolver()


@pytest.fixture
def entrypoint_cache(registry, credentials) -> EntrypointCache:
    return EntrypointCache(registry, credentials)


@pytest.fixture
def pods() -> FakePodStore:
    return FakePodStore()


@pytest.fixture
def sample_task() -> Task:
    return Task(
        name="build",
        namespace="default",
        spec=TaskSpec(
            steps=[
                Container(name="compile", image="golang", command=["go"], args=["build", "$(inputs.params.flags)"]),
                Container(name="check", image="busybox"),
            ],
            params=[ParamSpec(name="flags", default="-v")],
        ),
    )


@pytest.fixture
def templates(sample_task) -> FakeTemplateSource:
    return FakeTemplateSource(tasks=[sample_task])


@pytest.fixture
def sample_run() -> Run:
    return Run(name="build-1", namespace="default", spec=RunSpec(task_ref=TaskRef(name="build")))


@pytest.fixture
def runs(sample_run) -> InMemoryRunStore:
    return InMemoryRunStore([sample_run])


@pytest.fixture
def sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def timeouts():
    handler = TimeoutHandler()
    yield handler
    handler.cancel_all()


@pytest.fixture
def dispatcher(sink) -> NotificationDispatcher:
    return NotificationDispatcher(sink, max_attempts=3)


@pytest.fixture
def reconciler(runs, pods, templates, entrypoint_cache, dispatcher, timeouts, settings, names, clock) -> Reconciler:
    return Reconciler(
        runs,
        pods,
        templates,
        entrypoint_cache,
        dispatcher,
        timeouts,
        settings=settings,
        names=names,
        clock=clock,
    )
