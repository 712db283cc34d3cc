"""Tests for image reference parsing."""

import pytest

from steprun.core.errors import EntrypointResolutionError
from steprun.pod.reference import ImageReference

DIGEST = "sha256:" + "0" * 64


class TestParse:
    @pytest.mark.parametrize(
        "image, expected",
        [
            ("ubuntu", "index.docker.io/library/ubuntu:latest"),
            ("ubuntu:22.04", "index.docker.io/library/ubuntu:22.04"),
            ("docker.io/ubuntu", "index.docker.io/library/ubuntu:latest"),
            ("myorg/app", "index.docker.io/myorg/app:latest"),
            ("gcr.io/foo/bar", "gcr.io/foo/bar:latest"),
            ("localhost:5000/app:v1", "localhost:5000/app:v1"),
            (f"bar@{DIGEST}", f"index.docker.io/library/bar@{DIGEST}"),
            (f"bar:1.0@{DIGEST}", f"index.docker.io/library/bar@{DIGEST}"),
        ],
    )
    def test_canonical_form(self, image, expected):
        assert str(ImageReference.parse(image)) == expected

    def test_fields(self):
        ref = ImageReference.parse("gcr.io/foo/bar:v2")
        assert ref.registry == "gcr.io"
        assert ref.repository == "foo/bar"
        assert ref.tag == "v2"
        assert ref.name == "gcr.io/foo/bar"
        assert not ref.is_digest

    def test_with_digest_drops_tag(self):
        ref = ImageReference.parse("busybox:1.36").with_digest(DIGEST)
        assert ref.is_digest
        assert str(ref) == f"index.docker.io/library/busybox@{DIGEST}"

    @pytest.mark.parametrize("image", ["", " busybox", "Busybox", "busybox@sha256:xyz", "app:bad tag"])
    def test_invalid(self, image):
        with pytest.raises(EntrypointResolutionError):
            ImageReference.parse(image)
