"""Tests for result extraction from container logs."""

import pytest

from steprun.core.errors import ExtractionError
from steprun.models import Result
from steprun.reconciler.results import extract_results


class TestExtractResults:
    def test_digest_results(self):
        raw = '[{"name":"source-image","digest":"sha256:1234"}]'
        assert extract_results(raw) == [Result(name="source-image", digest="sha256:1234")]

    def test_value_results(self):
        raw = '[{"name":"commit","value":"abc"},{"name":"branch","value":"main"}]'
        assert [r.value for r in extract_results(raw)] == ["abc", "main"]

    def test_leading_noise_tolerated(self):
        raw = 'Pushing image [1/3] done\n2024/05/01 exporting\n[{"name":"img","digest":"sha256:1"}]\n'
        assert extract_results(raw) == [Result(name="img", digest="sha256:1")]

    def test_bytes(self):
        assert extract_results(b'[{"name":"a","value":"1"}]')[0].value == "1"

    @pytest.mark.parametrize("raw", ["", "   \n", "no json here", "[]", '{"name": "a"}'])
    def test_missing_or_empty(self, raw):
        with pytest.raises(ExtractionError):
            extract_results(raw)

    @pytest.mark.parametrize(
        "raw",
        [
            '[{"digest":"sha256:1"}]',
            '[{"name":"a"}]',
            '[{"name":"a","value":5}]',
            '[{"name":"a","digest":["x"]}]',
            '["a"]',
        ],
    )
    def test_bad_shape(self, raw):
        with pytest.raises(ExtractionError):
            extract_results(raw)

    def test_malformed_array_rejected_whole(self):
        raw = '[{"name":"a","value":"1"},{"name":"b"}]'
        with pytest.raises(ExtractionError):
            extract_results(raw)

    def test_truncated_json(self):
        with pytest.raises(ExtractionError):
            extract_results('[{"name":"a","value":"1"}')

    def test_deeply_nested_noise_skipped(self):
        raw = "[" * 100_000 + ' noise\n[{"name":"img","digest":"sha256:1"}]'
        assert extract_results(raw) == [Result(name="img", digest="sha256:1")]

    def test_deeply_nested_noise_only(self):
        with pytest.raises(ExtractionError):
            extract_results("[ " * 50_000)
