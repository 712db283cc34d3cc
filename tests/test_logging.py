"""
Tests for the logging module.

Tests verify:
- configure_logging accepts both renderers
- LogContext binds and unbinds context (sync and async)
"""

import pytest
import structlog

from steprun.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)


@pytest.fixture(autouse=True)
def _clean_context():
    clear_context()
    yield
    clear_context()
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_json(self):
        configure_logging(level="DEBUG", json_format=True)
        get_logger("steprun.test").info("test.event", value=1)

    def test_console(self):
        configure_logging(level="WARNING", json_format=False, add_timestamp=False)
        get_logger("steprun.test").warning("test.event")


class TestContext:
    def test_bind_and_unbind(self):
        bind_context(run="default/build-1", worker=0)
        assert structlog.contextvars.get_contextvars() == {"run": "default/build-1", "worker": 0}
        unbind_context("worker")
        assert structlog.contextvars.get_contextvars() == {"run": "default/build-1"}

    def test_log_context_sync(self):
        with LogContext(run="default/build-1"):
            assert structlog.contextvars.get_contextvars()["run"] == "default/build-1"
        assert "run" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_log_context_async(self):
        async with LogContext(run="default/build-2"):
            assert structlog.contextvars.get_contextvars()["run"] == "default/build-2"
        assert "run" not in structlog.contextvars.get_contextvars()
