"""
Unit tests for the structured logging stack.
"""

import json
import logging

import pytest

from relaybot.core.logging.logger import (
    ContextFilter,
    JSONFormatter,
    LogContext,
    clear_log_context,
    get_log_context,
    get_logging_health,
    set_log_context,
    setup_logging,
    shutdown_logging,
)


def _record(name="relaybot.bot.dispatcher", msg="Dispatching", **extra):
    record = logging.LogRecord(name, logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _clean_context():
    clear_log_context()
    yield
    clear_log_context()


@pytest.mark.unit
class TestLogContext:
    def test_scope_sets_and_restores(self):
        with LogContext(user_id=1001, guild_id=5005, command="utility ping") as ctx:
            inside = get_log_context()

        assert inside["user_id"] == "1001"
        assert inside["command"] == "utility ping"
        assert inside["correlation_id"] == ctx.correlation_id
        assert get_log_context() == {}

    @pytest.mark.asyncio
    async def test_async_scope(self):
        async with LogContext(command="utility echo", correlation_id="abc12345"):
            assert get_log_context()["correlation_id"] == "abc12345"

        assert get_log_context() == {}

    def test_set_log_context_skips_none(self):
        set_log_context(user_id=7, guild_id=None, operation="register")

        assert get_log_context() == {"user_id": "7", "operation": "register"}


@pytest.mark.unit
class TestFilterAndFormatter:
    def test_filter_copies_context_and_derives_component(self):
        record = _record()

        with LogContext(user_id=1001, command="utility ping"):
            ContextFilter().filter(record)

        assert record.user_id == "1001"
        assert record.command == "utility ping"
        assert record.guild_id == "N/A"
        assert record.component == "bot"

    def test_json_includes_context_and_extra(self):
        record = _record(command="utility ping", user_id="1001", elapsed_ms=12.5)

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Dispatching"
        assert data["command"] == "utility ping"
        assert data["extra"] == {"elapsed_ms": 12.5}

    def test_json_omits_placeholder_context(self):
        record = _record(user_id="N/A")

        data = json.loads(JSONFormatter().format(record))

        assert "user_id" not in data
        assert "extra" not in data


@pytest.mark.unit
class TestSetup:
    def test_setup_is_idempotent_and_reversible(self):
        root = logging.getLogger()
        saved = list(root.handlers), root.level
        try:
            setup_logging(enable_file=False)
            setup_logging(enable_file=False)

            assert get_logging_health().initialized
            assert len(root.handlers) == 1
        finally:
            shutdown_logging()
            for handler in saved[0]:
                root.addHandler(handler)
            root.setLevel(saved[1])

        assert not get_logging_health().initialized
