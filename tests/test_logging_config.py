"""
Logging Setup Tests
===================
Handlers, level resolution, colouring and session id stamping.
"""
import asyncio
import io
import logging
import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from auditor.agents.judge_agent import JudgeAgent, JudgeOutcome
from auditor.agents.orchestrator import ConvergenceController
from auditor.models.review import Review
from auditor.services.session_store import MemorySessionStore
from auditor.state.session_manager import SessionManager
from auditor.utils.logging_config import (
    ColoredFormatter,
    current_session,
    resolve_level,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    access_level = logging.getLogger("uvicorn.access").level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(access_level)


def _record(level=logging.WARNING, msg="judge slow"):
    record = logging.LogRecord("auditor.test", level, __file__, 1, msg, None, None)
    record.session_id = "s1"
    return record


# ===================================================================
# Handlers
# ===================================================================
class TestSetup:

    def test_console_only(self):
        stream = io.StringIO()
        assert setup_logging(log_dir=None, stream=stream) is None

        root = logging.getLogger()
        assert len(root.handlers) == 1
        logging.getLogger("auditor.test").info("hello")
        line = stream.getvalue().splitlines()[-1]
        assert "| INFO     | - | auditor.test - hello" in line
        assert "\x1b[" not in line

    def test_daily_file(self, tmp_path):
        log_file = setup_logging(log_dir=str(tmp_path / "logs"), stream=io.StringIO())
        logging.getLogger("auditor.test").warning("written")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert os.path.basename(log_file).startswith("auditor_")
        with open(log_file, encoding="utf-8") as fh:
            assert "auditor.test - written" in fh.read()

    def test_level_name_and_access_log_cap(self):
        setup_logging(level="debug", log_dir=None, stream=io.StringIO())
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("auditor").level == logging.DEBUG
        assert logging.getLogger("uvicorn.access").level == logging.WARNING

    def test_repeated_setup_replaces_handlers(self):
        setup_logging(log_dir=None, stream=io.StringIO())
        setup_logging(log_dir=None, stream=io.StringIO())
        assert len(logging.getLogger().handlers) == 1


@pytest.mark.parametrize("level,expected", [
    (logging.ERROR, logging.ERROR),
    ("warning", logging.WARNING),
    (" DEBUG ", logging.DEBUG),
    ("verbose", logging.INFO),
    (None, logging.INFO),
])
def test_resolve_level(level, expected):
    assert resolve_level(level) == expected


# ===================================================================
# Formatting
# ===================================================================
class TestFormatter:

    def test_colour_wraps_line(self):
        line = ColoredFormatter().format(_record())
        assert line.startswith("\x1b[33m")
        assert line.endswith("\x1b[0m")
        assert "| s1 |" in line

    def test_plain_when_disabled(self):
        line = ColoredFormatter(use_color=False).format(_record(logging.ERROR))
        assert "\x1b[" not in line
        assert line.endswith("auditor.test - judge slow")

    def test_unknown_level_left_plain(self):
        assert "\x1b[" not in ColoredFormatter().format(_record(level=25))


# ===================================================================
# Session id stamping
# ===================================================================
class TestSessionContext:

    def test_context_variable_stamps_records(self):
        stream = io.StringIO()
        setup_logging(log_dir=None, stream=stream)
        token = current_session.set("audit-42")
        try:
            logging.getLogger("auditor.test").info("inside")
        finally:
            current_session.reset(token)
        logging.getLogger("auditor.test").info("outside")

        inside, outside = stream.getvalue().splitlines()[-2:]
        assert "| audit-42 |" in inside
        assert "| - |" in outside

    def test_submission_logs_carry_session_id(self):
        stream = io.StringIO()
        setup_logging(log_dir=None, stream=stream)
        judge = MagicMock(spec=JudgeAgent)
        judge.review = AsyncMock(return_value=JudgeOutcome(review=Review(overall=70, verdict="revise")))
        controller = ConvergenceController(
            session_manager=SessionManager(store=MemorySessionStore()),
            judge=judge,
        )

        asyncio.run(controller.submit("audit-7", "const a = 1;"))

        lines = [l for l in stream.getvalue().splitlines() if "auditor.agents.orchestrator" in l]
        assert lines
        assert all("| audit-7 |" in l for l in lines)
