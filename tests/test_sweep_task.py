"""
tests/test_sweep_task.py -- The background refresh-session sweep in api/main.py.

Covers:
  - storage errors are logged and the loop keeps running
  - any other exception ends the loop and is logged by the done-callback
  - cancellation at shutdown is silent
"""

from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from api.main import _log_sweep_exit, _sweep_loop


def _fake_app(sweep):
    return SimpleNamespace(state=SimpleNamespace(session_service=SimpleNamespace(sweep_expired_sessions=sweep)))


def test_storage_error_is_retried(caplog):
    calls = []

    def sweep():
        calls.append(1)
        raise OperationalError("DELETE", {}, Exception("database is locked"))

    async def run():
        task = asyncio.create_task(_sweep_loop(_fake_app(sweep), 0))
        task.add_done_callback(_log_sweep_exit)
        while len(calls) < 2:
            await asyncio.sleep(0.01)
        assert not task.done()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    with caplog.at_level(logging.INFO, logger="gatehouse.api"):
        asyncio.run(run())

    assert "retrying next interval" in caplog.text
    assert "sweep stopped" not in caplog.text


def test_unexpected_error_is_logged_when_loop_dies(caplog):
    def sweep():
        raise RuntimeError("boom")

    async def run():
        task = asyncio.create_task(_sweep_loop(_fake_app(sweep), 0))
        task.add_done_callback(_log_sweep_exit)
        with pytest.raises(RuntimeError):
            await task
        # Let the scheduled done-callbacks run
        await asyncio.sleep(0)

    with caplog.at_level(logging.ERROR, logger="gatehouse.api"):
        asyncio.run(run())

    records = [r for r in caplog.records if "sweep stopped" in r.getMessage()]
    assert len(records) == 1
    assert records[0].levelno == logging.ERROR
    assert records[0].exc_info[0] is RuntimeError


def test_cancellation_is_not_reported(caplog):
    async def run():
        task = asyncio.create_task(_sweep_loop(_fake_app(lambda: 0), 3600))
        task.add_done_callback(_log_sweep_exit)
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)

    with caplog.at_level(logging.ERROR, logger="gatehouse.api"):
        asyncio.run(run())

    assert caplog.records == []
