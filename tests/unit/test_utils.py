"""
Unit tests for background task tracking and component logging.
"""

import asyncio

import pytest
from rich.console import Console
from structlog.testing import capture_logs

from clawcore.utils.background import BackgroundTasks
from clawcore.utils.logging import ComponentLogger, setup_file_logging


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self):
        background = BackgroundTasks()

        async def broken():
            raise RuntimeError("disk full")

        with capture_logs() as logs:
            background.spawn(broken(), name="write_back")
            await background.drain(timeout=1)

        assert background.pending == 0
        failure = next(e for e in logs if e["event"] == "background_task_failed")
        assert failure["task"] == "write_back"
        assert failure["error"] == "disk full"

    @pytest.mark.asyncio
    async def test_drain_follows_tasks_spawned_while_draining(self):
        background = BackgroundTasks()
        done = []

        async def child():
            done.append("child")

        async def parent():
            background.spawn(child())
            done.append("parent")

        background.spawn(parent())
        await background.drain(timeout=1)

        assert done == ["parent", "child"]

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        background = BackgroundTasks()
        background.spawn(asyncio.sleep(60))
        background.spawn(asyncio.sleep(60))
        await asyncio.sleep(0)

        await background.cancel_all()

        assert background.pending == 0

    @pytest.mark.asyncio
    async def test_drain_timeout(self):
        background = BackgroundTasks()
        background.spawn(asyncio.sleep(60))

        with pytest.raises(asyncio.TimeoutError):
            await background.drain(timeout=0.01)
        await background.cancel_all()


class TestComponentLogger:
    def test_operation_lifecycle(self):
        component = ComponentLogger("memory", console=Console(file=None, quiet=True))

        with capture_logs() as logs:
            started = component.log_operation_start("prune", {"unpruned": 21})
            component.log_operation_complete("prune", started, {"summarized": 10})

        assert [e["event"] for e in logs] == ["prune_started", "prune_completed"]
        assert logs[1]["summarized"] == 10
        assert logs[1]["duration_ms"] >= 0

    def test_operation_error(self):
        component = ComponentLogger("router")

        with capture_logs() as logs:
            component.log_operation_error("complete", ValueError("bad key"))

        assert logs[0]["event"] == "complete_failed"
        assert logs[0]["log_level"] == "error"
        assert logs[0]["error_type"] == "ValueError"

    def test_rotating_file_handler(self, tmp_path):
        handler = setup_file_logging(tmp_path / "logs" / "claw.log", max_bytes=1024, backup_count=2)

        assert handler.maxBytes == 1024
        assert handler.backupCount == 2
        assert (tmp_path / "logs").is_dir()
        handler.close()
