"""Unit tests for filegate.engine.logging — FileLogger, AsyncLogQueue, entry builders."""

import json
from datetime import datetime, timezone

from filegate.engine import logging as log_mod
from filegate.engine.logging import (
    CHANNEL_CATEGORIES,
    AsyncLogQueue,
    FileLogger,
    LogEntry,
    log,
    log_audit_failure,
    log_decision,
    log_system_event,
    log_workflow_transition,
)


class TestLogEntry:

    def test_to_json_is_compact(self):
        entry = LogEntry("system", "events", {"event": "x", "n": 1})
        assert entry.to_json() == '{"event":"x","n":1}'

    def test_non_json_values_stringified(self):
        when = datetime(2025, 1, 1, tzinfo=timezone.utc)
        parsed = json.loads(LogEntry("system", "events", {"when": when}).to_json())
        assert parsed["when"].startswith("2025-01-01")


class TestFileLogger:

    def test_creates_channel_directories(self, tmp_path):
        FileLogger(log_dir=str(tmp_path / "logs"))
        for channel, categories in CHANNEL_CATEGORIES.items():
            for category in categories:
                assert (tmp_path / "logs" / channel / category).is_dir()

    def test_write_and_read_today(self, tmp_path):
        file_logger = FileLogger(log_dir=str(tmp_path))
        file_logger.write(LogEntry("decisions", "deny", {"event": "a"}))
        file_logger.write_batch([
            LogEntry("decisions", "deny", {"event": "b"}),
            LogEntry("system", "events", {"event": "c"}),
        ])
        assert [e["event"] for e in file_logger.read_today("decisions", "deny")] == ["a", "b"]
        assert [e["event"] for e in file_logger.read_today("system", "events")] == ["c"]
        assert file_logger.read_today("decisions", "allow") == []

    def test_corrupt_lines_skipped(self, tmp_path):
        file_logger = FileLogger(log_dir=str(tmp_path))
        file_logger.write(LogEntry("audit", "failures", {"event": "ok"}))
        path = file_logger._resolve_path("audit", "failures")
        with open(path, "a", encoding="utf-8") as f:
            f.write("{not json\n\n")
        assert file_logger.read_today("audit", "failures") == [{"event": "ok"}]


class TestAsyncLogQueue:

    def test_stop_drains_pending(self, tmp_path):
        file_logger = FileLogger(log_dir=str(tmp_path))
        queue = AsyncLogQueue(file_logger, flush_interval_ms=10_000)
        for i in range(3):
            assert queue.push(LogEntry("system", "events", {"i": i}))
        queue.stop()
        assert [e["i"] for e in file_logger.read_today("system", "events")] == [0, 1, 2]
        assert queue.pending_count == 0

    def test_full_queue_drops(self, tmp_path):
        queue = AsyncLogQueue(FileLogger(log_dir=str(tmp_path)), max_queue_size=1)
        assert queue.push(LogEntry("system", "events", {})) is True
        assert queue.push(LogEntry("system", "events", {})) is False
        assert queue.dropped_count == 1

    def test_started_worker_writes_everything(self, tmp_path):
        file_logger = FileLogger(log_dir=str(tmp_path))
        queue = AsyncLogQueue(file_logger, flush_interval_ms=10, flush_batch_size=2)
        queue.start()
        for i in range(5):
            queue.push(LogEntry("system", "events", {"i": i}))
        queue.stop()
        assert sorted(e["i"] for e in file_logger.read_today("system", "events")) == [0, 1, 2, 3, 4]
        assert queue.pending_count == 0


class TestBuilders:

    def test_decision_channels(self):
        allowed = log_decision("can_download_content", True, 1, "USER", 9, "owner")
        denied = log_decision("can_download_content", False, 2, "AUDITOR", 9, "auditor")
        assert (allowed.channel, allowed.category) == ("decisions", "allow")
        assert (denied.channel, denied.category) == ("decisions", "deny")
        assert denied.data["level"] == "WARNING"
        assert denied.data["reason"] == "auditor"

    def test_none_fields_omitted(self):
        entry = log_decision("can_view_metadata", False, None, None, 3, "no principal")
        assert "principal_id" not in entry.data
        assert "role" not in entry.data

    def test_workflow_transition(self):
        expires = datetime(2025, 1, 15, 13, 0, tzinfo=timezone.utc)
        entry = log_workflow_transition(5, 9, "PENDING", "APPROVED", 1, expires)
        assert entry.channel == "access_requests"
        assert entry.data["expires_at"] == expires.isoformat()
        assert entry.data["from_status"] == "PENDING"

    def test_audit_failure(self):
        entry = log_audit_failure("DOWNLOAD", "FILE", 9, 1, "SUCCESS", "disk full")
        assert (entry.channel, entry.category) == ("audit", "failures")
        assert entry.data["level"] == "ERROR"
        assert entry.data["error"] == "disk full"

    def test_system_event(self):
        entry = log_system_event("key_rotated", details={"key_id": "k2"})
        assert entry.data["event"] == "key_rotated"
        assert entry.data["details"] == {"key_id": "k2"}


class TestGlobalQueue:

    def test_log_without_queue(self):
        assert log(log_system_event("ignored")) is False

    def test_init_and_shutdown(self, tmp_path):
        queue = log_mod.init_logging(log_dir=str(tmp_path))
        assert log_mod.get_log_queue() is queue
        assert log(log_system_event("hello")) is True
        log_mod.shutdown_logging()
        assert log_mod.get_log_queue() is None
        events = FileLogger(log_dir=str(tmp_path)).read_today("system", "events")
        assert [e["event"] for e in events] == ["hello"]
