"""
FileGate Structured Logging — JSONL file logs fed by an async queue.

Implements:
- FileLogger: per-channel, per-category files with daily rotation
  (logs/{channel}/{category}/{YYYY-MM-DD}.jsonl)
- AsyncLogQueue: in-memory queue flushed by a background thread
- Entry builders for authorization decisions, workflow transitions,
  audit-trail write failures and system events

This is the local diagnostic channel. It is separate from the audit trail:
when an audit entry cannot be persisted, log_audit_failure() is where the
loss is recorded.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

logger = logging.getLogger("filegate.engine.logging")

CHANNEL_CATEGORIES = {
    "decisions": ["allow", "deny"],
    "access_requests": ["transitions"],
    "audit": ["failures"],
    "system": ["events"],
}


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("channel", "category", "data")

    def __init__(self, channel: str, category: str, data: Dict[str, Any]):
        self.channel = channel
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Appends JSON lines to logs/{channel}/{category}/{YYYY-MM-DD}.jsonl.

    Thread-safe — one lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        for channel, categories in CHANNEL_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / channel / cat).mkdir(parents=True, exist_ok=True)

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def _resolve_path(self, channel: str, category: str) -> Path:
        return self._log_dir / channel / category / f"{date.today().isoformat()}.jsonl"

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Write entries grouped by destination file."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            grouped[str(self._resolve_path(entry.channel, entry.category))].append(entry)

        for file_path, batch in grouped.items():
            Path(file_path).parent.mkdir(parents=True, exist_ok=True)
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    for entry in batch:
                        f.write(entry.to_json())
                        f.write("\n")

    def read_today(self, channel: str, category: str) -> List[Dict[str, Any]]:
        """Return today's entries for a channel/category, oldest first."""
        path = self._resolve_path(channel, category)
        if not path.exists():
            return []
        entries: List[Dict[str, Any]] = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt log line in %s", path)
        return entries


class AsyncLogQueue:
    """
    Bounded buffer between request threads and the JSONL files.

    A daemon thread wakes every flush_interval_ms and writes whatever is queued
    in slices of at most flush_batch_size. A full buffer drops the entry rather
    than block the caller; stop() writes out the remainder.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._file_logger = file_logger
        self._interval = flush_interval_ms / 1000.0
        self._batch_size = max(flush_batch_size, 1)
        self._buffer: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._stopped = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._dropped = 0

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._stopped.clear()
        self._worker = threading.Thread(target=self._run, name="filegate-log-writer", daemon=True)
        self._worker.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stopped.set()
        if self._worker is not None:
            self._worker.join(timeout=timeout)
            self._worker = None
        self._write(self._take())
        if self._dropped:
            logger.warning("Log queue stopped with %d dropped entries", self._dropped)

    def push(self, entry: LogEntry) -> bool:
        """False when the buffer is full and *entry* was dropped."""
        try:
            self._buffer.put_nowait(entry)
        except Full:
            self._dropped += 1
            return False
        return True

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            batch = self._take(self._batch_size)
            while batch:
                self._write(batch)
                batch = self._take(self._batch_size)

    def _take(self, limit: Optional[int] = None) -> List[LogEntry]:
        taken: List[LogEntry] = []
        while limit is None or len(taken) < limit:
            try:
                taken.append(self._buffer.get_nowait())
            except Empty:
                break
        return taken

    def _write(self, batch: List[LogEntry]) -> None:
        if not batch:
            return
        try:
            self._file_logger.write_batch(batch)
        except OSError as e:
            logger.error("Failed to write %d log entries: %s", len(batch), e)

    @property
    def pending_count(self) -> int:
        return self._buffer.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(event: str, level: str, **extra: Any) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    entry.update({k: v for k, v in extra.items() if v is not None})
    return entry


def log_decision(
    decision: str,
    allowed: bool,
    principal_id: Optional[int],
    role: Optional[str],
    file_id: Optional[int],
    reason: str,
) -> LogEntry:
    """Build an authorization decision entry (can_view_metadata, can_download_content, ...)."""
    data = _base_entry(
        event=decision,
        level="INFO" if allowed else "WARNING",
        allowed=allowed,
        principal_id=principal_id,
        role=role,
        file_id=file_id,
        reason=reason,
    )
    return LogEntry("decisions", "allow" if allowed else "deny", data)


def log_workflow_transition(
    request_id: int,
    file_id: int,
    from_status: Optional[str],
    to_status: str,
    actor_id: Optional[int],
    expires_at: Optional[datetime] = None,
) -> LogEntry:
    """Build an access-request transition entry (created/approved/rejected)."""
    data = _base_entry(
        event="access_request_transition",
        level="INFO",
        request_id=request_id,
        file_id=file_id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor_id,
        expires_at=expires_at.isoformat() if expires_at else None,
    )
    return LogEntry("access_requests", "transitions", data)


def log_audit_failure(
    action: str,
    resource_type: str,
    resource_id: Optional[int],
    actor_id: Optional[int],
    outcome: str,
    error: str,
) -> LogEntry:
    """Build an entry for an audit record that could not be persisted."""
    data = _base_entry(
        event="audit_write_failed",
        level="ERROR",
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        actor_id=actor_id,
        outcome=outcome,
        error=error,
    )
    return LogEntry("audit", "failures", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event entry (startup, shutdown, key rotation)."""
    return LogEntry("system", "events", _base_entry(event=event, level=level, details=details))


# ---------------------------------------------------------------------------
# Global Log Queue
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    level: str = "INFO",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Initialize the global async log queue and the stdlib 'filegate' logger level."""
    global _global_queue
    logging.getLogger("filegate").setLevel(level)
    _global_queue = AsyncLogQueue(
        file_logger=FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def init_logging_from_config(config: Any) -> AsyncLogQueue:
    cfg = config.logging
    return init_logging(
        log_dir=cfg.directory,
        level=cfg.level,
        flush_interval_ms=cfg.async_queue.flush_interval_ms,
        flush_batch_size=cfg.async_queue.flush_batch_size,
        max_queue_size=cfg.async_queue.max_queue_size,
    )


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push an entry to the global queue. Non-blocking; False if not queued."""
    if _global_queue is None:
        logger.debug("Log queue not initialized; %s entry dropped", entry.data.get("event"))
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Flush and stop the global log queue."""
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None
