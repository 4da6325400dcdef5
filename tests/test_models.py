"""Unit tests for filegate.db — models, UTCDateTime, append-only audit entries, session_scope."""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import MagicMock

from filegate.db.base import UTCDateTime, as_utc
from filegate.db.models import (
    AccessKind,
    AuditAction,
    AuditEntry,
    AuditOutcome,
    ResourceType,
    StoredFile,
    Visibility,
)
from filegate.db.session import session_scope
from filegate.engine.errors import FileGateAuditError


class TestAccessKind:

    def test_download_implies_view(self):
        assert AccessKind.DOWNLOAD.satisfies(AccessKind.VIEW)
        assert AccessKind.DOWNLOAD.satisfies(AccessKind.DOWNLOAD)

    def test_view_does_not_imply_download(self):
        assert AccessKind.VIEW.satisfies(AccessKind.VIEW)
        assert not AccessKind.VIEW.satisfies(AccessKind.DOWNLOAD)


class TestUTCDateTime:

    def test_naive_treated_as_utc(self):
        assert as_utc(datetime(2025, 1, 1, 12, 0)) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_aware_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        value = as_utc(datetime(2025, 1, 1, 14, 0, tzinfo=plus_two))
        assert value == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert value.tzinfo is timezone.utc

    def test_bind_strips_tz(self):
        col = UTCDateTime()
        bound = col.process_bind_param(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc), None)
        assert bound.tzinfo is None

    def test_round_trip_is_aware(self, make_file, owner, session_factory, clock):
        file = make_file(owner)
        with session_scope(session_factory) as session:
            loaded = session.get(StoredFile, file.id)
        assert loaded.uploaded_at == clock()
        assert loaded.uploaded_at.tzinfo is not None


class TestStoredFile:

    def test_defaults_and_owner(self, make_file, owner):
        file = make_file(owner)
        assert file.visibility is Visibility.PRIVATE
        assert file.is_deleted is False
        assert file.is_owned_by(owner.id)
        assert not file.is_owned_by(None)
        assert file.owner.username == "alice"


class TestAuditEntryAppendOnly:

    def _entry(self, session_factory) -> int:
        with session_scope(session_factory) as session:
            entry = AuditEntry(
                action=AuditAction.UPLOAD,
                resource_type=ResourceType.FILE,
                outcome=AuditOutcome.SUCCESS,
                timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
            )
            session.add(entry)
            session.flush()
            return entry.id

    def test_update_rejected(self, session_factory):
        entry_id = self._entry(session_factory)
        with pytest.raises(FileGateAuditError, match="append-only"):
            with session_scope(session_factory) as session:
                session.get(AuditEntry, entry_id).details = "tampered"
        with session_scope(session_factory) as session:
            assert session.get(AuditEntry, entry_id).details is None

    def test_delete_rejected(self, session_factory):
        entry_id = self._entry(session_factory)
        with pytest.raises(FileGateAuditError):
            with session_scope(session_factory) as session:
                session.delete(session.get(AuditEntry, entry_id))
        with session_scope(session_factory) as session:
            assert session.get(AuditEntry, entry_id) is not None


class TestSessionScope:

    def test_commit_and_close(self):
        session = MagicMock()
        with session_scope(MagicMock(return_value=session)):
            pass
        session.commit.assert_called_once()
        session.close.assert_called_once()

    def test_rollback_on_error(self):
        session = MagicMock()
        with pytest.raises(ValueError):
            with session_scope(MagicMock(return_value=session)):
                raise ValueError("boom")
        session.rollback.assert_called_once()
        session.commit.assert_not_called()
        session.close.assert_called_once()
