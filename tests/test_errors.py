"""Unit tests for filegate.engine.errors — Error hierarchy & serialization."""

import json
import pytest

from filegate.engine.errors import (
    FileGateAuditError,
    FileGateConfigError,
    FileGateError,
    FileGateForbiddenError,
    FileGateInvalidRoleError,
    FileGateInvalidStateError,
    FileGateNotFoundError,
    FileGateSelfRequestError,
    FileGateStorageError,
    FileGateValidationError,
)


class TestFileGateError:
    """Base error class tests."""

    def test_basic_creation(self):
        err = FileGateError("something broke")
        assert err.message == "something broke"
        assert str(err) == "something broke"
        assert err.error_type == "FileGateError"
        assert err.status_code == 500
        assert err.file_id is None
        assert err.request_id is None

    def test_context_fields(self):
        err = FileGateError("fail", principal_id=3, file_id=7, request_id=11, extra="x")
        assert err.principal_id == 3
        assert err.file_id == 7
        assert err.request_id == 11
        assert err.context["extra"] == "x"

    def test_to_dict_moves_known_fields_out_of_context(self):
        d = FileGateError("fail", file_id=7, extra=5).to_dict()
        assert d["error_type"] == "FileGateError"
        assert d["file_id"] == 7
        assert d["context"] == {"extra": "5"}
        assert "timestamp" in d

    def test_to_json(self):
        parsed = json.loads(FileGateError("fail", file_id=1).to_json())
        assert parsed["message"] == "fail"

    def test_repr(self):
        r = repr(FileGateError("fail", file_id=4, principal_id=2))
        assert "FileGateError: fail" in r
        assert "file_id=4" in r
        assert "principal_id=2" in r


class TestSubclasses:

    def test_status_codes(self):
        assert FileGateNotFoundError("x").status_code == 404
        assert FileGateForbiddenError("x").status_code == 403
        assert FileGateInvalidStateError("x").status_code == 400
        assert FileGateValidationError("x").status_code == 400

    def test_hierarchy(self):
        assert issubclass(FileGateInvalidRoleError, FileGateForbiddenError)
        assert issubclass(FileGateSelfRequestError, FileGateInvalidStateError)
        for cls in (FileGateAuditError, FileGateStorageError, FileGateConfigError):
            assert issubclass(cls, FileGateError)

    def test_forbidden_fields(self):
        err = FileGateForbiddenError("no", role="AUDITOR", required_capability="FILE_DOWNLOAD")
        d = err.to_dict()
        assert d["role"] == "AUDITOR"
        assert d["required_capability"] == "FILE_DOWNLOAD"

    def test_validation_field(self):
        err = FileGateValidationError("Purpose is required", field="purpose")
        assert err.field == "purpose"
        assert err.to_dict()["field"] == "purpose"

    def test_not_found_resource_type(self):
        assert FileGateNotFoundError("gone", resource_type="FILE").resource_type == "FILE"

    def test_invalid_state_current_state(self):
        assert FileGateInvalidStateError("done", current_state="APPROVED").current_state == "APPROVED"

    def test_storage_key(self):
        assert FileGateStorageError("bad", storage_key="a.enc").storage_key == "a.enc"

    def test_catch_as_base(self):
        with pytest.raises(FileGateError):
            raise FileGateSelfRequestError("own file")
