"""
FileGate file handling.

Encrypted byte storage plus the service that puts the decision engine in
front of it.
"""

from filegate.files.schemas import AccessRequestView, AuditFileMetadata, FileMetadata, FileStats
from filegate.files.service import FileService
from filegate.files.storage import ByteStore, EncryptedFileStore, KeyRing

__all__ = [
    "AccessRequestView",
    "AuditFileMetadata",
    "FileMetadata",
    "FileStats",
    "FileService",
    "ByteStore",
    "EncryptedFileStore",
    "KeyRing",
]
