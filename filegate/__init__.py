"""
FileGate — Authorization, time-bounded access requests and an append-only
audit trail for multi-principal file storage.
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "files", "admin"]
