"""
FileGate Storage — Encrypted byte store for uploaded file contents.

Provides:
    - KeyRing: named Fernet keys; seals with the active key, opens with any
      (MultiFernet), and re-seals old tokens under the active key
    - ByteStore: the put/get/delete protocol FileService depends on
    - EncryptedFileStore: local-disk ByteStore, one .enc file per upload

Key material:
    - storage.secret_keys in filegate.yaml maps key_id → secret
    - FILEGATE_SECRET_KEY, when set, replaces the active key's secret
    - Each secret is stretched to a Fernet key with SHA-256 + urlsafe base64
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import re
import uuid
from pathlib import Path
from typing import Dict, Mapping, Protocol, Tuple

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from filegate.engine.config import StorageConfig
from filegate.engine.errors import FileGateConfigError, FileGateStorageError
from filegate.engine.logging import log, log_system_event

logger = logging.getLogger("filegate.files.storage")

SECRET_KEY_ENV = "FILEGATE_SECRET_KEY"
ENCRYPTED_SUFFIX = ".enc"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def derive_fernet_key(secret: str) -> bytes:
    """32-byte SHA-256 digest of the secret, urlsafe-base64 encoded for Fernet."""
    derived = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(derived)


class KeyRing:
    """
    Usage:
        ring = KeyRing({"k1": "old secret", "k2": "new secret"}, active_key_id="k2")
        token, key_id = ring.seal(b"...")      # key_id == "k2"
        ring.open(token_sealed_under_k1)       # still works
    """

    def __init__(self, secrets: Mapping[str, str], active_key_id: str):
        if not secrets:
            raise FileGateConfigError("At least one storage secret key is required")
        if active_key_id not in secrets:
            raise FileGateConfigError(
                f"Active key '{active_key_id}' is not in the key ring",
                active_key_id=active_key_id,
            )
        self._active_key_id = active_key_id
        self._fernets: Dict[str, Fernet] = {
            key_id: Fernet(derive_fernet_key(secret)) for key_id, secret in secrets.items()
        }
        # MultiFernet encrypts with the first key and tries all of them on decrypt
        ordered = [self._fernets[active_key_id]] + [
            f for key_id, f in self._fernets.items() if key_id != active_key_id
        ]
        self._multi = MultiFernet(ordered)

    @classmethod
    def from_config(cls, config: StorageConfig) -> "KeyRing":
        secrets = dict(config.secret_keys)
        env_secret = os.environ.get(SECRET_KEY_ENV)
        if env_secret:
            secrets[config.active_key_id] = env_secret
        return cls(secrets, config.active_key_id)

    @property
    def active_key_id(self) -> str:
        return self._active_key_id

    @property
    def key_ids(self) -> Tuple[str, ...]:
        return tuple(self._fernets)

    def seal(self, data: bytes) -> Tuple[bytes, str]:
        return self._multi.encrypt(data), self._active_key_id

    def open(self, token: bytes) -> bytes:
        try:
            return self._multi.decrypt(token)
        except InvalidToken:
            raise FileGateStorageError(
                "Failed to decrypt file contents; no key in the ring matches"
            )

    def rotate(self, token: bytes) -> Tuple[bytes, str]:
        """Re-seal *token* under the active key."""
        try:
            return self._multi.rotate(token), self._active_key_id
        except InvalidToken:
            raise FileGateStorageError("Cannot rotate token; no key in the ring matches")


class ByteStore(Protocol):
    def put(self, data: bytes, file_name: str) -> Tuple[str, str]: ...

    def get(self, storage_key: str) -> bytes: ...

    def delete(self, storage_key: str) -> None: ...

    def rotate(self, storage_key: str) -> str: ...

    @property
    def active_key_id(self) -> str: ...


class EncryptedFileStore:
    """
    Stores each upload as {root}/{uuid}_{safe_name}.enc, sealed by the KeyRing.

    The storage key returned by put() is the path relative to root; it is
    opaque to callers and never leaves the service layer.
    """

    def __init__(self, root: str, keyring: KeyRing):
        self._root = Path(root)
        self._keyring = keyring
        self._root.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config: StorageConfig) -> "EncryptedFileStore":
        return cls(config.root, KeyRing.from_config(config))

    @property
    def root(self) -> Path:
        return self._root

    @property
    def keyring(self) -> KeyRing:
        return self._keyring

    @property
    def active_key_id(self) -> str:
        return self._keyring.active_key_id

    def _resolve(self, storage_key: str) -> Path:
        path = (self._root / storage_key).resolve()
        if self._root.resolve() not in path.parents:
            raise FileGateStorageError("Storage key escapes the store root", storage_key=storage_key)
        return path

    @staticmethod
    def _safe_name(file_name: str) -> str:
        name = _UNSAFE_CHARS.sub("_", Path(file_name).name).strip("._")
        return name[:100] or "file"

    def put(self, data: bytes, file_name: str) -> Tuple[str, str]:
        """Encrypt and write *data*. Returns (storage_key, key_id)."""
        token, key_id = self._keyring.seal(data)
        storage_key = f"{uuid.uuid4().hex}_{self._safe_name(file_name)}{ENCRYPTED_SUFFIX}"
        path = self._resolve(storage_key)
        try:
            path.write_bytes(token)
        except OSError as e:
            raise FileGateStorageError(f"Failed to write file: {e}", storage_key=storage_key)
        logger.debug("Stored %d bytes as %s (key %s)", len(data), storage_key, key_id)
        return storage_key, key_id

    def get(self, storage_key: str) -> bytes:
        path = self._resolve(storage_key)
        try:
            token = path.read_bytes()
        except FileNotFoundError:
            raise FileGateStorageError("Stored file is missing", storage_key=storage_key)
        except OSError as e:
            raise FileGateStorageError(f"Failed to read file: {e}", storage_key=storage_key)
        try:
            return self._keyring.open(token)
        except FileGateStorageError as e:
            raise FileGateStorageError(e.message, storage_key=storage_key)

    def delete(self, storage_key: str) -> None:
        path = self._resolve(storage_key)
        if path.exists():
            path.unlink()

    def rotate(self, storage_key: str) -> str:
        """Re-seal one stored file under the active key. Returns the new key_id."""
        path = self._resolve(storage_key)
        try:
            token, key_id = self._keyring.rotate(path.read_bytes())
            path.write_bytes(token)
        except FileNotFoundError:
            raise FileGateStorageError("Stored file is missing", storage_key=storage_key)
        except OSError as e:
            raise FileGateStorageError(f"Failed to rotate file: {e}", storage_key=storage_key)
        log(log_system_event("storage_key_rotated", details={"storage_key": storage_key, "key_id": key_id}))
        return key_id
