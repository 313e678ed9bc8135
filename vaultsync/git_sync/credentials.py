"""Encrypted per-repository token storage."""

import base64
import binascii
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from ..config import Config
from ..crypto import MachineKeyCipher
from ..errors import EncryptionUnavailable, DecryptionFailed
from ..file_lock import FileLock
from ..platform import get_platform_info
from .remote import RemoteDescriptor


class CredentialVault:
    """
    Stores authentication tokens keyed by remote identity.

    Records live in a single JSON file mapping lowercased ``host/owner/repo``
    keys to base64 encoded encrypted blobs. Plaintext is never written to disk.
    Tokens are only reachable through a RemoteDescriptor, never a vault path.
    """

    def __init__(self, config: Config, cipher=None):
        """
        Initialize the credential vault.

        Args:
            config: Configuration providing the data directory
            cipher: Object with ``is_available()``, ``encrypt(str) -> bytes`` and
                ``decrypt(bytes) -> str``; defaults to a MachineKeyCipher
        """
        self.config = config
        self.credentials_file = config.credentials_file
        self.cipher = cipher if cipher is not None else MachineKeyCipher(config.machine_id)
        self.logger = logging.getLogger('vaultsync.credentials')
        self._lock = threading.Lock()

    def require_cipher(self) -> None:
        """Raise EncryptionUnavailable unless tokens can be encrypted on this machine."""
        if not self.cipher.is_available():
            raise EncryptionUnavailable("Secure storage is unavailable on this system; tokens cannot be stored")

    def _read_records(self) -> Dict[str, str]:
        if not self.credentials_file.exists():
            return {}

        try:
            records = json.loads(self.credentials_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self.logger.warning(f"Credential file is unreadable, treating it as empty: {e}")
            return {}

        if not isinstance(records, dict):
            self.logger.warning("Credential file has an unexpected shape, treating it as empty")
            return {}

        return {str(key): str(value) for key, value in records.items()}

    def _write_records(self, records: Dict[str, str]) -> None:
        """Write the full record set atomically (temp file then rename)."""
        directory = self.credentials_file.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(dir=str(directory), prefix=".credentials.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(records, handle, indent=2, sort_keys=True)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            if get_platform_info().is_unix:
                os.chmod(temp_path, 0o600)
            os.replace(temp_path, self.credentials_file)
        except BaseException:
            Path(temp_path).unlink(missing_ok=True)
            raise

    def _locked(self):
        return FileLock(self.config.credentials_lock_file, timeout=10.0)

    def save(self, descriptor: RemoteDescriptor, token: str) -> None:
        """
        Encrypt and persist a token, replacing any previous one for the same remote.

        Raises:
            ValueError: If the token is empty
            EncryptionUnavailable: If secrets cannot be encrypted on this machine
        """
        if not token or not token.strip():
            raise ValueError("Token must not be empty")

        self.require_cipher()
        blob = base64.b64encode(self.cipher.encrypt(token)).decode("ascii")
        key = descriptor.credential_key

        with self._lock, self._locked():
            records = self._read_records()
            replaced = key in records
            records[key] = blob
            self._write_records(records)

        self.logger.info(f"🔐 Token {'rotated' if replaced else 'saved'} for {descriptor.slug}")

    def load(self, descriptor: RemoteDescriptor) -> Optional[str]:
        """
        Decrypt the stored token for a remote.

        Returns:
            The token, or None if nothing is stored

        Raises:
            EncryptionUnavailable: If secrets cannot be decrypted on this machine
            DecryptionFailed: If the stored blob is corrupt or foreign
        """
        self.require_cipher()

        with self._lock:
            blob = self._read_records().get(descriptor.credential_key)

        if blob is None:
            return None

        try:
            raw = base64.b64decode(blob.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise DecryptionFailed(f"Stored token for {descriptor.slug} is corrupt") from e

        return self.cipher.decrypt(raw)

    def clear(self, descriptor: RemoteDescriptor) -> None:
        """Remove the stored token for a remote; no-op if none is stored."""
        key = descriptor.credential_key

        with self._lock, self._locked():
            records = self._read_records()
            if key not in records:
                self.logger.debug(f"No token stored for {descriptor.slug}, nothing to clear")
                return
            del records[key]
            self._write_records(records)

        self.logger.info(f"🗑️ Token cleared for {descriptor.slug}")

    def has_token(self, descriptor: RemoteDescriptor) -> bool:
        """Check whether a token is stored for a remote without decrypting it."""
        with self._lock:
            return descriptor.credential_key in self._read_records()
