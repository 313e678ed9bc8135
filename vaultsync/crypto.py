"""
Machine-bound reversible encryption for stored credentials.

Tokens are encrypted with Fernet (AES-128-CBC + HMAC-SHA256). The Fernet key is
derived with HKDF-SHA256 from the machine identity, so a credential file copied
to a different machine cannot be decrypted there.
"""

import base64
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import EncryptionUnavailable, DecryptionFailed
from .platform import get_machine_identity

logger = logging.getLogger('vaultsync.crypto')

_HKDF_SALT = b"vaultsync.credentials.v1"
_HKDF_INFO = b"credential-vault"


def _derive_fernet_key(machine_id: str) -> bytes:
    hkdf = HKDF(
        algorithm=SHA256(),
        length=32,
        salt=_HKDF_SALT,
        info=_HKDF_INFO,
    )
    return base64.urlsafe_b64encode(hkdf.derive(machine_id.encode("utf-8")))


class MachineKeyCipher:
    """Encrypts and decrypts secrets with a key bound to this machine."""

    def __init__(self, machine_id: Optional[str] = None):
        """
        Args:
            machine_id: Explicit machine identity; detected from the platform when omitted
        """
        self._machine_id = machine_id
        self._fernet: Optional[Fernet] = None

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            machine_id = self._machine_id or get_machine_identity()
            if not machine_id:
                raise EncryptionUnavailable(
                    "Secure storage is unavailable: no machine identity could be determined"
                )
            self._fernet = Fernet(_derive_fernet_key(machine_id))
            logger.debug("Credential cipher initialized")
        return self._fernet

    def is_available(self) -> bool:
        """Check whether secrets can be encrypted on this machine."""
        try:
            self._get_fernet()
        except EncryptionUnavailable:
            return False
        return True

    def encrypt(self, plaintext: str) -> bytes:
        return self._get_fernet().encrypt(plaintext.encode("utf-8"))

    def decrypt(self, blob: bytes) -> str:
        fernet = self._get_fernet()
        try:
            return fernet.decrypt(blob).decode("utf-8")
        except (InvalidToken, UnicodeDecodeError) as e:
            raise DecryptionFailed(
                "Stored token could not be decrypted; it is corrupt or was saved on another machine"
            ) from e
