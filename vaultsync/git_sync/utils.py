"""Result types returned by the vault sync command surface.

Every operation answers with a dataclass that is either a success carrying its
payload or a failure carrying a typed ``ErrorCode`` and a redacted message.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..errors import ErrorCode, VaultSyncError, redact_secrets


@dataclass
class OperationResult:
    """Outcome of a command with no payload beyond success."""
    ok: bool
    error_code: Optional[ErrorCode] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["error_code"] = self.error_code.value if self.error_code else None
        return {key: value for key, value in result.items() if value is not None}


@dataclass
class InitResult(OperationResult):
    already_init: bool = False


@dataclass
class RemoteResult(OperationResult):
    repo_slug: Optional[str] = None
    clone_url: Optional[str] = None


@dataclass
class SyncResult(OperationResult):
    repo_slug: Optional[str] = None
    branch: Optional[str] = None
    steps_performed: List[str] = field(default_factory=list)
    phases: List[str] = field(default_factory=list)


@dataclass
class SyncConfig(OperationResult):
    """Read-only summary of whether sync can run for a vault."""
    enabled: bool = False
    is_repo: bool = False
    has_token: bool = False
    remote_url: Optional[str] = None
    repo_slug: Optional[str] = None
    branch: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class SyncStatus(OperationResult):
    dirty: bool = False
    changed_count: int = 0
    last_sync: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["last_sync"] = self.last_sync.isoformat() if self.last_sync else None
        return result


def failure_from_error(result_type, error: Exception, secrets=()):
    """
    Build a failed result of ``result_type`` from an exception.

    This is the single place where errors leave the engine, so the message is
    always redacted here.
    """
    if isinstance(error, VaultSyncError):
        code = error.error_code
        message = error.message
    else:
        code = ErrorCode.UNEXPECTED_ERROR
        message = f"Unexpected error: {error}"
    return result_type(ok=False, error_code=code, error=redact_secrets(message, secrets))
