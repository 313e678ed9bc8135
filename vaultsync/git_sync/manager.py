"""Vault sync manager: the command surface exposed to callers."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

import httpx

from ..config import Config
from ..errors import NotConfigured, VaultSyncError
from .commands import run_git
from .credentials import CredentialVault
from .inspector import RepositoryInspector, open_repository
from .orchestrator import SyncOrchestrator
from .provisioner import RepositoryProvisioner
from .remote import RemoteDescriptor, authenticated_url
from .utils import (
    OperationResult, InitResult, RemoteResult, SyncResult, SyncConfig, SyncStatus,
    failure_from_error
)

REASON_NOT_A_REPOSITORY = "Initialize a git repository to enable sync."
REASON_NO_REMOTE = "Add a GitHub remote to enable sync."


@dataclass(frozen=True)
class VaultSession:
    """Handle naming the vault an operation applies to."""
    root: Path

    @property
    def key(self) -> str:
        return str(self.root)


def open_vault(path) -> VaultSession:
    """
    Create a session for a vault directory.

    Raises:
        NotConfigured: If ``path`` is not an existing directory
    """
    root = Path(path).expanduser()
    if not root.is_dir():
        raise NotConfigured(f"Vault directory does not exist: {root}")
    return VaultSession(root=root.resolve())


class VaultSyncManager:
    """
    Single entry point for every sync command.

    Components raise typed errors; this class converts them into result objects
    so nothing but redacted, tagged results crosses its boundary.
    """

    def __init__(
        self,
        config: Config,
        credential_vault: Optional[CredentialVault] = None,
        http_transport: Optional[httpx.BaseTransport] = None,
        transport_url: Callable[[RemoteDescriptor, str], str] = authenticated_url
    ):
        """
        Args:
            config: Server configuration
            credential_vault: Token store; created from config when omitted
            http_transport: Optional httpx transport for GitHub API calls
            transport_url: Builds the URL used for fetch and push
        """
        self.config = config
        self.credential_vault = credential_vault or CredentialVault(config)
        self.inspector = RepositoryInspector(config)
        self.provisioner = RepositoryProvisioner(config, self.credential_vault, http_transport)
        self.orchestrator = SyncOrchestrator(
            config, self.credential_vault, inspector=self.inspector, transport_url=transport_url
        )
        self.logger = logging.getLogger('vaultsync.git_sync.manager')

        self._last_sync: Dict[str, datetime] = {}
        self._last_sync_lock = threading.Lock()

    def _require_descriptor(self, vault: VaultSession) -> RemoteDescriptor:
        state = self.inspector.inspect(vault.root)
        if not state.is_under_version_control:
            raise NotConfigured(REASON_NOT_A_REPOSITORY)
        if state.remote_descriptor is None:
            if state.remote_url:
                raise NotConfigured(f"Remote is not a GitHub repository: {state.remote_url}")
            raise NotConfigured(REASON_NO_REMOTE)
        return state.remote_descriptor

    def get_sync_config(self, vault: VaultSession) -> SyncConfig:
        """Describe whether sync can run for a vault, and why not if it cannot."""
        try:
            state = self.inspector.inspect(vault.root)
        except Exception as e:
            return failure_from_error(SyncConfig, e)

        config = SyncConfig(
            ok=True,
            is_repo=state.is_under_version_control,
            remote_url=state.remote_url,
            branch=state.branch
        )

        if not state.is_under_version_control:
            config.reason = REASON_NOT_A_REPOSITORY
            return config

        descriptor = state.remote_descriptor
        if descriptor is None:
            config.reason = (
                f"Remote is not a GitHub repository: {state.remote_url}"
                if state.remote_url else REASON_NO_REMOTE
            )
            return config

        config.repo_slug = descriptor.slug
        try:
            config.has_token = self.credential_vault.has_token(descriptor)
        except VaultSyncError as e:
            config.reason = e.message
            return config

        if not config.has_token:
            config.reason = f"Add a GitHub token for {descriptor.slug} to enable sync."
            return config

        config.enabled = True
        return config

    def init_repository(self, vault: VaultSession) -> InitResult:
        try:
            created = self.provisioner.initialize(vault.root)
        except Exception as e:
            return failure_from_error(InitResult, e)
        return InitResult(ok=True, already_init=not created)

    def set_remote(self, vault: VaultSession, url: str) -> RemoteResult:
        try:
            descriptor = self.provisioner.link_remote(vault.root, url)
        except Exception as e:
            return failure_from_error(RemoteResult, e)
        return RemoteResult(ok=True, repo_slug=descriptor.slug, clone_url=descriptor.https_url)

    def create_remote_repository(
        self,
        vault: VaultSession,
        token: str,
        name: Optional[str] = None,
        is_private: bool = True
    ) -> RemoteResult:
        """Create a GitHub repository for the vault, link it and store the token."""
        try:
            descriptor = self.provisioner.create_remote_repository(vault.root, token, name, is_private)
        except Exception as e:
            return failure_from_error(RemoteResult, e, (token,))
        return RemoteResult(ok=True, repo_slug=descriptor.slug, clone_url=descriptor.raw_url)

    def set_token(self, vault: VaultSession, token: str) -> OperationResult:
        try:
            if not token or not token.strip():
                raise NotConfigured("Token must not be empty")
            descriptor = self._require_descriptor(vault)
            self.credential_vault.save(descriptor, token.strip())
        except Exception as e:
            return failure_from_error(OperationResult, e, (token,))
        return OperationResult(ok=True)

    def clear_token(self, vault: VaultSession) -> OperationResult:
        try:
            descriptor = self._require_descriptor(vault)
            self.credential_vault.clear(descriptor)
        except Exception as e:
            return failure_from_error(OperationResult, e)
        return OperationResult(ok=True)

    def run_sync(self, vault: VaultSession) -> SyncResult:
        """
        Run one sync cycle.

        Callers must not invoke this twice concurrently for the same vault.
        """
        result = self.orchestrator.sync(vault.root)
        if result.ok:
            with self._last_sync_lock:
                self._last_sync[vault.key] = datetime.now(timezone.utc)
        return result

    def last_sync(self, vault: VaultSession) -> Optional[datetime]:
        with self._last_sync_lock:
            return self._last_sync.get(vault.key)

    def get_sync_status(self, vault: VaultSession) -> SyncStatus:
        """Local working tree status; never touches the network."""
        repo = open_repository(vault.root)
        if repo is None:
            return failure_from_error(SyncStatus, NotConfigured(REASON_NOT_A_REPOSITORY))

        try:
            output = run_git(
                repo, "status", "--porcelain",
                timeout=self.config.git_timeout,
                operation="Reading working tree status"
            )
        except Exception as e:
            return failure_from_error(SyncStatus, e)
        finally:
            repo.close()

        changed = [line for line in output.splitlines() if line.strip()]
        return SyncStatus(
            ok=True,
            dirty=bool(changed),
            changed_count=len(changed),
            last_sync=self.last_sync(vault)
        )
