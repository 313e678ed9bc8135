"""Git synchronization for vaults."""

from .manager import VaultSyncManager, VaultSession, open_vault
from .utils import OperationResult, InitResult, RemoteResult, SyncResult, SyncConfig, SyncStatus
from .remote import RemoteDescriptor, resolve, authenticated_url
from .credentials import CredentialVault
from .inspector import RepositoryInspector, RepositoryState
from .orchestrator import SyncOrchestrator, SyncPhase, SyncRun

__all__ = [
    'VaultSyncManager',
    'VaultSession',
    'open_vault',
    'OperationResult',
    'InitResult',
    'RemoteResult',
    'SyncResult',
    'SyncConfig',
    'SyncStatus',
    'RemoteDescriptor',
    'resolve',
    'authenticated_url',
    'CredentialVault',
    'RepositoryInspector',
    'RepositoryState',
    'SyncOrchestrator',
    'SyncPhase',
    'SyncRun'
]
