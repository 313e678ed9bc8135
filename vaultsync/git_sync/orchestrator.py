"""
The vault sync state machine.

One call to ``SyncOrchestrator.sync`` runs a full cycle:

    IDLE -> COMMITTING -> FETCHING -> REBASING -> PUSHING -> DONE

with FAILED reachable from every non-idle phase. Phases are strictly
sequential and never retried; a failure after the commit phase always aborts
any rebase left in progress before the (redacted) error is surfaced, so the
working tree is never left mid-rebase.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from git import Repo

from ..config import Config
from ..errors import NotConfigured, ProcessExecutionError, VaultSyncError
from .commands import run_git
from .credentials import CredentialVault
from .inspector import RepositoryInspector, RepositoryState, open_repository
from .provisioner import ensure_commit_identity
from .remote import RemoteDescriptor, authenticated_url
from .utils import SyncResult, failure_from_error

COMMIT_MESSAGE_PREFIX = "Vault sync"


class SyncPhase(Enum):
    """Phases of one sync cycle."""
    IDLE = "idle"
    COMMITTING = "committing"
    FETCHING = "fetching"
    REBASING = "rebasing"
    PUSHING = "pushing"
    DONE = "done"
    FAILED = "failed"


def commit_message(now: Optional[datetime] = None) -> str:
    """Fixed, timestamped commit message used for automatic sync commits."""
    now = now or datetime.now(timezone.utc)
    return f"{COMMIT_MESSAGE_PREFIX}: {now.strftime('%Y-%m-%dT%H:%M:%SZ')}"


def rebase_in_progress(repo: Repo) -> bool:
    git_dir = Path(repo.git_dir)
    return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()


@dataclass
class SyncRun:
    """Phase tracking for a single sync call."""
    phase: SyncPhase = SyncPhase.IDLE
    transitions: List[SyncPhase] = field(default_factory=lambda: [SyncPhase.IDLE])

    def enter(self, phase: SyncPhase) -> None:
        self.phase = phase
        self.transitions.append(phase)

    @property
    def phase_names(self) -> List[str]:
        return [phase.value for phase in self.transitions]


class SyncOrchestrator:
    """
    Runs sync cycles for vault repositories.

    The orchestrator is not reentrant: callers must not start a second cycle
    for the same vault while one is running.
    """

    def __init__(
        self,
        config: Config,
        credential_vault: CredentialVault,
        inspector: Optional[RepositoryInspector] = None,
        transport_url: Callable[[RemoteDescriptor, str], str] = authenticated_url
    ):
        """
        Args:
            config: Server configuration
            credential_vault: Source of the token for the vault's remote
            inspector: Repository inspector; created from config when omitted
            transport_url: Builds the one-time URL used for fetch and push
        """
        self.config = config
        self.credential_vault = credential_vault
        self.inspector = inspector or RepositoryInspector(config)
        self.transport_url = transport_url
        self.logger = logging.getLogger('vaultsync.git_sync.orchestrator')

    def _enter(self, run: SyncRun, phase: SyncPhase) -> None:
        self.logger.debug(f"Sync phase {run.phase.value} -> {phase.value}")
        run.enter(phase)

    def sync(self, path: Path) -> SyncResult:
        """
        Run one full sync cycle for the vault at ``path``.

        Phase tracking lives in a per-call SyncRun, so one orchestrator can
        serve several vaults at once.

        Returns:
            SyncResult with the ordered steps and phases on success, or a redacted error
        """
        run = SyncRun()

        try:
            state, token = self._preflight(Path(path))
        except Exception as e:
            result = failure_from_error(SyncResult, e)
            result.phases = run.phase_names
            self.logger.warning(f"Sync not started: {result.error}")
            return result

        descriptor = state.remote_descriptor
        branch = state.branch
        steps: List[str] = []
        remote_url = self.transport_url(descriptor, token)
        secrets = (token, remote_url)

        repo = open_repository(Path(path))
        if repo is None:
            return failure_from_error(SyncResult, NotConfigured("Vault is not under version control"))

        try:
            self.logger.info(f"🔄 Starting sync of {descriptor.slug} ({branch})")

            if rebase_in_progress(repo):
                steps.append(self._recover_unfinished_rebase(repo))
                branch = self.inspector.current_branch(repo)
            if repo.head.is_detached:
                raise ProcessExecutionError("HEAD is detached; check out a branch before syncing")

            self._enter(run, SyncPhase.COMMITTING)
            steps.append(self._commit_phase(repo))

            self._enter(run, SyncPhase.FETCHING)
            remote_has_branch, fetch_step = self._fetch_phase(repo, remote_url, branch, secrets)
            steps.append(fetch_step)

            self._enter(run, SyncPhase.REBASING)
            if remote_has_branch:
                steps.append(self._rebase_phase(repo, branch))
            else:
                steps.append("rebase skipped: nothing to replay onto")

            self._enter(run, SyncPhase.PUSHING)
            steps.append(self._push_phase(repo, remote_url, branch, secrets, remote_has_branch))

            self._enter(run, SyncPhase.DONE)
            self.logger.info(f"✅ Sync of {descriptor.slug} complete: {'; '.join(steps)}")
            return SyncResult(
                ok=True, repo_slug=descriptor.slug, branch=branch,
                steps_performed=steps, phases=run.phase_names
            )

        except Exception as e:
            failed_in = run.phase
            self._enter(run, SyncPhase.FAILED)
            if failed_in != SyncPhase.COMMITTING:
                self._abort_rebase(repo)
            result = failure_from_error(SyncResult, e, secrets)
            result.repo_slug = descriptor.slug
            result.branch = branch
            result.steps_performed = steps
            result.phases = run.phase_names
            self.logger.error(f"❌ Sync failed during {failed_in.value}: {result.error}")
            return result
        finally:
            repo.close()

    def _preflight(self, path: Path) -> Tuple[RepositoryState, str]:
        """Check the vault is syncable before touching credentials or the network."""
        state = self.inspector.inspect(path)
        if not state.is_under_version_control:
            raise NotConfigured("Vault is not under version control; initialize it before syncing")
        if state.remote_descriptor is None:
            if state.remote_url:
                raise NotConfigured(f"Remote is not a GitHub repository: {state.remote_url}")
            raise NotConfigured("No GitHub remote configured for this vault")

        token = self.credential_vault.load(state.remote_descriptor)
        if not token:
            raise NotConfigured(f"No token stored for {state.remote_descriptor.slug}")
        return state, token

    def _commit_phase(self, repo: Repo) -> str:
        if not repo.is_dirty(untracked_files=True):
            return "commit skipped: working tree clean"

        timeout = self.config.git_timeout
        ensure_commit_identity(repo)
        run_git(repo, "add", "-A", timeout=timeout, operation="Staging changes")
        message = commit_message()
        run_git(repo, "commit", "-m", message, timeout=timeout, operation="Committing changes")
        return f"committed local changes ({message})"

    def _fetch_phase(self, repo: Repo, remote_url: str, branch: str, secrets) -> Tuple[bool, str]:
        refspec = f"+refs/heads/{branch}:refs/remotes/origin/{branch}"
        try:
            run_git(
                repo, "fetch", remote_url, refspec,
                timeout=self.config.git_timeout,
                operation="Fetching remote",
                secrets=secrets,
                network=True
            )
        except VaultSyncError as e:
            # A freshly created remote has no branch yet; push will tell us if it is worse
            self.logger.info(f"Fetch found no remote {branch} branch, continuing: {e.message}")
            return False, f"remote has no {branch} branch yet"
        return True, f"fetched origin/{branch}"

    def _rebase_phase(self, repo: Repo, branch: str) -> str:
        timeout = self.config.git_timeout
        remote_ref = f"refs/remotes/origin/{branch}"

        if not repo.head.is_valid():
            # No local commits: adopt the remote history as-is
            run_git(repo, "update-ref", f"refs/heads/{branch}", remote_ref,
                    timeout=timeout, operation="Adopting remote history")
            run_git(repo, "reset", "--hard", remote_ref, timeout=timeout, operation="Checking out remote history")
            return f"adopted origin/{branch}"

        if repo.is_ancestor(remote_ref, "HEAD"):
            return "rebase skipped: already up to date"

        ensure_commit_identity(repo)
        run_git(repo, "rebase", remote_ref, timeout=timeout, operation="Rebasing onto remote")
        return f"rebased onto origin/{branch}"

    def _push_phase(self, repo: Repo, remote_url: str, branch: str, secrets, remote_had_branch: bool) -> str:
        if not repo.head.is_valid():
            raise ProcessExecutionError("Nothing to push: the vault has no commits")

        timeout = self.config.git_timeout
        run_git(
            repo, "push", remote_url, f"HEAD:refs/heads/{branch}",
            timeout=timeout,
            operation="Pushing to remote",
            secrets=secrets,
            network=True
        )
        run_git(repo, "update-ref", f"refs/remotes/origin/{branch}", "HEAD",
                timeout=timeout, operation="Recording pushed state")

        if remote_had_branch:
            return f"pushed to origin/{branch}"
        return f"pushed initial commit to origin/{branch}"

    def _abort_rebase(self, repo: Repo) -> None:
        """Leave the working tree usable after a failed cycle; safe to call when no rebase is running."""
        if not rebase_in_progress(repo):
            return
        try:
            run_git(repo, "rebase", "--abort", timeout=self.config.git_timeout, operation="Aborting rebase")
            self.logger.warning("↩️ Aborted unfinished rebase after failed sync")
        except VaultSyncError as e:
            self.logger.error(f"Could not abort rebase: {e.message}")

    def _recover_unfinished_rebase(self, repo: Repo) -> str:
        """Abort a rebase left behind by an interrupted run before anything is committed."""
        self.logger.warning("Found an unfinished rebase from an earlier run")
        run_git(repo, "rebase", "--abort", timeout=self.config.git_timeout, operation="Aborting unfinished rebase")
        if rebase_in_progress(repo):
            raise ProcessExecutionError("An unfinished rebase could not be aborted")
        return "aborted unfinished rebase"
