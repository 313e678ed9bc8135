"""Repository state detection for a vault directory."""

import configparser
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from git import Repo, InvalidGitRepositoryError, NoSuchPathError, GitCommandError

from ..config import Config
from .remote import RemoteDescriptor, resolve


@dataclass(frozen=True)
class RepositoryState:
    """Snapshot of a vault's version-control state, recomputed on every inspection."""
    is_under_version_control: bool
    remote_url: Optional[str]
    branch: str
    remote_descriptor: Optional[RemoteDescriptor]


def open_repository(path: Path) -> Optional[Repo]:
    """Open the repository containing ``path``, or None if there is none."""
    try:
        repo = Repo(path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return None
    if repo.bare:
        return None
    return repo


class RepositoryInspector:
    """
    Runs independent probes against a working tree.

    A probe failure degrades only its own field: a directory with no remote
    is a valid state, not an error.
    """

    def __init__(self, config: Config):
        self.config = config
        self.logger = logging.getLogger('vaultsync.git_sync.inspector')

    def inspect(self, path: Path) -> RepositoryState:
        """
        Inspect a vault directory.

        Args:
            path: Vault root

        Returns:
            RepositoryState for the current contents of the directory
        """
        repo = open_repository(Path(path))
        if repo is None:
            self.logger.debug(f"{path} is not under version control")
            return RepositoryState(
                is_under_version_control=False,
                remote_url=None,
                branch=self.config.default_branch,
                remote_descriptor=None
            )

        try:
            branch = self.current_branch(repo)
            remote_url = self.remote_url(repo)
        finally:
            repo.close()

        descriptor = resolve(remote_url)
        if remote_url and descriptor is None:
            self.logger.debug(f"Remote {remote_url} is not a supported GitHub remote")

        return RepositoryState(
            is_under_version_control=True,
            remote_url=remote_url,
            branch=branch,
            remote_descriptor=descriptor
        )

    def current_branch(self, repo: Repo) -> str:
        """Current branch name, or the default branch if it cannot be determined."""
        try:
            # Works for unborn branches too: HEAD is still a symbolic ref
            return repo.head.reference.name
        except (TypeError, ValueError, OSError, GitCommandError) as e:
            self.logger.debug(f"Could not determine current branch, using {self.config.default_branch}: {e}")
            return self.config.default_branch

    def remote_url(self, repo: Repo) -> Optional[str]:
        """URL of the ``origin`` remote, or None if none is configured."""
        try:
            with repo.config_reader() as reader:
                url = reader.get_value('remote "origin"', "url", default="")
        except (OSError, ValueError, configparser.Error) as e:
            self.logger.debug(f"Could not read remote configuration: {e}")
            return None
        return str(url).strip() if url else None
