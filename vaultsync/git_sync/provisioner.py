"""Bringing a vault directory to a syncable state."""

import logging
import re
from pathlib import Path
from typing import Optional

import httpx
from git import Repo

from ..config import Config
from ..errors import UnsupportedRemote, NotConfigured, InvalidResponse
from ..platform import get_platform_specific_git_config
from .commands import run_git
from .credentials import CredentialVault
from .github_api import GitHubClient
from .inspector import open_repository
from .remote import RemoteDescriptor, resolve

DEFAULT_GITIGNORE = """# Vault repository
# Operating system files
.DS_Store
Thumbs.db
desktop.ini

# Editor and application metadata
.obsidian/workspace*.json
.trash/
.vaultsync/
.history/

# Temporary files
*.tmp
*.temp
*.swp
~$*
"""

INITIAL_COMMIT_MESSAGE = "Initial vault commit"
DEFAULT_AUTHOR_NAME = "VaultSync"
DEFAULT_AUTHOR_EMAIL = "vaultsync@localhost"

_INVALID_REPO_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def ensure_commit_identity(repo: Repo) -> None:
    """Set a repository-local commit identity when none resolves from any git config level."""
    logger = logging.getLogger('vaultsync.git_sync.provisioner')

    with repo.config_reader() as reader:
        user_name = reader.get_value("user", "name", default="")
        user_email = reader.get_value("user", "email", default="")

    if user_name and user_email:
        return

    with repo.config_writer() as writer:
        if not user_name:
            writer.set_value("user", "name", DEFAULT_AUTHOR_NAME)
            logger.debug("Set default Git user name")
        if not user_email:
            writer.set_value("user", "email", DEFAULT_AUTHOR_EMAIL)
            logger.debug("Set default Git user email")


def sanitize_repository_name(name: str) -> str:
    """Map a free-form name onto the characters GitHub allows in repository names."""
    cleaned = _INVALID_REPO_NAME_CHARS.sub("-", name.strip()).strip("-.")
    return cleaned or "vault"


class RepositoryProvisioner:
    """
    Initializes version control for a vault and connects it to GitHub.
    """

    def __init__(self, config: Config, credential_vault: CredentialVault,
                 http_transport: Optional[httpx.BaseTransport] = None):
        """
        Args:
            config: Server configuration
            credential_vault: Store that receives the token of newly created remotes
            http_transport: Optional httpx transport passed to the GitHub client
        """
        self.config = config
        self.credential_vault = credential_vault
        self.http_transport = http_transport
        self.logger = logging.getLogger('vaultsync.git_sync.provisioner')

    def initialize(self, path: Path) -> bool:
        """
        Put a vault under version control with an initial commit.

        Args:
            path: Vault root

        Returns:
            True if a repository was created, False if one already existed
        """
        path = Path(path)
        existing = open_repository(path)
        if existing is not None:
            existing.close()
            self.logger.info(f"Vault {path} is already under version control")
            return False

        path.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"🆕 Initializing Git repository in {path}")

        repo = Repo.init(path, initial_branch=self.config.default_branch)
        try:
            self._apply_platform_config(repo)
            ensure_commit_identity(repo)
            self._write_default_gitignore(path)

            timeout = self.config.git_timeout
            run_git(repo, "add", "-A", timeout=timeout, operation="Staging vault files")

            commit_args = ["commit", "-m", INITIAL_COMMIT_MESSAGE]
            if not self._has_staged_files(repo):
                # Nothing trackable: an empty root commit keeps HEAD valid
                commit_args.append("--allow-empty")
            run_git(repo, *commit_args, timeout=timeout, operation="Creating initial commit")
        finally:
            repo.close()

        self.logger.info("✅ Vault repository initialized with initial commit")
        return True

    def _apply_platform_config(self, repo: Repo) -> None:
        with repo.config_writer() as writer:
            for config_key, config_value in get_platform_specific_git_config().items():
                section, option = config_key.split(".", 1)
                writer.set_value(section, option, config_value)

    def _write_default_gitignore(self, path: Path) -> None:
        gitignore_path = path / ".gitignore"
        if gitignore_path.exists():
            return
        gitignore_path.write_text(DEFAULT_GITIGNORE, encoding="utf-8")
        self.logger.info("Created default .gitignore")

    def _has_staged_files(self, repo: Repo) -> bool:
        output = run_git(
            repo, "diff", "--cached", "--name-only",
            timeout=self.config.git_timeout, operation="Listing staged files"
        )
        return bool(output.strip())

    def link_remote(self, path: Path, url: str) -> RemoteDescriptor:
        """
        Point the vault's ``origin`` at a GitHub repository, replacing any existing remote.

        Raises:
            UnsupportedRemote: If ``url`` is not a GitHub repository URL
            NotConfigured: If the vault is not under version control
        """
        descriptor = resolve(url)
        if descriptor is None:
            raise UnsupportedRemote(f"Unsupported remote URL: {url!r}; only GitHub repositories can be synced")

        repo = open_repository(Path(path))
        if repo is None:
            raise NotConfigured("Vault is not under version control; initialize it first")

        try:
            if "origin" in [remote.name for remote in repo.remotes]:
                repo.remote("origin").set_url(descriptor.raw_url)
                self.logger.info(f"🔗 Remote origin updated to {descriptor.slug}")
            else:
                repo.create_remote("origin", descriptor.raw_url)
                self.logger.info(f"🔗 Remote origin added for {descriptor.slug}")
        finally:
            repo.close()

        return descriptor

    def create_remote_repository(self, path: Path, token: str, name: Optional[str], is_private: bool) -> RemoteDescriptor:
        """
        Create a GitHub repository for the vault, link it, and store the token.

        Args:
            path: Vault root
            token: GitHub personal access token
            name: Repository name; the vault directory name when blank
            is_private: Repository visibility

        Raises:
            ProviderApiError: GitHub rejected the request
            InvalidResponse: GitHub's response could not be interpreted
            NetworkError: The request never completed
            EncryptionUnavailable: The token could not be stored; nothing is created
        """
        path = Path(path)
        if not token or not token.strip():
            raise NotConfigured("A GitHub token is required to create a repository")

        repo = open_repository(path)
        if repo is None:
            raise NotConfigured("Vault is not under version control; initialize it first")
        repo.close()

        # The token must be storable before anything is created on GitHub
        self.credential_vault.require_cipher()

        repo_name = sanitize_repository_name(name if name and name.strip() else path.resolve().name)

        client = GitHubClient(self.config, token.strip(), transport=self.http_transport)
        body = client.create_repository(repo_name, is_private)

        clone_url = str(body["clone_url"])
        if resolve(clone_url) is None:
            raise InvalidResponse(f"GitHub returned an unexpected clone URL: {clone_url}")

        descriptor = self.link_remote(path, clone_url)
        self.credential_vault.save(descriptor, token.strip())

        self.logger.info(f"✅ Created and linked GitHub repository {body.get('full_name', descriptor.slug)}")
        return descriptor
