"""Configuration management for VaultSync."""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List

from dotenv import load_dotenv

from .platform import get_platform_specific_defaults, get_app_data_dir, normalize_path

load_dotenv()  # Load .env file if it exists


@dataclass
class Config:
    """Configuration class for VaultSync with validation and defaults."""

    # Storage
    data_dir: Path = field(default_factory=get_app_data_dir)  # Private directory for the credential file

    # Git
    default_branch: str = "main"
    git_timeout: float = 30.0

    # Hosting provider
    github_api_url: str = "https://api.github.com"
    http_timeout: float = 30.0

    # Credential cipher
    machine_id: Optional[str] = None

    # Server
    vault_path: Optional[Path] = None
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        self.data_dir = normalize_path(self.data_dir)

        if isinstance(self.vault_path, str):
            self.vault_path = Path(self.vault_path) if self.vault_path else None
        if self.vault_path is not None:
            self.vault_path = normalize_path(self.vault_path)

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(f"Invalid log level: {self.log_level}. Must be one of {valid_log_levels}")
        self.log_level = self.log_level.upper()

        if not self.default_branch or not self.default_branch.strip():
            raise ValueError("default_branch must not be empty")

        if self.git_timeout <= 0:
            raise ValueError("git_timeout must be positive")

        if self.http_timeout <= 0:
            raise ValueError("http_timeout must be positive")

        self.github_api_url = self.github_api_url.rstrip("/")

    @property
    def credentials_file(self) -> Path:
        """File holding the encrypted token records."""
        return self.data_dir / "credentials.json"

    @property
    def credentials_lock_file(self) -> Path:
        """Lock file guarding read-modify-write cycles on the credential file."""
        return self.data_dir / "credentials.json.lock"


def load_configuration() -> Config:
    """Load configuration from environment variables with platform-specific defaults."""
    try:
        platform_defaults = get_platform_specific_defaults()

        return Config(
            data_dir=Path(os.getenv("VAULTSYNC_DATA_DIR", str(platform_defaults['data_dir']))),
            log_level=os.getenv("VAULTSYNC_LOG_LEVEL", platform_defaults['log_level']).upper(),
            default_branch=os.getenv("VAULTSYNC_DEFAULT_BRANCH", platform_defaults['default_branch']),
            git_timeout=float(os.getenv("VAULTSYNC_GIT_TIMEOUT", str(platform_defaults['git_timeout']))),
            http_timeout=float(os.getenv("VAULTSYNC_HTTP_TIMEOUT", str(platform_defaults['http_timeout']))),
            github_api_url=os.getenv("VAULTSYNC_GITHUB_API_URL", "https://api.github.com"),
            machine_id=os.getenv("VAULTSYNC_MACHINE_ID") or None,
            vault_path=os.getenv("VAULTSYNC_VAULT") or None
        )
    except (ValueError, TypeError) as e:
        raise ValueError(f"Configuration error: {e}")


def validate_configuration(config: Config) -> List[str]:
    """Validate configuration and return any errors or warnings."""
    from .platform import validate_git_availability, get_machine_identity

    errors = []

    # Check the credential directory is writable
    try:
        config.data_dir.mkdir(parents=True, exist_ok=True)
        test_file = config.data_dir / ".test_write"
        test_file.write_text("test")
        test_file.unlink()
    except PermissionError:
        errors.append(f"ERROR: No write permission for data directory: {config.data_dir}")
    except OSError as e:
        errors.append(f"ERROR: Cannot access data directory {config.data_dir}: {e}")

    git_available, git_error = validate_git_availability()
    if not git_available:
        errors.append(f"ERROR: {git_error}")

    if not config.machine_id and not get_machine_identity():
        errors.append("WARNING: No machine identity found; tokens cannot be stored until VAULTSYNC_MACHINE_ID is set")

    if not config.github_api_url.startswith("https://"):
        errors.append(f"WARNING: GitHub API URL is not HTTPS: {config.github_api_url}")

    if config.vault_path is not None and not config.vault_path.is_dir():
        errors.append(f"WARNING: Configured vault does not exist: {config.vault_path}")

    if config.git_timeout > 300:
        errors.append("WARNING: High git_timeout may leave the sync trigger blocked for a long time")

    logging.getLogger('vaultsync.config').debug(f"Configuration validated with {len(errors)} issue(s)")

    return errors
