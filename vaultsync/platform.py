"""Cross-platform compatibility utilities for VaultSync."""

import os
import platform
import subprocess
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, Union


class PlatformType(Enum):
    """Supported platform types."""
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    UNKNOWN = "unknown"


class PlatformInfo:
    """Platform information and utilities."""

    def __init__(self):
        """Initialize platform detection."""
        self._platform_type = self._detect_platform()

    def _detect_platform(self) -> PlatformType:
        """Detect the current platform."""
        system = platform.system().lower()

        if system == "windows":
            return PlatformType.WINDOWS
        elif system == "darwin":
            return PlatformType.MACOS
        elif system == "linux":
            return PlatformType.LINUX
        else:
            return PlatformType.UNKNOWN

    @property
    def platform_type(self) -> PlatformType:
        """Get the detected platform type."""
        return self._platform_type

    @property
    def is_windows(self) -> bool:
        return self._platform_type == PlatformType.WINDOWS

    @property
    def is_unix(self) -> bool:
        """Check if running on Unix-like system (Linux/macOS)."""
        return self._platform_type in (PlatformType.LINUX, PlatformType.MACOS)

    @property
    def is_macos(self) -> bool:
        return self._platform_type == PlatformType.MACOS

    @property
    def is_linux(self) -> bool:
        return self._platform_type == PlatformType.LINUX

    def get_platform_name(self) -> str:
        """Get human-readable platform name."""
        return self._platform_type.value


# Global platform info instance
_platform_info: Optional[PlatformInfo] = None


def get_platform_info() -> PlatformInfo:
    """Get the global platform info instance."""
    global _platform_info
    if _platform_info is None:
        _platform_info = PlatformInfo()
    return _platform_info


def normalize_path(path: Union[str, Path]) -> Path:
    """
    Normalize a path for the current platform.

    Args:
        path: Path to normalize

    Returns:
        Normalized Path object
    """
    if isinstance(path, str):
        path = Path(path)

    # Expand user home directory (~) first, then resolve to absolute path
    return path.expanduser().resolve()


def get_app_data_dir() -> Path:
    """
    Get the private per-application data directory for the current platform.

    Returns:
        Path where VaultSync keeps its credential file
    """
    platform_info = get_platform_info()

    if platform_info.is_windows:
        base = os.environ.get("APPDATA")
        if base:
            return Path(base) / "vaultsync"
    elif platform_info.is_macos:
        return Path.home() / "Library" / "Application Support" / "vaultsync"

    return Path.home() / ".vaultsync"


def get_platform_specific_defaults() -> Dict[str, Any]:
    """
    Get platform-specific configuration defaults.

    Returns:
        Dictionary of platform-specific defaults
    """
    platform_info = get_platform_info()

    defaults = {
        'data_dir': get_app_data_dir(),
        'log_level': "INFO",
        'default_branch': "main",
        'git_timeout': 30.0,
        'http_timeout': 30.0,
    }

    if platform_info.is_windows:
        # Process start-up is slow enough on Windows to need a little headroom
        defaults['git_timeout'] = 45.0

    return defaults


def get_git_executable() -> str:
    """
    Get the Git executable name for the current platform.

    Returns:
        Git executable name
    """
    if get_platform_info().is_windows:
        return "git.exe"
    return "git"


def validate_git_availability() -> tuple[bool, Optional[str]]:
    """
    Validate that Git is available on the current platform.

    Returns:
        Tuple of (is_available, error_message)
    """
    git_cmd = get_git_executable()

    try:
        result = subprocess.run(
            [git_cmd, "--version"],
            capture_output=True,
            text=True,
            timeout=10
        )

        if result.returncode == 0:
            return True, None
        else:
            return False, f"Git command failed: {result.stderr}"

    except FileNotFoundError:
        return False, f"Git executable '{git_cmd}' not found"
    except subprocess.TimeoutExpired:
        return False, "Git command timed out"
    except OSError as e:
        return False, f"Error checking Git availability: {e}"


def get_platform_specific_git_config() -> Dict[str, str]:
    """
    Get platform-specific Git configuration applied to freshly initialized vaults.

    Returns:
        Dictionary of Git configuration options
    """
    platform_info = get_platform_info()

    config = {
        'core.autocrlf': 'false',
    }

    if platform_info.is_windows:
        config.update({
            'core.autocrlf': 'true',
            'core.filemode': 'false'
        })
    elif platform_info.is_unix:
        config.update({
            'core.autocrlf': 'input',
            'core.filemode': 'true'
        })

    return config


def _read_first_line(path: Path) -> Optional[str]:
    try:
        value = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return value or None


def get_machine_identity() -> Optional[str]:
    """
    Resolve a stable identifier for this machine.

    The identifier keys the credential cipher, so a credential file copied to
    another machine cannot be decrypted there.

    Returns:
        Machine identifier string, or None if the platform exposes none
    """
    platform_info = get_platform_info()

    if platform_info.is_linux or platform_info.platform_type == PlatformType.UNKNOWN:
        for candidate in (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id")):
            value = _read_first_line(candidate)
            if value:
                return value
        return None

    if platform_info.is_macos:
        try:
            result = subprocess.run(
                ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"],
                capture_output=True,
                text=True,
                timeout=10
            )
        except (OSError, subprocess.TimeoutExpired):
            return None
        for line in result.stdout.splitlines():
            if "IOPlatformUUID" in line:
                return line.split("=", 1)[-1].strip().strip('"') or None
        return None

    if platform_info.is_windows:
        try:
            import winreg
            with winreg.OpenKey(
                winreg.HKEY_LOCAL_MACHINE,
                r"SOFTWARE\Microsoft\Cryptography",
                0,
                winreg.KEY_READ | winreg.KEY_WOW64_64KEY
            ) as key:
                value, _ = winreg.QueryValueEx(key, "MachineGuid")
                return str(value) or None
        except OSError:
            return None

    return None
