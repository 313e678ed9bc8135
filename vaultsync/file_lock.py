"""
Cross-platform file locking utilities for VaultSync.

The credential file is the only resource shared between components, so every
read-modify-write cycle on it runs under one of these locks.
"""

import os
import subprocess
import time
import logging
import threading
from pathlib import Path

from .platform import get_platform_info


class FileLock:
    """
    Cross-platform exclusive lock backed by an atomically created lock file.
    """

    def __init__(self, lock_file_path: Path, timeout: float = 30.0, stale_after: float = 300.0):
        """
        Initialize file lock.

        Args:
            lock_file_path: Path to the lock file
            timeout: Maximum time to wait for lock acquisition (seconds)
            stale_after: Age after which an orphaned lock file is reclaimed (seconds)
        """
        self.lock_file_path = lock_file_path
        self.timeout = timeout
        self.stale_after = stale_after
        self.logger = logging.getLogger('vaultsync.file_lock')
        self.platform_info = get_platform_info()
        self._lock_acquired = False

    def acquire(self) -> bool:
        """
        Acquire the file lock.

        Returns:
            True if lock was acquired, False if timeout occurred
        """
        start_time = time.time()

        while time.time() - start_time < self.timeout:
            self.lock_file_path.parent.mkdir(parents=True, exist_ok=True)

            if self._try_create_lock_file():
                self._lock_acquired = True
                self.logger.debug(f"Acquired lock: {self.lock_file_path}")
                return True

            time.sleep(0.05)

        self.logger.warning(f"Failed to acquire lock {self.lock_file_path} within {self.timeout}s")
        return False

    def _try_create_lock_file(self) -> bool:
        try:
            # O_CREAT | O_EXCL makes creation atomic on every platform
            fd = os.open(
                self.lock_file_path,
                os.O_CREAT | os.O_EXCL | os.O_WRONLY,
                0o600
            )
        except FileExistsError:
            return self._check_and_cleanup_stale_lock()
        except OSError as e:
            self.logger.warning(f"Error creating lock file {self.lock_file_path}: {e}")
            return False

        with os.fdopen(fd, 'w') as f:
            f.write(f"locked_by_pid_{os.getpid()}_thread_{threading.get_ident()}")
        return True

    def _check_and_cleanup_stale_lock(self) -> bool:
        """
        Reclaim a lock left behind by a dead process or older than ``stale_after``.

        The lock file is removed here; the caller retries the atomic creation,
        so True only means another attempt is worthwhile.
        """
        try:
            lock_age = time.time() - self.lock_file_path.stat().st_mtime
        except FileNotFoundError:
            return False

        if lock_age > self.stale_after:
            self.logger.warning(f"Cleaning up stale lock file: {self.lock_file_path}")
            self._unlink_quietly()
            return False

        try:
            lock_content = self.lock_file_path.read_text()
            pid = int(lock_content.split("locked_by_pid_")[1].split("_")[0])
        except (OSError, IndexError, ValueError):
            return False

        if pid != os.getpid() and not self._is_process_running(pid):
            self.logger.warning(f"Cleaning up lock from dead process {pid}: {self.lock_file_path}")
            self._unlink_quietly()

        return False

    def _unlink_quietly(self) -> None:
        try:
            self.lock_file_path.unlink()
        except FileNotFoundError:
            pass

    def _is_process_running(self, pid: int) -> bool:
        """Check if a process with given PID is still running."""
        try:
            if self.platform_info.is_windows:
                result = subprocess.run(
                    ["tasklist", "/FI", f"PID eq {pid}"],
                    capture_output=True,
                    text=True,
                    timeout=5
                )
                return str(pid) in result.stdout
            os.kill(pid, 0)
            return True
        except PermissionError:
            # Process exists but belongs to someone else
            return True
        except (OSError, subprocess.TimeoutExpired):
            return False

    def release(self) -> None:
        """Release the file lock."""
        if not self._lock_acquired:
            return

        self._unlink_quietly()
        self._lock_acquired = False
        self.logger.debug(f"Released lock: {self.lock_file_path}")

    def __enter__(self):
        if not self.acquire():
            raise TimeoutError(f"Could not acquire lock {self.lock_file_path} within {self.timeout}s")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
