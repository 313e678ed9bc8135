"""Bounded git command execution using GitPython."""

import logging
from typing import Iterable

from git import Repo, GitCommandError

from ..errors import ProcessExecutionError, NetworkError, redact_secrets

logger = logging.getLogger('vaultsync.git_sync.commands')

# stderr fragments git prints when the transport itself failed
_NETWORK_ERROR_PATTERNS = (
    "could not resolve host",
    "failed to connect",
    "connection timed out",
    "connection refused",
    "connection reset",
    "network is unreachable",
    "ssl",
    "unable to access",
    "the remote end hung up unexpectedly",
)

_TIMEOUT_MARKER = "did not complete in"


def _describe_failure(error: GitCommandError) -> str:
    stderr = error.stderr.strip() if isinstance(error.stderr, str) else ""
    if stderr.startswith("stderr:"):
        stderr = stderr[len("stderr:"):].strip().strip("'").strip()
    return stderr or str(error)


def run_git(
    repo: Repo,
    *args: str,
    timeout: float,
    operation: str,
    secrets: Iterable[str] = (),
    network: bool = False
) -> str:
    """
    Run one git command against ``repo`` with a hard timeout.

    Args:
        repo: Repository to run in
        *args: Git subcommand and its arguments
        timeout: Seconds before the process is killed
        operation: Human-readable name used in error messages
        secrets: Values that must be removed from any error text
        network: Whether the command talks to a remote; enables network error
            classification and disables interactive credential prompts

    Returns:
        The command's stdout

    Raises:
        ProcessExecutionError: If git exits non-zero or times out
        NetworkError: If a network command failed at the transport level
    """
    secrets = tuple(secrets)
    command, *rest = args
    git_method = getattr(repo.git, command.replace("-", "_"))
    logger.debug(f"Running git {command} for {operation}")

    try:
        if network:
            with repo.git.custom_environment(GIT_TERMINAL_PROMPT="0"):
                return git_method(*rest, kill_after_timeout=timeout)
        return git_method(*rest, kill_after_timeout=timeout)
    except GitCommandError as e:
        detail = redact_secrets(_describe_failure(e), secrets)

        if _TIMEOUT_MARKER in detail:
            raise ProcessExecutionError(
                f"{operation} timed out after {timeout:.0f}s", timed_out=True
            ) from None

        if network and any(pattern in detail.lower() for pattern in _NETWORK_ERROR_PATTERNS):
            raise NetworkError(f"{operation} failed: {detail}") from None

        raise ProcessExecutionError(f"{operation} failed: {detail}") from None
