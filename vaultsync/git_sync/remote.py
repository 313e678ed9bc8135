"""Remote URL parsing for the supported hosting provider."""

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

SUPPORTED_HOST = "github.com"

_OWNER = r"(?P<owner>[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)"
_REPO = r"(?P<repo>[A-Za-z0-9._-]+?)"

_HTTPS_PATTERN = re.compile(
    rf"^https://(?P<host>[^/@:\s]+)/{_OWNER}/{_REPO}(?:\.git)?/?$"
)
_SSH_PATTERN = re.compile(
    rf"^git@(?P<host>[^/@:\s]+):{_OWNER}/{_REPO}(?:\.git)?$"
)


@dataclass(frozen=True)
class RemoteDescriptor:
    """Parsed, host-qualified identity of a remote repository."""
    host: str
    owner: str
    repo_name: str
    slug: str
    raw_url: str

    @property
    def credential_key(self) -> str:
        """Lowercased ``host/owner/repo`` key used by the credential vault."""
        return f"{self.host}/{self.owner}/{self.repo_name}".lower()

    @property
    def https_url(self) -> str:
        return f"https://{self.host}/{self.owner}/{self.repo_name}.git"


def resolve(url: Optional[str]) -> Optional[RemoteDescriptor]:
    """
    Parse a remote URL into a RemoteDescriptor.

    Accepts ``https://github.com/owner/repo[.git]`` and
    ``git@github.com:owner/repo[.git]``. The host comparison is
    case-insensitive; owner and repository keep their case.

    Args:
        url: Remote URL, possibly empty

    Returns:
        RemoteDescriptor, or None for any other shape or host
    """
    if not url:
        return None

    candidate = url.strip()
    match = _HTTPS_PATTERN.match(candidate) or _SSH_PATTERN.match(candidate)
    if not match:
        return None

    host = match.group("host").lower()
    if host != SUPPORTED_HOST:
        return None

    owner = match.group("owner")
    repo_name = match.group("repo")
    if repo_name in (".", "..") or repo_name.endswith(".git"):
        return None

    return RemoteDescriptor(
        host=host,
        owner=owner,
        repo_name=repo_name,
        slug=f"{owner}/{repo_name}",
        raw_url=candidate
    )


def authenticated_url(descriptor: RemoteDescriptor, token: str) -> str:
    """
    Build a one-time HTTPS URL carrying the token.

    The result is only ever passed on a git command line for a single network
    operation and must never be written to git configuration.
    """
    user = "x-access-token"
    secret = quote(token, safe="")
    return f"https://{user}:{secret}@{descriptor.host}/{descriptor.owner}/{descriptor.repo_name}.git"
