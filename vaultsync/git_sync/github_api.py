"""Minimal GitHub REST client for creating vault repositories."""

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Config
from ..errors import ProviderApiError, InvalidResponse, NetworkError, redact_secrets

GITHUB_API_VERSION = "2022-11-28"


class GitHubClient:
    """Talks to the GitHub REST API on behalf of one token."""

    def __init__(self, config: Config, token: str, transport: Optional[httpx.BaseTransport] = None):
        """
        Args:
            config: Configuration providing the API URL and timeout
            token: Personal access token used as bearer credential
            transport: Optional httpx transport, e.g. a MockTransport in tests
        """
        self.api_url = config.github_api_url
        self.timeout = config.http_timeout
        self.transport = transport
        self._token = token
        self.logger = logging.getLogger('vaultsync.git_sync.github_api')

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": "vaultsync",
        }

    @staticmethod
    def _provider_message(response: httpx.Response) -> str:
        """Extract GitHub's error text from a failed response."""
        try:
            body = response.json()
        except ValueError:
            return response.text.strip() or response.reason_phrase

        if not isinstance(body, dict):
            return response.reason_phrase

        message = str(body.get("message") or response.reason_phrase)
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            detail = first.get("message") if isinstance(first, dict) else str(first)
            if detail:
                message = f"{message}: {detail}"
        return message

    def create_repository(self, name: str, is_private: bool, description: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a repository owned by the authenticated user.

        Returns:
            The decoded repository object (contains ``clone_url`` and ``full_name``)

        Raises:
            ProviderApiError: GitHub answered with a non-success status
            InvalidResponse: The response body is not the expected JSON object
            NetworkError: The request never completed
        """
        payload: Dict[str, Any] = {"name": name, "private": is_private, "auto_init": False}
        if description:
            payload["description"] = description

        self.logger.info(f"🌐 Creating {'private' if is_private else 'public'} GitHub repository '{name}'")

        try:
            with httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self.transport
            ) as client:
                response = client.post(f"{self.api_url}/user/repos", json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise NetworkError(f"GitHub request timed out after {self.timeout:.0f}s") from e
        except httpx.RequestError as e:
            raise NetworkError(redact_secrets(f"GitHub request failed: {e}", (self._token,))) from e

        if not response.is_success:
            message = redact_secrets(self._provider_message(response), (self._token,))
            self.logger.warning(f"GitHub rejected repository creation ({response.status_code}): {message}")
            raise ProviderApiError(
                f"GitHub API error ({response.status_code}): {message}",
                status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            raise InvalidResponse("GitHub returned a response that is not valid JSON") from e

        if not isinstance(body, dict) or not body.get("clone_url") or not body.get("full_name"):
            raise InvalidResponse("GitHub response is missing the repository clone URL")

        return body
