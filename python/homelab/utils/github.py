"""
An asynchronous GitHub REST client covering the self-hosted runner endpoints
used by the Layer 0 bootstrap:
  - list runners of a repository
  - delete a runner
  - exchange a personal access token for a runner registration token
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Type

import aiohttp

from homelab.errors import GitHubAPIError, PreconditionError
from homelab.models.config import GitHubSettings
from homelab.models.github import GitHubRunner, RegistrationToken, RunnerList
from homelab.models.validator import validate_type

logger = logging.getLogger(__name__)


class AsyncGitHubClient:
    """Runner management for one repository ('owner/name')."""

    def __init__(self, settings: GitHubSettings) -> None:
        """
        Initialize the client.

        Args:
            settings (GitHubSettings): Token, repository and API base URL.

        Raises:
            PreconditionError: If GITHUB_TOKEN or GITHUB_REPO is unset.
        """
        if not settings.token:
            raise PreconditionError(
                "GITHUB_TOKEN environment variable not set. Create a token with "
                "'repo' and 'workflow' scopes at https://github.com/settings/tokens."
            )
        if not settings.repo:
            raise PreconditionError(
                "GITHUB_REPO environment variable not set (expected 'owner/repo')."
            )
        self._token = settings.token
        self._repo = settings.repo
        self._api_url = settings.api_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> AsyncGitHubClient:
        self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[Any],
    ) -> None:
        if self._session:
            await self._session.close()
        self._session = None

    async def ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    @property
    def repo(self) -> str:
        return self._repo

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def _runners_url(self, suffix: str = "") -> str:
        return f"{self._api_url}/repos/{self._repo}/actions/runners{suffix}"

    async def _request(
        self, method: str, url: str, expected: int
    ) -> Optional[Dict[str, Any]]:
        session = await self.ensure_session()
        async with session.request(method, url, headers=self._headers()) as resp:
            if resp.status != expected:
                text = await resp.text()
                raise GitHubAPIError(
                    f"GitHub API {method} {url} returned {resp.status}: {text}",
                    status=resp.status,
                )
            if resp.status == 204:
                return None
            return validate_type(
                await resp.json(), Dict[str, Any], source=f"GitHub {method} {url}"
            )

    async def list_runners(self) -> RunnerList:
        data = await self._request("GET", self._runners_url(), 200)
        return RunnerList.model_validate(data or {})

    async def find_runner(self, name: str) -> Optional[GitHubRunner]:
        runners = await self.list_runners()
        return next((r for r in runners.runners if r.name == name), None)

    async def delete_runner(self, runner_id: int) -> None:
        await self._request("DELETE", self._runners_url(f"/{runner_id}"), 204)

    async def remove_runner_named(self, name: str) -> bool:
        """Delete the runner called `name` if registered. Returns True if one was removed."""
        existing = await self.find_runner(name)
        if existing is None:
            logger.info("No existing runner found with name %s", name)
            return False
        logger.warning("Found existing runner %s (id %d), removing it", name, existing.id)
        await self.delete_runner(existing.id)
        return True

    async def create_registration_token(self) -> RegistrationToken:
        data = await self._request(
            "POST", self._runners_url("/registration-token"), 201
        )
        token = RegistrationToken.model_validate(data or {})
        if not token.token:
            raise GitHubAPIError("GitHub returned an empty registration token.")
        return token
