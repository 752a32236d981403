"""GitHub lookups for a package's source repository."""

import logging
import os
import re

import httpx

logger = logging.getLogger(__name__)

_GITHUB_REPO = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s#?]+)")


def parse_github_repo(repository_url: str | None) -> tuple[str, str] | None:
    """Extract (owner, repo) from a GitHub repository URL."""
    if not repository_url:
        return None
    match = _GITHUB_REPO.search(repository_url)
    if not match:
        return None
    owner, repo = match.groups()
    return owner, repo.removesuffix(".git")


class GitHubFetcher:
    """Checks repository files through the GitHub API.

    Set GITHUB_TOKEN or pass a token for higher rate limits.
    """

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the fetcher.

        Args:
            token: GitHub personal access token. If not provided, uses GITHUB_TOKEN env var.
            client: Optional httpx client. If not provided, a new client is created.
            base_url: API base URL.
            timeout: Per-request timeout when no client is injected.
        """
        self._token = token or os.environ.get("GITHUB_TOKEN")
        self._client = client
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        """Get headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.timeout)

    async def _fetch(self, path: str) -> dict | list | None:
        """Fetch from GitHub API.

        Returns None if 404, raises on other errors.
        """
        client = await self._get_client()
        try:
            response = await client.get(f"{self.base_url}{path}", headers=self._headers())
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        finally:
            if self._client is None:
                await client.aclose()

    async def has_security_policy(self, repository_url: str | None) -> bool:
        """Check whether the repository publishes a security policy.

        Looks for SECURITY.md, then the community profile's security_policy
        entry. Non-GitHub repositories and failed lookups count as no policy.
        """
        repo = parse_github_repo(repository_url)
        if repo is None:
            return False
        owner, name = repo

        try:
            if await self._fetch(f"/repos/{owner}/{name}/contents/SECURITY.md") is not None:
                return True
            community = await self._fetch(f"/repos/{owner}/{name}/community/profile")
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Security policy lookup failed for {owner}/{name}: {e}")
            return False

        if isinstance(community, dict):
            files = community.get("files") or {}
            return isinstance(files, dict) and files.get("security_policy") is not None
        return False
