"""NPM registry adapter."""

import logging
from datetime import datetime, timezone
from urllib.parse import quote

import httpx

from guardpkg.adapters.base import BaseAdapter
from guardpkg.adapters.semver import resolve_version
from guardpkg.errors import InvalidScanResult, MetadataNotFound, NetworkError
from guardpkg.models.schemas import PackageMetadata, PublisherInfo

logger = logging.getLogger(__name__)


class NpmAdapter(BaseAdapter):
    """Adapter for the NPM package registry.

    Data sources:
    - Package document: {registry}/{package}
    - Publisher account: {registry}/-/user/org.couchdb.user:{username}
    - Download stats: {downloads}/downloads/point/last-month/{package}
    """

    REGISTRY_URL = "https://registry.npmjs.org"
    DOWNLOADS_URL = "https://api.npmjs.org"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        registry_url: str | None = None,
        downloads_url: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the adapter.

        Args:
            client: Optional httpx client for making requests.
            registry_url: Registry base URL. Defaults to the public registry.
            downloads_url: Download-count API base URL.
            timeout: Per-request timeout when no client is injected.
        """
        self._client = client
        self.registry_url = (registry_url or self.REGISTRY_URL).rstrip("/")
        self.downloads_url = (downloads_url or self.DOWNLOADS_URL).rstrip("/")
        self.timeout = timeout

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)

    async def _fetch_json(self, url: str) -> dict:
        """Fetch JSON from a URL.

        Transport failures, timeouts and 5xx responses become NetworkError.
        Other error statuses are raised as httpx.HTTPStatusError for the
        caller to classify.
        """
        client = await self._get_client()
        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise NetworkError(url, "request timed out") from e
        except httpx.RequestError as e:
            raise NetworkError(url, str(e) or type(e).__name__) from e
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code >= 500:
            raise NetworkError(url, f"HTTP {response.status_code}")
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidScanResult(f"Invalid JSON from {url}") from e
        if not isinstance(data, dict):
            raise InvalidScanResult(f"Unexpected payload from {url}")
        return data

    async def fetch_document(self, name: str) -> dict:
        """Fetch the full registry document for a package.

        Args:
            name: Package name (supports scoped packages like @org/pkg).

        Returns:
            The raw registry document with all versions.

        Raises:
            MetadataNotFound: If the package doesn't exist.
            NetworkError: If the registry cannot be reached.
        """
        url = f"{self.registry_url}/{_encode_name(name)}"
        try:
            return await self._fetch_json(url)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise MetadataNotFound(name) from e
            raise NetworkError(url, f"HTTP {e.response.status_code}") from e

    async def fetch(self, name: str, version: str = "latest") -> PackageMetadata:
        """Fetch metadata for an NPM package version.

        Args:
            name: Package name.
            version: Exact version, dist-tag, or range.

        Returns:
            PackageMetadata for the resolved version.

        Raises:
            MetadataNotFound: If the package or version doesn't exist.
            NetworkError: If the registry cannot be reached.
        """
        document = await self.fetch_document(name)
        resolved = resolve_version(document, version)
        if resolved is None:
            raise MetadataNotFound(name, version)

        return self.parse_document(document, resolved, name)

    def parse_document(self, document: dict, version: str, name: str) -> PackageMetadata:
        """Build PackageMetadata for one version of a registry document."""
        version_data = document.get("versions", {}).get(version) or {}
        times = document.get("time") or {}
        dist = version_data.get("dist") or {}

        repository = version_data.get("repository") or document.get("repository")

        maintainers = version_data.get("maintainers") or document.get("maintainers") or []
        maintainer_names = [
            m.get("name", "") if isinstance(m, dict) else str(m)
            for m in maintainers
        ]

        return PackageMetadata(
            name=version_data.get("name") or document.get("name") or name,
            version=version_data.get("version") or version,
            description=version_data.get("description") or document.get("description") or "",
            author=self._extract_person(version_data.get("author") or document.get("author")),
            license=self._extract_license(document, version_data),
            repository_url=self._extract_repo_url(repository),
            maintainers=[m for m in maintainer_names if m],
            scripts=_string_map(version_data.get("scripts")),
            dependencies=_string_map(version_data.get("dependencies")),
            dev_dependencies=_string_map(version_data.get("devDependencies")),
            peer_dependencies=_string_map(version_data.get("peerDependencies")),
            published_at=_parse_time(times.get(version)),
            modified_at=_parse_time(times.get("modified")),
            tarball_url=dist.get("tarball"),
            dist_size=dist.get("unpackedSize") or dist.get("size"),
            dist_file_count=dist.get("fileCount"),
            dist_files=[f for f in dist.get("files") or [] if isinstance(f, str)],
        )

    def _extract_person(self, person: dict | str | None) -> str | None:
        if isinstance(person, dict):
            return person.get("name")
        if isinstance(person, str):
            return person or None
        return None

    def _extract_repo_url(self, repository: dict | str | None) -> str | None:
        """Extract repository URL from npm repository field.

        Handles various formats:
        - {"type": "git", "url": "git+https://github.com/owner/repo.git"}
        - "github:owner/repo"
        - "https://github.com/owner/repo"
        """
        if not repository:
            return None

        if isinstance(repository, str):
            url = repository
        elif isinstance(repository, dict):
            url = repository.get("url", "")
        else:
            return None

        if not url:
            return None

        # Clean up common npm URL patterns
        url = url.replace("git+", "").replace("git://", "https://")
        url = url.removesuffix(".git")

        # Handle GitHub shorthand
        if url.startswith("github:"):
            url = f"https://github.com/{url[7:]}"

        return url if url else None

    def _extract_license(self, data: dict, version_data: dict) -> str | None:
        """Extract license from npm package data."""
        license_info = version_data.get("license") or data.get("license")

        if isinstance(license_info, str):
            return license_info
        elif isinstance(license_info, dict):
            return license_info.get("type") or license_info.get("name")
        elif isinstance(license_info, list) and license_info:
            first = license_info[0]
            if isinstance(first, str):
                return first
            elif isinstance(first, dict):
                return first.get("type") or first.get("name")

        return None

    async def get_download_count(self, name: str) -> int:
        """Fetch last-month download count for an NPM package.

        Returns:
            Download count, or 0 if the lookup fails for any reason.
        """
        url = f"{self.downloads_url}/downloads/point/last-month/{name}"
        try:
            data = await self._fetch_json(url)
        except Exception as e:
            logger.debug(f"Download count unavailable for {name}: {e}")
            return 0

        downloads = data.get("downloads", 0)
        return downloads if isinstance(downloads, int) else 0

    async def get_publisher_info(self, username: str | None) -> PublisherInfo:
        """Fetch account information for a publisher.

        Args:
            username: npm username, usually the first maintainer.

        Returns:
            PublisherInfo. Falls back to an unverified default with the
            neutral trust score when the lookup fails.
        """
        if not username:
            return PublisherInfo()

        url = f"{self.registry_url}/-/user/org.couchdb.user:{quote(username, safe='')}"
        try:
            data = await self._fetch_json(url)
        except Exception as e:
            logger.debug(f"Publisher lookup failed for {username}: {e}")
            return PublisherInfo(username=username)

        created = _parse_time(data.get("created") or data.get("date"))
        account_age_days = 0
        if created is not None:
            account_age_days = max(0, (datetime.now(timezone.utc) - created).days)

        packages = data.get("packages")
        package_count = len(packages) if isinstance(packages, (list, dict)) else 0
        verified = bool(data.get("verified") or data.get("email_verified"))

        return PublisherInfo(
            username=data.get("name") or username,
            verified=verified,
            created=created,
            package_count=package_count,
            account_age_days=account_age_days,
            trust_score=publisher_trust_score(verified, account_age_days, package_count),
        )


def publisher_trust_score(verified: bool, account_age_days: int, package_count: int) -> int:
    """Trust score for a publisher account.

    Neutral 50, plus 35 for a verified account, up to 10 for account age
    (two points per year) and up to 5 for published packages (one per two).
    """
    score = 50
    if verified:
        score += 35
    score += min(10, account_age_days * 2 // 365)
    score += min(5, package_count // 2)
    return min(100, score)


def _encode_name(name: str) -> str:
    # Scoped names keep the leading @ but encode the slash
    return name.replace("/", "%2F")


def _string_map(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): v for k, v in value.items() if isinstance(v, str)}


def _parse_time(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
