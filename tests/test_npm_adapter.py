"""Tests for the npm registry adapter."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from guardpkg.adapters.npm import NpmAdapter, publisher_trust_score
from guardpkg.errors import MetadataNotFound, NetworkError

REGISTRY = "https://registry.test"
DOWNLOADS = "https://downloads.test"

DOCUMENT = {
    "name": "left-pad",
    "dist-tags": {"latest": "1.3.0", "beta": "2.0.0-beta.1"},
    "license": {"type": "MIT"},
    "maintainers": [{"name": "alice", "email": "alice@example.test"}],
    "versions": {
        "1.2.0": {"name": "left-pad", "version": "1.2.0"},
        "1.3.0": {
            "name": "left-pad",
            "version": "1.3.0",
            "description": "String left pad",
            "author": {"name": "Alice"},
            "repository": {"type": "git", "url": "git+https://github.com/alice/left-pad.git"},
            "scripts": {"test": "node test.js", "postinstall": "node setup.js"},
            "dependencies": {"lodash": "^4.17.0"},
            "devDependencies": {"tape": "*"},
            "dist": {
                "tarball": f"{REGISTRY}/left-pad/-/left-pad-1.3.0.tgz",
                "unpackedSize": 4096,
                "fileCount": 4,
                "files": ["package.json", "package-lock.json", "index.js", {"path": "lib"}],
            },
            "files": ["index.js"],
        },
        "2.0.0-beta.1": {"name": "left-pad", "version": "2.0.0-beta.1"},
    },
    "time": {"1.3.0": "2024-01-15T10:00:00.000Z", "modified": "2024-02-01T00:00:00.000Z"},
}


def _adapter(handler) -> NpmAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NpmAdapter(client=client, registry_url=REGISTRY, downloads_url=DOWNLOADS)


def _serve_document(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/left-pad":
        return httpx.Response(200, json=DOCUMENT)
    return httpx.Response(404, json={"error": "Not found"})


class TestFetch:
    """Test metadata fetching and error classification."""

    @pytest.mark.asyncio
    async def test_latest_resolves_dist_tag(self):
        metadata = await _adapter(_serve_document).fetch("left-pad")

        assert metadata.version == "1.3.0"
        assert metadata.license == "MIT"
        assert metadata.author == "Alice"
        assert metadata.repository_url == "https://github.com/alice/left-pad"
        assert metadata.maintainers == ["alice"]
        assert metadata.scripts["postinstall"] == "node setup.js"
        assert metadata.dependencies == {"lodash": "^4.17.0"}
        assert metadata.dev_dependencies == {"tape": "*"}
        assert metadata.tarball_url.endswith("left-pad-1.3.0.tgz")
        assert metadata.dist_file_count == 4
        assert metadata.dist_files == ["package.json", "package-lock.json", "index.js"]
        assert metadata.published_at == datetime(2024, 1, 15, 10, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_other_dist_tag(self):
        metadata = await _adapter(_serve_document).fetch("left-pad", "beta")
        assert metadata.version == "2.0.0-beta.1"

    @pytest.mark.asyncio
    async def test_unknown_package(self):
        with pytest.raises(MetadataNotFound) as exc:
            await _adapter(_serve_document).fetch("does-not-exist")
        assert exc.value.name == "does-not-exist"

    @pytest.mark.asyncio
    async def test_unknown_version(self):
        with pytest.raises(MetadataNotFound) as exc:
            await _adapter(_serve_document).fetch("left-pad", "9.9.9")
        assert exc.value.version == "9.9.9"

    @pytest.mark.asyncio
    async def test_connection_error_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError):
            await _adapter(handler).fetch("left-pad")

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(NetworkError, match="timed out"):
            await _adapter(handler).fetch("left-pad")

    @pytest.mark.asyncio
    async def test_server_error_is_network_error(self):
        def handler(request):
            return httpx.Response(503)

        with pytest.raises(NetworkError):
            await _adapter(handler).fetch("left-pad")

    @pytest.mark.asyncio
    async def test_scoped_name_is_encoded(self):
        seen = []

        def handler(request):
            seen.append(request.url.raw_path)
            return httpx.Response(404)

        with pytest.raises(MetadataNotFound):
            await _adapter(handler).fetch("@scope/pkg")
        assert seen[0].endswith(b"@scope%2Fpkg")


class TestDownloadsAndPublisher:
    """Test the lookups that never fail the analysis."""

    @pytest.mark.asyncio
    async def test_download_count(self):
        def handler(request):
            assert request.url.path == "/downloads/point/last-month/left-pad"
            return httpx.Response(200, json={"downloads": 1234, "package": "left-pad"})

        assert await _adapter(handler).get_download_count("left-pad") == 1234

    @pytest.mark.asyncio
    async def test_download_count_failure_is_zero(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        assert await _adapter(handler).get_download_count("left-pad") == 0

    @pytest.mark.asyncio
    async def test_publisher_info(self):
        created = (datetime.now(timezone.utc) - timedelta(days=800)).isoformat()

        def handler(request):
            assert "org.couchdb.user:alice" in str(request.url)
            return httpx.Response(200, json={
                "name": "alice",
                "verified": True,
                "created": created,
                "packages": [f"pkg-{i}" for i in range(10)],
            })

        info = await _adapter(handler).get_publisher_info("alice")

        assert info.verified
        assert info.package_count == 10
        assert info.account_age_days == 800
        assert info.trust_score == 50 + 35 + 4 + 5

    @pytest.mark.asyncio
    async def test_publisher_failure_is_neutral(self):
        def handler(request):
            return httpx.Response(404)

        info = await _adapter(handler).get_publisher_info("alice")
        assert info.username == "alice"
        assert info.trust_score == 50
        assert not info.verified

    @pytest.mark.asyncio
    async def test_no_publisher(self):
        def handler(request):
            raise AssertionError("no request expected")

        info = await _adapter(handler).get_publisher_info(None)
        assert info.trust_score == 50


class TestPublisherTrustScore:
    def test_neutral(self):
        assert publisher_trust_score(False, 0, 0) == 50

    def test_caps(self):
        assert publisher_trust_score(True, 10_000, 1_000) == 100
