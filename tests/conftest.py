"""Pytest configuration and shared fixtures."""

import io
import tarfile

import httpx
import pytest

from guardpkg.adapters.npm import NpmAdapter
from guardpkg.errors import MetadataNotFound
from guardpkg.models.schemas import PublisherInfo

REGISTRY = "https://registry.test"


def make_document(
    name: str,
    versions: dict[str, dict[str, str]],
    latest: str | None = None,
    **version_fields,
) -> dict:
    """Build a registry document with one entry per version.

    Args:
        name: Package name.
        versions: Mapping of version -> production dependencies.
        latest: dist-tags.latest, defaults to the last version given.
        **version_fields: Extra fields merged into every version record.
    """
    return {
        "name": name,
        "dist-tags": {"latest": latest or list(versions)[-1]},
        "versions": {
            version: {
                "name": name,
                "version": version,
                "dependencies": deps,
                "dist": {"tarball": f"{REGISTRY}/{name}/-/{name}-{version}.tgz"},
                **version_fields,
            }
            for version, deps in versions.items()
        },
        "time": {},
    }


def make_tarball(files: dict[str, bytes]) -> bytes:
    """Build a gzipped tarball in the npm layout (everything under package/)."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for path, content in files.items():
            info = tarfile.TarInfo(name=path if path.startswith("..") else f"package/{path}")
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class FakeRegistry(NpmAdapter):
    """NpmAdapter serving documents from memory."""

    def __init__(self, documents: dict[str, dict]) -> None:
        super().__init__(registry_url=REGISTRY)
        self.documents = documents
        self.fetch_calls: list[str] = []

    async def fetch_document(self, name: str) -> dict:
        self.fetch_calls.append(name)
        if name not in self.documents:
            raise MetadataNotFound(name)
        return self.documents[name]

    async def get_download_count(self, name: str) -> int:
        return 0

    async def get_publisher_info(self, username: str | None) -> PublisherInfo:
        return PublisherInfo(username=username)


@pytest.fixture
def fake_registry():
    """Factory for in-memory registries."""
    return FakeRegistry


@pytest.fixture
def mock_client():
    """Factory for an httpx client backed by a request handler."""

    def factory(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory
