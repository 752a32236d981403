"""Abstract base class for registry adapters."""

from abc import ABC, abstractmethod

from guardpkg.models.schemas import PackageMetadata, PublisherInfo


class BaseAdapter(ABC):
    """Base class for package registry adapters.

    Each adapter normalizes data from a specific registry into the common
    schema used by the analyzers. Adapters classify every failure into the
    guardpkg error taxonomy before it leaves the adapter.
    """

    @abstractmethod
    async def fetch(self, name: str, version: str = "latest") -> PackageMetadata:
        """Fetch metadata for a single package version.

        Args:
            name: Package name.
            version: Exact version, dist-tag, or range. Defaults to "latest".

        Returns:
            PackageMetadata for the resolved version. Never carries a dist-tag
            as its version.

        Raises:
            MetadataNotFound: If the package or version doesn't exist.
            NetworkError: If the registry cannot be reached.
        """
        ...

    @abstractmethod
    async def fetch_document(self, name: str) -> dict:
        """Fetch the raw registry document for a package (all versions).

        Raises:
            MetadataNotFound: If the package doesn't exist.
            NetworkError: If the registry cannot be reached.
        """
        ...

    @abstractmethod
    def parse_document(self, document: dict, version: str, name: str) -> PackageMetadata:
        """Build PackageMetadata for one version of a fetched document."""
        ...

    @abstractmethod
    async def get_download_count(self, name: str) -> int:
        """Return recent download count, or 0 if unavailable."""
        ...

    @abstractmethod
    async def get_publisher_info(self, username: str | None) -> PublisherInfo:
        """Return publisher account info, or a neutral default if unavailable."""
        ...
