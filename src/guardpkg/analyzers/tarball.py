"""Package tarball download and extraction."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tarfile
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import httpx

from guardpkg.errors import ExtractionFailure

logger = logging.getLogger(__name__)

# Hard cap on the compressed archive size
MAX_TARBALL_BYTES = 200 * 1024 * 1024


class TarballFetcher:
    """Downloads npm tarballs into a temporary directory and unpacks them."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
        max_bytes: int = MAX_TARBALL_BYTES,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: Optional HTTP client for fetching tarballs.
            timeout: Timeout for the whole download.
            max_bytes: Archives larger than this are rejected.
        """
        self._client = client
        self.timeout = timeout
        self.max_bytes = max_bytes

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)

    async def download(self, name: str, url: str, dest: Path) -> Path:
        """Stream a tarball to disk.

        Raises:
            ExtractionFailure: On any transport or HTTP error.
        """
        archive = dest / "package.tgz"
        client = await self._get_client()
        try:
            await asyncio.wait_for(self._stream_to(client, url, archive), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ExtractionFailure(name, "tarball download timed out") from e
        except httpx.HTTPError as e:
            raise ExtractionFailure(name, f"tarball download failed: {e}") from e
        except OSError as e:
            raise ExtractionFailure(name, f"cannot write tarball: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        logger.debug(f"Downloaded {url} ({archive.stat().st_size} bytes)")
        return archive

    async def _stream_to(self, client: httpx.AsyncClient, url: str, archive: Path) -> None:
        written = 0
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            with archive.open("wb") as fh:
                async for chunk in response.aiter_bytes():
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise httpx.HTTPError(f"archive exceeds {self.max_bytes} bytes")
                    fh.write(chunk)

    def extract(self, name: str, archive: Path, dest: Path) -> Path:
        """Unpack regular files and directories from an archive.

        Links, devices and any member resolving outside ``dest`` are
        refused. The archive is deleted afterwards.

        Returns:
            The package root (the ``package/`` directory npm tarballs use,
            or ``dest`` itself).

        Raises:
            ExtractionFailure: If the archive is corrupt or unsafe.
        """
        dest.mkdir(parents=True, exist_ok=True)
        base = dest.resolve()

        try:
            with tarfile.open(archive, mode="r:*") as tar:
                for member in tar.getmembers():
                    target = (base / member.name).resolve()
                    if target != base and base not in target.parents:
                        raise ExtractionFailure(name, f"unsafe path in archive: {member.name}")

                    if member.isdir():
                        target.mkdir(parents=True, exist_ok=True)
                    elif member.isfile():
                        source = tar.extractfile(member)
                        if source is None:
                            continue
                        target.parent.mkdir(parents=True, exist_ok=True)
                        with source, target.open("wb") as fh:
                            shutil.copyfileobj(source, fh)
                    else:
                        logger.debug(f"Skipping non-regular archive member {member.name}")
        except (tarfile.TarError, EOFError, OSError) as e:
            raise ExtractionFailure(name, f"cannot unpack tarball: {e}") from e
        finally:
            archive.unlink(missing_ok=True)

        package_dir = base / "package"
        if package_dir.is_dir():
            return package_dir
        return base

    @asynccontextmanager
    async def fetch(self, name: str, url: str | None) -> AsyncIterator[Path]:
        """Download and unpack a tarball, removing everything on exit.

        Yields:
            Path to the extracted package root.

        Raises:
            ExtractionFailure: If the package has no tarball or it cannot be
                downloaded or unpacked.
        """
        if not url:
            raise ExtractionFailure(name, "no tarball URL in registry metadata")

        workdir = Path(tempfile.mkdtemp(prefix="guardpkg-"))
        try:
            archive = await self.download(name, url, workdir)
            root = await asyncio.to_thread(self.extract, name, archive, workdir / "extracted")
            yield root
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
