"""Transitive dependency risk walk.

Breadth-first over dependencies, devDependencies and peerDependencies.
Each level is processed in three phases:

1. Fetch registry documents and resolve version ranges (concurrent).
2. Claim unvisited (name, version) nodes, in a stable order, without
   yielding to the event loop.
3. Assess the claimed nodes (concurrent).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from guardpkg.adapters.base import BaseAdapter
from guardpkg.adapters.semver import resolve_version
from guardpkg.errors import GuardPkgError
from guardpkg.models.schemas import (
    DependencyRiskEntry,
    DependencyStatus,
    DependencyType,
    PackageMetadata,
    PackageRef,
    RiskScore,
)

logger = logging.getLogger(__name__)

# Score recorded when a dependency was fetched but could not be assessed
NEUTRAL_SCORE = 50

AssessFn = Callable[[PackageMetadata], Awaitable[RiskScore]]


@dataclass
class _Request:
    name: str
    spec: str
    parent: PackageMetadata
    kind: DependencyType


@dataclass
class _Resolution:
    request: _Request
    metadata: PackageMetadata | None = None
    latest: str | None = None
    error: str | None = None


class DependencyRiskWalker:
    """Walks the dependency graph of a package and scores each node."""

    def __init__(
        self,
        fetcher: BaseAdapter,
        assess: AssessFn,
        max_depth: int = 3,
        max_nodes: int = 200,
        concurrency: int = 8,
        timeout: float = 30.0,
        assess_timeout: float | None = None,
    ) -> None:
        """Initialize the walker.

        Args:
            fetcher: Registry adapter used to fetch dependency documents.
            assess: Coroutine scoring a single dependency (no nested walk).
            max_depth: Deepest level that produces entries. Root is depth 0.
            max_nodes: Maximum number of dependencies assessed per walk.
            concurrency: Maximum concurrent fetches or assessments.
            timeout: Timeout for each registry fetch.
            assess_timeout: Timeout for each assessment. Defaults to timeout.
        """
        self.fetcher = fetcher
        self.assess = assess
        self.max_depth = max_depth
        self.max_nodes = max_nodes
        self.concurrency = concurrency
        self.timeout = timeout
        self.assess_timeout = assess_timeout or timeout

    async def walk(
        self,
        root: PackageMetadata | PackageRef,
        max_depth: int | None = None,
    ) -> list[DependencyRiskEntry]:
        """Walk the dependency graph below root.

        Args:
            root: The package being analyzed. A bare reference is fetched first.
            max_depth: Overrides the configured depth for this walk.

        Returns:
            One entry per visited (name, version), ordered by depth then name.
        """
        if isinstance(root, PackageRef):
            root = await self.fetcher.fetch(root.name, root.version)

        depth_limit = self.max_depth if max_depth is None else max_depth
        semaphore = asyncio.Semaphore(self.concurrency)
        documents: dict[str, asyncio.Task] = {}

        visited: set[tuple[str, str]] = {(root.name, root.version)}
        entries: list[DependencyRiskEntry] = []
        frontier = [root]
        assessed = 0
        truncated = False

        try:
            for depth in range(1, depth_limit + 1):
                requests = [
                    _Request(name=name, spec=spec, parent=parent, kind=parent.dependency_type(name))
                    for parent in frontier
                    for name, spec in sorted(parent.all_dependencies().items())
                ]
                if not requests:
                    break

                resolutions = await asyncio.gather(
                    *(self._resolve(r, documents, semaphore) for r in requests)
                )

                # Claim phase: no await until the loop ends
                claimed: list[_Resolution] = []
                for resolution in resolutions:
                    request = resolution.request
                    if resolution.metadata is None:
                        key = (request.name, request.spec)
                        if key in visited:
                            continue
                        visited.add(key)
                        entries.append(DependencyRiskEntry(
                            name=request.name,
                            version=request.spec,
                            requested=request.spec,
                            depth=depth,
                            parent=str(request.parent.ref),
                            dependency_type=request.kind,
                            status=DependencyStatus.MISSING,
                            error=resolution.error,
                        ))
                        continue

                    key = (resolution.metadata.name, resolution.metadata.version)
                    if key in visited:
                        continue
                    if assessed >= self.max_nodes:
                        truncated = True
                        continue
                    visited.add(key)
                    assessed += 1
                    claimed.append(resolution)

                scored = await asyncio.gather(
                    *(self._assess(resolution, depth, semaphore) for resolution in claimed)
                )
                entries.extend(scored)
                frontier = [resolution.metadata for resolution in claimed]
        finally:
            for task in documents.values():
                task.cancel()

        if truncated:
            logger.warning(
                f"Dependency walk for {root.ref} truncated at {self.max_nodes} nodes"
            )

        entries.sort(key=lambda e: (e.depth, e.name, e.version))
        return entries

    async def _fetch_document(self, name: str, semaphore: asyncio.Semaphore) -> dict:
        async with semaphore:
            return await asyncio.wait_for(self.fetcher.fetch_document(name), timeout=self.timeout)

    async def _resolve(
        self,
        request: _Request,
        documents: dict[str, asyncio.Task],
        semaphore: asyncio.Semaphore,
    ) -> _Resolution:
        # Siblings requesting the same package share one document fetch
        task = documents.get(request.name)
        if task is None:
            task = asyncio.ensure_future(self._fetch_document(request.name, semaphore))
            documents[request.name] = task

        try:
            document = await asyncio.shield(task)
        except asyncio.TimeoutError:
            return _Resolution(request, error=f"Timed out fetching {request.name}")
        except GuardPkgError as e:
            logger.debug(f"Dependency {request.name}@{request.spec} unavailable: {e}")
            return _Resolution(request, error=str(e))

        version = resolve_version(document, request.spec)
        if version is None:
            return _Resolution(request, error=f"No version of {request.name} matches '{request.spec}'")
        latest = (document.get("dist-tags") or {}).get("latest")

        try:
            metadata = self.fetcher.parse_document(document, version, request.name)
        except ValueError as e:
            return _Resolution(request, error=f"Invalid metadata for {request.name}@{version}: {e}")
        return _Resolution(request, metadata=metadata, latest=latest)

    async def _assess(
        self,
        resolution: _Resolution,
        depth: int,
        semaphore: asyncio.Semaphore,
    ) -> DependencyRiskEntry:
        request, metadata = resolution.request, resolution.metadata
        entry = DependencyRiskEntry(
            name=metadata.name,
            version=metadata.version,
            requested=request.spec,
            depth=depth,
            parent=str(request.parent.ref),
            dependency_type=request.kind,
            latest=resolution.latest,
        )

        try:
            async with semaphore:
                risk = await asyncio.wait_for(self.assess(metadata), timeout=self.assess_timeout)
        except asyncio.TimeoutError:
            entry.status = DependencyStatus.DEFAULT
            entry.score = NEUTRAL_SCORE
            entry.error = f"Timed out assessing {metadata.ref}"
            return entry
        except GuardPkgError as e:
            logger.debug(f"Assessment of {metadata.ref} failed: {e}")
            entry.status = DependencyStatus.DEFAULT
            entry.score = NEUTRAL_SCORE
            entry.error = str(e)
            return entry

        entry.score = risk.score
        entry.malware_detected = risk.malware_detected
        return entry
