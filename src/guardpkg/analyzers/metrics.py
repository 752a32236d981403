"""Package-level security metrics derived from registry metadata."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from guardpkg.models.schemas import (
    DependencyCount,
    DependencyRiskEntry,
    DependencyStatus,
    DependencyType,
    OutdatedDependency,
    PackageMetadata,
    PublisherInfo,
    ScriptEntry,
    SecurityMetrics,
)

# Substrings that make a package.json script suspicious (case-insensitive)
SUSPICIOUS_SCRIPT_COMMANDS = [
    "curl",
    "wget",
    "eval",
    "exec",
    "download",
    "http",
    "env",
    "export",
    "npm explore",
    "npm hook",
    "npm prefix",
    "npm root",
    "npm config",
    "npm get",
    "npm set",
]

EXEC_SCRIPT_PATTERNS = [
    re.compile(r"npm\s+exec"),
    re.compile(r"npx\s+"),
    re.compile(r"yarn\s+exec"),
]

LOCK_FILES = ("package-lock.json", "yarn.lock", "pnpm-lock.yaml")

# Average bytes per file below which the published dist looks minified
MINIFIED_AVG_FILE_BYTES = 1024


def find_suspicious_scripts(scripts: dict[str, str]) -> list[ScriptEntry]:
    """Return scripts containing any of the suspicious commands."""
    suspicious = []
    for name, script in scripts.items():
        lowered = script.lower()
        if any(cmd in lowered for cmd in SUSPICIOUS_SCRIPT_COMMANDS):
            suspicious.append(ScriptEntry(name=name, script=script))
    return suspicious


def has_exec_scripts(scripts: dict[str, str]) -> bool:
    return any(p.search(script) for script in scripts.values() for p in EXEC_SCRIPT_PATTERNS)


def has_lock_file(files: Iterable[str]) -> bool:
    return any(Path(f).name in LOCK_FILES for f in files)


def count_dependencies(metadata: PackageMetadata) -> DependencyCount:
    return DependencyCount(
        total=len(metadata.all_dependencies()),
        direct=len(metadata.dependencies),
        dev=len(metadata.dev_dependencies),
        peer=len(metadata.peer_dependencies),
    )


def find_outdated_dependencies(entries: Iterable[DependencyRiskEntry]) -> list[OutdatedDependency]:
    """Direct production dependencies that do not resolve to their latest release."""
    outdated = []
    for entry in entries:
        if entry.depth != 1 or entry.dependency_type != DependencyType.PRODUCTION:
            continue
        if entry.status == DependencyStatus.MISSING or not entry.latest:
            continue
        if entry.version != entry.latest:
            outdated.append(OutdatedDependency(
                name=entry.name,
                requested=entry.requested,
                resolved=entry.version,
                latest=entry.latest,
            ))
    return sorted(outdated, key=lambda d: d.name)


def last_update_age(metadata: PackageMetadata, now: datetime | None = None) -> int | None:
    """Days since this version was published, or None if unknown."""
    if metadata.published_at is None:
        return None
    now = now or datetime.now(timezone.utc)
    published = metadata.published_at
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)
    return max(0, (now - published).days)


def looks_minified(metadata: PackageMetadata) -> bool:
    """Heuristic: very small average file size in the published dist."""
    if not metadata.dist_size or not metadata.dist_file_count:
        return False
    return metadata.dist_size / metadata.dist_file_count < MINIFIED_AVG_FILE_BYTES


def build_security_metrics(
    metadata: PackageMetadata,
    extracted_files: Iterable[str] | None = None,
    publisher: PublisherInfo | None = None,
    now: datetime | None = None,
    dependencies: Iterable[DependencyRiskEntry] | None = None,
    has_security_policy: bool = False,
) -> SecurityMetrics:
    """Derive SecurityMetrics for a package version.

    Args:
        metadata: Registry metadata for the version.
        extracted_files: Relative paths of the unpacked tarball, when available.
            Used together with the registry ``dist.files`` listing for the lock-file check.
        publisher: Publisher lookup result, if any.
        now: Reference time for the age calculation.
        dependencies: Walk entries, used to report outdated direct dependencies.
        has_security_policy: Whether the source repository publishes a security policy.

    Returns:
        SecurityMetrics.
    """
    suspicious = find_suspicious_scripts(metadata.scripts)
    files = list(metadata.dist_files)
    if extracted_files is not None:
        files.extend(extracted_files)

    return SecurityMetrics(
        has_suspicious_scripts=bool(suspicious),
        suspicious_scripts=suspicious,
        has_exec_scripts=has_exec_scripts(metadata.scripts),
        has_minified_code=looks_minified(metadata),
        has_lock_file=has_lock_file(files),
        dependency_count=count_dependencies(metadata),
        last_update_age=last_update_age(metadata, now),
        publisher_verified=publisher.verified if publisher else False,
        has_security_policy=has_security_policy,
        outdated_dependencies=find_outdated_dependencies(dependencies or []),
        script_count=len(metadata.scripts),
    )
