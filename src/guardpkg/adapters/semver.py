"""Resolution of npm version specifiers against a registry document.

Ranges are evaluated with ``semantic_version.NpmSpec``, so exact versions,
x-ranges, caret and tilde ranges, comparator sets, hyphen ranges and ``||``
alternatives follow npm's rules. Dist-tags are looked up first. Aliases
(``npm:other@^1``) name another package and never resolve here. Any other
specifier (git URLs, ``file:`` paths) resolves to the ``latest`` dist-tag.
"""

from __future__ import annotations

import logging
import re

from semantic_version import NpmSpec, Version

logger = logging.getLogger(__name__)

ALIAS_PREFIX = "npm:"

# '>= 1.2 < 2' -> '>=1.2 <2'; NpmSpec wants operators glued to operands
_LOOSE_OPERATOR = re.compile(r"(>=|<=|>|<|=|\^|~)\s+")


def parse_version(version: str) -> Version | None:
    """Parse a full semver string, or None if it is not one."""
    try:
        return Version(version.strip().lstrip("v"))
    except ValueError:
        return None


def parse_range(spec: str) -> NpmSpec | None:
    """Parse an npm range, or None if it is not valid range syntax."""
    normalized = _LOOSE_OPERATOR.sub(r"\1", " ".join(spec.split()))
    try:
        return NpmSpec(normalized)
    except ValueError:
        return None


def max_satisfying(versions: list[str], spec: str) -> str | None:
    """Return the highest published version satisfying the range, or None."""
    npm_spec = parse_range(spec)
    if npm_spec is None:
        return None

    by_version: dict[Version, str] = {}
    for version in versions:
        parsed = parse_version(version)
        if parsed is not None:
            by_version[parsed] = version

    best = npm_spec.select(by_version)
    return by_version[best] if best is not None else None


def resolve_version(document: dict, spec: str | None) -> str | None:
    """Resolve a version specifier against an npm registry document.

    Args:
        document: Full registry document (``GET <registry>/<name>``).
        spec: Exact version, dist-tag, or range. None/empty means latest.

    Returns:
        A version present in ``document["versions"]``, or None if the
        specifier names a version, tag or alias that cannot be resolved.
    """
    versions = document.get("versions") or {}
    dist_tags = document.get("dist-tags") or {}
    spec = (spec or "").strip()

    if spec in ("", "latest"):
        latest = dist_tags.get("latest")
        return latest if latest in versions else None

    if spec in versions:
        return spec
    if spec in dist_tags:
        tagged = dist_tags[spec]
        return tagged if tagged in versions else None

    if spec.startswith(ALIAS_PREFIX):
        logger.debug(f"Not resolving alias {spec} against {document.get('name')}")
        return None

    if parse_version(spec) is not None:
        # Exact version that the registry does not have
        return None

    if parse_range(spec) is not None:
        return max_satisfying(list(versions), spec)

    latest = dist_tags.get("latest")
    return latest if latest in versions else None
