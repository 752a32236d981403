"""Registry of known-malicious file fingerprints."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


def hash_bytes(data: bytes) -> str:
    """SHA-256 hex digest over raw file bytes."""
    return hashlib.sha256(data).hexdigest()


class MalwareHashRegistry:
    """Append-only set of SHA-256 hashes of known-malicious files.

    Lookups may run concurrently from worker threads while hashes are being
    added; entries are never removed.
    """

    def __init__(self, hashes: Iterable[str] | None = None) -> None:
        self._hashes: set[str] = set()
        self._lock = threading.Lock()
        if hashes:
            for h in hashes:
                self.add(h)

    def contains(self, digest: str) -> bool:
        return digest.lower() in self._hashes

    def add(self, digest: str) -> None:
        with self._lock:
            self._hashes.add(digest.lower())

    def __contains__(self, digest: object) -> bool:
        return isinstance(digest, str) and self.contains(digest)

    def __len__(self) -> int:
        return len(self._hashes)

    @classmethod
    def load(cls, path: Path) -> "MalwareHashRegistry":
        """Load a registry from a JSON list of hex digests.

        A missing file yields an empty registry.
        """
        if not path.exists():
            logger.warning(f"Malware hash file {path} not found, starting with an empty registry")
            return cls()

        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"Malware hash file {path} must contain a JSON list")

        registry = cls(str(h) for h in data)
        logger.info(f"Loaded {len(registry)} known malware hashes from {path}")
        return registry

    def save(self, path: Path) -> None:
        with self._lock:
            snapshot = sorted(self._hashes)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
