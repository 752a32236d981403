"""Per-file static inspection of an extracted package.

Implements the file-level signals used by the scorer:
- Known-malicious filenames
- Known-malware content hashes
- Pattern catalog matches
- Obfuscation density
- Network exfiltration behaviour
- Dangerous file permission operations
- Cyclomatic complexity estimate
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence
from urllib.parse import urlparse

from guardpkg.analyzers.malware import MalwareHashRegistry, hash_bytes
from guardpkg.analyzers.patterns import DEFAULT_CATALOG, PatternCatalog
from guardpkg.models.schemas import FileFinding, PatternMatch, SuspiciousPattern

logger = logging.getLogger(__name__)


# === Pattern Definitions ===

# Known malicious file names (compared lowercase)
MALICIOUS_FILENAMES = frozenset({
    "eval.js",
    "crypto-miner.js",
    "mining.js",
    "inject.js",
    "backdoor.js",
    "payload.js",
    "payload.min.js",
    "exploit.js",
    "shell.js",
    "hack.js",
    "trojan.js",
    "malware.js",
    "keylogger.js",
    "stealer.js",
    "ransom.js",
    "hidden.js",
    "botnet.js",
    "rat.js",
    "setup_bun.js",
    "bun_environment.js",
})

DEFAULT_EXTENSIONS = (".js", ".json", ".ts", ".jsx", ".tsx", ".mjs", ".cjs")

# The root manifest is scored from registry metadata (scripts, lock file),
# so only its hash and name are checked here
PACKAGE_MANIFEST = "package.json"

# Obfuscation indicators, counted per occurrence
OBFUSCATION_INDICATORS = {
    "hex_escapes": re.compile(r"\\x[0-9a-f]{2}", re.IGNORECASE),
    "unicode_escapes": re.compile(r"\\u[0-9a-f]{4}", re.IGNORECASE),
    "short_identifiers": re.compile(r"\b_?[a-z0-9]{1,2}\b", re.IGNORECASE),
    "hex_literals": re.compile(r"0x[0-9a-f]+", re.IGNORECASE),
    "bracket_access": re.compile(r"\[['\"]\w+['\"]\]"),
    "encoding_functions": re.compile(r"base64|fromCharCode|unescape", re.IGNORECASE),
}
OBFUSCATION_DENSITY_THRESHOLD = 0.05

_WHITESPACE = re.compile(r"\s+")

# Hosts that may legitimately appear in package sources
TRUSTED_DOMAINS = (
    "registry.npmjs.org",
    "npmjs.com",
    "github.com",
    "api.github.com",
    "githubusercontent.com",
    "unpkg.com",
    "cdnjs.cloudflare.com",
)

URL_PATTERN = re.compile(r"https?://[^/\"'`\s]+(?:/[^\"'`\s]*)?")
SOCKET_PATTERN = re.compile(
    r"new\s+WebSocket\s*\(|new\s+net\.Socket\s*\(|\bnet\.(?:connect|createConnection)\s*\(|dgram\.createSocket\s*\("
)
ENV_ACCESS_PATTERN = re.compile(r"process\.env\b")
NETWORK_PRIMITIVE_PATTERN = re.compile(
    r"\bfetch\s*\(|\bhttps?\.(?:request|get)\s*\(|XMLHttpRequest|WebSocket"
    r"|\bnet\.(?:connect|createConnection|Socket)|\baxios\b"
    r"|require\(\s*['\"](?:https?|request|node-fetch|got)['\"]\s*\)"
)

SUSPICIOUS_URL_ISSUE = "Suspicious URL detected in network requests"
SOCKET_ISSUE = "WebSocket connection detected - verify legitimacy"
EXFILTRATION_ISSUE = "Critical: Possible environment variable exfiltration detected"

DANGEROUS_PERMISSION_PATTERNS = [
    re.compile(r"fs\.chmod(?:Sync)?\s*\([^)]*(?:777|666)"),
    re.compile(r"fs\.writeFile(?:Sync)?\s*\([^)]*/(?:etc|usr|bin)"),
    re.compile(r"fs\.unlink(?:Sync)?\s*\([^)]*/(?:etc|usr|bin)"),
]

BRANCHING_PATTERNS = [
    re.compile(r"\bif\s*\("),
    re.compile(r"\belse\s*\{"),
    re.compile(r"\}\s*else\s*\{"),
    re.compile(r"\bfor\s*\("),
    re.compile(r"\bwhile\s*\("),
    re.compile(r"\bswitch\s*\("),
    re.compile(r"\?\s*[^:?]+\s*:"),
    re.compile(r"&&"),
    re.compile(r"\|\|"),
    re.compile(r"\bfunction\s+\w+\s*\("),
    re.compile(r"=>\s*\{"),
    re.compile(r"\bcatch\s*\("),
    re.compile(r"\bcase\s+"),
    re.compile(r"\?\?"),
]
FUNCTION_KEYWORD = re.compile(r"\bfunction\b")
COMPLEXITY_THRESHOLD = 10


# === Heuristics ===


def obfuscation_density(content: str) -> tuple[int, float]:
    """Count obfuscation indicators and normalize by non-whitespace length.

    Returns:
        Tuple of (total_indicators, density).
    """
    if not content:
        return 0, 0.0

    total = sum(len(p.findall(content)) for p in OBFUSCATION_INDICATORS.values())
    code_length = len(_WHITESPACE.sub("", content))
    if code_length == 0:
        return total, 0.0
    return total, total / code_length


def is_obfuscated(content: str) -> bool:
    total, density = obfuscation_density(content)
    return total > 0 and density > OBFUSCATION_DENSITY_THRESHOLD


def is_trusted_url(url: str) -> bool:
    """Check whether a URL points at an allow-listed host."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    if not host:
        return False
    return any(host == domain or host.endswith("." + domain) for domain in TRUSTED_DOMAINS)


def check_network_behavior(content: str) -> list[str]:
    """Return the distinct network issues found in the content."""
    if not content:
        return []

    issues: list[str] = []

    urls = URL_PATTERN.findall(content)
    if any(not is_trusted_url(url) for url in urls):
        issues.append(SUSPICIOUS_URL_ISSUE)

    if SOCKET_PATTERN.search(content):
        issues.append(SOCKET_ISSUE)

    # Exfiltration needs both read access to secrets and an egress channel
    if ENV_ACCESS_PATTERN.search(content) and NETWORK_PRIMITIVE_PATTERN.search(content):
        issues.append(EXFILTRATION_ISSUE)

    return issues


def has_dangerous_permissions(content: str) -> bool:
    return any(p.search(content) for p in DANGEROUS_PERMISSION_PATTERNS)


def estimate_complexity(content: str) -> int:
    """Rough cyclomatic complexity from branching constructs."""
    complexity = 1
    for pattern in BRANCHING_PATTERNS:
        complexity += len(pattern.findall(content))

    function_count = len(FUNCTION_KEYWORD.findall(content))
    if function_count > 1:
        complexity += function_count

    return complexity


def is_malicious_filename(path: str | Path) -> bool:
    return Path(path).name.lower() in MALICIOUS_FILENAMES


def collapse_matches(matches: Iterable[PatternMatch], location: str) -> list[SuspiciousPattern]:
    """Reduce rule matches to one pattern per category, keeping the most severe."""
    by_category: dict[str, PatternMatch] = {}
    for match in matches:
        current = by_category.get(match.category)
        if current is None or match.severity.rank < current.severity.rank:
            by_category[match.category] = match

    return [
        SuspiciousPattern(
            category=m.category,
            description=m.description,
            severity=m.severity,
            location=location,
        )
        for m in sorted(by_category.values(), key=lambda m: m.category)
    ]


@dataclass
class _ContentSignals:
    """Content-derived signals, shared by files with identical bytes."""

    matches: list[PatternMatch] = field(default_factory=list)
    obfuscated: bool = False
    density: float = 0.0
    network_issues: list[str] = field(default_factory=list)
    dangerous_permissions: bool = False
    complexity: int = 1


class FileInspector:
    """Inspects the files of an extracted package."""

    def __init__(
        self,
        registry: MalwareHashRegistry,
        catalog: PatternCatalog | None = None,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        max_file_bytes: int = 5_000_000,
    ) -> None:
        """Initialize the inspector.

        Args:
            registry: Known-malware hash registry, shared with the caller.
            catalog: Pattern catalog. Defaults to the built-in catalog.
            extensions: File extensions considered by collect_files.
            max_file_bytes: Files above this size are hashed but not scanned.
        """
        self.registry = registry
        self.catalog = catalog or DEFAULT_CATALOG
        self.extensions = tuple(ext.lower() for ext in extensions)
        self.max_file_bytes = max_file_bytes

    def collect_files(self, root: Path) -> list[Path]:
        """Return inspectable files under root, in a stable order."""
        files = [
            p for p in root.rglob("*")
            if p.is_file() and not p.is_symlink() and p.suffix.lower() in self.extensions
        ]
        return sorted(files)

    def inspect(self, files: Sequence[Path | str], root: Path | None = None) -> list[FileFinding]:
        """Inspect each file and return one finding per file.

        Per-file failures become error findings. Inspection stops as soon as
        a file matches a known malware hash. The root package.json is hashed
        but its content is not scanned.

        Args:
            files: Paths to inspect.
            root: Optional directory used to report relative paths.

        Returns:
            List of FileFinding, in input order.
        """
        findings: list[FileFinding] = []
        seen: dict[str, _ContentSignals] = {}

        for file in files:
            path = Path(file)
            display = self._display_path(path, root)

            try:
                finding = self._inspect_file(path, display, seen)
            except Exception as e:
                logger.debug(f"Error inspecting {display}: {e}")
                finding = FileFinding(
                    path=display,
                    suspicious_filename=is_malicious_filename(path),
                    error=f"Failed to analyze file {path.name}: {e}",
                )

            findings.append(finding)

            if finding.is_known_malware:
                logger.warning(f"Known malware hash detected in {display}, stopping inspection")
                break

        return findings

    def _inspect_file(
        self,
        path: Path,
        display: str,
        seen: dict[str, _ContentSignals],
    ) -> FileFinding:
        finding = FileFinding(path=display, suspicious_filename=is_malicious_filename(path))

        try:
            data = path.read_bytes()
        except OSError as e:
            finding.error = f"Failed to analyze file {path.name}: {e}"
            return finding

        finding.content_hash = hash_bytes(data)

        # Malware check precedes every content heuristic
        if self.registry.contains(finding.content_hash):
            finding.is_known_malware = True
            return finding

        if display == PACKAGE_MANIFEST:
            return finding

        if len(data) > self.max_file_bytes:
            finding.skipped = True
            return finding

        signals = seen.get(finding.content_hash)
        if signals is None:
            signals = self._analyze_content(data.decode("utf-8", errors="ignore"))
            seen[finding.content_hash] = signals

        finding.patterns = collapse_matches(signals.matches, display)
        finding.is_obfuscated = signals.obfuscated
        finding.obfuscation_density = signals.density
        finding.network_issues = list(signals.network_issues)
        finding.dangerous_permissions = signals.dangerous_permissions
        finding.complexity = signals.complexity
        finding.is_complex = signals.complexity > COMPLEXITY_THRESHOLD
        return finding

    def _analyze_content(self, content: str) -> _ContentSignals:
        total, density = obfuscation_density(content)
        return _ContentSignals(
            matches=self.catalog.match(content),
            obfuscated=total > 0 and density > OBFUSCATION_DENSITY_THRESHOLD,
            density=round(density, 4),
            network_issues=check_network_behavior(content),
            dangerous_permissions=has_dangerous_permissions(content),
            complexity=estimate_complexity(content),
        )

    def _display_path(self, path: Path, root: Path | None) -> str:
        if root is not None:
            try:
                return path.relative_to(root).as_posix()
            except ValueError:
                pass
        return path.as_posix()
