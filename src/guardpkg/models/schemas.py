"""Pydantic models for package data and analysis results."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class Severity(str, Enum):
    """Severity buckets shared by vulnerabilities and pattern findings."""

    CRITICAL = "critical"
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Ordering key, lower is more severe."""
        return {
            Severity.CRITICAL: 0,
            Severity.HIGH: 1,
            Severity.MODERATE: 2,
            Severity.LOW: 3,
        }[self]


class PackageRef(BaseModel):
    """Identity of a resolved package version."""

    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


class PackageMetadata(BaseModel):
    """Registry record for a single package version."""

    name: str
    version: str
    description: str = ""
    author: str | None = None
    license: str | None = None
    repository_url: str | None = None
    maintainers: list[str] = Field(default_factory=list)
    scripts: dict[str, str] = Field(default_factory=dict)
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict)
    peer_dependencies: dict[str, str] = Field(default_factory=dict)
    published_at: datetime | None = None
    modified_at: datetime | None = None
    tarball_url: str | None = None
    dist_size: int | None = None
    dist_file_count: int | None = None
    dist_files: list[str] = Field(default_factory=list)

    @property
    def ref(self) -> PackageRef:
        return PackageRef(name=self.name, version=self.version)

    def all_dependencies(self) -> dict[str, str]:
        """Merge production, dev and peer dependency maps.

        Production entries win when the same name appears in several maps.
        """
        merged: dict[str, str] = {}
        for deps in (self.peer_dependencies, self.dev_dependencies, self.dependencies):
            merged.update(deps)
        return merged

    def dependency_type(self, name: str) -> "DependencyType":
        """Manifest section declaring name, with the same precedence as all_dependencies."""
        if name in self.dependencies:
            return DependencyType.PRODUCTION
        if name in self.dev_dependencies:
            return DependencyType.DEV
        return DependencyType.PEER


class PublisherInfo(BaseModel):
    """Registry account data for the package publisher."""

    username: str | None = None
    verified: bool = False
    created: datetime | None = None
    package_count: int = 0
    account_age_days: int = 0
    trust_score: int = Field(default=50, ge=0, le=100)


# --- Security Metrics ---


class DependencyCount(BaseModel):
    """Dependency counts across manifest sections."""

    total: int = 0  # Unique names across all three maps
    direct: int = 0
    dev: int = 0
    peer: int = 0


class OutdatedDependency(BaseModel):
    """A direct dependency whose requested spec is not the latest release."""

    name: str
    requested: str
    resolved: str
    latest: str


class ScriptEntry(BaseModel):
    """A package.json script flagged by the script checks."""

    name: str
    script: str


class SecurityMetrics(BaseModel):
    """Signals derived from the package as a whole."""

    has_suspicious_scripts: bool = False
    suspicious_scripts: list[ScriptEntry] = Field(default_factory=list)
    has_exec_scripts: bool = False
    has_minified_code: bool = False
    has_lock_file: bool = False
    dependency_count: DependencyCount = Field(default_factory=DependencyCount)
    last_update_age: int | None = None  # days, None if the publish time is unknown
    publisher_verified: bool = False
    has_security_policy: bool = False
    outdated_dependencies: list[OutdatedDependency] = Field(default_factory=list)
    script_count: int = 0


# --- Vulnerability Models ---


class Vulnerability(BaseModel):
    """A single advisory finding."""

    id: str
    title: str = ""
    severity: Severity
    source: str
    aliases: list[str] = Field(default_factory=list)
    url: str | None = None


class VulnerabilityReport(BaseModel):
    """Severity-bucketed vulnerabilities. Buckets are never null."""

    critical: list[Vulnerability] = Field(default_factory=list)
    high: list[Vulnerability] = Field(default_factory=list)
    moderate: list[Vulnerability] = Field(default_factory=list)
    low: list[Vulnerability] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    failed_sources: list[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.critical) + len(self.high) + len(self.moderate) + len(self.low)

    def all(self) -> list[Vulnerability]:
        return [*self.critical, *self.high, *self.moderate, *self.low]


# --- Static Analysis Models ---


class PatternMatch(BaseModel):
    """A rule from the pattern catalog that fired on some content."""

    category: str
    description: str
    severity: Severity


class SuspiciousPattern(BaseModel):
    """A pattern category found in one file or script."""

    category: str
    description: str
    severity: Severity
    location: str


class FileFinding(BaseModel):
    """Result of inspecting one file."""

    path: str
    content_hash: str | None = None
    patterns: list[SuspiciousPattern] = Field(default_factory=list)
    suspicious_filename: bool = False
    is_obfuscated: bool = False
    obfuscation_density: float = 0.0
    network_issues: list[str] = Field(default_factory=list)
    dangerous_permissions: bool = False
    complexity: int = 1
    is_complex: bool = False
    is_known_malware: bool = False
    skipped: bool = False  # Hashed only, too large for pattern analysis
    error: str | None = None


# --- Dependency Models ---


class DependencyType(str, Enum):
    """Manifest section a dependency was declared in."""

    PRODUCTION = "dependency"
    DEV = "devDependency"
    PEER = "peerDependency"


class DependencyStatus(str, Enum):
    """How a dependency entry was produced."""

    SCORED = "scored"
    MISSING = "missing"  # Metadata could not be resolved
    DEFAULT = "default"  # Scoring failed, neutral default used


class DependencyRiskEntry(BaseModel):
    """Risk contribution of one transitive dependency."""

    name: str
    version: str
    requested: str = ""
    depth: int
    parent: str | None = None
    dependency_type: DependencyType = DependencyType.PRODUCTION
    latest: str | None = None  # dist-tags.latest of the dependency
    score: int | None = None
    malware_detected: bool = False
    status: DependencyStatus = DependencyStatus.SCORED
    error: str | None = None


# --- Scoring Models ---


class Deduction(BaseModel):
    """One line of the score explanation."""

    reason: str
    points: int
    category: str


class RiskScore(BaseModel):
    """Final score with the ordered deduction list."""

    score: int = Field(ge=0, le=100)
    deductions: list[Deduction] = Field(default_factory=list)
    malware_detected: bool = False


# --- Final Package Analysis ---


class AnalysisReport(BaseModel):
    """Complete analysis of a package version."""

    package: PackageRef
    metadata: PackageMetadata
    score: int = Field(ge=0, le=100)
    grade: str
    risk_level: str
    deductions: list[Deduction] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    vulnerabilities: VulnerabilityReport = Field(default_factory=VulnerabilityReport)
    metrics: SecurityMetrics = Field(default_factory=SecurityMetrics)
    suspicious_patterns: list[SuspiciousPattern] = Field(default_factory=list)
    file_findings: list[FileFinding] = Field(default_factory=list)
    dependencies: list[DependencyRiskEntry] = Field(default_factory=list)
    malware_detected: bool = False
    downloads: int = 0
    publisher: PublisherInfo | None = None

    # False when the tarball could not be analyzed and only metadata was scored
    deep_analysis: bool = False
    warnings: list[str] = Field(default_factory=list)

    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
