"""Deterministic risk score calculation."""

import logging
from typing import Sequence

from guardpkg.models.schemas import (
    Deduction,
    DependencyRiskEntry,
    FileFinding,
    PackageMetadata,
    RiskScore,
    SecurityMetrics,
    VulnerabilityReport,
)

logger = logging.getLogger(__name__)


class ScoreEngine:
    """Calculates a 0-100 trust score from analysis findings.

    Starts at 100 and subtracts a fixed number of points per signal. A known
    malware hit anywhere (own files or any dependency) forces the score to 0.
    The result depends only on the inputs; the deduction list is emitted in
    a fixed order (package signals, then files by path, then dependencies by
    name and version).
    """

    # Points per advisory, by bucket
    VULNERABILITY_PENALTIES = {
        "critical": 20,
        "high": 10,
    }

    METRIC_PENALTIES = {
        "suspicious_scripts": 15,
        "exec_scripts": 20,
        "dependency_count": 10,
        "stale": 10,
        "no_lock_file": 5,
    }
    MAX_DEPENDENCIES = 100
    STALE_AFTER_DAYS = 365

    PATTERN_CATEGORY_PENALTY = 5
    PATTERN_PENALTY_CAP = 40

    FILE_PENALTIES = {
        "suspicious_filename": 30,
        "obfuscated": 20,
        "dangerous_permissions": 20,
        "network_issue": 10,
    }

    RISKY_DEPENDENCY_PENALTY = 5
    RISKY_DEPENDENCY_CAP = 20

    def __init__(self, vulnerable_threshold: int = 50) -> None:
        """Initialize the engine.

        Args:
            vulnerable_threshold: Dependencies scoring below this are penalized.
        """
        self.vulnerable_threshold = vulnerable_threshold

    def score(
        self,
        metadata: PackageMetadata,
        metrics: SecurityMetrics,
        vulnerabilities: VulnerabilityReport,
        file_findings: Sequence[FileFinding] = (),
        dependencies: Sequence[DependencyRiskEntry] = (),
    ) -> RiskScore:
        """Score a package version.

        Args:
            metadata: Registry metadata of the package.
            metrics: Package-level security metrics.
            vulnerabilities: Merged advisory report.
            file_findings: Per-file inspection results.
            dependencies: Dependency walk entries.

        Returns:
            RiskScore with the clamped score and ordered deductions.
        """
        malware = self._malware_deduction(file_findings, dependencies)
        if malware is not None:
            logger.debug(f"{metadata.ref}: malware detected, score forced to 0")
            return RiskScore(score=0, deductions=[malware], malware_detected=True)

        deductions: list[Deduction] = []
        deductions.extend(self._vulnerability_deductions(vulnerabilities))
        deductions.extend(self._metric_deductions(metrics))
        deductions.extend(self._pattern_deductions(file_findings))
        deductions.extend(self._file_deductions(file_findings))
        deductions.extend(self._dependency_deductions(dependencies))

        total = sum(d.points for d in deductions)
        score = max(0, min(100, 100 - total))
        logger.debug(f"{metadata.ref}: score {score} after {len(deductions)} deductions")
        return RiskScore(score=score, deductions=deductions)

    def _malware_deduction(
        self,
        file_findings: Sequence[FileFinding],
        dependencies: Sequence[DependencyRiskEntry],
    ) -> Deduction | None:
        for finding in sorted(file_findings, key=lambda f: f.path):
            if finding.is_known_malware:
                return Deduction(
                    reason=f"Known malware detected in {finding.path}",
                    points=100,
                    category="malware",
                )
        for dep in sorted(dependencies, key=lambda d: (d.name, d.version)):
            if dep.malware_detected:
                return Deduction(
                    reason=f"Known malware detected in dependency {dep.name}@{dep.version}",
                    points=100,
                    category="malware",
                )
        return None

    def _vulnerability_deductions(self, report: VulnerabilityReport) -> list[Deduction]:
        deductions = []
        for bucket, penalty in self.VULNERABILITY_PENALTIES.items():
            count = len(getattr(report, bucket))
            if count:
                deductions.append(Deduction(
                    reason=f"{count} {bucket} vulnerabilit{'y' if count == 1 else 'ies'}",
                    points=count * penalty,
                    category="vulnerability",
                ))
        return deductions

    def _metric_deductions(self, metrics: SecurityMetrics) -> list[Deduction]:
        deductions = []
        if metrics.has_suspicious_scripts:
            names = ", ".join(s.name for s in metrics.suspicious_scripts)
            deductions.append(Deduction(
                reason=f"Suspicious install scripts: {names}" if names else "Suspicious install scripts",
                points=self.METRIC_PENALTIES["suspicious_scripts"],
                category="scripts",
            ))
        if metrics.has_exec_scripts:
            deductions.append(Deduction(
                reason="Scripts execute remote packages (npx / npm exec / yarn exec)",
                points=self.METRIC_PENALTIES["exec_scripts"],
                category="scripts",
            ))
        if metrics.dependency_count.total > self.MAX_DEPENDENCIES:
            deductions.append(Deduction(
                reason=f"High dependency count ({metrics.dependency_count.total})",
                points=self.METRIC_PENALTIES["dependency_count"],
                category="dependencies",
            ))
        if metrics.last_update_age is not None and metrics.last_update_age > self.STALE_AFTER_DAYS:
            deductions.append(Deduction(
                reason=f"Not updated in {metrics.last_update_age} days",
                points=self.METRIC_PENALTIES["stale"],
                category="maintenance",
            ))
        if not metrics.has_lock_file:
            deductions.append(Deduction(
                reason="No lock file",
                points=self.METRIC_PENALTIES["no_lock_file"],
                category="maintenance",
            ))
        return deductions

    def _pattern_deductions(self, file_findings: Sequence[FileFinding]) -> list[Deduction]:
        categories = sorted({p.category for f in file_findings for p in f.patterns})
        if not categories:
            return []
        points = min(self.PATTERN_PENALTY_CAP, self.PATTERN_CATEGORY_PENALTY * len(categories))
        return [Deduction(
            reason=f"Suspicious code patterns: {', '.join(categories)}",
            points=points,
            category="patterns",
        )]

    def _file_deductions(self, file_findings: Sequence[FileFinding]) -> list[Deduction]:
        deductions = []
        for finding in sorted(file_findings, key=lambda f: f.path):
            if finding.suspicious_filename:
                deductions.append(Deduction(
                    reason=f"Suspicious filename: {finding.path}",
                    points=self.FILE_PENALTIES["suspicious_filename"],
                    category="files",
                ))
            if finding.is_obfuscated:
                deductions.append(Deduction(
                    reason=f"Obfuscated code in {finding.path}",
                    points=self.FILE_PENALTIES["obfuscated"],
                    category="files",
                ))
            if finding.dangerous_permissions:
                deductions.append(Deduction(
                    reason=f"Dangerous file permission operation in {finding.path}",
                    points=self.FILE_PENALTIES["dangerous_permissions"],
                    category="files",
                ))
            for issue in sorted(set(finding.network_issues)):
                deductions.append(Deduction(
                    reason=f"{issue} ({finding.path})",
                    points=self.FILE_PENALTIES["network_issue"],
                    category="network",
                ))
        return deductions

    def _dependency_deductions(self, dependencies: Sequence[DependencyRiskEntry]) -> list[Deduction]:
        deductions = []
        total = 0
        for dep in sorted(dependencies, key=lambda d: (d.name, d.version)):
            if dep.score is None or dep.score >= self.vulnerable_threshold:
                continue
            if total >= self.RISKY_DEPENDENCY_CAP:
                break
            points = min(self.RISKY_DEPENDENCY_PENALTY, self.RISKY_DEPENDENCY_CAP - total)
            total += points
            deductions.append(Deduction(
                reason=f"Risky dependency {dep.name}@{dep.version} (score {dep.score})",
                points=points,
                category="dependencies",
            ))
        return deductions


def grade(score: float) -> str:
    """Convert numeric score to letter grade."""
    if score >= 90:
        return "A"
    elif score >= 80:
        return "B"
    elif score >= 70:
        return "C"
    elif score >= 60:
        return "D"
    else:
        return "F"


def risk_level(score: float) -> str:
    """Coarse risk label for display."""
    if score >= 80:
        return "low"
    elif score >= 50:
        return "medium"
    elif score >= 20:
        return "high"
    else:
        return "critical"
