"""Data models and schemas."""

from guardpkg.models.schemas import (
    AnalysisReport,
    DependencyRiskEntry,
    FileFinding,
    PackageMetadata,
    PackageRef,
    RiskScore,
    SecurityMetrics,
    VulnerabilityReport,
)

__all__ = [
    "AnalysisReport",
    "DependencyRiskEntry",
    "FileFinding",
    "PackageMetadata",
    "PackageRef",
    "RiskScore",
    "SecurityMetrics",
    "VulnerabilityReport",
]
