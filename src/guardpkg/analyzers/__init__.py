"""Analyzers for fetching, inspecting and scoring packages."""

from guardpkg.analyzers.dependencies import DependencyRiskWalker
from guardpkg.analyzers.inspector import FileInspector
from guardpkg.analyzers.malware import MalwareHashRegistry
from guardpkg.analyzers.patterns import PatternCatalog
from guardpkg.analyzers.pipeline import AnalysisPipeline
from guardpkg.analyzers.scorer import ScoreEngine
from guardpkg.analyzers.vulnerabilities import VulnerabilityAggregator

__all__ = [
    "AnalysisPipeline",
    "DependencyRiskWalker",
    "FileInspector",
    "MalwareHashRegistry",
    "PatternCatalog",
    "ScoreEngine",
    "VulnerabilityAggregator",
]
