"""End-to-end analysis pipeline for npm packages."""

import asyncio
import json
import logging
from pathlib import Path

import httpx

from guardpkg.adapters.base import BaseAdapter
from guardpkg.adapters.github import GitHubFetcher
from guardpkg.adapters.npm import NpmAdapter
from guardpkg.analyzers.dependencies import DependencyRiskWalker
from guardpkg.analyzers.inspector import FileInspector
from guardpkg.analyzers.malware import MalwareHashRegistry
from guardpkg.analyzers.metrics import build_security_metrics
from guardpkg.analyzers.scorer import ScoreEngine, grade, risk_level
from guardpkg.analyzers.tarball import TarballFetcher
from guardpkg.analyzers.vulnerabilities import (
    NpmAuditSource,
    OSVSource,
    VulnerabilityAggregator,
)
from guardpkg.config import Settings
from guardpkg.errors import (
    AnalysisError,
    ExtractionFailure,
    InvalidConfiguration,
    InvalidScanResult,
    NetworkError,
)
from guardpkg.models.schemas import (
    AnalysisReport,
    FileFinding,
    PackageMetadata,
    RiskScore,
)

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """Orchestrates the full analysis of a package version.

    Pipeline stages:
    1. Fetch and validate root metadata
    2. Concurrently: advisories, downloads, publisher, security policy,
       dependency walk, tarball inspection
    3. Derive security metrics
    4. Calculate the score and assemble the report

    Use as an async context manager to share one HTTP client across all
    stages. Without it, each request opens its own client.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: MalwareHashRegistry | None = None,
        adapter: BaseAdapter | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Analyzer settings. Defaults to environment-derived settings.
            registry: Known-malware hash registry. Defaults to the file named by
                settings.malware_hashes, or an empty registry.
            adapter: Registry adapter. Defaults to NpmAdapter.
            client: Shared httpx client. Created in __aenter__ if not provided.
        """
        self.settings = settings or Settings()
        if registry is None:
            registry = self._load_registry(self.settings.malware_hashes)
        self.registry = registry
        self._adapter_override = adapter
        self._http_client = client
        self._owns_client = False
        self._configure(client)

    @staticmethod
    def _load_registry(path: Path | None) -> MalwareHashRegistry:
        if path is None:
            return MalwareHashRegistry()
        try:
            return MalwareHashRegistry.load(path)
        except (ValueError, OSError) as e:
            raise InvalidConfiguration(f"Cannot load malware hashes from {path}: {e}") from e

    def _configure(self, client: httpx.AsyncClient | None) -> None:
        """(Re)build the stage components around an HTTP client."""
        s = self.settings
        self.adapter = self._adapter_override or NpmAdapter(
            client=client,
            registry_url=s.registry_url,
            downloads_url=s.downloads_url,
            timeout=s.request_timeout,
        )
        self.tarballs = TarballFetcher(client=client, timeout=s.tarball_timeout)
        self.github = GitHubFetcher(
            token=s.github_token,
            client=client,
            base_url=s.github_url,
            timeout=s.request_timeout,
        )
        self.vulnerabilities = VulnerabilityAggregator(
            [
                NpmAuditSource(client=client, registry_url=s.registry_url, timeout=s.request_timeout),
                OSVSource(client=client, base_url=s.osv_url, timeout=s.request_timeout),
            ],
            timeout=s.request_timeout,
        )
        self.inspector = FileInspector(
            self.registry,
            extensions=s.file_extensions,
            max_file_bytes=s.max_file_bytes,
        )
        self.scorer = ScoreEngine(vulnerable_threshold=s.vulnerable_threshold)
        self.walker = DependencyRiskWalker(
            self.adapter,
            self.assess_dependency,
            max_depth=s.max_depth,
            max_nodes=s.max_dependency_nodes,
            concurrency=s.dependency_concurrency,
            timeout=s.request_timeout,
            assess_timeout=s.assessment_timeout,
        )

    async def __aenter__(self) -> "AnalysisPipeline":
        """Set up shared HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.settings.request_timeout,
                follow_redirects=True,
            )
            self._owns_client = True
            self._configure(self._http_client)
        return self

    async def __aexit__(self, *args) -> None:
        """Clean up HTTP client."""
        if self._owns_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_client = False
            self._configure(None)

    async def analyze_package(self, name: str, version: str = "latest") -> AnalysisReport:
        """Run full analysis on a single package version.

        Args:
            name: Package name.
            version: Exact version, dist-tag, or range.

        Returns:
            Complete AnalysisReport.

        Raises:
            NetworkError: If the root package metadata cannot be fetched.
            AnalysisError: For any other failure, with the cause chained.
        """
        logger.info(f"Analyzing {name}@{version}")
        try:
            metadata = await self.adapter.fetch(name, version)
            self._validate(metadata)
            return await self._analyze(metadata)
        except (NetworkError, AnalysisError):
            raise
        except Exception as e:
            raise AnalysisError(e) from e

    def _validate(self, metadata: PackageMetadata) -> None:
        if not metadata.name or not metadata.version:
            raise InvalidScanResult("Registry metadata is missing name or version")

    async def _analyze(self, metadata: PackageMetadata) -> AnalysisReport:
        warnings: list[str] = []
        publisher_name = metadata.maintainers[0] if metadata.maintainers else None

        vulnerabilities, downloads, publisher, security_policy, dependencies, deep = await asyncio.gather(
            self.vulnerabilities.collect(metadata.name, metadata.version),
            self.adapter.get_download_count(metadata.name),
            self.adapter.get_publisher_info(publisher_name),
            self.github.has_security_policy(metadata.repository_url),
            self.walker.walk(metadata),
            self._deep_analysis(metadata, warnings),
        )

        for source in vulnerabilities.failed_sources:
            warnings.append(f"Vulnerability source '{source}' unavailable")

        file_findings, extracted_files = deep if deep is not None else ([], None)
        for finding in file_findings:
            if finding.error:
                warnings.append(finding.error)

        metrics = build_security_metrics(
            metadata,
            extracted_files,
            publisher,
            dependencies=dependencies,
            has_security_policy=security_policy,
        )
        risk = self.scorer.score(metadata, metrics, vulnerabilities, file_findings, dependencies)
        logger.info(f"{metadata.ref} scored {risk.score}")

        return AnalysisReport(
            package=metadata.ref,
            metadata=metadata,
            score=risk.score,
            grade=grade(risk.score),
            risk_level=risk_level(risk.score),
            deductions=risk.deductions,
            risks=[d.reason for d in risk.deductions],
            vulnerabilities=vulnerabilities,
            metrics=metrics,
            suspicious_patterns=[p for f in file_findings for p in f.patterns],
            file_findings=file_findings,
            dependencies=dependencies,
            malware_detected=risk.malware_detected,
            downloads=downloads,
            publisher=publisher,
            deep_analysis=deep is not None,
            warnings=warnings,
        )

    async def _deep_analysis(
        self,
        metadata: PackageMetadata,
        warnings: list[str],
    ) -> tuple[list[FileFinding], list[str]] | None:
        """Download, extract and inspect the tarball.

        Returns:
            (findings, extracted file paths), or None when the tarball could
            not be retrieved and only metadata can be scored.
        """
        try:
            async with self.tarballs.fetch(metadata.name, metadata.tarball_url) as root:
                return await asyncio.to_thread(self._scan_tree, root)
        except ExtractionFailure as e:
            logger.warning(f"Deep analysis unavailable for {metadata.ref}: {e}")
            warnings.append(f"Deep analysis skipped: {e}")
            return None

    def _scan_tree(self, root: Path) -> tuple[list[FileFinding], list[str]]:
        names = sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())
        findings = self.inspector.inspect(self.inspector.collect_files(root), root=root)
        logger.debug(f"Inspected {len(findings)} of {len(names)} files under {root}")
        return findings, names

    async def assess_dependency(self, metadata: PackageMetadata) -> RiskScore:
        """Score a single dependency without walking its own dependencies.

        Runs the root package stages: advisories, tarball download and
        inspection, metrics and scoring. Deep analysis can be disabled with
        settings.deep_dependency_scan.

        Args:
            metadata: Resolved dependency metadata.

        Returns:
            RiskScore for the dependency.
        """
        vulnerabilities = await self.vulnerabilities.collect(metadata.name, metadata.version)

        file_findings: list[FileFinding] = []
        extracted_files = None
        if self.settings.deep_dependency_scan:
            deep = await self._deep_analysis(metadata, [])
            if deep is not None:
                file_findings, extracted_files = deep

        metrics = build_security_metrics(metadata, extracted_files)
        return self.scorer.score(metadata, metrics, vulnerabilities, file_findings)

    @staticmethod
    def save_report(report: AnalysisReport, path: Path) -> Path:
        """Write a report to disk as JSON.

        Args:
            report: Report to save.
            path: Destination file.

        Returns:
            Path to the saved file.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        data = report.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, default=str))
        return path
