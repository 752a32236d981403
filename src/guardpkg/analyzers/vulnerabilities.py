"""Vulnerability advisory sources and the cross-source aggregator."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Sequence

import httpx

from guardpkg.errors import InvalidScanResult, NetworkError
from guardpkg.models.schemas import Severity, Vulnerability, VulnerabilityReport

logger = logging.getLogger(__name__)

BUCKETS = ("critical", "high", "moderate", "low")

_SEVERITY_NAMES = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "moderate": Severity.MODERATE,
    "medium": Severity.MODERATE,
    "low": Severity.LOW,
    "info": Severity.LOW,
}


def parse_severity(raw: object) -> Severity:
    """Map a source severity label onto a bucket. Unknown labels count as moderate."""
    if isinstance(raw, str):
        return _SEVERITY_NAMES.get(raw.strip().lower(), Severity.MODERATE)
    return Severity.MODERATE


def bucket_for(severity: Severity) -> str:
    return severity.value


class AdvisorySource(ABC):
    """A vulnerability database queried per package version."""

    name: str = ""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0) -> None:
        self._client = client
        self.timeout = timeout

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.timeout)

    async def _post_json(self, url: str, body: dict) -> dict:
        client = await self._get_client()
        try:
            response = await client.post(url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise NetworkError(url, f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise NetworkError(url, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise NetworkError(url, f"invalid JSON response: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        return data if isinstance(data, dict) else {}

    @abstractmethod
    async def query(self, name: str, version: str) -> VulnerabilityReport:
        """Return the advisories affecting a package version.

        Raises:
            NetworkError: If the source cannot be reached.
            InvalidScanResult: If the response cannot be parsed.
        """
        ...

    def _parse_checked(self, parse, data: dict, *args) -> VulnerabilityReport:
        """Run a parser, classifying malformed payloads as InvalidScanResult."""
        try:
            return parse(data, *args)
        except (TypeError, AttributeError, KeyError, ValueError) as e:
            raise InvalidScanResult(f"Malformed response from {self.name}: {e}") from e


class NpmAuditSource(AdvisorySource):
    """npm registry bulk audit endpoint.

    The response carries ``metadata.vulnerabilities.{bucket}`` either as a
    list of advisories or as a bare count, and optionally an ``advisories``
    map with full records.
    """

    name = "npm-audit"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        registry_url: str = "https://registry.npmjs.org",
        timeout: float = 30.0,
    ) -> None:
        super().__init__(client, timeout)
        self.registry_url = registry_url.rstrip("/")

    async def query(self, name: str, version: str) -> VulnerabilityReport:
        url = f"{self.registry_url}/-/npm/v1/security/audits"
        body = {
            "name": name,
            "version": version,
            "requires": {name: version},
            "dependencies": {name: {"version": version}},
        }
        data = await self._post_json(url, body)
        return self._parse_checked(self.parse, data, name, version)

    def parse(self, data: dict, name: str, version: str) -> VulnerabilityReport:
        """Convert an audit response into a bucketed report."""
        report = VulnerabilityReport(sources=[self.name])

        advisories = data.get("advisories") or {}
        if isinstance(advisories, dict):
            for key, advisory in advisories.items():
                if isinstance(advisory, dict):
                    vuln = self._parse_advisory(advisory, str(key))
                    getattr(report, bucket_for(vuln.severity)).append(vuln)

        counts = (data.get("metadata") or {}).get("vulnerabilities") or {}
        for bucket in BUCKETS:
            value = counts.get(bucket)
            target = getattr(report, bucket)
            if isinstance(value, list):
                for i, advisory in enumerate(value):
                    if isinstance(advisory, dict):
                        vuln = self._parse_advisory(advisory, f"{name}@{version}:{bucket}:{i}")
                        vuln.severity = Severity(bucket)
                        target.append(vuln)
            elif isinstance(value, int) and value > len(target):
                # Count only: record placeholders for what the advisories map lacks
                for i in range(len(target), value):
                    target.append(Vulnerability(
                        id=f"npm-audit:{name}@{version}:{bucket}:{i}",
                        title=f"{bucket.capitalize()} severity advisory reported by npm audit",
                        severity=Severity(bucket),
                        source=self.name,
                    ))

        return report

    def _parse_advisory(self, advisory: dict, fallback_id: str) -> Vulnerability:
        cves = advisory.get("cves") or []
        aliases = [c for c in cves if isinstance(c, str)]
        ghsa = advisory.get("github_advisory_id")
        if isinstance(ghsa, str):
            aliases.append(ghsa)

        return Vulnerability(
            id=str(advisory.get("id") or advisory.get("source") or fallback_id),
            title=advisory.get("title") or "",
            severity=parse_severity(advisory.get("severity")),
            source=self.name,
            aliases=aliases,
            url=advisory.get("url"),
        )


class OSVSource(AdvisorySource):
    """Fetches vulnerability data from OSV (Open Source Vulnerabilities) database.

    OSV is a distributed vulnerability database for open source:
    https://osv.dev/

    No authentication required.
    """

    name = "osv"
    BASE_URL = "https://api.osv.dev/v1"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(client, timeout)
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    async def query(self, name: str, version: str) -> VulnerabilityReport:
        body = {
            "package": {"name": name, "ecosystem": "npm"},
            "version": version,
        }
        data = await self._post_json(f"{self.base_url}/query", body)
        return self._parse_checked(self.parse, data)

    def parse(self, data: dict) -> VulnerabilityReport:
        """Convert an OSV query response into a bucketed report."""
        report = VulnerabilityReport(sources=[self.name])
        for vuln in data.get("vulns", []) or []:
            if not isinstance(vuln, dict) or not vuln.get("id"):
                continue
            parsed = Vulnerability(
                id=vuln["id"],
                title=vuln.get("summary") or (vuln.get("details") or "")[:200],
                severity=self._parse_severity(vuln),
                source=self.name,
                aliases=[a for a in vuln.get("aliases") or [] if isinstance(a, str)],
                url=self._first_reference(vuln) or f"https://osv.dev/vulnerability/{vuln['id']}",
            )
            getattr(report, bucket_for(parsed.severity)).append(parsed)
        return report

    def _parse_severity(self, vuln: dict) -> Severity:
        """Extract the severity bucket from an OSV record.

        Prefers an explicit label (ecosystem_specific, then
        database_specific), then a numeric CVSS score.
        """
        for affected in vuln.get("affected", []):
            eco_specific = affected.get("ecosystem_specific") or {}
            if "severity" in eco_specific:
                return parse_severity(eco_specific["severity"])

        db_specific = vuln.get("database_specific") or {}
        if "severity" in db_specific:
            return parse_severity(db_specific["severity"])

        cvss_score = None
        cvss_data = db_specific.get("cvss")
        if isinstance(cvss_data, dict):
            cvss_score = cvss_data.get("score")
        elif isinstance(cvss_data, (int, float)):
            cvss_score = float(cvss_data)

        for sev in vuln.get("severity", []):
            score = sev.get("score")
            if isinstance(score, (int, float)):
                cvss_score = float(score)

        if isinstance(cvss_score, (int, float)):
            if cvss_score >= 9.0:
                return Severity.CRITICAL
            elif cvss_score >= 7.0:
                return Severity.HIGH
            elif cvss_score >= 4.0:
                return Severity.MODERATE
            return Severity.LOW

        return Severity.MODERATE

    def _first_reference(self, vuln: dict) -> str | None:
        for ref in vuln.get("references", []):
            url = ref.get("url")
            if url:
                return url
        return None


class VulnerabilityAggregator:
    """Queries advisory sources and merges their findings."""

    def __init__(self, sources: Sequence[AdvisorySource], timeout: float = 30.0) -> None:
        self.sources = list(sources)
        self.timeout = timeout

    @staticmethod
    def merge(reports: Iterable[VulnerabilityReport]) -> VulnerabilityReport:
        """Merge reports, deduplicating advisories by id and alias.

        A duplicate keeps the most severe bucket it was reported in and the
        union of aliases. Order of first appearance is preserved.
        """
        merged: list[Vulnerability] = []
        index: dict[str, int] = {}
        sources: list[str] = []
        failed: list[str] = []

        for report in reports:
            sources.extend(s for s in report.sources if s not in sources)
            failed.extend(s for s in report.failed_sources if s not in failed)

            for vuln in report.all():
                keys = [vuln.id, *vuln.aliases]
                position = next((index[k] for k in keys if k in index), None)

                if position is None:
                    merged.append(vuln.model_copy(deep=True))
                    position = len(merged) - 1
                else:
                    existing = merged[position]
                    if vuln.severity.rank < existing.severity.rank:
                        existing.severity = vuln.severity
                    for alias in keys:
                        if alias != existing.id and alias not in existing.aliases:
                            existing.aliases.append(alias)

                for key in keys:
                    index[key] = position

        result = VulnerabilityReport(sources=sources, failed_sources=failed)
        for vuln in merged:
            getattr(result, bucket_for(vuln.severity)).append(vuln)
        return result

    async def _query_source(self, source: AdvisorySource, name: str, version: str) -> VulnerabilityReport:
        try:
            return await asyncio.wait_for(source.query(name, version), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Advisory source {source.name} timed out for {name}@{version}")
        except NetworkError as e:
            logger.warning(f"Advisory source {source.name} unavailable: {e}")
        except InvalidScanResult as e:
            logger.warning(f"Advisory source {source.name} returned an unusable response: {e}")
        return VulnerabilityReport(failed_sources=[source.name])

    async def collect(self, name: str, version: str) -> VulnerabilityReport:
        """Query every source concurrently and merge the results.

        Failed sources contribute an empty report and are listed in
        ``failed_sources``.
        """
        if not self.sources:
            return VulnerabilityReport()

        reports = await asyncio.gather(
            *(self._query_source(source, name, version) for source in self.sources)
        )
        return self.merge(reports)
