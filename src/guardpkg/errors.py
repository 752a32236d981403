"""Exception taxonomy for package analysis.

Every failure is classified where it is raised. Callers branch on the
exception type, never on message text.
"""


class GuardPkgError(Exception):
    """Base class for all guardpkg errors."""


class NetworkError(GuardPkgError):
    """Raised when an external source cannot be reached or times out."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Network error reaching {url}: {reason}")


class MetadataNotFound(GuardPkgError):
    """Raised when a package or version does not exist in the registry."""

    def __init__(self, name: str, version: str | None = None) -> None:
        self.name = name
        self.version = version
        if version:
            message = f"Version '{version}' of package '{name}' not found"
        else:
            message = f"Package '{name}' not found"
        super().__init__(message)


class InvalidScanResult(GuardPkgError):
    """Raised when a registry or advisory payload does not have the expected shape."""


class InvalidConfiguration(GuardPkgError):
    """Raised when environment or user configuration is malformed."""


class ExtractionFailure(GuardPkgError):
    """Raised when a package tarball cannot be downloaded or unpacked."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Failed to extract {name}: {reason}")


class AnalysisError(GuardPkgError):
    """Raised by the pipeline when analysis of the root package fails.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Failed to analyze package: {cause}")
