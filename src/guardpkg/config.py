"""Runtime settings and the install-block policy."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from guardpkg.errors import InvalidConfiguration

# npm exposes `"config": {"guardpkg": {...}}` from package.json under this name
POLICY_ENV_VAR = "npm_package_config_guardpkg"

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "guardpkg" / "config.json"


class Settings(BaseSettings):
    """Analyzer settings, overridable with GUARDPKG_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="GUARDPKG_", extra="ignore")

    registry_url: str = Field(default="https://registry.npmjs.org")
    downloads_url: str = Field(default="https://api.npmjs.org")
    osv_url: str = Field(default="https://api.osv.dev/v1")
    github_url: str = Field(default="https://api.github.com")
    # Falls back to GITHUB_TOKEN when unset
    github_token: str | None = None

    request_timeout: float = Field(default=30.0, gt=0)
    tarball_timeout: float = Field(default=120.0, gt=0)

    max_depth: int = Field(default=3, ge=0)
    max_dependency_nodes: int = Field(default=200, ge=1)
    dependency_concurrency: int = Field(default=8, ge=1)
    deep_dependency_scan: bool = True
    vulnerable_threshold: int = Field(default=50, ge=0, le=100)

    file_extensions: tuple[str, ...] = (".js", ".json", ".ts", ".jsx", ".tsx", ".mjs", ".cjs")
    max_file_bytes: int = Field(default=5_000_000, gt=0)

    # JSON file with a list of known-malicious SHA-256 hashes
    malware_hashes: Path | None = None

    config_path: Path = DEFAULT_CONFIG_PATH

    @property
    def assessment_timeout(self) -> float:
        """Budget for scoring one dependency: advisory queries plus a tarball download."""
        return self.request_timeout + self.tarball_timeout


class InstallPolicy(BaseModel):
    """Decides whether an install should be blocked for a given score."""

    score_threshold: int = Field(default=50, ge=0, le=100, alias="scoreThreshold")
    block_install: bool = Field(default=True, alias="blockInstall")
    auto_check: bool = Field(default=True, alias="autoCheck")

    model_config = {"populate_by_name": True}

    @field_validator("block_install", "auto_check", mode="before")
    @classmethod
    def parse_bool(cls, v: Any) -> Any:
        # npm config values arrive as strings
        if isinstance(v, str):
            lowered = v.strip().lower()
            if lowered in ("true", "false"):
                return lowered == "true"
            raise ValueError(f"expected 'true' or 'false', got {v!r}")
        return v


def parse_install_policy(raw: str | None) -> InstallPolicy:
    """Parse a JSON-encoded install policy.

    Args:
        raw: JSON object text, or None/empty for the defaults.

    Returns:
        Validated InstallPolicy.

    Raises:
        InvalidConfiguration: If the text is not a JSON object or a field is invalid.
    """
    if raw is None or not raw.strip():
        return InstallPolicy()

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidConfiguration(f"Invalid configuration JSON: {e}") from e

    if not isinstance(data, dict):
        raise InvalidConfiguration("Invalid configuration: expected a JSON object")

    try:
        return InstallPolicy.model_validate(data)
    except ValidationError as e:
        raise InvalidConfiguration(f"Invalid configuration: {e}") from e


def load_install_policy(
    env: dict[str, str] | None = None,
    config_path: Path | None = None,
) -> InstallPolicy:
    """Load the install policy from the environment, falling back to the user config file."""
    env = os.environ if env is None else env
    raw = env.get(POLICY_ENV_VAR)
    if raw:
        return parse_install_policy(raw)

    path = config_path or DEFAULT_CONFIG_PATH
    if path.exists():
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise InvalidConfiguration(f"Cannot read configuration file {path}: {e}") from e
        return parse_install_policy(text)

    return InstallPolicy()


def save_install_policy(policy: InstallPolicy, config_path: Path | None = None) -> Path:
    """Persist the install policy as JSON and return the path written."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(policy.model_dump(by_alias=True), indent=2), encoding="utf-8")
    return path


def should_block_install(score: int, policy: InstallPolicy) -> bool:
    """Return True if an install with this score must be blocked."""
    return policy.block_install and score < policy.score_threshold
