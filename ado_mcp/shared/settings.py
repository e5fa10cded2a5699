"""Runtime settings for the Azure DevOps MCP server."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path

from dotenv import load_dotenv


DEFAULT_API_VERSION = "7.1"
DEFAULT_FANOUT_CONCURRENCY = 8
MAX_FANOUT_CONCURRENCY = 32


class ConfigError(ValueError):
    """Raised when required settings are missing or malformed."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Configuration errors:\n" + "\n".join(errors))
        self.errors = list(errors)


@dataclass(frozen=True)
class AdoSettings:
    """Organization, project and credential settings for one server process."""

    organization: str
    project: str
    pat: str
    log_level: str = "info"
    api_version: str = DEFAULT_API_VERSION
    request_timeout_s: float = 30.0
    fanout_concurrency: int = DEFAULT_FANOUT_CONCURRENCY
    temp_root: Path | None = None

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "AdoSettings":
        source = os.environ if env is None else env
        organization = clean_value(source.get("ADO_ORGANIZATION"))
        project = clean_value(source.get("ADO_PROJECT"))
        pat = clean_value(source.get("ADO_PAT"))

        errors: list[str] = []
        if not organization:
            errors.append("ADO_ORGANIZATION is required")
        if not project:
            errors.append("ADO_PROJECT is required")
        if not pat:
            errors.append("ADO_PAT is required")

        timeout = _parse_float(source.get("ADO_REQUEST_TIMEOUT_S"), 30.0, "ADO_REQUEST_TIMEOUT_S", errors)
        concurrency = _parse_int(
            source.get("ADO_FANOUT_CONCURRENCY"),
            DEFAULT_FANOUT_CONCURRENCY,
            "ADO_FANOUT_CONCURRENCY",
            errors,
        )
        if errors:
            raise ConfigError(errors)

        temp_root = clean_value(source.get("ADO_MCP_TEMP_ROOT"))
        return cls(
            organization=normalize_organization_url(organization or ""),
            project=project or "",
            pat=pat or "",
            log_level=(clean_value(source.get("LOG_LEVEL")) or "info").lower(),
            api_version=clean_value(source.get("ADO_API_VERSION")) or DEFAULT_API_VERSION,
            request_timeout_s=timeout,
            fanout_concurrency=max(1, min(concurrency, MAX_FANOUT_CONCURRENCY)),
            temp_root=Path(temp_root) if temp_root else None,
        )

    def resolved_temp_root(self) -> Path:
        return self.temp_root or Path(tempfile.gettempdir())

    def redacted(self) -> dict[str, object]:
        payload = asdict(self)
        payload["pat"] = redact_token(self.pat)
        payload["temp_root"] = str(self.resolved_temp_root())
        return payload

    def to_json(self) -> str:
        return json.dumps(self.redacted(), indent=2, sort_keys=True)


def normalize_organization_url(organization: str) -> str:
    """Accept either an organization name or its full dev.azure.com URL."""

    value = organization.strip().rstrip("/")
    if not value.startswith("https://"):
        value = f"https://dev.azure.com/{value}"
    return value


def load_settings(env_file: str | Path | None = ".env") -> AdoSettings:
    """Load a .env file (real environment wins) and build settings from it."""

    if env_file is not None and Path(env_file).is_file():
        load_dotenv(env_file, override=False)
    return AdoSettings.from_env()


def clean_value(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _parse_int(raw: str | None, default: int, name: str, errors: list[str]) -> int:
    value = clean_value(raw)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        errors.append(f"{name} must be an integer (got {value!r})")
        return default


def _parse_float(raw: str | None, default: float, name: str, errors: list[str]) -> float:
    value = clean_value(raw)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        errors.append(f"{name} must be a number (got {value!r})")
        return default
    if parsed <= 0:
        errors.append(f"{name} must be positive")
        return default
    return parsed


def redact_token(token: str | None) -> str:
    if not token:
        return "unset"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
