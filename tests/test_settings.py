from pathlib import Path

import pytest

from ado_mcp.server.ado_auth import AdoAuth, load_ado_auth
from ado_mcp.shared.settings import (
    MAX_FANOUT_CONCURRENCY,
    AdoSettings,
    ConfigError,
    load_settings,
    normalize_organization_url,
)


BASE_ENV = {
    "ADO_ORGANIZATION": "https://dev.azure.com/contoso/",
    "ADO_PROJECT": "Fabrikam Fiber",
    "ADO_PAT": "abcd1234efgh5678",
}


def test_from_env_reports_every_missing_variable_at_once() -> None:
    with pytest.raises(ConfigError) as exc_info:
        AdoSettings.from_env({})

    assert exc_info.value.errors == [
        "ADO_ORGANIZATION is required",
        "ADO_PROJECT is required",
        "ADO_PAT is required",
    ]
    assert "ADO_PAT is required" in str(exc_info.value)


def test_from_env_normalizes_organization_and_applies_defaults() -> None:
    settings = AdoSettings.from_env(BASE_ENV)

    assert settings.organization == "https://dev.azure.com/contoso"
    assert settings.project == "Fabrikam Fiber"
    assert settings.api_version == "7.1"
    assert settings.log_level == "info"
    assert settings.fanout_concurrency == 8
    assert settings.request_timeout_s == 30.0
    assert settings.temp_root is None


def test_bare_organization_name_becomes_service_url() -> None:
    assert normalize_organization_url("contoso") == "https://dev.azure.com/contoso"
    assert normalize_organization_url(" https://dev.azure.com/contoso// ") == "https://dev.azure.com/contoso"


def test_from_env_clamps_concurrency_and_collects_parse_errors(tmp_path: Path) -> None:
    settings = AdoSettings.from_env(
        {**BASE_ENV, "ADO_FANOUT_CONCURRENCY": "500", "ADO_MCP_TEMP_ROOT": str(tmp_path)}
    )
    assert settings.fanout_concurrency == MAX_FANOUT_CONCURRENCY
    assert settings.resolved_temp_root() == tmp_path

    with pytest.raises(ConfigError) as exc_info:
        AdoSettings.from_env(
            {**BASE_ENV, "ADO_FANOUT_CONCURRENCY": "many", "ADO_REQUEST_TIMEOUT_S": "-1"}
        )
    assert len(exc_info.value.errors) == 2


def test_redacted_settings_never_expose_the_pat() -> None:
    settings = AdoSettings.from_env(BASE_ENV)

    payload = settings.redacted()
    assert payload["pat"] == "abcd...5678"
    assert "abcd1234efgh5678" not in settings.to_json()


def test_load_settings_reads_dotenv_without_overriding_environment(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "ADO_ORGANIZATION=contoso\nADO_PROJECT=FromFile\nADO_PAT=file-token-123\n",
        encoding="utf-8",
    )
    for name in ("ADO_ORGANIZATION", "ADO_PAT"):
        # setenv first so the values dotenv writes are undone after the test
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)
    monkeypatch.setenv("ADO_PROJECT", "FromEnvironment")

    settings = load_settings(env_file)

    assert settings.organization == "https://dev.azure.com/contoso"
    assert settings.project == "FromEnvironment"
    assert settings.pat == "file-token-123"


def test_auth_uses_empty_username_basic_credential() -> None:
    auth = load_ado_auth(AdoSettings.from_env(BASE_ENV))

    assert auth.basic_auth() == ("", "abcd1234efgh5678")
    assert auth.redacted() == {"pat": "abcd...5678"}
    assert AdoAuth(pat=None).basic_auth() is None
