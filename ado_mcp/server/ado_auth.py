"""Azure DevOps personal access token handling."""

from __future__ import annotations

from dataclasses import dataclass

from ado_mcp.shared.settings import AdoSettings, clean_value, redact_token


@dataclass(frozen=True)
class AdoAuth:
    pat: str | None

    def basic_auth(self) -> tuple[str, str] | None:
        """Credential tuple passed as ``auth=`` to requests."""
        # Azure DevOps accepts a PAT as the password of an empty-username basic credential.
        if not self.pat:
            return None
        return ("", self.pat)

    def redacted(self) -> dict[str, str]:
        return {"pat": redact_token(self.pat)}


def load_ado_auth(settings: AdoSettings) -> AdoAuth:
    return AdoAuth(pat=clean_value(settings.pat))
