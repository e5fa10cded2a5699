"""Result envelope and failure classification shared by every operation.

Every public client operation returns a :class:`Result`. Raw failures coming
back from Azure DevOps are mapped onto a closed taxonomy (permission,
not-found, generic API error) in a single pass; nothing here retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

import requests

from ado_mcp.server.ado_connector_api import AdoApiError


logger = logging.getLogger(__name__)

T = TypeVar("T")

PERMISSION_STATUSES = {401, 403}
NOT_FOUND_STATUS = 404
_ACCESS_DENIED_MARKERS = ("tf401019", "access denied", "unauthorized")


class ErrorKind(str, Enum):
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    API_ERROR = "api_error"


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    message: str
    required_capability: str | None = None
    remediation_hint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.required_capability:
            payload["requiredCapability"] = self.required_capability
        if self.remediation_hint:
            payload["remediationHint"] = self.remediation_hint
        return payload


class ClassifiedFailure(Exception):
    """Carries an already-classified error out of a nested operation step."""

    def __init__(self, error: ClassifiedError) -> None:
        super().__init__(error.message)
        self.error = error


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success/failure envelope; exactly one of ``value``/``error`` is set."""

    value: T | None = None
    error: ClassifiedError | None = None
    warnings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if (self.error is None) == (self.value is None):
            raise ValueError("Result requires exactly one of value or error")

    @classmethod
    def success(cls, value: T, warnings: tuple[str, ...] | list[str] = ()) -> "Result[T]":
        if value is None:
            raise ValueError("Result.success requires a value")
        return cls(value=value, warnings=tuple(warnings))

    @classmethod
    def failure(cls, error: ClassifiedError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise ClassifiedFailure(self.error)
        return self.value  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"ok": False, "error": self.error.to_dict()}
        payload: dict[str, Any] = {"ok": True, "value": self.value}
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload


def permission_error(operation: str, required_capability: str) -> ClassifiedError:
    return ClassifiedError(
        kind=ErrorKind.PERMISSION,
        message=f"Access denied. You need '{required_capability}' permission to {operation}.",
        required_capability=required_capability,
        remediation_hint=(
            f"Ask your Azure DevOps administrator to grant '{required_capability}' "
            "to your personal access token at the organization or project level."
        ),
    )


def not_found_error(resource: str, identifier: str | int) -> ClassifiedError:
    return ClassifiedError(kind=ErrorKind.NOT_FOUND, message=f"{resource} '{identifier}' not found")


def api_error(message: str, status: int | None = None) -> ClassifiedError:
    text = f"{message} (HTTP {status})" if status is not None else message
    return ClassifiedError(kind=ErrorKind.API_ERROR, message=text)


def status_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify(
    exc: BaseException,
    operation: str,
    capability_hint: str | None = None,
    resource: tuple[str, str | int] | None = None,
) -> ClassifiedError:
    """Map a raw failure onto the closed error taxonomy."""

    if isinstance(exc, ClassifiedFailure):
        return exc.error

    status = status_of(exc)
    message = str(exc) or exc.__class__.__name__

    if status in PERMISSION_STATUSES or (
        status is None and any(marker in message.lower() for marker in _ACCESS_DENIED_MARKERS)
    ):
        return permission_error(operation, capability_hint or "appropriate")

    if status == NOT_FOUND_STATUS:
        if resource is not None:
            return not_found_error(resource[0], resource[1])
        return ClassifiedError(
            kind=ErrorKind.NOT_FOUND,
            message=f"Resource requested by {operation} not found",
        )

    return api_error(message, status)


def run_operation(
    operation: str,
    fn: Callable[[], T],
    capability_hint: str | None = None,
    resource: tuple[str, str | int] | None = None,
) -> Result[T]:
    """Execute one logical operation and wrap its outcome in a :class:`Result`."""

    try:
        value = fn()
    except ClassifiedFailure as exc:
        return Result.failure(exc.error)
    except (AdoApiError, requests.RequestException, OSError, ValueError) as exc:
        error = classify(exc, operation, capability_hint=capability_hint, resource=resource)
        logger.debug("%s failed: %s (%s)", operation, error.message, error.kind.value)
        return Result.failure(error)
    if isinstance(value, Result):
        return value
    return Result.success(value)
