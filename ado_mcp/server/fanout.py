"""Cross-scope lookups for APIs that have no native cross-scope query.

The same lookup is issued against every scope (agent pool, project queue),
bounded by a small worker pool. Each scope is isolated: a scope that fails,
typically with a permission error on a pool the token cannot see, is
recorded and skipped instead of failing the whole aggregation.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Generic, Hashable, Iterable, Sequence, TypeVar

from ado_mcp.server.errors import ClassifiedError, ErrorKind, Result, run_operation


logger = logging.getLogger(__name__)

S = TypeVar("S")
R = TypeVar("R")

DEFAULT_MAX_WORKERS = 8


@dataclass(frozen=True)
class SkippedScope:
    name: str
    error: ClassifiedError


@dataclass(frozen=True)
class FanOutResult(Generic[R]):
    records: list[R] = field(default_factory=list)
    skipped: list[SkippedScope] = field(default_factory=list)
    scopes_searched: int = 0

    @property
    def skipped_names(self) -> list[str]:
        return [scope.name for scope in self.skipped]

    @property
    def warnings(self) -> list[str]:
        if not self.skipped:
            return []
        return [
            f"Limited results: could not access {len(self.skipped)} scope(s): "
            + ", ".join(self.skipped_names)
        ]


def display_key(name: str) -> str:
    return name.casefold()


def fan_out(
    scopes: Sequence[S],
    lookup: Callable[[S], Iterable[R]],
    *,
    identity: Callable[[R], Hashable],
    scope_name: Callable[[S], str],
    scope_filter: Callable[[S], bool] | None = None,
    record_filter: Callable[[R], bool] | None = None,
    sort_key: Callable[[R], str] | None = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
    operation: str = "search scope",
    capability_hint: str | None = None,
) -> FanOutResult[R]:
    """Run ``lookup`` against every scope and merge the de-duplicated results.

    Results are merged in scope order, not completion order, so the output
    does not depend on how the worker pool happened to schedule lookups.
    """

    selected = [scope for scope in scopes if scope_filter is None or scope_filter(scope)]
    if not selected:
        return FanOutResult()

    def _one(scope: S) -> Result[list[R]]:
        name = scope_name(scope)
        return run_operation(
            f"{operation} '{name}'",
            lambda: list(lookup(scope)),
            capability_hint=capability_hint,
        )

    workers = max(1, min(int(max_workers), len(selected)))
    if workers == 1:
        outcomes = [_one(scope) for scope in selected]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(_one, scope) for scope in selected]
            outcomes = [future.result() for future in futures]

    merged: dict[Hashable, R] = {}
    skipped: list[SkippedScope] = []
    for scope, outcome in zip(selected, outcomes):
        if outcome.error is not None:
            name = scope_name(scope)
            skipped.append(SkippedScope(name=name, error=outcome.error))
            logger.warning(
                "Skipping scope '%s' during %s: %s", name, operation, outcome.error.message
            )
            continue
        for record in outcome.value or []:
            key = identity(record)
            if key not in merged:
                merged[key] = record

    records = [record for record in merged.values() if record_filter is None or record_filter(record)]
    if sort_key is not None:
        records.sort(key=lambda record: display_key(sort_key(record)))

    result = FanOutResult(records=records, skipped=skipped, scopes_searched=len(selected))
    for warning in result.warnings:
        logger.warning(warning)
    return result


def require_found(
    result: FanOutResult[R],
    resource: str,
    identifier: str,
    visibility_note: str = "",
) -> Result[list[R]]:
    """Turn an exhausted search for one named resource into ``NotFound``."""

    if result.records:
        return Result.success(result.records, warnings=result.warnings)

    message = f"{resource} '{identifier}' not found in any accessible scope"
    if result.skipped:
        message += (
            f". {len(result.skipped)} scope(s) could not be searched "
            f"({', '.join(result.skipped_names)}); partial permissions may hide it"
        )
    if visibility_note:
        message += f". {visibility_note}"
    return Result.failure(ClassifiedError(kind=ErrorKind.NOT_FOUND, message=message))
