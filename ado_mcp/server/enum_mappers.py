"""Display names for Azure DevOps enum values.

The REST API returns camelCase strings ("inProgress", "partiallySucceeded");
older payloads occasionally carry the numeric enum instead.
"""

from __future__ import annotations

from typing import Any


BUILD_STATUS = {
    "none": "None",
    "inprogress": "InProgress",
    "completed": "Completed",
    "cancelling": "Cancelling",
    "postponed": "Postponed",
    "notstarted": "NotStarted",
    "all": "All",
}
BUILD_STATUS_CODES = {0: "None", 1: "InProgress", 2: "Completed", 4: "Cancelling", 8: "Postponed", 32: "NotStarted", 47: "All"}

BUILD_RESULT = {
    "none": "None",
    "succeeded": "Succeeded",
    "partiallysucceeded": "PartiallySucceeded",
    "failed": "Failed",
    "canceled": "Canceled",
}
BUILD_RESULT_CODES = {0: "None", 2: "Succeeded", 4: "PartiallySucceeded", 8: "Failed", 32: "Canceled"}

BUILD_REASON = {
    "none": "None",
    "manual": "Manual",
    "individualci": "IndividualCI",
    "batchedci": "BatchedCI",
    "schedule": "Schedule",
    "scheduleforced": "ScheduleForced",
    "usercreated": "UserCreated",
    "validateshelveset": "ValidateShelveset",
    "checkinshelveset": "CheckInShelveset",
    "pullrequest": "PullRequest",
    "buildcompletion": "BuildCompletion",
    "resourcetrigger": "ResourceTrigger",
}

TIMELINE_STATE = {"pending": "Pending", "inprogress": "InProgress", "completed": "Completed"}
TIMELINE_STATE_CODES = {0: "Pending", 1: "InProgress", 2: "Completed"}

TASK_RESULT = {
    "succeeded": "Succeeded",
    "succeededwithissues": "SucceededWithIssues",
    "failed": "Failed",
    "canceled": "Canceled",
    "skipped": "Skipped",
    "abandoned": "Abandoned",
}
TASK_RESULT_CODES = {0: "Succeeded", 1: "SucceededWithIssues", 2: "Failed", 3: "Canceled", 4: "Skipped", 5: "Abandoned"}

AGENT_STATUS = {"online": "Online", "offline": "Offline"}
AGENT_STATUS_CODES = {1: "Offline", 2: "Online"}


def _map(value: Any, names: dict[str, str], codes: dict[int, str] | None = None) -> str:
    if value is None or value == "":
        return "Unknown"
    if isinstance(value, int) and not isinstance(value, bool):
        return (codes or {}).get(value, f"Unknown({value})")
    return names.get(str(value).replace("_", "").lower(), f"Unknown({value})")


def map_build_status(status: Any) -> str:
    return _map(status, BUILD_STATUS, BUILD_STATUS_CODES)


def map_build_result(result: Any) -> str:
    return _map(result, BUILD_RESULT, BUILD_RESULT_CODES)


def map_build_reason(reason: Any) -> str:
    return _map(reason, BUILD_REASON)


def map_timeline_state(state: Any) -> str:
    return _map(state, TIMELINE_STATE, TIMELINE_STATE_CODES)


def map_task_result(result: Any) -> str:
    return _map(result, TASK_RESULT, TASK_RESULT_CODES)


def map_agent_status(status: Any) -> str:
    return _map(status, AGENT_STATUS, AGENT_STATUS_CODES)


def to_api_value(display: str, names: dict[str, str]) -> str | None:
    """Convert a display name ("InProgress") back to its API spelling ("inProgress")."""

    canonical = names.get(display.replace("_", "").lower())
    if canonical is None:
        return None
    return canonical[0].lower() + canonical[1:]
