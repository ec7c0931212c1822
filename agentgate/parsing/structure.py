"""
Shape checks for decoded agent payloads.

Only container kinds and the numeric aggregate fields are checked; business
rules belong to the semantic validator. Each check returns a list of
human-readable field-path errors, empty when the shape is acceptable.
"""
from typing import Any, List

METRIC_FIELDS = ("totalTasks", "highPriorityCount", "blockedCount", "estimatedWeeklyHours")


def is_number(value: Any) -> bool:
    """JSON numbers only; booleans are not numbers."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def check_execution_plan_shape(data: Any) -> List[str]:
    """Validate the top-level shape of an execution plan payload."""
    if not isinstance(data, dict):
        return ["Response must be a JSON object"]

    errors = []
    if not isinstance(data.get("executionPlan"), list):
        errors.append("executionPlan must be an array")
    if not isinstance(data.get("alerts"), list):
        errors.append("alerts must be an array")

    metrics = data.get("metrics")
    if not isinstance(metrics, dict):
        errors.append("metrics must be an object")
    else:
        for name in METRIC_FIELDS:
            if not is_number(metrics.get(name)):
                errors.append(f"metrics.{name} must be a number")
    return errors


def check_grant_assessment_shape(data: Any) -> List[str]:
    """Validate the top-level shape of a grant assessment payload."""
    if not isinstance(data, dict):
        return ["Response must be a JSON object"]

    errors = []
    if not isinstance(data.get("grants"), list):
        errors.append("grants must be an array")
    if not isinstance(data.get("proposals"), list):
        errors.append("proposals must be an array")
    return errors
