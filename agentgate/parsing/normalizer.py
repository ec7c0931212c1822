"""
Coerce structurally-valid payloads into typed agent output models.

Normalization never fails. Loosely-typed values are converted to their
canonical type; missing or malformed values are replaced with safe defaults
and numeric values are clamped into range. Each substitution is recorded in
Normalizer.notes so callers can surface it as a data-quality warning.
"""
import logging
import math
import re
import uuid
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from ..utils import to_millis, utc_now, utc_today
from .models import (
    Alert,
    ExecutionPlan,
    Grant,
    GrantAssessment,
    GrantProposal,
    Metrics,
    Priority,
    ProposalBudget,
    Severity,
    Task,
)

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
PLACEHOLDER_URL = "https://example.com"
BUDGET_LINES = ("personnel", "equipment", "operations", "total")


def coerce_text(value: Any) -> str:
    """Stringify a scalar JSON value; containers and null become ''."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return ""
        return format_number(value)
    return ""


def coerce_number(value: Any) -> Optional[float]:
    """
    Finite float from a number or numeric string, else None.

    Integers too large for a float are treated like infinities.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def format_number(value: float) -> str:
    """Render integral floats without a trailing .0."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def generate_id(prefix: str) -> str:
    return f"{prefix}-{to_millis(utc_now())}-{uuid.uuid4().hex[:8]}"


class Normalizer:
    """
    Best-effort conversion of raw payloads.

    One instance per parse: `today` anchors deadline defaults, `notes`
    accumulates substitutions.

    Usage:
        normalizer = Normalizer(today=date(2026, 1, 5))
        plan = normalizer.execution_plan(payload)
        for note in normalizer.notes:
            print(note)
    """

    def __init__(self, today: Optional[date] = None):
        self.today = today or utc_today()
        self.notes: List[str] = []

    @property
    def tomorrow(self) -> date:
        return self.today + timedelta(days=1)

    def _note(self, message: str) -> None:
        logger.debug(message)
        self.notes.append(message)

    # ========================================================================
    # Execution plan
    # ========================================================================

    def execution_plan(self, data: Dict[str, Any]) -> ExecutionPlan:
        tasks = [
            self.task(raw, index)
            for index, raw in enumerate(self._records(data, "executionPlan"))
        ]
        alerts = [
            self.alert(raw, index)
            for index, raw in enumerate(self._records(data, "alerts"))
        ]
        metrics_raw = data.get("metrics")
        return ExecutionPlan(
            tasks=tasks,
            alerts=alerts,
            metrics=self.metrics(metrics_raw if isinstance(metrics_raw, dict) else {}),
        )

    def task(self, raw: Any, index: int = 0) -> Task:
        raw = self._record(raw, f"task #{index + 1}")
        task_id = coerce_text(raw.get("taskId"))
        if not task_id:
            task_id = generate_id("task")
            self._note(f"task #{index + 1}: taskId missing, generated '{task_id}'")
        label = f"task {task_id}"

        return Task(
            task_id=task_id,
            title=self._text(raw, "title", "Untitled Task", label),
            priority=self._enum(raw, "priority", Priority, Priority.MEDIUM, label),
            owner=self._text(raw, "owner", "founder", label),
            deadline=self._deadline(raw, label),
            estimated_hours=self._hours(raw.get("estimatedHours"), label),
            dependencies=self._strings(raw, "dependencies", label, unique=True),
        )

    def alert(self, raw: Any, index: int = 0) -> Alert:
        label = f"alert #{index + 1}"
        raw = self._record(raw, label)
        return Alert(
            severity=self._enum(raw, "severity", Severity, Severity.INFO, label),
            message=self._text(raw, "message", "No message provided", label),
            affected_tasks=self._strings(raw, "affectedTasks", label),
        )

    def metrics(self, raw: Dict[str, Any]) -> Metrics:
        def count(name: str) -> int:
            value = self._non_negative(raw, name, 0.0, "metrics")
            if not value.is_integer():
                self._note(f"metrics: {name} {format_number(value)} truncated to {int(value)}")
            return int(value)

        return Metrics(
            total_tasks=count("totalTasks"),
            high_priority_count=count("highPriorityCount"),
            blocked_count=count("blockedCount"),
            estimated_weekly_hours=self._non_negative(
                raw, "estimatedWeeklyHours", 0.0, "metrics"
            ),
        )

    # ========================================================================
    # Grant assessment
    # ========================================================================

    def grant_assessment(self, data: Dict[str, Any]) -> GrantAssessment:
        return GrantAssessment(
            grants=[
                self.grant(raw, index)
                for index, raw in enumerate(self._records(data, "grants"))
            ],
            proposals=[
                self.proposal(raw, index)
                for index, raw in enumerate(self._records(data, "proposals"))
            ],
        )

    def grant(self, raw: Any, index: int = 0) -> Grant:
        raw = self._record(raw, f"grant #{index + 1}")
        grant_id = coerce_text(raw.get("grantId"))
        if not grant_id:
            grant_id = generate_id("grant")
            self._note(f"grant #{index + 1}: grantId missing, generated '{grant_id}'")
        label = f"grant {grant_id}"

        score = self._non_negative(raw, "eligibilityScore", 0.0, label)
        if score > 100:
            self._note(f"{label}: eligibilityScore {format_number(score)} clamped to 100")
            score = 100.0

        return Grant(
            grant_id=grant_id,
            name=self._text(raw, "name", "Unnamed Grant", label),
            funder=self._text(raw, "funder", "Unknown Funder", label),
            amount=self._non_negative(raw, "amount", 0.0, label),
            deadline=self._deadline(raw, label),
            eligibility_score=score,
            match_reasons=self._strings(raw, "matchReasons", label),
            url=self._url(raw.get("url"), label),
        )

    def proposal(self, raw: Any, index: int = 0) -> GrantProposal:
        raw = self._record(raw, f"proposal #{index + 1}")
        grant_id = coerce_text(raw.get("grantId"))
        label = f"proposal {grant_id}" if grant_id else f"proposal #{index + 1}"

        return GrantProposal(
            grant_id=grant_id,
            executive_summary=self._text(
                raw, "executiveSummary", "No summary provided", label
            ),
            problem_statement=self._text(
                raw, "problemStatement", "No problem statement provided", label
            ),
            solution=self._text(raw, "solution", "No solution provided", label),
            budget=self.budget(raw.get("budget"), label),
            impact_metrics=self._strings(raw, "impactMetrics", label),
        )

    def budget(self, raw: Any, label: str) -> ProposalBudget:
        if not isinstance(raw, dict):
            if raw is not None:
                self._note(f"{label}: budget is not an object, using zeros")
            raw = {}

        lines = {
            name: self._non_negative(raw, name, 0.0, f"{label} budget")
            for name in BUDGET_LINES
        }
        for name, value in raw.items():
            if name in BUDGET_LINES:
                continue
            number = coerce_number(value)
            if number is None:
                self._note(f"{label}: budget.{name} is not a number, dropped")
                continue
            if number < 0:
                self._note(f"{label}: budget.{name} {format_number(number)} clamped to 0")
                number = 0.0
            lines[name] = number
        return ProposalBudget(**lines)

    # ========================================================================
    # Field helpers
    # ========================================================================

    def _records(self, data: Dict[str, Any], name: str) -> List[Any]:
        value = data.get(name)
        if value is None:
            return []
        if not isinstance(value, list):
            self._note(f"{name} is not an array, treated as empty")
            return []
        return value

    def _record(self, raw: Any, label: str) -> Dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        self._note(f"{label}: not an object, all fields defaulted")
        return {}

    def _text(self, raw: Dict[str, Any], name: str, default: str, label: str) -> str:
        text = coerce_text(raw.get(name))
        if text:
            return text
        self._note(f"{label}: {name} defaulted to '{default}'")
        return default

    def _enum(self, raw: Dict[str, Any], name: str, enum_cls, default, label: str):
        text = coerce_text(raw.get(name))
        try:
            return enum_cls(text.lower())
        except ValueError:
            if text:
                self._note(
                    f"{label}: {name} '{text}' not recognized, using '{default.value}'"
                )
            else:
                self._note(f"{label}: {name} defaulted to '{default.value}'")
            return default

    def _deadline(self, raw: Dict[str, Any], label: str) -> date:
        text = coerce_text(raw.get("deadline"))
        if DATE_PATTERN.match(text):
            try:
                return date.fromisoformat(text)
            except ValueError:
                pass
        fallback = self.tomorrow
        if text:
            self._note(f"{label}: deadline '{text}' invalid, using {fallback.isoformat()}")
        else:
            self._note(f"{label}: deadline defaulted to {fallback.isoformat()}")
        return fallback

    def _hours(self, value: Any, label: str) -> float:
        number = coerce_number(value)
        if number is None:
            self._note(f"{label}: estimatedHours missing or invalid, using 1")
            return 1.0
        if number < 0:
            self._note(f"{label}: estimatedHours {format_number(number)} clamped to 0")
            return 0.0
        return number

    def _non_negative(
        self,
        raw: Dict[str, Any],
        name: str,
        default: float,
        label: str,
    ) -> float:
        value = raw.get(name)
        number = coerce_number(value)
        if number is None:
            if value is None:
                self._note(f"{label}: {name} defaulted to {format_number(default)}")
            else:
                self._note(
                    f"{label}: {name} {value!r} is not a number, using {format_number(default)}"
                )
            return default
        if number < 0:
            self._note(f"{label}: {name} {format_number(number)} clamped to 0")
            return 0.0
        return number

    def _strings(
        self,
        raw: Dict[str, Any],
        name: str,
        label: str,
        unique: bool = False,
    ) -> List[str]:
        value = raw.get(name)
        if value is None:
            return []
        if not isinstance(value, list):
            self._note(f"{label}: {name} is not an array, ignored")
            return []

        items = [coerce_text(entry) for entry in value]
        cleaned = [entry for entry in items if entry]
        if len(cleaned) != len(items):
            self._note(f"{label}: blank entries dropped from {name}")
        if unique:
            deduplicated = list(dict.fromkeys(cleaned))
            if len(deduplicated) != len(cleaned):
                self._note(f"{label}: duplicate entries dropped from {name}")
            cleaned = deduplicated
        return cleaned

    def _url(self, value: Any, label: str) -> str:
        text = coerce_text(value)
        try:
            parts = urlsplit(text)
            valid = parts.scheme in ("http", "https") and bool(parts.hostname)
        except ValueError:
            valid = False
        if valid:
            return text
        if text:
            self._note(f"{label}: url '{text}' invalid, using {PLACEHOLDER_URL}")
        else:
            self._note(f"{label}: url defaulted to {PLACEHOLDER_URL}")
        return PLACEHOLDER_URL
