"""
Agent output schema definitions using Pydantic.

Field names follow the camelCase wire format of agent responses through
aliases; Python code uses the snake_case attribute names. Models are frozen:
a validated object is handed to the caller and never mutated.

Value constraints (non-negative hours, score range) are deliberately not
enforced here. The normalizer clamps model output and the semantic validator
reports violations for objects constructed elsewhere.
"""
import warnings as warnings_module
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .errors import FAILURE_TYPES, ParseError, SemanticWarning


class AgentKind(str, Enum):
    """Agent output variants."""
    PLAN = "plan"      # ExecutionPlan
    GRANT = "grant"    # GrantAssessment


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class AgentModel(BaseModel):
    """Base for agent output records."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict using the camelCase wire names."""
        return self.model_dump(by_alias=True, mode="json")


# ============================================================================
# Execution plan
# ============================================================================

class Task(AgentModel):
    """One unit of work in an execution plan."""
    task_id: str = Field(alias="taskId")
    title: str
    priority: Priority = Priority.MEDIUM
    owner: str
    deadline: date
    estimated_hours: float = Field(alias="estimatedHours")
    dependencies: List[str] = Field(default_factory=list)


class Alert(AgentModel):
    severity: Severity = Severity.INFO
    message: str
    affected_tasks: List[str] = Field(default_factory=list, alias="affectedTasks")


class Metrics(AgentModel):
    """Aggregate figures reported by the agent; informational only."""
    total_tasks: int = Field(0, alias="totalTasks")
    high_priority_count: int = Field(0, alias="highPriorityCount")
    blocked_count: int = Field(0, alias="blockedCount")
    estimated_weekly_hours: float = Field(0.0, alias="estimatedWeeklyHours")


class ExecutionPlan(AgentModel):
    tasks: List[Task] = Field(default_factory=list, alias="executionPlan")
    alerts: List[Alert] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)


# ============================================================================
# Grant assessment
# ============================================================================

class Grant(AgentModel):
    """A funding opportunity matched to the organization."""
    grant_id: str = Field(alias="grantId")
    name: str
    funder: str
    amount: float
    deadline: date
    eligibility_score: float = Field(alias="eligibilityScore")
    match_reasons: List[str] = Field(default_factory=list, alias="matchReasons")
    url: str


class ProposalBudget(AgentModel):
    """
    Proposal budget. Categories beyond the standard three are kept as extra
    fields and reported by categories().
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    personnel: float = 0.0
    equipment: float = 0.0
    operations: float = 0.0
    total: float = 0.0

    def categories(self) -> Dict[str, float]:
        """All budget lines except the stated total."""
        lines = {
            "personnel": self.personnel,
            "equipment": self.equipment,
            "operations": self.operations,
        }
        lines.update(self.model_extra or {})
        return lines

    def calculated_total(self) -> float:
        """Sum of every numeric budget line except the stated total."""
        return sum(
            value for value in self.categories().values()
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        )


class GrantProposal(AgentModel):
    grant_id: str = Field(alias="grantId")
    executive_summary: str = Field(alias="executiveSummary")
    problem_statement: str = Field(alias="problemStatement")
    solution: str
    budget: ProposalBudget = Field(default_factory=ProposalBudget)
    impact_metrics: List[str] = Field(default_factory=list, alias="impactMetrics")


class GrantAssessment(AgentModel):
    grants: List[Grant] = Field(default_factory=list)
    proposals: List[GrantProposal] = Field(default_factory=list)


# ============================================================================
# Results
# ============================================================================

T = TypeVar("T", bound=AgentModel)


@dataclass
class ParseResult(Generic[T]):
    """
    Outcome of parsing one agent response.

    Attributes:
        success: True iff errors is empty
        data: Validated object, only on success
        errors: Fatal findings
        warnings: Non-fatal findings, including normalizer substitutions
        failure: Name of the failing stage's error class
            (ExtractionError, StructuralError, SemanticError or ParseError)
    """
    success: bool
    data: Optional[T] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    failure: Optional[str] = None

    def raise_for_failure(self) -> None:
        """Raise the failing stage's ParseError subclass, if any."""
        if self.success:
            return
        error_cls = FAILURE_TYPES.get(self.failure or "", ParseError)
        message = "; ".join(self.errors) or "Parsing failed"
        raise error_cls(message, errors=list(self.errors))

    def emit_warnings(self) -> None:
        """Issue each warning through the warnings module as SemanticWarning."""
        for message in self.warnings:
            warnings_module.warn(message, SemanticWarning, stacklevel=2)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "success": self.success,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
        if self.data is not None:
            result["data"] = self.data.to_dict()
        if self.failure is not None:
            result["failure"] = self.failure
        return result
