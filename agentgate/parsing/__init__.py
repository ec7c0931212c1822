"""
Agent output parsing.

Turns untrusted model text into validated agent output models:
- extractor: isolate the JSON object in prose/markdown
- structure: required containers and numeric aggregates
- normalizer: coerce and default every field
- semantic: cross-record invariants (errors vs warnings)
- pipeline: the four stages in sequence, returning ParseResult

Usage:
    from agentgate.parsing import parse_execution_plan

    result = parse_execution_plan(model_text)
    if result.success:
        for task in result.data.tasks:
            print(task.task_id, task.deadline)
    else:
        print(result.failure, result.errors)
"""

from .errors import (
    ExtractionError,
    ParseError,
    SemanticError,
    SemanticWarning,
    StructuralError,
)
from .extractor import extract_json, extract_json_text
from .models import (
    AgentKind,
    Alert,
    ExecutionPlan,
    Grant,
    GrantAssessment,
    GrantProposal,
    Metrics,
    ParseResult,
    Priority,
    ProposalBudget,
    Severity,
    Task,
)
from .normalizer import Normalizer
from .pipeline import (
    log_parse_result,
    parse_agent_output,
    parse_execution_plan,
    parse_grant_assessment,
)
from .semantic import (
    PLANNING_HORIZON_DAYS,
    validate_execution_plan,
    validate_grant_assessment,
)
from .structure import check_execution_plan_shape, check_grant_assessment_shape

__all__ = [
    "ParseError",
    "ExtractionError",
    "StructuralError",
    "SemanticError",
    "SemanticWarning",
    "extract_json",
    "extract_json_text",
    "AgentKind",
    "Priority",
    "Severity",
    "Task",
    "Alert",
    "Metrics",
    "ExecutionPlan",
    "Grant",
    "ProposalBudget",
    "GrantProposal",
    "GrantAssessment",
    "ParseResult",
    "Normalizer",
    "check_execution_plan_shape",
    "check_grant_assessment_shape",
    "validate_execution_plan",
    "validate_grant_assessment",
    "PLANNING_HORIZON_DAYS",
    "parse_agent_output",
    "parse_execution_plan",
    "parse_grant_assessment",
    "log_parse_result",
]
