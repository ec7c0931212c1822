"""
Agent output parsing pipeline.

raw text -> extract -> structural check -> normalize -> semantic check

Each stage's output is the next stage's input, so stages run strictly in
sequence and the first fatal stage ends the run. Failures are returned as a
ParseResult rather than raised.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from ..utils import utc_today
from .errors import ExtractionError
from .extractor import extract_json
from .models import AgentKind, AgentModel, ExecutionPlan, GrantAssessment, ParseResult
from .normalizer import Normalizer
from .semantic import (
    PLANNING_HORIZON_DAYS,
    validate_execution_plan,
    validate_grant_assessment,
)
from .structure import check_execution_plan_shape, check_grant_assessment_shape

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputVariant:
    """Stage implementations for one agent output kind."""
    label: str
    check_shape: Callable[[Any], List[str]]
    normalize: Callable[[Normalizer, Dict[str, Any]], AgentModel]
    validate: Callable[[Any, date, int], Tuple[List[str], List[str]]]


VARIANTS: Dict[AgentKind, OutputVariant] = {
    AgentKind.PLAN: OutputVariant(
        label="execution plan",
        check_shape=check_execution_plan_shape,
        normalize=Normalizer.execution_plan,
        validate=validate_execution_plan,
    ),
    AgentKind.GRANT: OutputVariant(
        label="grant assessment",
        check_shape=check_grant_assessment_shape,
        normalize=Normalizer.grant_assessment,
        validate=lambda assessment, today, _horizon: validate_grant_assessment(
            assessment, today
        ),
    ),
}


def parse_agent_output(
    kind: Union[AgentKind, str],
    raw_text: str,
    *,
    today: Optional[date] = None,
    horizon_days: int = PLANNING_HORIZON_DAYS,
) -> ParseResult:
    """
    Parse raw model text into the output model for `kind`.

    Args:
        kind: Agent output variant
        raw_text: Raw model response
        today: Reference date for deadline defaults and horizon checks
            (current UTC date if omitted)
        horizon_days: Planning horizon for task deadlines

    Returns:
        ParseResult; data is set only when there are no errors. An unexpected
        failure in any stage is reported as a ParseError result.
    """
    variant = VARIANTS[AgentKind(kind)]
    today = today or utc_today()

    try:
        return _run_stages(variant, raw_text, today, horizon_days)
    except Exception as e:
        logger.exception(f"Unexpected error parsing {variant.label}")
        return ParseResult(
            success=False,
            errors=[f"Failed to parse {variant.label}: {type(e).__name__}: {e}"],
            failure="ParseError",
        )


def _run_stages(
    variant: OutputVariant,
    raw_text: str,
    today: date,
    horizon_days: int,
) -> ParseResult:
    try:
        payload = extract_json(raw_text)
    except ExtractionError as e:
        return ParseResult(success=False, errors=list(e.errors), failure="ExtractionError")

    shape_errors = variant.check_shape(payload)
    if shape_errors:
        return ParseResult(success=False, errors=shape_errors, failure="StructuralError")

    normalizer = Normalizer(today=today)
    try:
        data = variant.normalize(normalizer, payload)
    except ValidationError as e:
        logger.exception(f"Normalized {variant.label} failed model validation")
        return ParseResult(
            success=False,
            errors=[f"Failed to parse {variant.label}: {e}"],
            warnings=list(normalizer.notes),
            failure="ParseError",
        )

    errors, findings = variant.validate(data, today, horizon_days)
    warnings = list(normalizer.notes) + findings
    if errors:
        return ParseResult(
            success=False, errors=errors, warnings=warnings, failure="SemanticError"
        )
    return ParseResult(success=True, data=data, warnings=warnings)


def parse_execution_plan(
    raw_text: str,
    *,
    today: Optional[date] = None,
    horizon_days: int = PLANNING_HORIZON_DAYS,
) -> ParseResult[ExecutionPlan]:
    """Parse an execution plan agent response."""
    return parse_agent_output(
        AgentKind.PLAN, raw_text, today=today, horizon_days=horizon_days
    )


def parse_grant_assessment(
    raw_text: str,
    *,
    today: Optional[date] = None,
) -> ParseResult[GrantAssessment]:
    """Parse a grant assessment agent response."""
    return parse_agent_output(AgentKind.GRANT, raw_text, today=today)


def log_parse_result(result: ParseResult, context: str) -> None:
    """Log a parse outcome: INFO on success, WARNING for warnings, ERROR on failure."""
    if result.success:
        logger.info(
            f"Successfully parsed {context} ({len(result.warnings)} warnings)"
        )
        if result.warnings:
            logger.warning(f"Parsing warnings for {context}: {result.warnings}")
    else:
        logger.error(
            f"Failed to parse {context} ({result.failure}): "
            f"errors={result.errors} warnings={result.warnings}"
        )
