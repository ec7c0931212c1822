"""
Cross-record invariants of normalized agent output.

Findings are classified as errors (the object is rejected) or warnings (the
object is accepted and the finding reported). Validation is a pure function
of the object and `today`, so re-validating yields identical findings.
"""
import math
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from .models import ExecutionPlan, GrantAssessment, Priority, Task
from .normalizer import format_number

PLANNING_HORIZON_DAYS = 7
BUDGET_TOLERANCE = 1.0

Findings = Tuple[List[str], List[str]]


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _invalid_non_negative(value) -> bool:
    if not _is_number(value):
        return True
    return not math.isfinite(value) or value < 0


def find_dependency_cycles(tasks: List[Task]) -> List[List[str]]:
    """
    Return dependency cycles of two or more tasks, each as a closed path
    (first id repeated at the end). Self-dependencies are excluded; dangling
    dependencies are ignored.
    """
    graph: Dict[str, List[str]] = {}
    for task in tasks:
        graph.setdefault(task.task_id, [])
        for dep in task.dependencies:
            if dep != task.task_id and dep not in graph[task.task_id]:
                graph[task.task_id].append(dep)

    visiting, done = 1, 2
    state: Dict[str, int] = {}
    cycles: List[List[str]] = []
    seen_cycles = set()

    # Iterative DFS: dependency chains can be longer than the recursion limit
    for root in graph:
        if root in state:
            continue
        state[root] = visiting
        path = [root]
        stack = [iter(graph[root])]
        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                state[path.pop()] = done
                continue
            if dep not in graph:
                continue
            if state.get(dep) == visiting:
                cycle = path[path.index(dep):]
                signature = frozenset(cycle)
                if signature not in seen_cycles:
                    seen_cycles.add(signature)
                    cycles.append(cycle + [dep])
            elif state.get(dep) is None:
                state[dep] = visiting
                path.append(dep)
                stack.append(iter(graph[dep]))
    return cycles


def validate_execution_plan(
    plan: ExecutionPlan,
    today: date,
    horizon_days: int = PLANNING_HORIZON_DAYS,
) -> Findings:
    """
    Check plan invariants.

    Errors: duplicate task ids, self-dependencies, dependency cycles,
    negative or non-finite hours.
    Warnings: dangling dependencies, deadlines outside the planning horizon,
    metrics disagreeing with the task list, alerts naming unknown tasks.

    Returns:
        (errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    task_ids = {task.task_id for task in plan.tasks}
    horizon_end = today + timedelta(days=horizon_days)
    seen = set()

    for task in plan.tasks:
        if task.task_id in seen:
            errors.append(f"Duplicate task ID: {task.task_id}")
        seen.add(task.task_id)

        for dep in task.dependencies:
            if dep == task.task_id:
                errors.append(f"Task {task.task_id} cannot depend on itself")
            elif dep not in task_ids:
                warnings.append(f"Task {task.task_id} depends on non-existent task: {dep}")

        if _invalid_non_negative(task.estimated_hours):
            errors.append(
                f"Invalid estimatedHours for task {task.task_id}: "
                f"{format_number(task.estimated_hours)}"
            )

        if not today <= task.deadline <= horizon_end:
            warnings.append(
                f"Task {task.task_id} deadline {task.deadline.isoformat()} is outside "
                f"the {horizon_days}-day planning horizon "
                f"({today.isoformat()} to {horizon_end.isoformat()})"
            )

    for cycle in find_dependency_cycles(plan.tasks):
        errors.append(f"Dependency cycle detected: {' -> '.join(cycle)}")

    for alert in plan.alerts:
        for task_id in alert.affected_tasks:
            if task_id not in task_ids:
                warnings.append(f"Alert references non-existent task: {task_id}")

    metrics = plan.metrics
    if metrics.total_tasks != len(plan.tasks):
        warnings.append(
            f"Metrics totalTasks ({metrics.total_tasks}) doesn't match "
            f"actual task count ({len(plan.tasks)})"
        )
    high_priority = sum(1 for task in plan.tasks if task.priority is Priority.HIGH)
    if metrics.high_priority_count != high_priority:
        warnings.append(
            f"Metrics highPriorityCount ({metrics.high_priority_count}) doesn't match "
            f"actual count ({high_priority})"
        )

    return errors, warnings


def validate_grant_assessment(
    assessment: GrantAssessment,
    today: Optional[date] = None,
) -> Findings:
    """
    Check assessment invariants.

    Errors: duplicate grant ids, eligibility score outside [0, 100], negative
    amounts or budget lines, proposals referencing unknown grants.
    Warnings: zero grant amounts, budget totals off by more than 1 unit.

    `today` is accepted for signature parity with plan validation.

    Returns:
        (errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    seen = set()
    for grant in assessment.grants:
        if grant.grant_id in seen:
            errors.append(f"Duplicate grant ID: {grant.grant_id}")
        seen.add(grant.grant_id)

        score = grant.eligibility_score
        if not math.isfinite(score) or score < 0 or score > 100:
            errors.append(
                f"Invalid eligibility score for grant {grant.grant_id}: {format_number(score)}"
            )

        if _invalid_non_negative(grant.amount):
            errors.append(
                f"Grant {grant.grant_id} has invalid amount: {format_number(grant.amount)}"
            )
        elif grant.amount == 0:
            warnings.append(f"Grant {grant.grant_id} has zero amount")

    for proposal in assessment.proposals:
        if proposal.grant_id not in seen:
            errors.append(f"Proposal references non-existent grant: {proposal.grant_id}")

        lines = proposal.budget.categories()
        lines_to_check = dict(lines, total=proposal.budget.total)
        for name, value in lines_to_check.items():
            if _invalid_non_negative(value):
                errors.append(
                    f"Proposal {proposal.grant_id} has invalid budget line "
                    f"{name}: {format_number(value)}"
                )

        calculated = proposal.budget.calculated_total()
        stated = proposal.budget.total
        if abs(stated - calculated) > BUDGET_TOLERANCE:
            warnings.append(
                f"Budget total mismatch for proposal {proposal.grant_id}: "
                f"stated {format_number(stated)}, calculated {format_number(calculated)}"
            )

    return errors, warnings
