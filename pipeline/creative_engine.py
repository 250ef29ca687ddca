"""The three engine entry points: selection, compile+validate, lock+execute."""

from __future__ import annotations

import logging
import threading

from pipeline.brain_candidates import generate_candidates
from pipeline.brain_scoring import score_candidates
from pipeline.brain_selector import select_strategy
from pipeline.execution_supervisor import ExecutionSupervisor
from pipeline.plan_compiler import compile_plan
from pipeline.plan_lock import lock_plan
from pipeline.plan_validator import apply_validation, validate_plan
from pipeline.render_backends import RenderBackend
from schemas.creative_brain import AnalysisReport, BrainFailureOutput, ScoringPolicy, SelectionResult
from schemas.creative_plan import (
    CreativePlan,
    InvalidStateError,
    PlanExecutionResult,
    PlanGeneratorInput,
)

logger = logging.getLogger(__name__)


def generate_selection(
    report: AnalysisReport,
    policy: ScoringPolicy | None = None,
) -> SelectionResult | BrainFailureOutput:
    """One decision pass: candidates -> scores -> winner or structured failure."""
    policy = policy or ScoringPolicy()
    candidates = generate_candidates(report, policy.constraints, severity_floor=policy.severity_floor)
    scored = score_candidates(candidates, report, policy)
    return select_strategy(scored, candidates, report, policy)


def compile_and_validate(
    selection: SelectionResult,
    plan_input: PlanGeneratorInput,
) -> tuple[CreativePlan, list[str], list[str]]:
    """Compile, validate against the same engines, and advance to 'validated' when clean."""
    plan = compile_plan(selection, plan_input)
    result = validate_plan(plan, backends=plan_input.available_engines)
    apply_validation(plan, result)
    return plan, list(result.errors), list(result.warnings)


def lock_and_execute(
    plan: CreativePlan,
    backends: list[RenderBackend],
    cancel_event: threading.Event | None = None,
    supervisor: ExecutionSupervisor | None = None,
) -> PlanExecutionResult:
    """Lock a validated plan and run it.

    Raises InvalidStateError for any other status, including a plan that is
    already locked. Routing options are fixed at compile time; a plan that
    needs different ones is forked and compiled again.
    """
    if plan.status != "validated":
        raise InvalidStateError(
            f"Plan {plan.id} must be validated before execution (status={plan.status})",
            plan_id=plan.id,
            current=plan.status,
            requested="locked",
        )
    lock_plan(plan)
    return (supervisor or ExecutionSupervisor()).execute(plan, backends, cancel_event=cancel_event)
