"""Structural plan checks and the generating -> validated transition."""

from __future__ import annotations

import logging

import config
from pipeline.execution_router import route_variation
from schemas.creative_plan import CreativePlan, PlanValidationResult, next_plan_status
from schemas.execution import BackendDescriptor

logger = logging.getLogger(__name__)

_DISTINCT_HOOK_TYPES = 8


def _fmt_seconds(value: float) -> str:
    return f"{value:g}"


def validate_plan(
    plan: CreativePlan,
    backends: list[BackendDescriptor] | None = None,
    max_variations: int | None = None,
) -> PlanValidationResult:
    """Return blocking errors and advisory warnings. Never mutates the plan.

    When current backends are given, each variation is re-routed against
    them and any drift from the plan-time engine is reported as a warning.
    """
    ceiling = config.MAX_VARIATIONS if max_variations is None else max_variations
    errors: list[str] = []
    warnings: list[str] = []

    if plan.audience is None or not plan.audience.configured:
        errors.append("Default Audience not configured: set language and country before generating variations")

    count = len(plan.variations)
    if count == 0:
        errors.append("Plan must have at least one variation")
    if count > ceiling:
        errors.append(f"Plan has {count} variations; the maximum is {ceiling}")

    lo, hi = config.DURATION_MIN, config.DURATION_MAX
    for row in plan.variations:
        if not lo <= row.target_duration <= hi:
            errors.append(
                f"Variation {row.index + 1}: Duration {_fmt_seconds(row.target_duration)}s "
                f"violates {_fmt_seconds(lo)}-{_fmt_seconds(hi)}s constraint"
            )

    if count:
        distinct_hooks = len({row.hook_type for row in plan.variations})
        expected = min(count, _DISTINCT_HOOK_TYPES)
        if distinct_hooks / expected < config.MIN_HOOK_COVERAGE_RATIO:
            warnings.append(
                f"Low hook coverage: {distinct_hooks} distinct hook type(s) across {count} variations"
            )

    seen: dict[tuple, int] = {}
    for row in plan.variations:
        first = seen.setdefault(row.signature, row.index)
        if first != row.index:
            warnings.append(
                f"Variations {first + 1} and {row.index + 1} share hook, pacing and transitions"
            )

    exported = [row.index + 1 for row in plan.variations if row.engine_id == "plan_export"]
    if exported:
        warnings.append(
            f"{len(exported)} variation(s) have no render engine and will be exported as plans: {exported}"
        )

    if backends is not None:
        by_id = {row.backend_id: row for row in backends}
        fell_back = 0
        for row in plan.variations:
            decision = route_variation(row, backends, plan.route_options, check_availability=True)
            now = decision.selected.backend_id if decision.selected else "plan_export"
            if now != row.engine_id:
                warnings.append(
                    f"Variation {row.index + 1}: engine changed since planning ({row.engine_id} -> {now})"
                )
            planned = by_id.get(row.engine_id)
            if row.use_vps and planned is not None and not planned.is_vps:
                fell_back += 1
        if fell_back:
            warnings.append(
                f"{fell_back} variation(s) are planned on non-VPS engines while VPS is available"
            )

    result = PlanValidationResult(errors=errors, warnings=warnings)
    logger.info(
        "Validated plan %s: errors=%d warnings=%d",
        plan.id,
        len(result.errors),
        len(result.warnings),
    )
    return result


def apply_validation(plan: CreativePlan, result: PlanValidationResult) -> CreativePlan:
    """Advance generating -> validated when the result has no errors."""
    if plan.status != "generating":
        # Already past validation; status never moves backward.
        if result.errors:
            logger.warning("Plan %s is %s; ignoring %d new validation error(s)", plan.id, plan.status, len(result.errors))
        return plan
    if result.errors:
        logger.info("Plan %s stays generating: %s", plan.id, "; ".join(result.errors))
        return plan
    plan.status = next_plan_status(plan.status, "validated", plan.id)
    logger.info("Plan %s -> validated", plan.id)
    return plan
