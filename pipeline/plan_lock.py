"""Plan lock: the one-way validated -> locked transition."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from schemas.creative_plan import CreativePlan, next_plan_status

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def lock_plan(plan: CreativePlan) -> CreativePlan:
    """Freeze a validated plan in place and return it.

    Locking an already locked plan returns it untouched. Any other status
    raises InvalidStateError. There is no unlock.
    """
    if plan.is_locked:
        logger.debug("Plan %s already locked", plan.id)
        return plan
    status = next_plan_status(plan.status, "locked", plan.id)
    plan.locked_at = _now_iso()
    plan.status = status
    logger.info("Plan %s -> locked (%d variations)", plan.id, len(plan.variations))
    return plan


def fork_plan(plan: CreativePlan, plan_id: str) -> CreativePlan:
    """Start over from any plan under a new id, back in 'generating'."""
    if plan_id == plan.id:
        raise ValueError(f"Fork of plan {plan.id} needs a new id")
    data = plan.model_dump()
    data.update({"id": plan_id, "status": "generating", "locked_at": ""})
    return CreativePlan.model_validate(data)
