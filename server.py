"""Ad Variation Engine: web server.

Thin FastAPI surface over the engine's three entry points (selection,
compile + validate, lock + execute) with a JSON file plan store.

Usage:
    python server.py
    # Then POST to http://localhost:8000/api/selection
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

import config
from pipeline.creative_engine import compile_and_validate, generate_selection, lock_and_execute
from pipeline.plan_store import PlanStore
from pipeline.render_backends import build_render_backends
from schemas.creative_brain import AnalysisReport, BrainFailureOutput, ScoringPolicy, SelectionResult
from schemas.creative_plan import InvalidStateError, PlanGeneratorInput

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL), format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Ad Variation Engine")

plan_store = PlanStore()

# plan_id -> cancel event for executions in flight
_running: dict[str, threading.Event] = {}
_running_lock = threading.Lock()


def _validation_error(exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        {"error": "Invalid request", "details": exc.errors(include_url=False, include_context=False)},
        status_code=422,
    )


def _plan_not_found(plan_id: str) -> JSONResponse:
    return JSONResponse({"error": f"Plan not found: {plan_id}"}, status_code=404)


# ---------------------------------------------------------------------------
# API Routes
# ---------------------------------------------------------------------------

class SelectionRequest(BaseModel):
    report: dict = {}
    policy: dict = {}


class PlanRequest(BaseModel):
    selection: dict = {}
    input: dict = {}


@app.post("/api/selection")
async def api_selection(req: SelectionRequest):
    """Run one decision pass over an analysis report."""
    try:
        report = AnalysisReport.model_validate(req.report)
        policy = ScoringPolicy.model_validate(req.policy)
    except ValidationError as exc:
        return _validation_error(exc)
    outcome = generate_selection(report, policy)
    kind = "failure" if isinstance(outcome, BrainFailureOutput) else "selection"
    return {"kind": kind, "result": outcome.model_dump(mode="json")}


@app.post("/api/plans")
async def api_create_plan(req: PlanRequest):
    """Compile + validate a plan from a selection; stored whether or not it validated."""
    try:
        selection = SelectionResult.model_validate(req.selection)
        data = dict(req.input)
        if not data.get("available_engines"):
            data["available_engines"] = [row.descriptor.model_dump() for row in build_render_backends()]
        plan_input = PlanGeneratorInput.model_validate(data)
    except ValidationError as exc:
        return _validation_error(exc)

    plan, errors, warnings = compile_and_validate(selection, plan_input)
    try:
        plan_store.save_plan(plan)
    except InvalidStateError as exc:
        return JSONResponse({"error": str(exc), "plan_id": plan.id}, status_code=409)
    return {
        "plan": plan.model_dump(mode="json"),
        "errors": errors,
        "warnings": warnings,
    }


@app.get("/api/plans")
async def api_list_plans():
    return {"plans": plan_store.list_plans()}


@app.get("/api/plans/{plan_id}")
async def api_get_plan(plan_id: str):
    try:
        plan = plan_store.load_plan(plan_id)
    except ValueError:
        return _plan_not_found(plan_id)
    if plan is None:
        return _plan_not_found(plan_id)
    execution = plan_store.load_execution(plan_id)
    return {
        "plan": plan.model_dump(mode="json"),
        "execution": execution.model_dump(mode="json") if execution else None,
    }


@app.post("/api/plans/{plan_id}/execute")
async def api_execute_plan(plan_id: str):
    """Lock a validated plan and render it. Blocks until every variation settles."""
    try:
        plan = plan_store.load_plan(plan_id)
    except ValueError:
        return _plan_not_found(plan_id)
    if plan is None:
        return _plan_not_found(plan_id)
    with _running_lock:
        if plan_id in _running:
            return JSONResponse({"error": f"Plan {plan_id} is already executing"}, status_code=409)
        cancel_event = threading.Event()
        _running[plan_id] = cancel_event
    try:
        result = await asyncio.to_thread(
            lock_and_execute,
            plan,
            build_render_backends(),
            cancel_event,
        )
    except InvalidStateError as exc:
        return JSONResponse(
            {"error": str(exc), "plan_id": plan_id, "status": exc.current},
            status_code=409,
        )
    finally:
        with _running_lock:
            _running.pop(plan_id, None)

    plan_store.save_plan(result.plan)
    plan_store.save_execution(result)
    return result.model_dump(mode="json")


@app.post("/api/plans/{plan_id}/cancel")
async def api_cancel_plan(plan_id: str):
    """Stop dispatching new variations; renders already started finish on their own."""
    with _running_lock:
        event = _running.get(plan_id)
    if event is None:
        return JSONResponse({"error": f"Plan {plan_id} is not executing"}, status_code=409)
    event.set()
    logger.info("Cancellation requested for plan %s", plan_id)
    return {"ok": True, "plan_id": plan_id}


@app.get("/api/health")
async def api_health():
    """Configured render backends and execution limits."""
    backends: list[dict[str, Any]] = [
        {
            "backend_id": row.descriptor.backend_id,
            "class": row.descriptor.backend_class,
            "available": row.descriptor.available,
        }
        for row in build_render_backends()
    ]
    return {
        "ok": any(row["available"] for row in backends),
        "backends": backends,
        "vps_configured": bool(config.VPS_RENDER_URL),
        "force_mock_render": config.FORCE_MOCK_RENDER,
        "max_workers": config.EXECUTION_MAX_WORKERS,
        "variation_timeout_seconds": config.VARIATION_TIMEOUT_SECONDS,
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn
    print("\n  Ad Variation Engine API")
    print("  http://localhost:8000/docs\n")
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
