"""JSON file store for plans and execution results, plus input loaders.

One flat JSON document per plan at PLANS_DIR/<plan_id>.json; 'id' and
'status' are always present so a plan can be re-fetched idempotently.
A stored locked plan is never overwritten with different content.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

import config
from schemas.creative_plan import CreativePlan, PlanExecutionResult, PlanLockedError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class InputDataError(ValueError):
    """Input file is missing, malformed, or fails schema validation."""


def read_json_file(path: Path) -> dict[str, Any]:
    """Read and parse JSON file with actionable errors."""
    if not path.exists():
        raise InputDataError(f"Input file does not exist: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InputDataError(f"Malformed JSON in {path}: {exc}") from exc
    except OSError as exc:
        raise InputDataError(f"Failed reading {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise InputDataError(f"{path} must contain a JSON object")
    return data


def load_model(path: Path, model: type[T]) -> T:
    data = read_json_file(path)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise InputDataError(f"{path} is not a valid {model.__name__}: {exc}") from exc


def _write_json(path: Path, payload: dict[str, Any]):
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    os.replace(tmp, path)


class PlanStore:
    def __init__(self, root: Path | None = None):
        self.root = Path(root or config.PLANS_DIR)
        self._lock = threading.Lock()

    def _path(self, plan_id: str, suffix: str = ".json") -> Path:
        if not _SAFE_ID.match(plan_id or ""):
            raise ValueError(f"Invalid plan id: {plan_id!r}")
        return self.root / f"{plan_id}{suffix}"

    def save_plan(self, plan: CreativePlan) -> Path:
        path = self._path(plan.id)
        payload = plan.model_dump(mode="json")
        with self._lock:
            if path.exists():
                existing = read_json_file(path)
                if existing.get("status") == "locked" and existing != payload:
                    raise PlanLockedError(
                        f"Stored plan {plan.id} is locked; save it under a new id",
                        plan_id=plan.id,
                        current="locked",
                        requested="overwrite",
                    )
            _write_json(path, payload)
        logger.debug("Saved plan %s (%s) -> %s", plan.id, plan.status, path)
        return path

    def load_plan(self, plan_id: str) -> CreativePlan | None:
        path = self._path(plan_id)
        if not path.exists():
            return None
        return CreativePlan.model_validate(read_json_file(path))

    def list_plans(self) -> list[dict[str, Any]]:
        rows = []
        if not self.root.exists():
            return rows
        for path in sorted(self.root.glob("*.json")):
            if path.name.endswith(".execution.json"):
                continue
            try:
                data = read_json_file(path)
            except InputDataError as exc:
                logger.warning("Skipping unreadable plan file %s: %s", path, exc)
                continue
            rows.append(
                {
                    "id": data.get("id", path.stem),
                    "status": data.get("status", ""),
                    "variations": len(data.get("variations") or []),
                    "created_at": data.get("created_at", ""),
                }
            )
        return rows

    def save_execution(self, result: PlanExecutionResult) -> Path:
        path = self._path(result.plan_id, ".execution.json")
        with self._lock:
            _write_json(path, result.model_dump(mode="json"))
        return path

    def load_execution(self, plan_id: str) -> PlanExecutionResult | None:
        path = self._path(plan_id, ".execution.json")
        if not path.exists():
            return None
        return PlanExecutionResult.model_validate(read_json_file(path))
