"""Execution supervisor: run a locked plan's variations with bounded concurrency.

Each variation walks the degradation ladder on its own:
retry the same backend on transient errors -> switch to the next backend in
the routing chain -> record a partial-success entry. One variation's failure
never cancels its siblings. Cancellation stops new work only: queued renders
are withdrawn, renders that already started are left to finish or time out on
their own. The per-variation timeout counts render time, not time spent
waiting for a free render worker.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Any, Callable

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

import config
from pipeline.execution_router import route_variation
from pipeline.render_backends import RenderBackend, RenderError, idempotency_key, is_transient
from schemas.creative_plan import CreativePlan, InvalidStateError, PlanExecutionResult, Variation
from schemas.execution import RouterResult, next_job_state

logger = logging.getLogger(__name__)

_DISPATCH_POLL_SECONDS = 0.02

PARTIAL_SUCCESS_MESSAGE = (
    "Your device or available engines could not render the video, but here is your "
    "optimized creative plan ready for export or manual editing in professional software."
)


class _JobTrack:
    """Per-variation job state with its transition history."""

    def __init__(self) -> None:
        self.state = "queued"
        self.history = ["queued"]

    def move(self, requested: str) -> None:
        self.state = next_job_state(self.state, requested)
        self.history.append(self.state)


def _elapsed_ms(started: float) -> int:
    return int(round((time.monotonic() - started) * 1000))


class ExecutionSupervisor:
    def __init__(
        self,
        max_workers: int | None = None,
        variation_timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        output_dir: Path | None = None,
        retry_wait_max_seconds: float | None = None,
    ):
        self.max_workers = max(1, int(max_workers or config.EXECUTION_MAX_WORKERS))
        self.variation_timeout_seconds = float(
            config.VARIATION_TIMEOUT_SECONDS if variation_timeout_seconds is None else variation_timeout_seconds
        )
        self.max_attempts = max(1, int(max_attempts or config.RENDER_MAX_ATTEMPTS))
        self.output_dir = output_dir or (config.OUTPUT_DIR / "renders")
        self.retry_wait_max_seconds = float(
            config.RENDER_RETRY_WAIT_MAX_SECONDS if retry_wait_max_seconds is None else retry_wait_max_seconds
        )

    # -- rendering ---------------------------------------------------------

    def _render_with_retry(self, backend: RenderBackend, plan_id: str, variation: Variation) -> tuple[dict[str, Any], int]:
        attempts = 0

        def _once() -> dict[str, Any]:
            nonlocal attempts
            attempts += 1
            return backend.render(
                plan_id=plan_id,
                variation=variation,
                output_dir=self.output_dir / plan_id,
                idempotency_key=idempotency_key(plan_id, variation.index, backend.descriptor.backend_id),
            )

        retryer = Retrying(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.5, max=self.retry_wait_max_seconds),
            reraise=True,
        )
        try:
            payload = retryer(_once)
        except RenderError as exc:
            exc.attempts = attempts
            raise
        return payload, attempts

    def _dispatch(
        self,
        render_pool: ThreadPoolExecutor,
        cancel_event: threading.Event,
        fn: Callable[..., Any],
        *args: Any,
    ) -> Future | None:
        """Queue a render and block until a render worker picks it up.

        Returns None when cancellation lands while the render is still queued;
        the queued call is withdrawn and never reaches the backend.
        """
        picked_up = threading.Event()

        def _task() -> Any:
            picked_up.set()
            return fn(*args)

        future = render_pool.submit(_task)
        while not picked_up.wait(_DISPATCH_POLL_SECONDS):
            if cancel_event.is_set() and future.cancel():
                return None
        return future

    def _run_variation(
        self,
        plan: CreativePlan,
        variation: Variation,
        backends: list[RenderBackend],
        render_pool: ThreadPoolExecutor,
        cancel_event: threading.Event,
    ) -> RouterResult:
        started = time.monotonic()
        budget = self.variation_timeout_seconds
        job = _JobTrack()

        def _result(**fields: Any) -> RouterResult:
            fields.setdefault("status", "partial_success")
            return RouterResult(
                variation_index=variation.index,
                processing_time_ms=_elapsed_ms(started),
                job_state=job.state,
                job_history=list(job.history),
                **fields,
            )

        if cancel_event.is_set():
            job.move("error")
            return _result(
                failure_kind="cancelled",
                human_readable_message=f"Variation {variation.index + 1} was cancelled before it started.",
            )

        job.move("running")
        by_id = {row.descriptor.backend_id: row for row in backends}
        decision = route_variation(variation, [row.descriptor for row in backends], plan.route_options)
        if decision.failure is not None:
            job.move("error")
            return _result(
                failure_kind="routing_failure",
                routing_failure=decision.failure,
                error=decision.failure.reason,
                human_readable_message=(
                    f"Variation {variation.index + 1}: no rendering engine supports it right now; "
                    "its plan is kept for export."
                ),
            )
        if decision.selected.backend_id != variation.engine_id:
            logger.info(
                "Plan %s variation=%d: planned engine %s, executing on %s",
                plan.id,
                variation.index,
                variation.engine_id,
                decision.selected.backend_id,
            )

        chain = decision.chain if plan.execution_strategy.fallback_allowed else decision.chain[:1]
        total_attempts = 0
        last_error = ""
        for position, descriptor in enumerate(chain):
            if position and cancel_event.is_set():
                job.move("error")
                return _result(
                    failure_kind="cancelled",
                    attempts=total_attempts,
                    error=last_error,
                    human_readable_message=f"Variation {variation.index + 1} was cancelled during fallback.",
                )
            backend = by_id[descriptor.backend_id]
            if budget <= 0:
                break
            future = self._dispatch(render_pool, cancel_event, self._render_with_retry, backend, plan.id, variation)
            if future is None:
                job.move("error")
                return _result(
                    failure_kind="cancelled",
                    attempts=total_attempts,
                    error=last_error,
                    human_readable_message=f"Variation {variation.index + 1} was cancelled while waiting for a render slot.",
                )
            began = time.monotonic()
            try:
                payload, attempts = future.result(timeout=budget)
            except FuturesTimeoutError:
                # The render keeps running remotely; it is not aborted.
                logger.warning(
                    "Plan %s variation=%d timed out on %s after %.1fs",
                    plan.id,
                    variation.index,
                    descriptor.backend_id,
                    self.variation_timeout_seconds,
                )
                job.move("error")
                return _result(
                    failure_kind="execution_timeout",
                    backend_id=descriptor.backend_id,
                    attempts=total_attempts + 1,
                    error=f"timed out after {self.variation_timeout_seconds:g}s",
                    human_readable_message=f"Variation {variation.index + 1} timed out; its plan is kept.",
                )
            except RenderError as exc:
                budget -= time.monotonic() - began
                total_attempts += getattr(exc, "attempts", 1)
                last_error = str(exc)
                next_id = chain[position + 1].backend_id if position + 1 < len(chain) else None
                logger.warning(
                    "Plan %s variation=%d failed on %s: %s; next=%s",
                    plan.id,
                    variation.index,
                    descriptor.backend_id,
                    exc,
                    next_id,
                )
                continue

            total_attempts += attempts
            job.move("done")
            return _result(
                status="completed",
                video_url=payload.get("video_url") or None,
                output_path=str(payload.get("output_path") or ""),
                backend_id=descriptor.backend_id,
                attempts=total_attempts,
                human_readable_message=f"Variation {variation.index + 1} rendered on {descriptor.name or descriptor.backend_id}.",
            )

        job.move("error")
        if not last_error:
            return _result(
                failure_kind="execution_timeout",
                attempts=total_attempts,
                error=f"no time left within {self.variation_timeout_seconds:g}s",
                human_readable_message=f"Variation {variation.index + 1} timed out; its plan is kept.",
            )
        return _result(
            failure_kind="render_failed",
            attempts=total_attempts,
            error=last_error,
            human_readable_message=PARTIAL_SUCCESS_MESSAGE,
        )

    # -- plan --------------------------------------------------------------

    def _collect(
        self,
        plan: CreativePlan,
        variation: Variation,
        backends: list[RenderBackend],
        render_pool: ThreadPoolExecutor,
        cancel_event: threading.Event,
        results: list[RouterResult],
        results_lock: threading.Lock,
    ) -> None:
        """Run one variation on a worker and append its result, crash or not."""
        try:
            result = self._run_variation(plan, variation, backends, render_pool, cancel_event)
        except Exception as exc:
            logger.exception("Plan %s variation=%d crashed", plan.id, variation.index)
            result = RouterResult(
                variation_index=variation.index,
                status="partial_success",
                job_state="error",
                job_history=["queued", "error"],
                failure_kind="render_failed",
                error=str(exc),
                human_readable_message=PARTIAL_SUCCESS_MESSAGE,
            )
        with results_lock:
            results.append(result)

    def execute(
        self,
        plan: CreativePlan,
        backends: list[RenderBackend],
        cancel_event: threading.Event | None = None,
    ) -> PlanExecutionResult:
        if not plan.is_locked:
            raise InvalidStateError(
                f"Plan {plan.id} must be locked before execution (status={plan.status})",
                plan_id=plan.id,
                current=plan.status,
                requested="execute",
            )
        cancel_event = cancel_event or threading.Event()
        started = time.monotonic()
        results: list[RouterResult] = []
        results_lock = threading.Lock()

        logger.info(
            "Executing plan %s: variations=%d workers=%d timeout=%.0fs backends=%s",
            plan.id,
            len(plan.variations),
            self.max_workers,
            self.variation_timeout_seconds,
            [row.descriptor.backend_id for row in backends],
        )
        render_pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="render")
        try:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="variation") as pool:
                futures = [
                    pool.submit(self._collect, plan, row, backends, render_pool, cancel_event, results, results_lock)
                    for row in plan.variations
                ]
                for future in as_completed(futures):
                    future.result()
        finally:
            # Started renders finish in the background; queued ones are dropped.
            render_pool.shutdown(wait=False, cancel_futures=True)

        results.sort(key=lambda row: row.variation_index)
        done = sum(1 for row in results if row.completed)
        total = len(plan.variations)
        if total and done == total:
            status = "completed"
            message = f"All {total} variations rendered."
        elif done == 0:
            status = "partial_success"
            message = PARTIAL_SUCCESS_MESSAGE
        else:
            status = "partial_success"
            message = (
                f"{done} of {total} variations rendered. Finished videos and the full plan "
                "are kept for manual continuation."
            )
        logger.info("Plan %s finished: status=%s rendered=%d/%d", plan.id, status, done, total)
        return PlanExecutionResult(
            plan_id=plan.id,
            status=status,
            results=results,
            plan=plan,
            processing_time_ms=_elapsed_ms(started),
            human_readable_message=message,
        )
