"""Render backend adapters (mock + VPS over HTTP) and the backend factory."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Any, Protocol

import httpx

import config
from schemas.creative_plan import Variation
from schemas.execution import BackendDescriptor

logger = logging.getLogger(__name__)

ALL_CAPABILITIES = frozenset(
    {"trim", "merge", "resize", "text_overlay", "transition", "speed_change", "format_convert"}
)


class RenderError(Exception):
    """Render call failed for good on this backend."""

    def __init__(self, message: str, backend_id: str = "", cause: Exception | None = None):
        self.backend_id = backend_id
        self.cause = cause
        super().__init__(message)


class TransientRenderError(RenderError):
    """Render call failed in a way worth retrying on the same backend."""


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientRenderError)


class RenderBackend(Protocol):
    descriptor: BackendDescriptor

    def render(
        self,
        *,
        plan_id: str,
        variation: Variation,
        output_dir: Path,
        idempotency_key: str,
    ) -> dict[str, Any]:
        """Render one variation and return {'video_url', 'output_path', 'job_id'}."""


def idempotency_key(plan_id: str, variation_index: int, backend_id: str) -> str:
    raw = f"{plan_id}|{variation_index}|{backend_id}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


class MockRenderBackend:
    """Deterministic render stand-in for local runs and tests."""

    def __init__(self, descriptor: BackendDescriptor | None = None):
        self.descriptor = descriptor or BackendDescriptor(
            backend_id="mock_render",
            name="Mock renderer",
            provider="mock",
            backend_class="edge",
            capabilities=ALL_CAPABILITIES,
            cost_profile="free",
            cost_per_second=0.0,
            priority=50,
            local=True,
        )

    def render(
        self,
        *,
        plan_id: str,
        variation: Variation,
        output_dir: Path,
        idempotency_key: str,
    ) -> dict[str, Any]:
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{plan_id}_v{variation.index:03d}.mock.txt"
        payload = (
            f"PLAN={plan_id}\n"
            f"VARIATION={variation.index}\n"
            f"FRAMEWORK={variation.framework}\n"
            f"HOOK={variation.hook_type}\n"
            f"PACING={variation.pacing}\n"
            f"TRANSITIONS={','.join(variation.transitions)}\n"
            f"DURATION_SECONDS={variation.target_duration}\n"
            f"KEY={idempotency_key}\n"
        )
        output_path.write_text(payload, encoding="utf-8")
        return {
            "video_url": output_path.resolve().as_uri(),
            "output_path": str(output_path),
            "job_id": f"mock_{idempotency_key}",
        }


class VpsRenderBackend:
    """Server-side FFmpeg renderer reached over HTTP (POST /api/execute)."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout_seconds: float | None = None,
        descriptor: BackendDescriptor | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = float(timeout_seconds or config.VPS_RENDER_HTTP_TIMEOUT_SECONDS)
        self.descriptor = descriptor or BackendDescriptor(
            backend_id="server_ffmpeg",
            name="VPS FFmpeg",
            provider="ffmpeg",
            backend_class="vps",
            capabilities=ALL_CAPABILITIES,
            cost_profile="free",
            cost_per_second=0.0,
            priority=1,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def render(
        self,
        *,
        plan_id: str,
        variation: Variation,
        output_dir: Path,
        idempotency_key: str,
    ) -> dict[str, Any]:
        backend_id = self.descriptor.backend_id
        body = {
            "plan_id": plan_id,
            "variation_index": variation.index,
            "idempotency_key": idempotency_key,
            "execution_plan": variation.model_dump(mode="json"),
        }
        try:
            response = httpx.post(
                f"{self.base_url}/api/execute",
                json=body,
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientRenderError(f"VPS unreachable: {exc}", backend_id=backend_id, cause=exc) from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientRenderError(
                f"VPS returned HTTP {response.status_code}",
                backend_id=backend_id,
            )
        if response.status_code >= 400:
            raise RenderError(
                f"VPS rejected the job: HTTP {response.status_code} {response.text[:200]}",
                backend_id=backend_id,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise RenderError("VPS returned a non-JSON body", backend_id=backend_id, cause=exc) from exc
        if not isinstance(data, dict) or not data.get("ok"):
            message = str((data or {}).get("error") or "unknown error") if isinstance(data, dict) else "bad payload"
            raise RenderError(f"VPS render failed: {message}", backend_id=backend_id)

        video_url = str(data.get("outputUrl") or data.get("output_url") or "").strip()
        if not video_url:
            raise RenderError("VPS response has no output URL", backend_id=backend_id)
        return {
            "video_url": video_url,
            "output_path": str(data.get("outputPath") or data.get("output_path") or ""),
            "job_id": str(data.get("jobId") or data.get("job_id") or ""),
        }


def build_render_backends() -> list[RenderBackend]:
    if config.FORCE_MOCK_RENDER:
        return [MockRenderBackend()]

    backends: list[RenderBackend] = []
    if str(config.VPS_RENDER_URL or "").strip():
        backends.append(VpsRenderBackend(config.VPS_RENDER_URL, token=config.VPS_RENDER_TOKEN))
    else:
        logger.info("VPS_RENDER_URL not set; VPS rendering disabled")

    # Keep local runs deterministic when no real renderer is configured.
    if not backends:
        backends.append(MockRenderBackend())
    return backends
