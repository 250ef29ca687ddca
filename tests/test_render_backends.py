from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx

import config
from pipeline.render_backends import (
    MockRenderBackend,
    RenderError,
    TransientRenderError,
    VpsRenderBackend,
    build_render_backends,
    idempotency_key,
    is_transient,
)
from schemas.creative_plan import Variation, VariationReasoning


def _variation() -> Variation:
    return Variation(
        index=2,
        framework="PAS",
        hook_type="problem_solution",
        pacing="medium",
        transitions=("hard-cut", "zoom"),
        target_duration=24.5,
        engine_id="server_ffmpeg",
        use_vps=True,
        reasoning=VariationReasoning(framework="PAS", engine="VPS backend"),
    )


def _response(status_code: int, payload=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


class MockBackendTests(unittest.TestCase):
    def test_writes_one_file_per_variation(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = MockRenderBackend().render(
                plan_id="plan_a",
                variation=_variation(),
                output_dir=Path(tmp),
                idempotency_key="k1",
            )
            path = Path(out["output_path"])
            self.assertEqual(path.name, "plan_a_v002.mock.txt")
            self.assertIn("HOOK=problem_solution", path.read_text(encoding="utf-8"))
            self.assertTrue(out["video_url"].startswith("file://"))
            self.assertEqual(out["job_id"], "mock_k1")

    def test_idempotency_key_is_stable(self):
        self.assertEqual(idempotency_key("p", 1, "b"), idempotency_key("p", 1, "b"))
        self.assertNotEqual(idempotency_key("p", 1, "b"), idempotency_key("p", 2, "b"))


class VpsBackendTests(unittest.TestCase):
    def setUp(self):
        self.backend = VpsRenderBackend("https://render.example/", token="secret", timeout_seconds=5)

    def _render(self):
        return self.backend.render(plan_id="plan_a", variation=_variation(), output_dir=Path("."), idempotency_key="k1")

    def test_success_posts_plan_and_returns_url(self):
        reply = _response(200, {"ok": True, "outputUrl": "https://cdn.example/v2.mp4", "jobId": "j9"})
        with patch("pipeline.render_backends.httpx.post", return_value=reply) as post:
            out = self._render()
        self.assertEqual(out["video_url"], "https://cdn.example/v2.mp4")
        self.assertEqual(out["job_id"], "j9")
        url = post.call_args.args[0]
        kwargs = post.call_args.kwargs
        self.assertEqual(url, "https://render.example/api/execute")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer secret")
        self.assertEqual(kwargs["json"]["variation_index"], 2)
        self.assertEqual(kwargs["json"]["idempotency_key"], "k1")
        self.assertEqual(kwargs["timeout"], 5.0)

    def test_server_errors_are_transient(self):
        for status in (429, 503):
            with patch("pipeline.render_backends.httpx.post", return_value=_response(status)):
                with self.assertRaises(TransientRenderError) as ctx:
                    self._render()
            self.assertTrue(is_transient(ctx.exception))

    def test_connection_error_is_transient(self):
        with patch("pipeline.render_backends.httpx.post", side_effect=httpx.ConnectError("refused")):
            with self.assertRaises(TransientRenderError):
                self._render()

    def test_client_error_is_permanent(self):
        with patch("pipeline.render_backends.httpx.post", return_value=_response(400, text="bad plan")):
            with self.assertRaises(RenderError) as ctx:
                self._render()
        self.assertFalse(is_transient(ctx.exception))
        self.assertIn("bad plan", str(ctx.exception))

    def test_failed_or_malformed_payload_is_permanent(self):
        cases = [
            _response(200, {"ok": False, "error": "ffmpeg exited 1"}),
            _response(200, {"ok": True}),
            _response(200, ValueError("not json")),
        ]
        for reply in cases:
            with patch("pipeline.render_backends.httpx.post", return_value=reply):
                with self.assertRaises(RenderError) as ctx:
                    self._render()
            self.assertFalse(is_transient(ctx.exception))


class BuildBackendsTests(unittest.TestCase):
    def test_defaults_to_mock_without_vps_url(self):
        with patch.object(config, "FORCE_MOCK_RENDER", False), patch.object(config, "VPS_RENDER_URL", ""):
            backends = build_render_backends()
        self.assertEqual([row.descriptor.backend_id for row in backends], ["mock_render"])

    def test_vps_url_enables_vps_backend(self):
        with patch.object(config, "FORCE_MOCK_RENDER", False), patch.object(config, "VPS_RENDER_URL", "https://vps"):
            backends = build_render_backends()
        self.assertEqual([row.descriptor.backend_id for row in backends], ["server_ffmpeg"])
        self.assertTrue(backends[0].descriptor.is_vps)

    def test_force_mock_wins(self):
        with patch.object(config, "FORCE_MOCK_RENDER", True), patch.object(config, "VPS_RENDER_URL", "https://vps"):
            backends = build_render_backends()
        self.assertIsInstance(backends[0], MockRenderBackend)


if __name__ == "__main__":
    unittest.main()
