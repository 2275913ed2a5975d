"""
Acceptance smoke checks for course-images.

Usage:
  DATABASE_URL=sqlite:///./data/acceptance_course_images.db PYTHONPATH=src .venv/bin/python scripts/acceptance_smoke.py
  DATABASE_URL=sqlite:///./data/acceptance_course_images.db PYTHONPATH=src .venv/bin/python scripts/acceptance_smoke.py --with-external
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import uuid
from dataclasses import dataclass
from typing import Callable

from fastapi.testclient import TestClient


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str


def _ok(name: str, detail: str) -> CheckResult:
    return CheckResult(name=name, passed=True, detail=detail)


def _fail(name: str, detail: str) -> CheckResult:
    return CheckResult(name=name, passed=False, detail=detail)


def run_check(name: str, fn: Callable[[], CheckResult]) -> CheckResult:
    try:
        return fn()
    except Exception as exc:  # pragma: no cover - smoke tool
        return _fail(name, f"exception: {exc}")


class _StubReplicateClient:
    """Stands in for Replicate when external calls are disabled."""

    api_token = "smoke-token"

    async def create_prediction(self, prompt: str, engine: str, webhook_url: str):
        from course_images.services.replicate_client import EnqueuedPrediction

        return EnqueuedPrediction(
            prediction_id=f"smoke-{uuid.uuid4().hex[:12]}",
            status="starting",
            raw={"prompt": prompt, "engine": engine, "webhook": webhook_url},
        )


def main() -> int:
    parser = argparse.ArgumentParser(description="Run acceptance smoke checks.")
    parser.add_argument(
        "--with-external",
        action="store_true",
        help="Enqueue a real prediction on Replicate instead of using a stub.",
    )
    args = parser.parse_args()

    database_url = os.getenv("DATABASE_URL", "sqlite:///./data/acceptance_course_images.db")
    os.environ["DATABASE_URL"] = database_url
    os.environ.setdefault("REPLICATE_WEBHOOK_SECRET", "smoke-secret")
    os.environ.setdefault("SERVICE_ROLE_KEY", "smoke-service-key")
    os.environ.setdefault("REHOST_IMAGES", "false")
    os.environ.setdefault("NO_PROXY", "*")

    from sqlmodel import Session

    from course_images.core import get_settings
    from course_images.core.database import engine, init_db
    from course_images.main import app
    from course_images.models import Course
    from course_images.services import generation_service as generation_module
    from course_images.services.webhook_service import compute_signature

    settings = get_settings()
    init_db()

    if not args.with_external:
        generation_module._generation_service = generation_module.GenerationService(
            replicate_client=_StubReplicateClient()
        )

    course_id = f"smoke-course-{uuid.uuid4().hex[:8]}"
    with Session(engine) as session:
        session.add(Course(id=course_id, title="Smoke Test: Blue Team Fundamentals"))
        session.commit()

    client = TestClient(app)
    auth = {"Authorization": f"Bearer {settings.service_role_key}"}
    results: list[CheckResult] = []
    state: dict = {}

    def check_health() -> CheckResult:
        resp = client.get("/health")
        if resp.status_code != 200:
            return _fail("GET /health", f"status={resp.status_code}, body={resp.text[:200]}")
        return _ok("GET /health", "healthy")

    def check_trigger() -> CheckResult:
        resp = client.post(
            "/functions/v1/generate-course-cover",
            json={"courseId": course_id, "engine": "flux"},
            headers=auth,
        )
        if resp.status_code != 200:
            return _fail("POST generate-course-cover", f"status={resp.status_code}, body={resp.text[:300]}")
        data = resp.json()
        state["prediction_id"] = data.get("predictionId")
        if not state["prediction_id"]:
            return _fail("POST generate-course-cover", f"unexpected response: {json.dumps(data)[:300]}")
        return _ok("POST generate-course-cover", f"predictionId={state['prediction_id']}")

    def check_unsigned_webhook_rejected() -> CheckResult:
        body = json.dumps({"id": state.get("prediction_id"), "status": "succeeded"}).encode()
        resp = client.post("/functions/v1/replicate-webhook", content=body)
        if resp.status_code != 401:
            return _fail("POST replicate-webhook (unsigned)", f"status={resp.status_code}")
        return _ok("POST replicate-webhook (unsigned)", "401 as expected")

    def check_signed_webhook() -> CheckResult:
        output = "https://replicate.delivery/smoke/cover.webp"
        body = json.dumps(
            {"id": state.get("prediction_id"), "status": "succeeded", "output": [output]}
        ).encode()
        signature = "sha256=" + compute_signature(body, settings.replicate_webhook_secret)
        resp = client.post(
            "/functions/v1/replicate-webhook",
            content=body,
            headers={"replicate-signature": signature},
        )
        if resp.status_code != 200:
            return _fail("POST replicate-webhook", f"status={resp.status_code}, body={resp.text[:300]}")

        with Session(engine) as session:
            course = session.get(Course, course_id)
        if course.cover_image_url != output or course.thumbnail_url != output:
            return _fail(
                "POST replicate-webhook",
                f"cover={course.cover_image_url}, thumbnail={course.thumbnail_url}",
            )
        return _ok("POST replicate-webhook", "course cover dual-written")

    results.append(run_check("GET /health", check_health))
    results.append(run_check("POST generate-course-cover", check_trigger))
    results.append(run_check("POST replicate-webhook (unsigned)", check_unsigned_webhook_rejected))
    if not args.with_external:
        results.append(run_check("POST replicate-webhook", check_signed_webhook))

    passed = sum(1 for item in results if item.passed)
    failed = len(results) - passed

    print("\nAcceptance Smoke Report")
    print("=" * 24)
    for item in results:
        status = "PASS" if item.passed else "FAIL"
        print(f"[{status}] {item.name}: {item.detail}")

    print("-" * 24)
    print(f"passed={passed}, failed={failed}, total={len(results)}")
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
