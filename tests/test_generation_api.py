"""
生成发起 API 测试
"""
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from course_images.core.errors import ProviderError
from course_images.main import app
from course_images.models import Prediction
from course_images.services import generation_service
from course_images.services.generation_service import GenerationService
from course_images.services.replicate_client import EnqueuedPrediction

from conftest import SERVICE_KEY


class FakeReplicateClient:
    """记录调用并返回固定任务ID"""

    def __init__(self, api_token="test-token", error=None):
        self.api_token = api_token
        self.error = error
        self.calls = []

    async def create_prediction(self, prompt, engine, webhook_url):
        self.calls.append({"prompt": prompt, "engine": engine, "webhook_url": webhook_url})
        if self.error:
            raise self.error
        prediction_id = f"pred-{len(self.calls)}"
        return EnqueuedPrediction(prediction_id=prediction_id, status="starting", raw={"id": prediction_id})


@pytest.fixture
def fake_replicate():
    fake = FakeReplicateClient()
    generation_service._generation_service = GenerationService(replicate_client=fake)
    return fake


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_instructor_starts_cover_generation(test_db, seed_course, seed_profile, fake_replicate) -> None:
    seed_course("C1")
    token = seed_profile("u1", "instructor")

    resp = TestClient(app).post(
        "/functions/v1/generate-course-cover",
        json={"courseId": "C1", "engine": "recraft"},
        headers=_auth(token),
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "predictionId": "pred-1",
        "status": "starting",
        "engine": "recraft",
        "courseId": "C1",
    }
    assert fake_replicate.calls[0]["webhook_url"] == "https://api.example.test/functions/v1/replicate-webhook"
    assert "Blue Team Fundamentals" in fake_replicate.calls[0]["prompt"]

    with Session(test_db) as session:
        prediction = session.exec(select(Prediction)).one()
    assert prediction.prediction_id == "pred-1"
    assert prediction.status == "starting"
    assert prediction.prediction_type == "course_cover"
    assert prediction.course_id == "C1"
    assert prediction.input["category"] == "cybersecurity"


def test_missing_token_returns_401(test_db, seed_course, fake_replicate) -> None:
    seed_course("C1")
    client = TestClient(app)

    assert client.post("/functions/v1/generate-course-cover", json={"courseId": "C1"}).status_code == 401
    bad = client.post(
        "/functions/v1/generate-course-cover", json={"courseId": "C1"}, headers=_auth("nope")
    )
    assert bad.status_code == 401
    assert fake_replicate.calls == []


def test_student_is_forbidden(test_db, seed_course, seed_profile, fake_replicate) -> None:
    seed_course("C1")
    token = seed_profile("u2", "student")

    resp = TestClient(app).post(
        "/functions/v1/generate-course-cover", json={"courseId": "C1"}, headers=_auth(token)
    )

    assert resp.status_code == 403
    assert "error" in resp.json()
    assert fake_replicate.calls == []


def test_service_key_bypasses_role_check(test_db, seed_course, fake_replicate) -> None:
    seed_course("C1")

    resp = TestClient(app).post(
        "/functions/v1/generate-course-cover", json={"courseId": "C1"}, headers=_auth(SERVICE_KEY)
    )

    assert resp.status_code == 200
    assert resp.json()["predictionId"] == "pred-1"


def test_missing_course_id_returns_400(test_db, seed_profile, fake_replicate) -> None:
    token = seed_profile("u1", "admin")

    resp = TestClient(app).post("/functions/v1/generate-course-cover", json={}, headers=_auth(token))

    assert resp.status_code == 400
    assert "error" in resp.json()


def test_unknown_engine_returns_400(test_db, seed_course, seed_profile, fake_replicate) -> None:
    seed_course("C1")
    token = seed_profile("u1", "admin")

    resp = TestClient(app).post(
        "/functions/v1/generate-course-cover",
        json={"courseId": "C1", "engine": "dalle"},
        headers=_auth(token),
    )
    assert resp.status_code == 400


def test_unknown_course_returns_404(test_db, seed_profile, fake_replicate) -> None:
    token = seed_profile("u1", "admin")

    resp = TestClient(app).post(
        "/functions/v1/generate-course-cover", json={"courseId": "ghost"}, headers=_auth(token)
    )
    assert resp.status_code == 404
    assert fake_replicate.calls == []


def test_existing_cover_is_kept_without_regenerate(test_db, seed_course, seed_profile, fake_replicate) -> None:
    seed_course("C1", cover_image_url="https://img/old.png")
    token = seed_profile("u1", "admin")
    client = TestClient(app)

    kept = client.post(
        "/functions/v1/generate-course-cover", json={"courseId": "C1"}, headers=_auth(token)
    )
    assert kept.status_code == 200
    assert kept.json()["existingCover"] == "https://img/old.png"
    assert fake_replicate.calls == []

    regenerated = client.post(
        "/functions/v1/generate-course-cover",
        json={"courseId": "C1", "regenerate": True},
        headers=_auth(token),
    )
    assert regenerated.json()["success"] is True
    assert len(fake_replicate.calls) == 1


def test_missing_api_token_returns_500(test_db, seed_course, seed_profile) -> None:
    seed_course("C1")
    token = seed_profile("u1", "admin")
    generation_service._generation_service = GenerationService(
        replicate_client=FakeReplicateClient(api_token="")
    )

    resp = TestClient(app).post(
        "/functions/v1/generate-course-cover", json={"courseId": "C1"}, headers=_auth(token)
    )

    assert resp.status_code == 500
    assert "REPLICATE_API_TOKEN" in resp.json()["error"]


def test_provider_rejection_leaves_no_prediction(test_db, seed_course, seed_profile) -> None:
    seed_course("C1")
    token = seed_profile("u1", "admin")
    generation_service._generation_service = GenerationService(
        replicate_client=FakeReplicateClient(error=ProviderError("Replicate 拒绝请求: HTTP 422"))
    )

    resp = TestClient(app).post(
        "/functions/v1/generate-course-cover", json={"courseId": "C1"}, headers=_auth(token)
    )

    assert resp.status_code == 502
    assert "422" in resp.json()["error"]
    with Session(test_db) as session:
        assert session.exec(select(Prediction)).all() == []


def test_module_image_generation(test_db, seed_course, seed_module, seed_profile, fake_replicate) -> None:
    seed_course("C1")
    seed_module("M1", "C1", title="Análise de logs")
    token = seed_profile("u1", "instructor")

    resp = TestClient(app).post(
        "/functions/v1/generate-module-image", json={"moduleId": "M1"}, headers=_auth(token)
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["moduleId"] == "M1"
    assert body["courseId"] == "C1"
    assert "Análise de logs" in fake_replicate.calls[0]["prompt"]
    with Session(test_db) as session:
        prediction = session.exec(select(Prediction)).one()
    assert prediction.prediction_type == "module_image"
    assert prediction.module_id == "M1"


def test_prediction_lookup_endpoints(test_db, seed_course, seed_profile, fake_replicate) -> None:
    seed_course("C1")
    token = seed_profile("u1", "admin")
    reader = seed_profile("u2", "student")
    client = TestClient(app)
    client.post("/functions/v1/generate-course-cover", json={"courseId": "C1"}, headers=_auth(token))

    detail = client.get("/api/predictions/pred-1", headers=_auth(reader))
    assert detail.status_code == 200
    assert detail.json()["status"] == "starting"
    assert detail.json()["completedAt"] is None

    listed = client.get(
        "/api/predictions", params={"courseId": "C1", "status": "starting"}, headers=_auth(reader)
    )
    assert listed.json()["total"] == 1

    assert client.get("/api/predictions/missing", headers=_auth(reader)).status_code == 404
    assert client.get("/api/predictions", params={"status": "weird"}, headers=_auth(reader)).status_code == 400


def test_prediction_lookup_requires_login(test_db, seed_course, seed_profile, fake_replicate) -> None:
    """任务查询会暴露生成服务的错误信息，未登录不可访问"""
    seed_course("C1")
    token = seed_profile("u1", "admin")
    client = TestClient(app)
    client.post("/functions/v1/generate-course-cover", json={"courseId": "C1"}, headers=_auth(token))

    assert client.get("/api/predictions/pred-1").status_code == 401
    assert client.get("/api/predictions", params={"courseId": "C1"}).status_code == 401
    assert client.get("/api/predictions", headers=_auth("forged")).status_code == 401
