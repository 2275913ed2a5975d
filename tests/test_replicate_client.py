"""
Replicate 客户端测试：请求构造与重试分类
"""
import asyncio

import pytest
import requests

from course_images.core.errors import ConfigurationError, ProviderError, TransientError
from course_images.services.replicate_client import ReplicateClient

WEBHOOK = "https://api.example.test/functions/v1/replicate-webhook"


class FakeResponse:
    def __init__(self, status_code: int, body=None):
        self.status_code = status_code
        self._body = body if body is not None else {}
        self.text = str(self._body)

    def json(self):
        return self._body


class FakeSession:
    """按顺序返回预置响应（或抛出预置异常）"""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.requests.append({"url": url, "headers": headers, "json": json})
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _client(session: FakeSession, token: str = "r8_token") -> ReplicateClient:
    return ReplicateClient(api_token=token, base_url="https://replicate.test/", session=session)


def test_versioned_engine_posts_to_predictions_endpoint() -> None:
    session = FakeSession([FakeResponse(201, {"id": "abc", "status": "starting"})])

    enqueued = asyncio.run(_client(session).create_prediction("a cover", "flux", WEBHOOK))

    assert enqueued.prediction_id == "abc"
    assert enqueued.status == "starting"
    sent = session.requests[0]
    assert sent["url"] == "https://replicate.test/v1/predictions"
    assert sent["headers"]["Authorization"] == "Bearer r8_token"
    assert sent["json"]["version"].startswith("80a09d66")
    assert sent["json"]["input"]["prompt"] == "a cover"
    assert sent["json"]["input"]["aspect_ratio"] == "16:9"
    assert sent["json"]["webhook"] == WEBHOOK
    assert sent["json"]["webhook_events_filter"] == ["start", "completed"]


def test_model_path_engine_uses_models_endpoint() -> None:
    session = FakeSession([FakeResponse(201, {"id": "p-1", "status": "starting"})])

    asyncio.run(_client(session).create_prediction("prompt", "proteus", WEBHOOK))

    sent = session.requests[0]
    assert sent["url"] == "https://replicate.test/v1/models/datacte/proteus-v0.2/predictions"
    assert "version" not in sent["json"]


def test_server_errors_are_retried() -> None:
    session = FakeSession(
        [
            FakeResponse(503, {"detail": "busy"}),
            requests.ConnectionError("reset"),
            FakeResponse(201, {"id": "ok-1", "status": "starting"}),
        ]
    )

    enqueued = asyncio.run(_client(session).create_prediction("prompt", "recraft", WEBHOOK))

    assert enqueued.prediction_id == "ok-1"
    assert len(session.requests) == 3


def test_retries_stop_after_max_attempts() -> None:
    session = FakeSession([FakeResponse(500), FakeResponse(502), FakeResponse(429)])

    with pytest.raises(TransientError):
        asyncio.run(_client(session).create_prediction("prompt", "flux", WEBHOOK))
    assert len(session.requests) == 3


def test_client_errors_are_not_retried() -> None:
    session = FakeSession([FakeResponse(422, {"detail": "Invalid version"})])

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(_client(session).create_prediction("prompt", "flux", WEBHOOK))

    assert "Invalid version" in exc_info.value.message
    assert exc_info.value.status_code == 502
    assert len(session.requests) == 1


def test_missing_token_fails_before_any_request() -> None:
    session = FakeSession([])

    with pytest.raises(ConfigurationError):
        asyncio.run(_client(session, token="").create_prediction("prompt", "flux", WEBHOOK))
    assert session.requests == []


def test_response_without_id_is_provider_error() -> None:
    session = FakeSession([FakeResponse(201, {"status": "starting"})])

    with pytest.raises(ProviderError):
        asyncio.run(_client(session).create_prediction("prompt", "flux", WEBHOOK))


def test_unknown_engine_rejected() -> None:
    with pytest.raises(ValueError):
        asyncio.run(_client(FakeSession([])).create_prediction("prompt", "dalle", WEBHOOK))
