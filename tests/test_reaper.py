"""
超时任务清理测试
"""
from datetime import datetime, timedelta

from fastapi.testclient import TestClient
from sqlmodel import Session, select

from course_images.main import app
from course_images.models import GenerationEvent, Prediction
from course_images.services.prediction_service import PredictionService
from course_images.services.reaper_service import ReaperService
from course_images.models import PredictionStatus

from conftest import SERVICE_KEY

NOW = datetime(2026, 10, 18, 12, 0, 0)


def _insert(engine, prediction_id: str, created_at: datetime, status: str = "starting") -> None:
    with Session(engine) as session:
        session.add(
            Prediction(
                prediction_id=prediction_id,
                status=status,
                prediction_type="course_cover",
                course_id="C1",
                engine="flux",
                created_at=created_at,
                updated_at=created_at,
            )
        )
        session.commit()


def _status(engine, prediction_id: str) -> Prediction:
    with Session(engine) as session:
        return session.exec(select(Prediction).where(Prediction.prediction_id == prediction_id)).one()


def test_reaps_only_rows_older_than_cutoff(test_db) -> None:
    _insert(test_db, "old", NOW - timedelta(minutes=45))
    _insert(test_db, "fresh", NOW - timedelta(minutes=5))
    _insert(test_db, "done", NOW - timedelta(hours=2), status="succeeded")

    reaped = ReaperService(test_db, timeout=timedelta(minutes=30)).reap_stale(now=NOW)

    assert reaped == ["old"]
    old = _status(test_db, "old")
    assert old.status == "failed"
    assert "30" in old.error
    assert old.completed_at == NOW
    assert _status(test_db, "fresh").status == "starting"
    assert _status(test_db, "done").status == "succeeded"


def test_cutoff_is_strict(test_db) -> None:
    """恰好等于截止时间的任务不清理"""
    _insert(test_db, "edge", NOW - timedelta(minutes=30))

    assert ReaperService(test_db, timeout=timedelta(minutes=30)).reap_stale(now=NOW) == []
    assert _status(test_db, "edge").status == "starting"


def test_custom_timeout(test_db) -> None:
    _insert(test_db, "three-hours", NOW - timedelta(hours=3))
    _insert(test_db, "one-hour", NOW - timedelta(hours=1))

    reaped = ReaperService(test_db).reap_stale(now=NOW, timeout=timedelta(hours=2))

    assert reaped == ["three-hours"]
    assert _status(test_db, "one-hour").status == "starting"


def test_dry_run_query_does_not_modify(test_db) -> None:
    _insert(test_db, "old", NOW - timedelta(hours=1))

    stale = ReaperService(test_db).find_stale(now=NOW, timeout=timedelta(minutes=30))

    assert [p.prediction_id for p in stale] == ["old"]
    assert _status(test_db, "old").status == "starting"


def test_reaping_records_timeout_event(test_db) -> None:
    _insert(test_db, "old", NOW - timedelta(hours=1))

    ReaperService(test_db).reap_stale(now=NOW, timeout=timedelta(minutes=30))

    with Session(test_db) as session:
        events = session.exec(
            select(GenerationEvent).where(GenerationEvent.event_type == "prediction_timeout")
        ).all()
    assert len(events) == 1
    assert events[0].event_data["prediction_id"] == "old"


def test_webhook_after_reap_is_ignored(test_db) -> None:
    _insert(test_db, "old", NOW - timedelta(hours=1))
    ReaperService(test_db).reap_stale(now=NOW, timeout=timedelta(minutes=30))

    result = PredictionService(test_db).apply_webhook(
        "old", PredictionStatus.SUCCEEDED, output="https://img/late.png"
    )

    assert result.found
    assert not result.transitioned
    prediction = _status(test_db, "old")
    assert prediction.status == "failed"
    assert prediction.output is None


def test_reaper_skips_row_finished_by_webhook(test_db, monkeypatch) -> None:
    """查询到候选后 webhook 先完成，清理不覆盖其结果"""
    _insert(test_db, "racing", NOW - timedelta(hours=1))
    reaper = ReaperService(test_db, timeout=timedelta(minutes=30))
    original_find = reaper.find_stale

    def find_then_complete(now=None, timeout=None):
        candidates = original_find(now=now, timeout=timeout)
        PredictionService(test_db).apply_webhook(
            "racing", PredictionStatus.SUCCEEDED, output="https://img/won.png"
        )
        return candidates

    monkeypatch.setattr(reaper, "find_stale", find_then_complete)

    assert reaper.reap_stale(now=NOW) == []
    prediction = _status(test_db, "racing")
    assert prediction.status == "succeeded"
    assert prediction.output == "https://img/won.png"


def test_reap_endpoint_requires_service_key(test_db) -> None:
    _insert(test_db, "old", datetime.now() - timedelta(hours=2))
    client = TestClient(app)

    denied = client.post("/api/predictions/reap", json={})
    assert denied.status_code == 401

    resp = client.post(
        "/api/predictions/reap",
        json={"timeoutMinutes": 60},
        headers={"Authorization": f"Bearer {SERVICE_KEY}"},
    )
    assert resp.status_code == 200
    assert resp.json()["reaped"] == ["old"]
    assert _status(test_db, "old").status == "failed"


def test_zero_timeout_is_not_replaced_by_default(test_db) -> None:
    _insert(test_db, "just-now", NOW - timedelta(seconds=1))

    reaper = ReaperService(test_db, timeout=timedelta(minutes=30))

    assert [p.prediction_id for p in reaper.find_stale(now=NOW, timeout=timedelta(0))] == ["just-now"]
    assert reaper.reap_stale(now=NOW, timeout=timedelta(0)) == ["just-now"]
    assert ReaperService(test_db, timeout=timedelta(0)).timeout == timedelta(0)
