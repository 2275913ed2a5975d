"""
任务状态机测试
"""
import pytest

from course_images.models import PredictionStatus, can_transition


def test_provider_status_mapping() -> None:
    assert PredictionStatus.from_provider("starting") is PredictionStatus.STARTING
    assert PredictionStatus.from_provider("processing") is PredictionStatus.STARTING
    assert PredictionStatus.from_provider("succeeded") is PredictionStatus.SUCCEEDED
    assert PredictionStatus.from_provider("failed") is PredictionStatus.FAILED
    assert PredictionStatus.from_provider("canceled") is PredictionStatus.FAILED

    with pytest.raises(ValueError):
        PredictionStatus.from_provider("queued")


def test_only_starting_can_move() -> None:
    assert can_transition("starting", "succeeded")
    assert can_transition(PredictionStatus.STARTING, PredictionStatus.FAILED)
    assert can_transition("starting", "starting")
    assert not can_transition("succeeded", "failed")
    assert not can_transition("failed", "succeeded")
    assert not can_transition("succeeded", "starting")


def test_terminal_flags() -> None:
    assert not PredictionStatus.STARTING.is_terminal
    assert PredictionStatus.SUCCEEDED.is_terminal
    assert PredictionStatus.FAILED.is_terminal
