"""
实时推送 API（SSE）
"""
import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from course_images.core import get_settings
from course_images.services.notifier import RealtimeNotifier, get_notifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])


def _sse_event(data: dict) -> str:
    """格式化 SSE 事件。"""
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


async def _course_events(
    course_id: str,
    request: Request,
    notifier: RealtimeNotifier,
    keepalive_seconds: float,
):
    """订阅某课程的图片更新，直到客户端断开"""
    subscription = notifier.subscribe(course_id)
    try:
        yield _sse_event({"type": "ready", "courseId": course_id})
        while True:
            if await request.is_disconnected():
                break
            event = await subscription.get(timeout=keepalive_seconds)
            if event is None:
                yield ": keep-alive\n\n"
                continue
            yield _sse_event(event.to_payload())
    finally:
        notifier.unsubscribe(subscription)
        logger.debug(f"SSE 订阅结束: course_id={course_id}")


@router.get("/courses/{course_id}")
async def stream_course_updates(course_id: str, request: Request):
    """推送 {courseId, newImageUrl} 事件"""
    return StreamingResponse(
        _course_events(
            course_id,
            request,
            get_notifier(),
            get_settings().realtime_keepalive_seconds,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
