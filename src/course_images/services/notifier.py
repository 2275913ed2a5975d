"""
实时通知：进程内发布/订阅，SSE 路由把事件推给已连接的客户端
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoverUpdatedEvent:
    """图片写入课程/模块后的通知"""

    course_id: str
    new_image_url: str
    module_id: Optional[str] = None
    prediction_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_payload(self) -> dict:
        payload = {
            "type": "cover_updated" if self.module_id is None else "module_image_updated",
            "courseId": self.course_id,
            "newImageUrl": self.new_image_url,
            "timestamp": self.timestamp,
        }
        if self.module_id is not None:
            payload["moduleId"] = self.module_id
        if self.prediction_id is not None:
            payload["predictionId"] = self.prediction_id
        return payload


class Subscription:
    """单个订阅者的事件队列"""

    def __init__(self, course_id: Optional[str], max_queue: int):
        self.course_id = course_id
        self.queue: asyncio.Queue[CoverUpdatedEvent] = asyncio.Queue(maxsize=max_queue)

    def wants(self, event: CoverUpdatedEvent) -> bool:
        return self.course_id is None or self.course_id == event.course_id

    async def get(self, timeout: Optional[float] = None) -> Optional[CoverUpdatedEvent]:
        """等待下一个事件，超时返回 None"""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class RealtimeNotifier:
    """广播中心"""

    def __init__(self, max_queue: int = 100):
        self.max_queue = max_queue
        self._subscriptions: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, course_id: Optional[str] = None) -> Subscription:
        subscription = Subscription(course_id, self.max_queue)
        self._subscriptions.add(subscription)
        logger.debug(f"新增订阅: course_id={course_id}, 当前 {len(self._subscriptions)} 个")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    def publish(self, event: CoverUpdatedEvent) -> int:
        """投递给所有匹配的订阅者，返回投递数"""
        delivered = 0
        for subscription in list(self._subscriptions):
            if not subscription.wants(event):
                continue
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"订阅队列已满，丢弃事件: course_id={event.course_id}")
        logger.info(f"推送图片更新: course_id={event.course_id}, 订阅者 {delivered} 个")
        return delivered


# 全局单例
_notifier: Optional[RealtimeNotifier] = None


def get_notifier() -> RealtimeNotifier:
    """获取通知中心单例"""
    global _notifier
    if _notifier is None:
        _notifier = RealtimeNotifier()
    return _notifier
