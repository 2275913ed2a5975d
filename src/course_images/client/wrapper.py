"""
生成客户端：发起生成后先等实时推送，超出窗口改为轮询任务状态
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"succeeded", "failed"})


class GenerationRequestError(Exception):
    """发起生成被服务端拒绝"""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class GenerationTimeout(Exception):
    """在总超时内没有拿到终态"""


@dataclass(frozen=True)
class GenerationOutcome:
    status: str
    image_url: Optional[str]
    source: str  # realtime / polling / existing
    error: Optional[str] = None


class CoverGenerationClient:
    """
    封面生成客户端

    用法:
        client = CoverGenerationClient("http://localhost:8000", token="...")
        started = client.generate_cover("course-1", engine="flux")
        outcome = client.wait_for_result("course-1", started["predictionId"])
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        realtime_window: float = 30.0,
        poll_interval: float = 5.0,
        overall_timeout: float = 300.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.realtime_window = realtime_window
        self.poll_interval = poll_interval
        self.overall_timeout = overall_timeout
        self._sleep = sleep
        self._clock = clock
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=30.0,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def generate_cover(self, course_id: str, engine: str = "flux", regenerate: bool = False) -> dict:
        """调用发起接口，返回 {predictionId, status, engine} 或 {existingCover}"""
        response = self._client.post(
            "/functions/v1/generate-course-cover",
            json={"courseId": course_id, "engine": engine, "regenerate": regenerate},
        )
        if response.status_code >= 400:
            try:
                message = response.json().get("error", response.text)
            except ValueError:
                message = response.text
            raise GenerationRequestError(response.status_code, message)
        return response.json()

    def generate_and_wait(
        self,
        course_id: str,
        engine: str = "flux",
        regenerate: bool = False,
    ) -> GenerationOutcome:
        started = self.generate_cover(course_id, engine=engine, regenerate=regenerate)
        if "existingCover" in started:
            return GenerationOutcome(
                status="succeeded", image_url=started["existingCover"], source="existing"
            )
        return self.wait_for_result(course_id, started["predictionId"])

    def wait_for_result(self, course_id: str, prediction_id: str) -> GenerationOutcome:
        """
        等待生成结果

        先监听实时推送最多 realtime_window 秒，没收到再轮询，
        整体不超过 overall_timeout。
        """
        deadline = self._clock() + self.overall_timeout
        window_end = min(self._clock() + self.realtime_window, deadline)

        image_url = self._listen_realtime(course_id, prediction_id, window_end)
        if image_url:
            return GenerationOutcome(status="succeeded", image_url=image_url, source="realtime")

        logger.info(f"实时推送未在窗口内到达，改为轮询任务 {prediction_id}")
        return self._poll(prediction_id, deadline)

    def _listen_realtime(self, course_id: str, prediction_id: str, window_end: float) -> Optional[str]:
        remaining = window_end - self._clock()
        if remaining <= 0:
            return None
        timeout = httpx.Timeout(connect=min(5.0, remaining), read=remaining, write=5.0, pool=5.0)
        try:
            with self._client.stream(
                "GET", f"/api/realtime/courses/{course_id}", timeout=timeout
            ) as response:
                if response.status_code >= 400:
                    logger.warning(f"实时通道不可用: HTTP {response.status_code}")
                    return None
                for line in response.iter_lines():
                    if self._clock() >= window_end:
                        return None
                    if not line.startswith("data:"):
                        continue
                    try:
                        event = json.loads(line[len("data:"):].strip())
                    except json.JSONDecodeError:
                        continue
                    if _matches(event, course_id, prediction_id):
                        return event["newImageUrl"]
        except httpx.HTTPError as e:
            logger.warning(f"实时通道中断: {e}")
        return None

    def _poll(self, prediction_id: str, deadline: float) -> GenerationOutcome:
        while True:
            response = self._client.get(f"/api/predictions/{prediction_id}")
            if response.status_code == 200:
                data = response.json()
                if data.get("status") in TERMINAL_STATUSES:
                    return GenerationOutcome(
                        status=data["status"],
                        image_url=data.get("output"),
                        source="polling",
                        error=data.get("error"),
                    )
            elif response.status_code != 404:
                logger.warning(f"查询任务 {prediction_id} 失败: HTTP {response.status_code}")

            if self._clock() + self.poll_interval > deadline:
                raise GenerationTimeout(f"任务 {prediction_id} 在 {self.overall_timeout}s 内未完成")
            self._sleep(self.poll_interval)


def _matches(event: dict, course_id: str, prediction_id: str) -> bool:
    """只认带图片地址的封面更新事件，ready 等控制事件跳过"""
    if not isinstance(event, dict) or not event.get("newImageUrl"):
        return False
    if event.get("predictionId"):
        return event["predictionId"] == prediction_id
    return event.get("courseId") == course_id and "moduleId" not in event
