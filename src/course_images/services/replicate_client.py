"""
Replicate API 客户端

只负责把任务放进队列（不等待结果），结果经 webhook 回调送达。
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from course_images.core import get_settings
from course_images.core.errors import ConfigurationError, ProviderError, TransientError
from course_images.core.retry import retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineSpec:
    """
    引擎配置

    model 含 ":" 或为纯版本号时走 /v1/predictions，
    "owner/name" 形式走 /v1/models/{owner}/{name}/predictions。
    """

    model: str
    input_defaults: dict


ENGINES: dict[str, EngineSpec] = {
    # black-forest-labs/flux-1.1-pro
    "flux": EngineSpec(
        model="80a09d66baa990429c2f5ae8a4306bf778a1b3775afd01cc2cc8bdbe9033769c",
        input_defaults={"aspect_ratio": "16:9", "output_quality": 90, "safety_tolerance": 2},
    ),
    # recraft-ai/recraft-v3
    "recraft": EngineSpec(
        model="0fea59248a8a1ddb8197792577f6627ec65482abc49f50c6e9da40ca8729d24d",
        input_defaults={"style": "realistic_image", "size": "1920x1080", "output_format": "webp"},
    ),
    "proteus": EngineSpec(
        model="datacte/proteus-v0.2",
        input_defaults={"width": 1344, "height": 768, "num_outputs": 1},
    ),
}


@dataclass(frozen=True)
class EnqueuedPrediction:
    """Replicate 创建任务后的返回"""

    prediction_id: str
    status: str
    raw: dict


class ReplicateClient:
    """Replicate 预测接口封装"""

    def __init__(
        self,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        self.api_token = settings.replicate_api_token if api_token is None else api_token
        self.base_url = (base_url or settings.replicate_base_url).rstrip("/")
        self.timeout = settings.http_timeout_seconds
        self.max_attempts = settings.http_max_attempts
        self.base_delay = settings.http_base_delay_seconds
        self.max_delay = settings.http_max_delay_seconds
        self.session = session or requests.Session()

    def _build_request(self, prompt: str, engine: str, webhook_url: str) -> tuple[str, dict]:
        engine_spec = ENGINES.get(engine)
        if engine_spec is None:
            raise ValueError(f"不支持的引擎: {engine}")

        payload = {
            "input": {"prompt": prompt, **engine_spec.input_defaults},
            "webhook": webhook_url,
            "webhook_events_filter": ["start", "completed"],
        }
        if "/" in engine_spec.model and ":" not in engine_spec.model:
            url = f"{self.base_url}/v1/models/{engine_spec.model}/predictions"
        else:
            url = f"{self.base_url}/v1/predictions"
            payload["version"] = engine_spec.model
        return url, payload

    def _post_once(self, url: str, payload: dict) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }
        try:
            response = self.session.post(url, headers=headers, json=payload, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(f"Replicate 连接失败: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(
                f"Replicate 暂时不可用: HTTP {response.status_code} {_error_detail(response)}"
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"Replicate 拒绝请求: HTTP {response.status_code} {_error_detail(response)}"
            )
        return response.json()

    async def create_prediction(
        self,
        prompt: str,
        engine: str,
        webhook_url: str,
    ) -> EnqueuedPrediction:
        """
        创建预测任务

        Args:
            prompt: 图片生成 Prompt
            engine: flux/recraft/proteus
            webhook_url: 完成后的回调地址

        Returns:
            外部任务 ID 与初始状态
        """
        if not self.api_token:
            raise ConfigurationError("缺少 REPLICATE_API_TOKEN 配置")

        url, payload = self._build_request(prompt, engine, webhook_url)
        logger.info(f"调用 Replicate 创建任务，engine={engine}")

        async def _attempt() -> dict:
            return await asyncio.to_thread(self._post_once, url, payload)

        data = await retry_with_backoff(
            _attempt,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )

        prediction_id = data.get("id")
        if not prediction_id:
            raise ProviderError("Replicate 响应缺少任务ID")

        logger.info(f"Replicate 任务已创建: {prediction_id}")
        return EnqueuedPrediction(
            prediction_id=prediction_id,
            status=data.get("status", "starting"),
            raw=data,
        )


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300]
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return str(body)[:300]


# 全局单例
_replicate_client: Optional[ReplicateClient] = None


def get_replicate_client() -> ReplicateClient:
    """获取 Replicate 客户端单例"""
    global _replicate_client
    if _replicate_client is None:
        _replicate_client = ReplicateClient()
    return _replicate_client
