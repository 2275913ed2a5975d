"""
Replicate webhook 处理

顺序：校验签名（原始字节）→ 解析 → 条件更新任务 → 终态迁移成功时写回归属实体并推送通知

写回未完成的 succeeded 任务在重复投递时补写。
"""
import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from course_images.core import get_settings
from course_images.core.errors import (
    ConfigurationError,
    PipelineError,
    SignatureError,
    TransientError,
    ValidationError,
)
from course_images.core.retry import retry_call
from course_images.models.prediction import Prediction, PredictionStatus, PredictionType
from course_images.services.content_service import ContentService, get_content_service
from course_images.services.image_storage import ImageStorage, get_image_storage
from course_images.services.notifier import CoverUpdatedEvent, RealtimeNotifier, get_notifier
from course_images.services.prediction_service import PredictionService, get_prediction_service

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
NO_OUTPUT_ERROR = "生成服务返回成功但没有输出"


def compute_signature(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA256 十六进制摘要"""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """
    校验 replicate-signature 头

    必须对未解析的原始请求体计算，先解析再序列化会改变字节导致误判。
    """
    if not signature_header or not secret:
        return False
    provided = signature_header.strip()
    if provided.startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, provided.lower())


class WebhookPayload(BaseModel):
    """Replicate 回调体，只取用到的字段"""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    status: str
    output: Optional[Union[str, list[Any]]] = None
    error: Optional[str] = None
    logs: Optional[str] = None
    metrics: Optional[dict] = None

    @property
    def first_output(self) -> Optional[str]:
        """output 可能是字符串或 URL 列表，取第一个"""
        if isinstance(self.output, list):
            for item in self.output:
                if isinstance(item, str) and item:
                    return item
            return None
        return self.output or None


def parse_payload(raw_body: bytes) -> WebhookPayload:
    try:
        data = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"回调体不是合法 JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("回调体必须是 JSON 对象")
    try:
        payload = WebhookPayload.model_validate(data)
        PredictionStatus.from_provider(payload.status)
    except PydanticValidationError as e:
        raise ValidationError(f"回调体字段错误: {e.errors()[0].get('msg')}") from e
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return payload


@dataclass(frozen=True)
class WebhookOutcome:
    prediction_id: str
    status: PredictionStatus
    transitioned: bool
    propagated: bool = False
    image_url: Optional[str] = None


class WebhookService:
    """webhook 处理流程"""

    def __init__(
        self,
        prediction_service: Optional[PredictionService] = None,
        content_service: Optional[ContentService] = None,
        image_storage: Optional[ImageStorage] = None,
        notifier: Optional[RealtimeNotifier] = None,
        secret: Optional[str] = None,
        rehost_images: Optional[bool] = None,
    ):
        settings = get_settings()
        self.prediction_service = prediction_service or get_prediction_service()
        self.content_service = content_service or get_content_service()
        self._image_storage = image_storage
        self.notifier = notifier or get_notifier()
        self.secret = settings.replicate_webhook_secret if secret is None else secret
        self.rehost_images = settings.rehost_images if rehost_images is None else rehost_images

    @property
    def image_storage(self) -> ImageStorage:
        if self._image_storage is None:
            self._image_storage = get_image_storage()
        return self._image_storage

    async def handle(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        """处理一次回调投递"""
        if not self.secret:
            raise ConfigurationError("缺少 REPLICATE_WEBHOOK_SECRET 配置")
        if not verify_signature(raw_body, signature_header, self.secret):
            logger.warning("webhook 签名缺失或不匹配，拒绝处理")
            raise SignatureError("签名无效")

        payload = parse_payload(raw_body)
        status = PredictionStatus.from_provider(payload.status)
        output = payload.first_output
        error = payload.error
        if payload.status == "canceled" and not error:
            error = "任务已取消"
        if status is PredictionStatus.SUCCEEDED and not output:
            status, error = PredictionStatus.FAILED, NO_OUTPUT_ERROR

        logger.info(f"[WEBHOOK] 处理任务 {payload.id}，状态 {payload.status}")
        result = self.prediction_service.apply_webhook(
            payload.id,
            status,
            output=output,
            error=error,
            logs=payload.logs,
            metrics=payload.metrics,
        )
        if not result.transitioned:
            if self._needs_repropagation(result.prediction, status, output):
                logger.info(f"[WEBHOOK] 任务 {payload.id} 上次未写回成功，重新写回")
                image_url = await self._propagate(result.prediction, result.prediction.output)
                return WebhookOutcome(
                    prediction_id=payload.id,
                    status=status,
                    transitioned=False,
                    propagated=image_url is not None,
                    image_url=image_url,
                )
            return WebhookOutcome(prediction_id=payload.id, status=status, transitioned=False)

        prediction = result.prediction
        self.prediction_service.record_event(
            "prediction_completed" if status is PredictionStatus.SUCCEEDED else "prediction_failed",
            {
                "prediction_id": prediction.prediction_id,
                "prediction_type": prediction.prediction_type,
                "course_id": prediction.course_id,
                "module_id": prediction.module_id,
                "status": status.value,
                "error": error if status is PredictionStatus.FAILED else None,
            },
        )

        if status is not PredictionStatus.SUCCEEDED:
            return WebhookOutcome(prediction_id=payload.id, status=status, transitioned=True)

        image_url = await self._propagate(prediction, output)
        return WebhookOutcome(
            prediction_id=payload.id,
            status=status,
            transitioned=True,
            propagated=image_url is not None,
            image_url=image_url,
        )

    async def _resolve_image_url(self, prediction: Prediction, output: str) -> str:
        """需要转存时返回本地 URL，转存失败回退到原始 URL"""
        if not self.rehost_images:
            return output
        try:
            stored = await self.image_storage.rehost_async(
                output,
                course_id=prediction.course_id if prediction.module_id is None else None,
                module_id=prediction.module_id,
            )
            return stored.public_url
        except PipelineError as e:
            logger.error(f"[WEBHOOK] 图片转存失败，改用原始 URL: {e}")
            self.prediction_service.record_event(
                "webhook_failed",
                {"prediction_id": prediction.prediction_id, "step": "rehost", "error": e.message},
            )
            return output

    @staticmethod
    def _needs_repropagation(
        prediction: Optional[Prediction],
        status: PredictionStatus,
        output: Optional[str],
    ) -> bool:
        """重复投递的 succeeded 回调：任务已成功但结果从未写回时补写"""
        return (
            prediction is not None
            and status is PredictionStatus.SUCCEEDED
            and prediction.state is PredictionStatus.SUCCEEDED
            and prediction.propagated_at is None
            and bool(prediction.output)
            and prediction.output == output
        )

    def _write_back(self, prediction: Prediction, image_url: str) -> None:
        """写入课程封面或模块正文；数据库异常视为可重试"""
        try:
            if prediction.kind is PredictionType.COURSE_COVER:
                self.content_service.apply_course_cover(prediction.course_id, image_url)
            else:
                self.content_service.apply_module_image(
                    prediction.module_id, image_url, prediction.prediction_id
                )
        except SQLAlchemyError as e:
            raise TransientError(f"写回数据库失败: {e}") from e

    async def _propagate(self, prediction: Prediction, output: str) -> Optional[str]:
        """
        写回课程或模块

        数据库抖动按退避重试；仍失败时抛出 TransientError，
        响应非 2xx 让 Replicate 重新投递，重投时会补写。
        其他失败（如课程不存在）只记录，不回滚任务状态。
        """
        image_url = await self._resolve_image_url(prediction, output)
        settings = get_settings()
        try:
            await asyncio.to_thread(
                retry_call,
                self._write_back,
                prediction,
                image_url,
                max_attempts=settings.http_max_attempts,
                base_delay=settings.http_base_delay_seconds,
                max_delay=settings.http_max_delay_seconds,
            )
        except TransientError as e:
            logger.error(f"[WEBHOOK] 写回任务 {prediction.prediction_id} 结果失败，等待重投: {e}")
            self.prediction_service.record_event(
                "webhook_failed",
                {"prediction_id": prediction.prediction_id, "step": "propagate", "error": e.message},
            )
            raise
        except PipelineError as e:
            logger.error(f"[WEBHOOK] 写回任务 {prediction.prediction_id} 结果失败: {e}")
            self.prediction_service.record_event(
                "webhook_failed",
                {"prediction_id": prediction.prediction_id, "step": "propagate", "error": e.message},
            )
            return None

        self.prediction_service.mark_propagated(prediction.prediction_id)
        if prediction.course_id:
            self.notifier.publish(
                CoverUpdatedEvent(
                    course_id=prediction.course_id,
                    new_image_url=image_url,
                    module_id=prediction.module_id,
                    prediction_id=prediction.prediction_id,
                )
            )
            self.prediction_service.record_event(
                "cover_updated",
                {
                    "prediction_id": prediction.prediction_id,
                    "course_id": prediction.course_id,
                    "module_id": prediction.module_id,
                    "new_image_url": image_url,
                },
            )
        return image_url


# 全局单例
_webhook_service: Optional[WebhookService] = None


def get_webhook_service() -> WebhookService:
    """获取 webhook 服务单例"""
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService()
    return _webhook_service
