"""
生成任务发起

校验 → 构建 Prompt → 调用 Replicate 入队 → 写入 starting 任务。
不等待生成完成，结果由 webhook 回调写回。
"""
import logging
from dataclasses import dataclass
from typing import Optional

from course_images.core import get_settings
from course_images.core.errors import ConfigurationError, NotFoundError
from course_images.models.prediction import PredictionType
from course_images.services.content_service import ContentService, get_content_service
from course_images.services.prediction_service import PredictionService, get_prediction_service
from course_images.services.prompt_service import build_cover_prompt, build_module_prompt
from course_images.services.replicate_client import ReplicateClient, get_replicate_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationStarted:
    prediction_id: str
    status: str
    engine: str
    course_id: str
    module_id: Optional[str] = None
    prompt: str = ""


@dataclass(frozen=True)
class ExistingCover:
    """课程已有封面且未要求重新生成"""

    course_id: str
    cover_url: str


class GenerationService:
    """封面/模块配图生成发起"""

    def __init__(
        self,
        replicate_client: Optional[ReplicateClient] = None,
        prediction_service: Optional[PredictionService] = None,
        content_service: Optional[ContentService] = None,
        webhook_url: Optional[str] = None,
    ):
        self._replicate_client = replicate_client
        self.prediction_service = prediction_service or get_prediction_service()
        self.content_service = content_service or get_content_service()
        self.webhook_url = webhook_url or get_settings().webhook_url

    @property
    def replicate_client(self) -> ReplicateClient:
        if self._replicate_client is None:
            self._replicate_client = get_replicate_client()
        return self._replicate_client

    def ensure_configured(self) -> None:
        """缺少 API 密钥时立即报配置错误"""
        if not self.replicate_client.api_token:
            logger.error("缺少 REPLICATE_API_TOKEN 配置")
            raise ConfigurationError("服务端缺少 REPLICATE_API_TOKEN 配置")

    async def start_course_cover(
        self,
        course_id: str,
        engine: str = "flux",
        regenerate: bool = False,
    ) -> GenerationStarted | ExistingCover:
        """
        发起课程封面生成

        Args:
            course_id: 课程ID
            engine: flux/recraft/proteus
            regenerate: 已有封面时是否重新生成

        Returns:
            GenerationStarted，或课程已有封面时的 ExistingCover
        """
        self.ensure_configured()

        course = self.content_service.get_course(course_id)
        if course is None:
            raise NotFoundError(f"课程不存在: {course_id}")
        if course.cover_image_url and not regenerate:
            logger.info(f"课程 {course_id} 已有封面，跳过生成")
            return ExistingCover(course_id=course_id, cover_url=course.cover_image_url)

        built = build_cover_prompt(course, engine)
        logger.info(
            f"课程 {course_id} 封面 Prompt 已生成，category={built.category}, hash={built.course_hash}"
        )

        enqueued = await self.replicate_client.create_prediction(
            prompt=built.prompt,
            engine=engine,
            webhook_url=self.webhook_url,
        )
        self.prediction_service.create_prediction(
            prediction_id=enqueued.prediction_id,
            prediction_type=PredictionType.COURSE_COVER,
            engine_name=engine,
            course_id=course_id,
            input_data={
                "prompt": built.prompt,
                "engine": engine,
                "type": PredictionType.COURSE_COVER.value,
                "course_hash": built.course_hash,
                "category": built.category,
            },
        )

        logger.info(f"封面生成已发起: course_id={course_id}, prediction_id={enqueued.prediction_id}")
        return GenerationStarted(
            prediction_id=enqueued.prediction_id,
            status=enqueued.status,
            engine=engine,
            course_id=course_id,
            prompt=built.prompt,
        )

    async def start_module_image(self, module_id: str, engine: str = "flux") -> GenerationStarted:
        """发起模块配图生成"""
        self.ensure_configured()

        module = self.content_service.get_module(module_id)
        if module is None:
            raise NotFoundError(f"模块不存在: {module_id}")
        course = self.content_service.get_course(module.course_id)
        if course is None:
            raise NotFoundError(f"课程不存在: {module.course_id}")

        built = build_module_prompt(module, course, engine)
        enqueued = await self.replicate_client.create_prediction(
            prompt=built.prompt,
            engine=engine,
            webhook_url=self.webhook_url,
        )
        self.prediction_service.create_prediction(
            prediction_id=enqueued.prediction_id,
            prediction_type=PredictionType.MODULE_IMAGE,
            engine_name=engine,
            course_id=course.id,
            module_id=module_id,
            input_data={
                "prompt": built.prompt,
                "engine": engine,
                "type": PredictionType.MODULE_IMAGE.value,
                "course_hash": built.course_hash,
                "category": built.category,
            },
        )

        logger.info(f"模块配图生成已发起: module_id={module_id}, prediction_id={enqueued.prediction_id}")
        return GenerationStarted(
            prediction_id=enqueued.prediction_id,
            status=enqueued.status,
            engine=engine,
            course_id=course.id,
            module_id=module_id,
            prompt=built.prompt,
        )


# 全局单例
_generation_service: Optional[GenerationService] = None


def get_generation_service() -> GenerationService:
    """获取生成发起服务单例"""
    global _generation_service
    if _generation_service is None:
        _generation_service = GenerationService()
    return _generation_service
