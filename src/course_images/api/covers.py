"""
生成发起 API
"""
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Header
from pydantic import BaseModel, ConfigDict, Field

from course_images.services.auth_service import AuthService
from course_images.services.generation_service import ExistingCover, get_generation_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["generation"])

Engine = Literal["flux", "recraft", "proteus"]


class GenerateCoverRequest(BaseModel):
    """封面生成请求"""

    model_config = ConfigDict(populate_by_name=True)

    course_id: str = Field(alias="courseId", min_length=1)
    engine: Engine = "flux"
    regenerate: bool = False


class GenerateModuleImageRequest(BaseModel):
    """模块配图生成请求"""

    model_config = ConfigDict(populate_by_name=True)

    module_id: str = Field(alias="moduleId", min_length=1)
    engine: Engine = "flux"


@router.post("/generate-course-cover")
async def generate_course_cover(
    request: GenerateCoverRequest,
    authorization: Optional[str] = Header(default=None),
):
    """
    发起课程封面生成

    只负责入队，返回 predictionId；结果通过 webhook 写回并实时推送。
    """
    generation_service = get_generation_service()
    generation_service.ensure_configured()

    caller = AuthService().require_generator(authorization)
    logger.info(
        f"封面生成请求: course_id={request.course_id}, engine={request.engine}, "
        f"regenerate={request.regenerate}, user_id={caller.user_id}"
    )

    result = await generation_service.start_course_cover(
        course_id=request.course_id,
        engine=request.engine,
        regenerate=request.regenerate,
    )
    if isinstance(result, ExistingCover):
        return {
            "message": "课程已有封面，传 regenerate=true 重新生成",
            "existingCover": result.cover_url,
        }

    return {
        "success": True,
        "predictionId": result.prediction_id,
        "status": result.status,
        "engine": result.engine,
        "courseId": result.course_id,
    }


@router.post("/generate-module-image")
async def generate_module_image(
    request: GenerateModuleImageRequest,
    authorization: Optional[str] = Header(default=None),
):
    """发起模块配图生成"""
    generation_service = get_generation_service()
    generation_service.ensure_configured()

    AuthService().require_generator(authorization)
    result = await generation_service.start_module_image(
        module_id=request.module_id,
        engine=request.engine,
    )
    return {
        "success": True,
        "predictionId": result.prediction_id,
        "status": result.status,
        "engine": result.engine,
        "courseId": result.course_id,
        "moduleId": result.module_id,
    }
