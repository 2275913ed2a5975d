"""
生成任务查询 API（客户端轮询用）
"""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Header, Query
from pydantic import BaseModel, ConfigDict, Field

from course_images.core.errors import NotFoundError, ValidationError
from course_images.models.prediction import Prediction, PredictionStatus
from course_images.services.auth_service import AuthService
from course_images.services.prediction_service import get_prediction_service
from course_images.services.reaper_service import ReaperService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/predictions", tags=["predictions"])


class ReapRequest(BaseModel):
    """手动触发超时清理"""

    model_config = ConfigDict(populate_by_name=True)

    timeout_minutes: Optional[int] = Field(default=None, alias="timeoutMinutes", gt=0)


def _prediction_to_response(prediction: Prediction) -> dict:
    """将 Prediction 转换为响应字典"""
    return {
        "predictionId": prediction.prediction_id,
        "status": prediction.status,
        "predictionType": prediction.prediction_type,
        "courseId": prediction.course_id,
        "moduleId": prediction.module_id,
        "engine": prediction.engine,
        "output": prediction.output,
        "error": prediction.error,
        "createdAt": prediction.created_at.isoformat(),
        "updatedAt": prediction.updated_at.isoformat(),
        "completedAt": prediction.completed_at.isoformat() if prediction.completed_at else None,
        "propagatedAt": prediction.propagated_at.isoformat() if prediction.propagated_at else None,
    }


@router.get("")
async def list_predictions(
    course_id: Optional[str] = Query(default=None, alias="courseId"),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    authorization: Optional[str] = Header(default=None),
):
    """按课程/状态列出任务，需登录"""
    AuthService().authenticate(authorization)
    status_filter = None
    if status:
        try:
            status_filter = PredictionStatus(status)
        except ValueError:
            raise ValidationError(f"未知的任务状态: {status}") from None

    predictions = get_prediction_service().list_predictions(
        course_id=course_id, status=status_filter, limit=limit
    )
    return {
        "items": [_prediction_to_response(p) for p in predictions],
        "total": len(predictions),
    }


@router.post("/reap")
async def reap_stale_predictions(
    request: Optional[ReapRequest] = None,
    authorization: Optional[str] = Header(default=None),
):
    """把超时未回调的任务标记为 failed，仅限服务密钥"""
    AuthService().require_service(authorization)

    timeout = None
    if request is not None and request.timeout_minutes:
        timeout = timedelta(minutes=request.timeout_minutes)
    reaped = ReaperService().reap_stale(timeout=timeout)
    return {"reaped": reaped, "total": len(reaped)}


@router.get("/{prediction_id}")
async def get_prediction(
    prediction_id: str,
    authorization: Optional[str] = Header(default=None),
):
    """获取任务详情，需登录"""
    AuthService().authenticate(authorization)
    prediction = get_prediction_service().get_prediction(prediction_id)
    if not prediction:
        raise NotFoundError("任务不存在")
    return _prediction_to_response(prediction)
