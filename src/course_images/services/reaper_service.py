"""
超时任务清理

把 created_at 早于 now - timeout 且仍为 starting 的任务标记为 failed。
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, select

from course_images.core import get_settings
from course_images.core.database import engine as default_engine
from course_images.models.prediction import Prediction, PredictionStatus
from course_images.services.prediction_service import PredictionService

logger = logging.getLogger(__name__)

TIMEOUT_ERROR_MESSAGE = "超时：{minutes} 分钟内未收到 webhook 回调"


class ReaperService:
    """超时任务清理服务"""

    def __init__(self, engine=None, timeout: Optional[timedelta] = None):
        self.engine = engine or default_engine
        self.timeout = timeout if timeout is not None else timedelta(
            minutes=get_settings().stale_prediction_timeout_minutes
        )
        self.prediction_service = PredictionService(self.engine)

    def find_stale(
        self,
        now: Optional[datetime] = None,
        timeout: Optional[timedelta] = None,
    ) -> list[Prediction]:
        """只查询不修改，供 --dry-run 使用"""
        if timeout is None:
            timeout = self.timeout
        cutoff = (now or datetime.now()) - timeout
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(Prediction)
                    .where(Prediction.status == PredictionStatus.STARTING.value)
                    .where(Prediction.created_at < cutoff)
                    .order_by(Prediction.created_at.asc())
                ).all()
            )

    def reap_stale(
        self,
        now: Optional[datetime] = None,
        timeout: Optional[timedelta] = None,
    ) -> list[str]:
        """
        标记超时任务

        Returns:
            被标记为 failed 的 prediction_id 列表
        """
        now = now or datetime.now()
        timeout = self.timeout if timeout is None else timeout
        cutoff = now - timeout
        message = TIMEOUT_ERROR_MESSAGE.format(minutes=int(timeout.total_seconds() // 60))

        reaped: list[str] = []
        for prediction in self.find_stale(now=now, timeout=timeout):
            # 逐行条件更新：期间若 webhook 已写入终态，这一行会被跳过
            statement = (
                update(Prediction)
                .where(Prediction.id == prediction.id)
                .where(Prediction.status == PredictionStatus.STARTING.value)
                .values(
                    status=PredictionStatus.FAILED.value,
                    error=message,
                    updated_at=now,
                    completed_at=now,
                )
            )
            with self.engine.begin() as conn:
                if conn.execute(statement).rowcount != 1:
                    continue

            reaped.append(prediction.prediction_id)
            self.prediction_service.record_event(
                "prediction_timeout",
                {
                    "prediction_id": prediction.prediction_id,
                    "prediction_type": prediction.prediction_type,
                    "course_id": prediction.course_id,
                    "module_id": prediction.module_id,
                    "created_at": prediction.created_at.isoformat(),
                },
            )

        if reaped:
            logger.warning(f"已将 {len(reaped)} 个超时任务标记为 failed: {reaped}")
        else:
            logger.info("没有超时任务")
        return reaped
