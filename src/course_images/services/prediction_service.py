"""
生成任务存储

所有终态写入都是条件更新（WHERE status = 'starting'），
webhook 重复投递、webhook 与超时清理之间的竞争都以数据库为准。
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from course_images.core.database import engine as default_engine
from course_images.models.generation_event import GenerationEvent
from course_images.models.prediction import (
    Prediction,
    PredictionStatus,
    PredictionType,
    can_transition,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    """一次 webhook 更新的结果"""

    prediction: Optional[Prediction]
    transitioned: bool

    @property
    def found(self) -> bool:
        return self.prediction is not None


class PredictionService:
    """生成任务读写"""

    def __init__(self, engine=None):
        self.engine = engine or default_engine

    def create_prediction(
        self,
        prediction_id: str,
        prediction_type: PredictionType,
        engine_name: str,
        course_id: Optional[str] = None,
        module_id: Optional[str] = None,
        input_data: Optional[dict] = None,
    ) -> Prediction:
        """
        写入 starting 状态的任务

        prediction_id 已存在时返回已有记录（重复提交视为成功）。
        """
        if prediction_type is PredictionType.COURSE_COVER and not course_id:
            raise ValueError("course_cover 任务必须带 course_id")
        if prediction_type is PredictionType.MODULE_IMAGE and not module_id:
            raise ValueError("module_image 任务必须带 module_id")

        now = datetime.now()
        record = Prediction(
            prediction_id=prediction_id,
            status=PredictionStatus.STARTING.value,
            prediction_type=prediction_type.value,
            course_id=course_id,
            module_id=module_id,
            engine=engine_name,
            input=input_data,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(f"任务 {prediction_id} 已存在，视为成功")
                existing = self.get_prediction(prediction_id)
                if existing is None:
                    raise
                return existing
            session.refresh(record)

        self.record_event(
            "prediction_created",
            {
                "prediction_id": prediction_id,
                "prediction_type": prediction_type.value,
                "course_id": course_id,
                "module_id": module_id,
                "engine": engine_name,
            },
        )
        return record

    def get_prediction(self, prediction_id: str) -> Optional[Prediction]:
        with Session(self.engine) as session:
            return session.exec(
                select(Prediction).where(Prediction.prediction_id == prediction_id)
            ).first()

    def list_predictions(
        self,
        course_id: Optional[str] = None,
        status: Optional[PredictionStatus] = None,
        limit: int = 50,
    ) -> list[Prediction]:
        """按创建时间倒序"""
        statement = select(Prediction)
        if course_id:
            statement = statement.where(Prediction.course_id == course_id)
        if status:
            statement = statement.where(Prediction.status == status.value)
        statement = statement.order_by(Prediction.created_at.desc()).limit(limit)
        with Session(self.engine) as session:
            return list(session.exec(statement).all())

    def apply_webhook(
        self,
        prediction_id: str,
        status: PredictionStatus,
        output: Optional[str] = None,
        error: Optional[str] = None,
        logs: Optional[str] = None,
        metrics: Optional[dict] = None,
    ) -> TransitionResult:
        """
        按回调更新任务

        只有仍处于 starting 的行会被修改；transitioned 为 True 表示
        本次调用完成了终态迁移，调用方据此决定是否写回归属实体。
        """
        now = datetime.now()
        values: dict = {"updated_at": now}
        if logs is not None:
            values["logs"] = logs

        if status is PredictionStatus.SUCCEEDED:
            values.update(
                status=status.value,
                output=output,
                error=None,
                completed_at=now,
            )
            if metrics:
                values["metrics"] = {**metrics, "processed_at": now.isoformat()}
        elif status is PredictionStatus.FAILED:
            values.update(
                status=status.value,
                output=None,
                error=error or "未知错误",
                completed_at=now,
            )

        statement = (
            update(Prediction)
            .where(Prediction.prediction_id == prediction_id)
            .where(Prediction.status == PredictionStatus.STARTING.value)
            .values(**values)
        )
        with self.engine.begin() as conn:
            rowcount = conn.execute(statement).rowcount

        prediction = self.get_prediction(prediction_id)
        transitioned = rowcount == 1 and status.is_terminal

        if prediction is None:
            logger.warning(f"任务 {prediction_id} 不存在，忽略回调")
        elif rowcount == 0 and not can_transition(prediction.state, status):
            logger.info(
                f"任务 {prediction_id} 已处于终态 {prediction.state.value}，忽略 {status.value} 回调"
            )
        return TransitionResult(prediction=prediction, transitioned=transitioned)

    def mark_propagated(self, prediction_id: str) -> bool:
        """结果写回完成后打标记，只在首次写回时生效"""
        now = datetime.now()
        statement = (
            update(Prediction)
            .where(Prediction.prediction_id == prediction_id)
            .where(Prediction.status == PredictionStatus.SUCCEEDED.value)
            .where(Prediction.propagated_at.is_(None))
            .values(propagated_at=now, updated_at=now)
        )
        with self.engine.begin() as conn:
            return conn.execute(statement).rowcount == 1

    def record_event(self, event_type: str, event_data: dict) -> None:
        """写入审计事件，失败只记录日志"""
        try:
            with Session(self.engine) as session:
                session.add(
                    GenerationEvent(
                        event_type=event_type,
                        event_data={**event_data, "timestamp": datetime.now().isoformat()},
                    )
                )
                session.commit()
        except Exception:
            logger.error(f"写入事件 {event_type} 失败", exc_info=True)


# 全局单例
_prediction_service: Optional[PredictionService] = None


def get_prediction_service() -> PredictionService:
    """获取任务服务单例"""
    global _prediction_service
    if _prediction_service is None:
        _prediction_service = PredictionService()
    return _prediction_service
