"""
生成任务（Prediction）模型
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, String
from sqlmodel import Field, SQLModel


class PredictionStatus(str, Enum):
    """
    任务状态机

    starting → succeeded | failed，终态不可再迁移。
    """

    STARTING = "starting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PredictionStatus.STARTING

    @classmethod
    def from_provider(cls, raw: str) -> "PredictionStatus":
        """把 Replicate 的状态词映射到三态状态机"""
        mapping = {
            "starting": cls.STARTING,
            "processing": cls.STARTING,
            "succeeded": cls.SUCCEEDED,
            "failed": cls.FAILED,
            "canceled": cls.FAILED,
        }
        try:
            return mapping[raw]
        except KeyError:
            raise ValueError(f"未知的任务状态: {raw}") from None


def can_transition(current: PredictionStatus, target: PredictionStatus) -> bool:
    """只允许从 starting 出发的迁移（含 starting → starting 的进度刷新）"""
    current, target = PredictionStatus(current), PredictionStatus(target)
    return current is PredictionStatus.STARTING


class PredictionType(str, Enum):
    """生成结果写入的位置"""

    COURSE_COVER = "course_cover"
    MODULE_IMAGE = "module_image"


class Prediction(SQLModel, table=True):
    """生成任务表，每个外部任务 ID 一行"""

    __tablename__ = "replicate_predictions"

    id: Optional[int] = Field(default=None, primary_key=True)
    prediction_id: str = Field(
        sa_column=Column(String(128), unique=True, index=True, nullable=False),
        description="Replicate 分配的任务ID",
    )

    status: str = Field(
        default=PredictionStatus.STARTING.value,
        sa_column=Column(String(20), index=True, nullable=False),
        description="状态: starting/succeeded/failed",
    )
    prediction_type: str = Field(
        sa_column=Column(String(32), nullable=False),
        description="类型: course_cover/module_image",
    )

    # 归属实体，按 prediction_type 决定哪一个有意义
    course_id: Optional[str] = Field(default=None, index=True)
    module_id: Optional[str] = Field(default=None, index=True)

    engine: str = Field(default="flux", max_length=32)
    input: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    # 结果
    output: Optional[str] = Field(default=None, description="生成图片URL，仅 succeeded 时非空")
    error: Optional[str] = Field(default=None, description="失败原因")
    logs: Optional[str] = Field(default=None)
    metrics: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    # 时间戳
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = Field(default=None, description="进入终态的时间")
    propagated_at: Optional[datetime] = Field(default=None, description="结果写回课程/模块的时间")

    @property
    def state(self) -> PredictionStatus:
        return PredictionStatus(self.status)

    @property
    def kind(self) -> PredictionType:
        return PredictionType(self.prediction_type)
