"""
生成事件记录
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class GenerationEvent(SQLModel, table=True):
    """生成流程的审计事件"""

    __tablename__ = "generation_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    event_type: str = Field(
        index=True,
        max_length=64,
        description="prediction_created/prediction_completed/prediction_failed/"
        "prediction_timeout/cover_updated/webhook_failed",
    )
    event_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.now)
