"""
课程与模块模型

只包含生成流水线会读写的字段。
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class Course(SQLModel, table=True):
    """课程表"""

    __tablename__ = "courses"

    id: str = Field(primary_key=True, max_length=64)
    title: str = Field(max_length=300)
    description: Optional[str] = Field(default=None)

    # 封面：两个字段同时写入，thumbnail_url 为旧字段
    cover_image_url: Optional[str] = Field(default=None)
    thumbnail_url: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class CourseModule(SQLModel, table=True):
    """课程模块表"""

    __tablename__ = "modules"

    id: str = Field(primary_key=True, max_length=64)
    course_id: str = Field(foreign_key="courses.id", index=True)
    title: str = Field(max_length=300)
    order_index: int = Field(default=0)

    # {"html": "..."} 以及其他编辑器字段
    content_jsonb: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
