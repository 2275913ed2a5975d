"""
用户档案模型
"""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Profile(SQLModel, table=True):
    """用户档案，角色决定能否触发生成"""

    __tablename__ = "profiles"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True, max_length=64)
    role: str = Field(default="student", max_length=32, description="角色: admin/instructor/student")

    # Bearer 令牌的 sha256，不存明文
    access_token_hash: Optional[str] = Field(default=None, index=True, max_length=64)

    created_at: datetime = Field(default_factory=datetime.now)
