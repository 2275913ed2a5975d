"""
数据库连接管理 - 统一管理数据库连接
"""
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlmodel import SQLModel, create_engine

from course_images.core.config import get_settings


def _build_engine(database_url: str):
    url = make_url(database_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        # webhook 与 to_thread 会跨线程使用连接
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, echo=False, connect_args=connect_args)


# 创建全局数据库引擎
_settings = get_settings()
engine = _build_engine(_settings.database_url)


def init_db() -> None:
    """创建所有表"""
    # 导入模型以注册元数据
    import course_images.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


__all__ = ["engine", "init_db"]
