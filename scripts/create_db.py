"""
创建数据库表

Usage:
  PYTHONPATH=src python scripts/create_db.py
"""
from course_images.core import get_settings, setup_logging
from course_images.core.database import init_db

if __name__ == "__main__":
    settings = get_settings()
    setup_logging(settings.log_level)

    # init_db 使用全局引擎，SQLite 的数据目录会自动创建
    init_db()

    print(f"✅ 数据库表创建完成: {settings.database_url}")
