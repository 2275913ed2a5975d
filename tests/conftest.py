"""
测试配置
"""
import hashlib
import hmac
import os
import sys
import tempfile

import pytest

# 添加 src 目录到 Python 路径
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

# 设置测试环境变量（必须在导入 course_images 之前）
_tmp_dir = tempfile.mkdtemp(prefix="course_images_test_")
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp_dir}/test_course_images.db"
os.environ["REPLICATE_API_TOKEN"] = "test-token"
os.environ["REPLICATE_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["SERVICE_ROLE_KEY"] = "test-service-key"
os.environ["REHOST_IMAGES"] = "false"
os.environ["IMAGE_STORAGE_DIR"] = os.path.join(_tmp_dir, "images")
os.environ["PUBLIC_BASE_URL"] = "https://api.example.test"
os.environ["HTTP_BASE_DELAY_SECONDS"] = "0"

WEBHOOK_SECRET = "test-webhook-secret"
SERVICE_KEY = "test-service-key"


@pytest.fixture(autouse=True)
def test_db():
    """每个测试一套干净的表，并重置服务单例"""
    from sqlmodel import SQLModel

    from course_images.core.database import engine
    import course_images.models  # noqa: F401
    from course_images.services import (
        content_service,
        generation_service,
        image_storage,
        notifier,
        prediction_service,
        replicate_client,
        webhook_service,
    )

    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)

    for module, name in (
        (content_service, "_content_service"),
        (generation_service, "_generation_service"),
        (image_storage, "_image_storage"),
        (notifier, "_notifier"),
        (prediction_service, "_prediction_service"),
        (replicate_client, "_replicate_client"),
        (webhook_service, "_webhook_service"),
    ):
        setattr(module, name, None)

    yield engine


@pytest.fixture
def sign():
    """为回调体生成 replicate-signature 头"""

    def _sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
        return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

    return _sign


@pytest.fixture
def seed_course(test_db):
    """写入一门课程，返回其 ID"""
    from sqlmodel import Session

    from course_images.models import Course

    def _seed(course_id: str = "C1", title: str = "Blue Team Fundamentals", **fields) -> str:
        with Session(test_db) as session:
            session.add(Course(id=course_id, title=title, **fields))
            session.commit()
        return course_id

    return _seed


@pytest.fixture
def seed_module(test_db):
    from sqlmodel import Session

    from course_images.models import CourseModule

    def _seed(module_id: str, course_id: str, title: str = "Firewalls", html: str = "") -> str:
        with Session(test_db) as session:
            session.add(
                CourseModule(
                    id=module_id,
                    course_id=course_id,
                    title=title,
                    content_jsonb={"html": html, "blocks": []},
                )
            )
            session.commit()
        return module_id

    return _seed


@pytest.fixture
def seed_profile(test_db):
    """写入用户档案，返回明文令牌"""
    from sqlmodel import Session

    from course_images.models import Profile
    from course_images.services.auth_service import hash_token

    def _seed(user_id: str, role: str) -> str:
        token = f"token-{user_id}"
        with Session(test_db) as session:
            session.add(Profile(user_id=user_id, role=role, access_token_hash=hash_token(token)))
            session.commit()
        return token

    return _seed
