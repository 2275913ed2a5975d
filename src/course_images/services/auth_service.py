"""
调用者身份与角色校验
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from course_images.core import get_settings
from course_images.core.database import engine as default_engine
from course_images.core.errors import AuthenticationError, AuthorizationError
from course_images.models.profile import Profile

logger = logging.getLogger(__name__)

GENERATOR_ROLES = frozenset({"admin", "instructor"})


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Caller:
    """已认证的调用者"""

    user_id: Optional[str]
    role: Optional[str]
    is_service: bool = False


class AuthService:
    """Bearer 令牌认证；服务密钥直接放行"""

    def __init__(self, engine=None, service_role_key: Optional[str] = None):
        self.engine = engine or default_engine
        self.service_role_key = (
            get_settings().service_role_key if service_role_key is None else service_role_key
        )

    def authenticate(self, authorization: Optional[str]) -> Caller:
        if not authorization:
            raise AuthenticationError("需要 Authorization 令牌")

        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Authorization 格式应为 Bearer <token>")
        token = token.strip()

        if self.service_role_key and hmac.compare_digest(token, self.service_role_key):
            logger.info("使用服务密钥，跳过角色校验")
            return Caller(user_id=None, role="service", is_service=True)

        try:
            with Session(self.engine) as session:
                profile = session.exec(
                    select(Profile).where(Profile.access_token_hash == hash_token(token))
                ).first()
        except SQLAlchemyError as e:
            # 查询失败按未认证处理
            logger.error(f"查询用户档案失败: {e}")
            raise AuthenticationError("令牌无效或已过期") from e

        if profile is None:
            raise AuthenticationError("令牌无效或已过期")
        return Caller(user_id=profile.user_id, role=profile.role)

    def require_generator(self, authorization: Optional[str]) -> Caller:
        """只有 admin / instructor（或服务密钥）可以触发生成"""
        caller = self.authenticate(authorization)
        if caller.is_service:
            return caller
        if caller.role not in GENERATOR_ROLES:
            logger.warning(f"拒绝生成请求: user_id={caller.user_id}, role={caller.role}")
            raise AuthorizationError("只有管理员和讲师可以生成图片")
        return caller

    def require_service(self, authorization: Optional[str]) -> Caller:
        caller = self.authenticate(authorization)
        if not caller.is_service:
            raise AuthorizationError("需要服务密钥")
        return caller
