"""
配置管理 - 类似 Java 的 @ConfigurationProperties
"""
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """应用配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API 配置
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]

    # Replicate API 配置
    replicate_api_token: str = Field(
        default="",
        validation_alias=AliasChoices("REPLICATE_API_TOKEN", "REPLICATE_API_KEY"),
    )
    replicate_base_url: str = "https://api.replicate.com"
    replicate_webhook_secret: str = ""

    # 对外地址，用于拼接 webhook 回调 URL
    public_base_url: str = Field(
        default="http://localhost:8000",
        validation_alias=AliasChoices("PUBLIC_BASE_URL", "SUPABASE_URL"),
    )

    # 服务端密钥（运维脚本绕过角色校验）
    service_role_key: str = Field(
        default="",
        validation_alias=AliasChoices("SERVICE_ROLE_KEY", "SUPABASE_SERVICE_ROLE_KEY"),
    )

    # 外部 HTTP 调用
    http_timeout_seconds: float = 30.0
    http_max_attempts: int = 3
    http_base_delay_seconds: float = 1.0
    http_max_delay_seconds: float = 10.0

    # 超时任务清理
    stale_prediction_timeout_minutes: int = 30

    # 图片转存
    rehost_images: bool = True
    image_storage_dir: str = "./data/course-images"
    image_public_base_url: str = "http://localhost:8000/storage/course-images"

    # 实时推送
    realtime_keepalive_seconds: float = 15.0

    # 数据库配置
    database_url: str = "sqlite:///./data/course_images.db"

    # 日志配置
    log_level: str = "INFO"

    @property
    def webhook_url(self) -> str:
        """Replicate 回调地址"""
        return f"{self.public_base_url.rstrip('/')}/functions/v1/replicate-webhook"

    def missing_required(self) -> list[str]:
        """返回缺失的必填密钥（环境变量名）"""
        required = {
            "REPLICATE_API_TOKEN": self.replicate_api_token,
            "REPLICATE_WEBHOOK_SECRET": self.replicate_webhook_secret,
            "DATABASE_URL": self.database_url,
        }
        return [name for name, value in required.items() if not value]


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
