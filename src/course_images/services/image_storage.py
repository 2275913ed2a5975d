"""
图片转存：从生成服务下载图片，保存到本地存储目录并返回公开 URL
"""
import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests

from course_images.core import get_settings
from course_images.core.errors import StorageError, TransientError
from course_images.core.retry import retry_call

logger = logging.getLogger(__name__)

VALID_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")
TRUSTED_IMAGE_HOSTS = ("replicate.delivery", "replicate.com")

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def is_valid_image_url(url: str) -> bool:
    """http(s) 且路径以图片扩展名结尾，或来自 Replicate 的交付域名"""
    try:
        parsed = urlparse(url)
    except (TypeError, ValueError):
        return False
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return False
    if parsed.path.lower().endswith(VALID_IMAGE_EXTENSIONS):
        return True
    host = parsed.netloc.lower()
    return any(host == h or host.endswith("." + h) for h in TRUSTED_IMAGE_HOSTS)


def extension_for_content_type(content_type: Optional[str]) -> str:
    if not content_type:
        return "jpg"
    return CONTENT_TYPE_EXTENSIONS.get(content_type.split(";")[0].strip().lower(), "jpg")


def unique_file_name(
    extension: str,
    course_id: Optional[str] = None,
    module_id: Optional[str] = None,
) -> str:
    """courses/{id}/... 、modules/{id}/... 或 generated/..."""
    stem = f"{int(time.time() * 1000)}-{secrets.token_hex(3)}.{extension}"
    if course_id:
        return f"courses/{course_id}/{stem}"
    if module_id:
        return f"modules/{module_id}/{stem}"
    return f"generated/{stem}"


@dataclass(frozen=True)
class StoredImage:
    public_url: str
    file_path: str
    content_type: str
    size: int


class ImageStorage:
    """本地目录形式的图片存储，由 /storage 静态路由对外提供"""

    def __init__(
        self,
        root_dir: Optional[str] = None,
        public_base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        self.root_dir = Path(root_dir or settings.image_storage_dir)
        self.public_base_url = (public_base_url or settings.image_public_base_url).rstrip("/")
        self.timeout = settings.http_timeout_seconds
        self.max_attempts = settings.http_max_attempts
        self.base_delay = settings.http_base_delay_seconds
        self.max_delay = settings.http_max_delay_seconds
        self.session = session or requests.Session()

    def _download_once(self, image_url: str) -> tuple[bytes, str]:
        try:
            response = self.session.get(
                image_url,
                headers={"User-Agent": "course-images/1.0"},
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(f"图片下载失败: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(f"图片下载失败: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise StorageError(f"图片下载失败: HTTP {response.status_code}")

        content_type = response.headers.get("content-type", "image/jpeg")
        return response.content, content_type

    def download(self, image_url: str) -> tuple[bytes, str]:
        """带退避重试的下载"""
        logger.info(f"下载图片: {image_url}")
        data, content_type = retry_call(
            self._download_once,
            image_url,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )
        logger.info(f"下载完成: {len(data)} bytes")
        return data, content_type

    def save(
        self,
        data: bytes,
        content_type: str,
        course_id: Optional[str] = None,
        module_id: Optional[str] = None,
    ) -> StoredImage:
        """写入存储目录，不覆盖已有文件"""
        file_path = unique_file_name(
            extension_for_content_type(content_type),
            course_id=course_id,
            module_id=module_id,
        )
        target = self.root_dir / file_path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "xb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"图片保存失败: {e}") from e

        return StoredImage(
            public_url=f"{self.public_base_url}/{file_path}",
            file_path=file_path,
            content_type=content_type,
            size=len(data),
        )

    def rehost(
        self,
        image_url: str,
        course_id: Optional[str] = None,
        module_id: Optional[str] = None,
    ) -> StoredImage:
        """下载外部图片并保存到本地存储"""
        if not is_valid_image_url(image_url):
            raise StorageError(f"无效的图片URL: {image_url}")
        data, content_type = self.download(image_url)
        stored = self.save(data, content_type, course_id=course_id, module_id=module_id)
        logger.info(f"图片已转存: {stored.public_url}")
        return stored

    async def rehost_async(
        self,
        image_url: str,
        course_id: Optional[str] = None,
        module_id: Optional[str] = None,
    ) -> StoredImage:
        return await asyncio.to_thread(
            self.rehost, image_url, course_id=course_id, module_id=module_id
        )


# 全局单例
_image_storage: Optional[ImageStorage] = None


def get_image_storage() -> ImageStorage:
    """获取图片存储单例"""
    global _image_storage
    if _image_storage is None:
        _image_storage = ImageStorage()
    return _image_storage
