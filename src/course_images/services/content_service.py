"""
把生成结果写回归属实体（课程封面 / 模块正文）
"""
import html
import logging
from datetime import datetime, timedelta
from typing import Optional

from bs4 import BeautifulSoup
from sqlalchemy import update
from sqlmodel import Session

from course_images.core.database import engine as default_engine
from course_images.core.errors import NotFoundError, TransientError
from course_images.models.course import Course, CourseModule

logger = logging.getLogger(__name__)

MODULE_WRITE_ATTEMPTS = 5


def create_module_image_html(image_url: str, module_title: str, prediction_id: str) -> str:
    """模块配图的 figure 片段，data-prediction-id 用于去重"""
    return (
        f'<figure class="module-image" data-prediction-id="{html.escape(prediction_id)}" '
        f'style="margin: 0 0 24px 0; text-align: center;">'
        f'<img src="{html.escape(image_url)}" '
        f'alt="Ilustração do módulo: {html.escape(module_title)}" '
        f'style="width: 100%; max-width: 800px; height: auto; border-radius: 12px;" '
        f'loading="lazy"/>'
        f"</figure>"
    )


def has_module_image(content_html: str, prediction_id: str, image_url: Optional[str] = None) -> bool:
    """正文里是否已有这次任务的配图"""
    if not content_html:
        return False
    soup = BeautifulSoup(content_html, "html.parser")
    if soup.find("figure", attrs={"data-prediction-id": prediction_id}) is not None:
        return True
    if image_url and soup.find("img", attrs={"src": image_url}) is not None:
        return True
    return False


def prepend_image_to_content(content: Optional[dict | str], image_html: str) -> dict:
    """
    把图片放到正文最前面，原正文原样保留在后面

    content_jsonb 历史上既有 {"html": ...} 也有纯字符串两种形态。
    """
    if isinstance(content, str):
        content = {"html": content}
    content = dict(content or {})
    existing = content.get("html") or ""
    content["html"] = f"{image_html}\n{existing}" if existing.strip() else image_html
    return content


class ContentService:
    """归属实体写入"""

    def __init__(self, engine=None):
        self.engine = engine or default_engine

    def get_course(self, course_id: str) -> Optional[Course]:
        with Session(self.engine) as session:
            return session.get(Course, course_id)

    def get_module(self, module_id: str) -> Optional[CourseModule]:
        with Session(self.engine) as session:
            return session.get(CourseModule, module_id)

    def apply_course_cover(self, course_id: str, image_url: str) -> None:
        """封面与缩略图字段同时写入"""
        with self.engine.begin() as conn:
            result = conn.execute(
                update(Course)
                .where(Course.id == course_id)
                .values(
                    cover_image_url=image_url,
                    thumbnail_url=image_url,
                    updated_at=datetime.now(),
                )
            )
        if result.rowcount == 0:
            raise NotFoundError(f"课程不存在: {course_id}")
        logger.info(f"课程 {course_id} 封面已更新")

    def apply_module_image(self, module_id: str, image_url: str, prediction_id: str) -> bool:
        """
        在模块正文前插入配图

        以读取时的 updated_at 为条件更新，并发写入导致条件不成立时重新读取再插入。

        Returns:
            False 表示这次任务的配图已经存在，未做修改
        """
        for _ in range(MODULE_WRITE_ATTEMPTS):
            module = self.get_module(module_id)
            if module is None:
                raise NotFoundError(f"模块不存在: {module_id}")

            content = module.content_jsonb
            current_html = content.get("html", "") if isinstance(content, dict) else (content or "")
            if has_module_image(current_html, prediction_id, image_url):
                logger.info(f"模块 {module_id} 已包含任务 {prediction_id} 的配图，跳过")
                return False

            image_html = create_module_image_html(image_url, module.title, prediction_id)
            now = datetime.now()
            if now <= module.updated_at:
                now = module.updated_at + timedelta(microseconds=1)

            with self.engine.begin() as conn:
                result = conn.execute(
                    update(CourseModule)
                    .where(CourseModule.id == module_id)
                    .where(CourseModule.updated_at == module.updated_at)
                    .values(
                        content_jsonb=prepend_image_to_content(content, image_html),
                        updated_at=now,
                    )
                )
            if result.rowcount == 1:
                logger.info(f"模块 {module_id} 配图已插入")
                return True
            logger.info(f"模块 {module_id} 正文已被并发修改，重新读取")

        raise TransientError(f"模块 {module_id} 正文并发修改频繁，插入配图失败")


# 全局单例
_content_service: Optional[ContentService] = None


def get_content_service() -> ContentService:
    """获取内容写入服务单例"""
    global _content_service
    if _content_service is None:
        _content_service = ContentService()
    return _content_service
