"""
Replicate webhook 回调入口
"""
from typing import Optional

from fastapi import APIRouter, Header, Request

from course_images.services.webhook_service import get_webhook_service

router = APIRouter(tags=["webhooks"])


@router.post("/replicate-webhook")
async def replicate_webhook(
    request: Request,
    replicate_signature: Optional[str] = Header(default=None),
):
    """
    接收 Replicate 回调

    签名必须基于原始请求体校验，因此这里直接读取字节而不声明 body 模型。
    """
    raw_body = await request.body()
    await get_webhook_service().handle(raw_body, replicate_signature)
    return {"success": True}
