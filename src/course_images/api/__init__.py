"""
API 路由模块
"""
from fastapi import APIRouter
from .covers import router as covers_router
from .webhooks import router as webhooks_router
from .predictions import router as predictions_router
from .realtime import router as realtime_router

# 无服务函数风格的入口：/functions/v1/...
functions_router = APIRouter(prefix="/functions/v1")
functions_router.include_router(covers_router)
functions_router.include_router(webhooks_router)

# 查询与推送：/api/...
api_router = APIRouter(prefix="/api")
api_router.include_router(predictions_router)
api_router.include_router(realtime_router)

__all__ = ["functions_router", "api_router"]
