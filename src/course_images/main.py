"""
FastAPI 应用入口
"""
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from course_images.core import setup_logging, get_settings, get_logger
from course_images.core.database import init_db
from course_images.core.errors import ConfigurationError, PipelineError
from course_images.api import api_router, functions_router

# 初始化日志
settings = get_settings()
setup_logging(settings.log_level)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    missing = settings.missing_required()
    if missing:
        logger.critical(f"缺少必填配置: {', '.join(missing)}")
        raise ConfigurationError(f"缺少必填配置: {', '.join(missing)}")

    init_db()
    logger.info("课程图片生成服务启动")
    yield
    logger.info("课程图片生成服务关闭")


app = FastAPI(
    title="Course Images API",
    description="课程封面与模块配图的异步生成服务（Replicate + webhook）",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    """业务错误统一返回 {"error": ...}"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} 失败: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} 被拒绝({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """参数校验错误返回 400 而非 422"""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "请求参数无效")
    return JSONResponse(
        status_code=400,
        content={"error": f"{location}: {message}" if location else message},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    """未预期错误不向外暴露细节"""
    logger.error(f"{request.method} {request.url.path} 未处理异常: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "服务器内部错误"})


# 注册路由
app.include_router(functions_router)
app.include_router(api_router)

# 转存后的图片
Path(settings.image_storage_dir).mkdir(parents=True, exist_ok=True)
app.mount(
    "/storage/course-images",
    StaticFiles(directory=settings.image_storage_dir),
    name="course-images",
)


@app.get("/")
async def root():
    """健康检查"""
    return {"status": "ok", "message": "课程图片生成服务运行中"}


@app.get("/health")
async def health():
    """健康检查"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    logger.info(f"启动服务: http://{settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "course_images.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
