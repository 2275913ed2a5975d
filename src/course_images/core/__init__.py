"""
Core 模块 - 配置、日志、错误类型
"""
from .config import Settings, get_settings
from .logging import setup_logging, get_logger
from .errors import PipelineError

__all__ = ["Settings", "get_settings", "setup_logging", "get_logger", "PipelineError"]
