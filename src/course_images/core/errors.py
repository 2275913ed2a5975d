"""
错误类型 - 每类错误自带 HTTP 状态码，由 main 中的异常处理器统一渲染为 {"error": ...}
"""


class PipelineError(Exception):
    """所有业务错误的基类"""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(PipelineError):
    """未登录或令牌无效"""

    status_code = 401


class AuthorizationError(PipelineError):
    """角色不足"""

    status_code = 403


class SignatureError(PipelineError):
    """webhook 签名缺失或不匹配"""

    status_code = 401


class ValidationError(PipelineError):
    """请求体格式错误"""

    status_code = 400


class NotFoundError(PipelineError):
    status_code = 404


class ConfigurationError(PipelineError):
    """缺少必填配置，不可重试"""

    status_code = 500


class TransientError(PipelineError):
    """网络抖动、超时、429/5xx，可按退避重试"""

    status_code = 502


class ProviderError(PipelineError):
    """生成服务明确拒绝的请求，不重试"""

    status_code = 502


class StorageError(PipelineError):
    status_code = 500


__all__ = [
    "PipelineError",
    "AuthenticationError",
    "AuthorizationError",
    "SignatureError",
    "ValidationError",
    "NotFoundError",
    "ConfigurationError",
    "TransientError",
    "ProviderError",
    "StorageError",
]
