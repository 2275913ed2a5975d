"""
有限次数的指数退避重试

只重试 TransientError，其他异常原样抛出。
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from course_images.core.errors import TransientError

T = TypeVar("T")
logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """第 attempt 次失败后的等待秒数（attempt 从 0 开始）"""
    return min(base_delay * (2 ** attempt), max_delay)


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs,
) -> T:
    """
    异步重试

    Args:
        func: 协程函数
        max_attempts: 最多尝试次数（含第一次）
        base_delay: 首次等待秒数，之后每次翻倍
        max_delay: 单次等待上限

    Returns:
        func 的返回值
    """
    if max_attempts < 1:
        raise ValueError("max_attempts 至少为 1")

    for attempt in range(max_attempts):
        try:
            return await func(*args, **kwargs)
        except TransientError as e:
            if attempt + 1 >= max_attempts:
                logger.error(f"重试 {max_attempts} 次后仍失败: {e}")
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"第 {attempt + 1}/{max_attempts} 次尝试失败: {e}，{delay:.1f}s 后重试"
            )
            await sleep(delay)

    raise AssertionError("unreachable")


def retry_call(
    func: Callable[..., T],
    *args,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs,
) -> T:
    """retry_with_backoff 的同步版本，供脚本和线程内调用"""
    if max_attempts < 1:
        raise ValueError("max_attempts 至少为 1")

    for attempt in range(max_attempts):
        try:
            return func(*args, **kwargs)
        except TransientError as e:
            if attempt + 1 >= max_attempts:
                logger.error(f"重试 {max_attempts} 次后仍失败: {e}")
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"第 {attempt + 1}/{max_attempts} 次尝试失败: {e}，{delay:.1f}s 后重试"
            )
            sleep(delay)

    raise AssertionError("unreachable")
