# -*- coding: utf-8 -*-
"""有界指数退避重试"""
import asyncio
import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Optional

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_delay: float, max_delay: float = 60.0) -> float:
    """第attempt次失败后的等待时间：base, 2*base, 4*base ... 不超过max_delay"""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    attempts: int = 4,
    base_delay: float = 1.0,
    retry_if: Optional[Callable[[BaseException], bool]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """循环执行协程函数直到成功或达到最大尝试次数

    参数：
    func -- 无参协程函数
    attempts -- 最大尝试次数（包含首次）
    base_delay -- 首次重试前的等待时间，之后按2的幂递增
    retry_if -- 判断异常是否可重试，返回False时立即抛出
    sleep -- 等待函数，测试中可替换

    返回：
    函数执行结果

    注意：
    最后一次失败的异常原样抛出
    """
    attempts = max(1, attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except Exception as e:
            if retry_if is not None and not retry_if(e):
                raise
            if attempt >= attempts:
                logger.warning(f"Giving up after {attempt}/{attempts} attempts: {e}")
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"Attempt {attempt}/{attempts} failed: {e}; retrying in {delay:.1f}s"
            )
            await sleep(delay)
