"""
重试机制工具模块。

对镜像源请求使用指数退避重试。只有临时性错误（超时、连接中断、
分块传输错误、5xx/408/429）才会重试，其余错误立即抛出。
"""

import random
import time
from typing import Any, Callable, Optional, TypeVar

import requests

from pypin.utils.logger import get_logger

logger = get_logger()

T = TypeVar("T")

RETRYABLE_EXCEPTIONS = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
)
RETRYABLE_STATUS_CODES = frozenset({408, 429})


class IncompleteDownloadError(requests.exceptions.ConnectionError):
    """下载内容少于服务器声明长度时抛出，视为可重试的连接错误。"""
    pass


class RetryHandler:
    """
    重试处理器类。

    第 n 次重试前等待 base_delay * backoff_factor ** n 秒（不超过 max_delay），
    开启 jitter 时在 50%~100% 之间随机缩放。
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        初始化重试处理器。

        参数:
            max_retries: 首次尝试之后的最大重试次数
            base_delay: 基础延迟时间（秒）
            max_delay: 最大延迟时间（秒）
            backoff_factor: 退避因子
            jitter: 是否添加随机抖动
            sleep: 等待函数，默认为 time.sleep
        """
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self._sleep = sleep or time.sleep

    def _calculate_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.backoff_factor ** attempt), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random() * 0.5
        return delay

    def is_retryable_error(self, exception: BaseException) -> bool:
        """
        判断错误是否值得重试。

        参数:
            exception: 异常对象

        返回:
            可重试返回 True
        """
        if isinstance(exception, requests.exceptions.HTTPError):
            response = exception.response
            if response is None:
                return True
            return response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES
        return isinstance(exception, RETRYABLE_EXCEPTIONS)

    def execute(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        调用 func，遇到可重试错误时按退避策略重试。

        参数:
            func: 要执行的函数
            *args: 函数位置参数
            **kwargs: 函数关键字参数

        返回:
            函数执行结果

        抛出:
            不可重试的错误，或重试用尽后的最后一个错误
        """
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not self.is_retryable_error(e):
                    logger.debug(f"不可重试的错误: {e}")
                    raise
                if attempt + 1 >= attempts:
                    logger.error(f"{attempts} 次尝试均失败: {e}")
                    raise
                delay = self._calculate_delay(attempt)
                logger.warning(f"第 {attempt + 1}/{attempts} 次尝试失败: {e}，{delay:.2f} 秒后重试")
                self._sleep(delay)

        raise AssertionError("unreachable")
