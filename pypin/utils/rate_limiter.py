"""
速率限制器模块。

按 Token Bucket 策略控制对镜像源的请求频率。
"""

import time
import threading
from typing import Callable, Optional


class RateLimiter:
    """
    速率限制器类，用于控制请求频率。

    按固定速率生成 token，每次请求消耗一个 token；
    requests_per_second 不大于 0 时不做任何限制。
    """

    def __init__(
        self,
        requests_per_second: float = 0.0,
        max_tokens: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        初始化速率限制器。

        参数:
            requests_per_second: 每秒允许的请求数，0 表示不限制
            max_tokens: Token Bucket 的最大容量，默认为 requests_per_second
            clock: 单调时钟函数
            sleep: 等待函数
        """
        self.requests_per_second = float(requests_per_second or 0)
        self.max_tokens = float(max_tokens or self.requests_per_second or 1)
        self.tokens = self.max_tokens
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.requests_per_second > 0

    def acquire(self) -> None:
        """
        获取请求权限，必要时等待。

        此方法会阻塞直到可以发送请求。
        """
        if not self.enabled:
            return

        with self._lock:
            self._refill()
            while self.tokens < 1.0:
                self._sleep((1.0 - self.tokens) / self.requests_per_second)
                self._refill()
            self.tokens -= 1.0

    def _refill(self) -> None:
        """按流逝的时间补充 token。"""
        now = self._clock()
        elapsed = now - self._last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.requests_per_second)
        self._last_refill = now

    def reset(self) -> None:
        """
        重置速率限制器状态。
        """
        with self._lock:
            self.tokens = self.max_tokens
            self._last_refill = self._clock()
