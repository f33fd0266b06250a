"""
下载速度限制工具模块。

提供下载速度限制功能。
"""

import time
from typing import BinaryIO, Callable


class SpeedLimiter:
    """
    下载速度限制器类。

    记录自开始写入以来的累计字节数，写得比限速快时休眠补齐。
    """

    def __init__(
        self,
        speed_limit_bytes: int = 0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        初始化速度限制器。

        参数:
            speed_limit_bytes: 速度限制（字节/秒），0 表示不限速
            clock: 单调时钟函数
            sleep: 等待函数
        """
        self.speed_limit = speed_limit_bytes
        self._clock = clock
        self._sleep = sleep
        self._start = None
        self.bytes_written = 0

    def reset(self) -> None:
        """开始新的下载前重置计数。"""
        self._start = None
        self.bytes_written = 0

    def write_with_limit(self, f: BinaryIO, data: bytes) -> int:
        """
        写入数据并应用速度限制。

        参数:
            f: 文件对象
            data: 要写入的数据

        返回:
            实际写入的字节数
        """
        if self._start is None:
            self._start = self._clock()

        written = f.write(data)
        self.bytes_written += written

        if self.speed_limit > 0:
            expected = self.bytes_written / self.speed_limit
            elapsed = self._clock() - self._start
            if elapsed < expected:
                self._sleep(expected - elapsed)

        return written
