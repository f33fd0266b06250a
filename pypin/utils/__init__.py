"""
Pypin 工具模块。

提供日志记录、路径常量、重试与限速等工具功能。
"""

from .logger import get_logger, setup_logger
from .retry import RetryHandler
from .speed_limiter import SpeedLimiter
from .rate_limiter import RateLimiter
from .input_validator import InputValidator, InputValidationError

__all__ = [
    "get_logger",
    "setup_logger",
    "RetryHandler",
    "SpeedLimiter",
    "RateLimiter",
    "InputValidator",
    "InputValidationError",
]
