"""
日志模块。

提供应用程序日志的配置和管理功能。
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

_logger: Optional[logging.Logger] = None

LOGGER_NAME = "Pypin"
LOG_FILE_NAME = "pypin.log"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(module)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5
LOG_LEVEL_ENV = "PYPIN_LOG"


def get_log_dir() -> Path:
    """
    获取日志目录路径。

    返回:
        受管根目录下 logs 目录的 Path 对象
    """
    from pypin.utils.paths import get_home_dir

    return get_home_dir() / "logs"


def _level_from_env(default: int) -> int:
    """从 PYPIN_LOG 环境变量解析日志级别，无法解析时返回默认值。"""
    name = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def setup_logger(
    level: int = logging.DEBUG,
    console_level: int = logging.WARNING,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
    max_bytes: int = MAX_BYTES,
    backup_count: int = BACKUP_COUNT,
    force: bool = False,
) -> logging.Logger:
    """
    配置并初始化日志记录器。

    控制台默认只输出 WARNING 及以上级别，避免 shim 调用时污染解释器的输出流。

    参数:
        level: 文件日志级别，默认为 DEBUG
        console_level: 控制台日志级别，默认为 WARNING
        log_to_file: 是否输出到文件，默认为 True
        log_to_console: 是否输出到控制台，默认为 True
        log_dir: 日志文件目录，默认为受管根目录下的 logs 目录
        max_bytes: 单个日志文件最大字节数，默认为 5MB
        backup_count: 保留的备份文件数量，默认为 5
        force: 已初始化时是否重新配置

    返回:
        配置好的 Logger 实例
    """
    global _logger

    if _logger is not None and not force:
        return _logger

    console_level = _level_from_env(console_level)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(min(level, console_level))
    logger.propagate = False
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if log_to_file:
        try:
            target_dir = log_dir or get_log_dir()
            target_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                target_dir / LOG_FILE_NAME,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError:
            # 只读的受管根目录不应阻止工具运行
            file_handler = None
        if file_handler is not None:
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    if log_to_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(console_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """
    获取日志记录器实例。

    尚未调用 setup_logger 时，返回未配置处理器的命名 Logger，
    真正的处理器由入口函数负责安装。

    返回:
        Logger 实例
    """
    if _logger is None:
        return logging.getLogger(LOGGER_NAME)
    return _logger

