"""
错误类型与退出码模块。

所有领域错误都继承自 PypinError，并携带稳定的进程退出码，
调用方脚本可以依据退出码分支处理。

退出码:
    0   成功
    1   通用错误
    2   命令行用法错误
    3   MalformedSpecifierError
    4   ToolchainNotInstalledError
    5   ToolNotFoundInToolchainError
    6   DownloadFailedError
    7   ExtractionFailedError
    8   BuildFailedError
    9   InstallInProgressError
    10  VersionNotAvailableError
    11  ConfigError
    130 用户中断
"""

from pathlib import Path
from typing import Optional

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


class PypinError(Exception):
    """Pypin 错误基类。"""

    exit_code = EXIT_FAILURE
    hint: Optional[str] = None


class MalformedSpecifierError(PypinError):
    """版本说明符无法解析。"""

    exit_code = 3

    def __init__(self, text: str, fragment: Optional[str] = None, reason: str = ""):
        self.text = text
        self.fragment = fragment if fragment is not None else text
        self.reason = reason
        message = f"无法解析版本说明符 {text!r}: 无效片段 {self.fragment!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ToolchainNotInstalledError(PypinError):
    """解析到的版本未安装。"""

    exit_code = 4

    def __init__(self, requested: str, source: Optional[Path] = None, hint: Optional[str] = None):
        self.requested = requested
        self.source = source
        message = f"Python {requested} 未安装"
        if source is not None:
            message += f"（来自 {source}）"
        self.hint = hint or f"请运行: pypin install {requested}"
        super().__init__(message)


class ToolNotFoundInToolchainError(PypinError):
    """已解析的工具链中不存在请求的工具。"""

    exit_code = 5

    def __init__(self, tool: str, version: str, search_dirs=()):
        self.tool = tool
        self.version = version
        self.search_dirs = list(search_dirs)
        dirs = ", ".join(str(d) for d in self.search_dirs) or "-"
        super().__init__(f"Python {version} 中没有找到工具 {tool!r}（搜索目录: {dirs}）")


class DownloadFailedError(PypinError):
    """归档下载在重试后仍然失败。"""

    exit_code = 6

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"下载失败: {reason}")


class ExtractionFailedError(PypinError):
    """归档损坏或无法解压。"""

    exit_code = 7

    def __init__(self, reason: str):
        self.reason = reason
        self.hint = "缓存的归档已删除，重新运行 install 会重新下载"
        super().__init__(f"解压失败: {reason}")


class BuildFailedError(PypinError):
    """构建或安装步骤失败。"""

    exit_code = 8

    def __init__(self, step: str, exit_status: Optional[int], log_path: Optional[Path] = None, output_tail: str = ""):
        self.step = step
        self.exit_status = exit_status
        self.log_path = log_path
        self.output_tail = output_tail
        message = f"构建步骤 {step!r} 失败，退出状态 {exit_status}"
        if log_path is not None:
            message += f"，日志: {log_path}"
        if output_tail:
            message += "\n" + output_tail
        super().__init__(message)


class InstallInProgressError(PypinError):
    """同一版本已有其他进程在安装。"""

    exit_code = 9

    def __init__(self, version: str, lock_path: Path):
        self.version = version
        self.lock_path = lock_path
        super().__init__(f"Python {version} 正在由其他进程安装（锁文件: {lock_path}）")


class VersionNotAvailableError(PypinError):
    """没有可供下载的版本满足说明符。"""

    exit_code = 10

    def __init__(self, requested: str):
        self.requested = requested
        super().__init__(f"镜像源中没有满足 {requested!r} 的 Python 版本")


class ConfigError(PypinError):
    """配置加载、验证或保存失败。"""

    exit_code = 11
