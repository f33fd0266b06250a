"""
Pypin 应用程序主入口点。

同一个可执行文件既是命令行工具也是所有 shim：
以 pypin 名字启动时运行命令行，否则把启动名当作工具名分发。
"""

import os
import sys
from pathlib import Path
from typing import List, Optional

from pypin.core.config_manager import ConfigManager
from pypin.core.errors import EXIT_FAILURE, EXIT_INTERRUPTED, PypinError
from pypin.core.shim import ShimDispatcher, tool_name_from_argv0
from pypin.utils.logger import get_logger, setup_logger
from pypin.utils.paths import EXECUTABLE_NAME


def run_shim(tool: str, args: List[str]) -> int:
    """
    以 shim 方式运行。

    任何失败都转换为错误信息和非零退出码，不输出回溯。

    参数:
        tool: 工具名
        args: 转发给工具的参数

    返回:
        退出码（POSIX 上成功时进程已被替换，不会返回）
    """
    setup_logger(log_to_console=False, force=True)
    logger = get_logger()
    try:
        dispatcher = ShimDispatcher(ConfigManager())
        return dispatcher.dispatch(tool, args, Path.cwd(), os.environ)
    except PypinError as e:
        logger.warning(f"shim {tool} 失败: {e}")
        print(f"{EXECUTABLE_NAME}: {e}", file=sys.stderr)
        if e.hint:
            print(f"{EXECUTABLE_NAME}: {e.hint}", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception(f"shim {tool} 内部错误")
        print(f"{EXECUTABLE_NAME}: 内部错误: {e}", file=sys.stderr)
        return EXIT_FAILURE


def main(argv: Optional[List[str]] = None) -> int:
    """
    应用程序主入口点。

    参数:
        argv: 完整的命令行（包含 argv[0]）。如果为 None，将使用 sys.argv。

    返回:
        退出码（0 表示成功，非零表示错误）。
    """
    argv = list(sys.argv if argv is None else argv)
    invoked = tool_name_from_argv0(argv[0]) if argv else EXECUTABLE_NAME

    if invoked == EXECUTABLE_NAME:
        from pypin.cli import main as cli_main
        return cli_main(argv[1:])
    return run_shim(invoked, argv[1:])
