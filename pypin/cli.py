"""
Pypin 命令行接口模块。
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from pypin import __version__
from pypin.core.config_manager import ConfigManager
from pypin.core.errors import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_SUCCESS, PypinError
from pypin.core.resolver import Unmatched, not_installed_error
from pypin.core.version_manager import VersionManager
from pypin.core.version_utils import group_versions_by_minor
from pypin.utils.logger import get_logger, setup_logger
from pypin.utils.paths import PIN_FILE_NAME

logger = get_logger()


def create_parser() -> argparse.ArgumentParser:
    """
    创建并配置命令行参数解析器。

    返回:
        配置好的 ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog="pypin",
        description="Pypin - 按目录选择 Python 版本",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
示例:
  pypin install 3.7           安装最新的 3.7.x
  pypin select ~3.7           在当前目录写入 {PIN_FILE_NAME}
  pypin list                  列出已安装的版本
  pypin run python -V         用当前生效的版本运行命令
  pypin config --set settings.default_version=3.8
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="启用详细输出",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="命令",
        description="可用的 CLI 命令",
    )

    install_parser = subparsers.add_parser(
        "install",
        help="下载、构建并安装满足说明符的版本",
    )
    install_parser.add_argument(
        "specifier",
        help="版本说明符，例如 3.7.2、3.7、~3.7、latest",
    )
    install_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="已安装时重新安装",
    )
    install_parser.add_argument(
        "--no-extra-packages",
        action="store_true",
        help="不安装额外包文件中列出的包",
    )

    select_parser = subparsers.add_parser(
        "select",
        help=f"在当前目录写入 {PIN_FILE_NAME}",
    )
    select_parser.add_argument(
        "specifier",
        help="版本说明符，或自定义解释器目录的路径",
    )
    select_parser.add_argument(
        "--install",
        "-i",
        action="store_true",
        help="没有匹配的已安装版本时先安装",
    )

    list_parser = subparsers.add_parser(
        "list",
        help="列出已安装的版本",
    )
    list_parser.add_argument(
        "--remote",
        "-r",
        action="store_true",
        help="显示可供下载的版本",
    )
    list_parser.add_argument(
        "--format",
        choices=["simple", "json"],
        default="simple",
        help="输出格式",
    )

    subparsers.add_parser(
        "path",
        help="显示当前生效工具链的可执行文件目录",
    )

    subparsers.add_parser(
        "version",
        help="显示当前生效的版本",
    )

    run_parser = subparsers.add_parser(
        "run",
        help="用当前生效的版本运行命令",
    )
    run_parser.add_argument(
        "program",
        help="要运行的命令",
    )
    run_parser.add_argument(
        "arguments",
        nargs=argparse.REMAINDER,
        help="传给命令的参数",
    )

    subparsers.add_parser(
        "shims",
        help="重新生成 shims 目录",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="显示或修改配置",
    )
    config_parser.add_argument(
        "--set",
        "-s",
        type=str,
        help="设置配置值（格式：key=value，key 用 . 分隔层级）",
    )
    config_parser.add_argument(
        "--reset",
        action="store_true",
        help="恢复默认配置",
    )

    return parser


def _get_managers():
    """
    获取管理器实例。

    返回:
        包含 ConfigManager、VersionManager 的元组
    """
    config_manager = ConfigManager()
    version_manager = VersionManager(config_manager)
    return config_manager, version_manager


def _print_progress(downloaded: int, total: int) -> None:
    percent = int(downloaded / total * 100) if total > 0 else 0
    bar_len = 40
    filled = int(bar_len * percent / 100)
    bar = "=" * filled + "-" * (bar_len - filled)
    print(f"\r[{bar}] {percent}% ({downloaded}/{total} 字节)", end="", flush=True)


def _print_error(error: PypinError) -> None:
    print(f"错误: {error}", file=sys.stderr)
    if error.hint:
        print(error.hint, file=sys.stderr)


def handle_install(args: argparse.Namespace) -> int:
    """
    处理 install 命令：下载、构建并安装版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, version_manager = _get_managers()

    in_progress = False

    def progress(downloaded: int, total: int) -> None:
        nonlocal in_progress
        in_progress = True
        _print_progress(downloaded, total)

    def status(message: str) -> None:
        nonlocal in_progress
        if in_progress:
            print()
            in_progress = False
        print(message)

    print(f"正在安装 Python {args.specifier}...")
    toolchain = version_manager.install(
        args.specifier,
        force=args.force,
        extra_packages=not args.no_extra_packages,
        progress_callback=progress,
        status_callback=status,
    )
    print(f"成功安装 Python {toolchain.version}")
    return EXIT_SUCCESS


def handle_select(args: argparse.Namespace) -> int:
    """
    处理 select 命令：写入 pin 文件。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, version_manager = _get_managers()
    path, resolution = version_manager.select(args.specifier, Path.cwd(), install=args.install)
    print(f"已写入 {path}")
    if isinstance(resolution, Unmatched):
        error = not_installed_error(resolution)
        print(f"警告: {error}", file=sys.stderr)
        print(error.hint, file=sys.stderr)
    else:
        print(f"当前版本: {resolution.version}")
    return EXIT_SUCCESS


def handle_list(args: argparse.Namespace) -> int:
    """
    处理 list 命令：列出已安装或可供下载的版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, version_manager = _get_managers()

    if args.remote:
        print("正在获取可供下载的版本...", file=sys.stderr)
        versions = version_manager.get_remote_versions()
        if args.format == "json":
            print(json.dumps([str(v) for v in versions], indent=2))
            return EXIT_SUCCESS
        if not versions:
            print("未找到可供下载的版本")
            return EXIT_SUCCESS
        for group in group_versions_by_minor(versions):
            members = group["versions"]
            shown = ", ".join(str(v) for v in members[:8])
            more = f" ... 还有 {len(members) - 8} 个" if len(members) > 8 else ""
            print(f"  {group['series']}: {shown}{more}")
        return EXIT_SUCCESS

    report = version_manager.list_report(Path.cwd())
    active = report.active_version
    active_toolchain = report.active_toolchain

    if args.format == "json":
        installed = []
        for toolchain in report.installed:
            info = version_manager.local_manager.read_install_info(toolchain)
            installed.append({
                "version": str(toolchain.version),
                "path": str(toolchain.path),
                "source_url": info.get("source_url"),
                "install_date": info.get("install_date"),
            })
        result = {
            "selected": str(report.selected.specifier),
            "source": report.selected.source,
            "active": str(active) if active else None,
            "active_path": str(active_toolchain.path) if active_toolchain else None,
            "missing": report.missing,
            "installed": installed,
            "discovered": [{"version": str(t.version), "path": str(t.path)} for t in report.discovered],
        }
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return EXIT_SUCCESS

    if report.installed:
        print("已安装版本:")
        for toolchain in report.installed:
            marker = " *" if toolchain == active_toolchain else "  "
            print(f"{marker} {toolchain.version}")
            if args.verbose:
                print(f"     路径: {toolchain.path}")
    else:
        print("未安装任何版本")

    if report.discovered:
        print("\nPATH 中的其他解释器:")
        for toolchain in report.discovered:
            print(f"   {toolchain.version}  ({toolchain.executable})")

    source = report.selected.path or report.selected.source
    if report.missing is not None:
        print(f"\n已选择但未安装: {report.missing}（来自 {source}）")
    elif active_toolchain is not None and not active_toolchain.is_managed:
        print(f"\n当前版本: {active} {active_toolchain.executable}（来自 {source}）")
    else:
        print(f"\n当前版本: {active}（来自 {source}）")
    return EXIT_SUCCESS


def handle_path(args: argparse.Namespace) -> int:
    """处理 path 命令。"""
    _, version_manager = _get_managers()
    toolchain = version_manager.get_active_toolchain(Path.cwd())
    print(toolchain.path)
    return EXIT_SUCCESS


def handle_version(args: argparse.Namespace) -> int:
    """
    处理 version 命令：显示当前生效的版本。

    未安装时仍输出请求的版本，并以 ToolchainNotInstalled 的退出码结束。
    """
    _, version_manager = _get_managers()
    selected, resolution = version_manager.resolve_active(Path.cwd())
    if isinstance(resolution, Unmatched):
        print(resolution.requested)
        error = not_installed_error(resolution, selected.path)
        _print_error(error)
        return error.exit_code
    print(resolution.version)
    return EXIT_SUCCESS


def handle_run(args: argparse.Namespace) -> int:
    """处理 run 命令。"""
    _, version_manager = _get_managers()
    return version_manager.run(args.program, args.arguments, Path.cwd(), os.environ)


def handle_shims(args: argparse.Namespace) -> int:
    """处理 shims 命令。"""
    _, version_manager = _get_managers()
    names = version_manager.refresh_shims()
    print(f"已生成 {len(names)} 个 shim: {version_manager.config_manager.shims_dir}")
    if args.verbose:
        for name in names:
            print(f"  {name}")
    return EXIT_SUCCESS


def handle_config(args: argparse.Namespace) -> int:
    """
    处理 config 命令：显示或修改配置。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    config_manager = ConfigManager()

    if args.reset:
        config_manager.reset_to_default()
        print(f"已恢复默认配置: {config_manager.CONFIG_FILE}")
        return EXIT_SUCCESS

    config = config_manager.get_config()

    if args.set:
        key, _, value = args.set.partition("=")
        if not key or not value:
            print("格式无效。请使用: key=value", file=sys.stderr)
            return EXIT_FAILURE

        keys = key.split(".")
        obj = config
        for k in keys[:-1]:
            if not isinstance(obj.get(k), dict):
                obj[k] = {}
            obj = obj[k]

        # 字符串字段（例如 default_version）保留原文，3.6 不应变成浮点数
        current = obj.get(keys[-1])
        if value == "null":
            value = None
        elif current is not None and not isinstance(current, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                pass

        obj[keys[-1]] = value
        config_manager.save_config(config)
        print(f"已设置 {key} = {value}")
    else:
        print(json.dumps(config, indent=2, ensure_ascii=False))

    return EXIT_SUCCESS


def run_cli(args: argparse.Namespace) -> int:
    """
    运行命令行接口。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码（0 表示成功）
    """
    if args.command is None:
        print("未指定命令。使用 --help 查看帮助信息。", file=sys.stderr)
        return EXIT_FAILURE

    command_handlers = {
        "install": handle_install,
        "select": handle_select,
        "list": handle_list,
        "path": handle_path,
        "version": handle_version,
        "run": handle_run,
        "shims": handle_shims,
        "config": handle_config,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        print(f"未知命令: {args.command}", file=sys.stderr)
        return EXIT_FAILURE

    try:
        return handler(args)
    except PypinError as e:
        logger.debug(f"命令 {args.command} 失败: {e}")
        _print_error(e)
        return e.exit_code
    except KeyboardInterrupt:
        print("\n已中断", file=sys.stderr)
        return EXIT_INTERRUPTED


def main(argv: Optional[List[str]] = None) -> int:
    """
    命令行入口。

    参数:
        argv: 命令行参数，默认为 sys.argv[1:]

    返回:
        退出码；用法错误时 argparse 以退出码 2 结束进程
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logger(console_level=logging.DEBUG if args.verbose else logging.WARNING, force=True)
    return run_cli(args)
