"""
工具链构建模块。

把 staging 目录中解压好的发布包变成受管根目录下可用的工具链。
Unix 上从源码 configure/make/make install，Windows 上使用官方 NuGet 包的解释器目录。
"""

import json
import os
import shutil
import subprocess
from abc import abstractmethod
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pypin.core.archive_extractor import content_root
from pypin.core.config_manager import ConfigManager
from pypin.core.errors import BuildFailedError
from pypin.core.interfaces import IToolchainBuilder
from pypin.core.toolchain import InstalledToolchain, ORIGIN_MANAGED, interpreter_relpath, is_executable_file, tool_dirs
from pypin.core.version_utils import Version
from pypin.utils.logger import get_logger
from pypin.utils.paths import INFO_FILE_NAME, IS_WINDOWS

logger = get_logger()

SOURCE_SUBDIR = "source"
LOG_SUBDIR = "logs"
FAILED_SUBDIR = "failed"
TAIL_LINES = 20
EXIT_COMMAND_NOT_FOUND = 127


def _read_tail(log_path: Path, lines: int = TAIL_LINES) -> str:
    try:
        with open(log_path, "r", encoding="utf-8", errors="replace") as f:
            return "".join(f.readlines()[-lines:]).rstrip()
    except OSError:
        return ""


def run_step(step: str, args: List[str], cwd: Path, log_dir: Path) -> Path:
    """
    运行一个构建步骤，把标准输出和标准错误合并写入 <log_dir>/<step>.log。

    子进程没有超时限制；用户中断时 subprocess.run 会终止子进程。

    参数:
        step: 步骤名称
        args: 命令及参数
        cwd: 工作目录
        log_dir: 日志目录

    返回:
        日志文件路径

    抛出:
        BuildFailedError: 命令不存在（退出状态 127）、无法启动或返回非零
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{step}.log"
    logger.info(f"构建步骤 {step}: {' '.join(str(a) for a in args)}")

    with open(log_path, "w", encoding="utf-8") as log_file:
        log_file.write(f"$ {' '.join(str(a) for a in args)}\n")
        log_file.flush()
        try:
            result = subprocess.run(
                [str(a) for a in args],
                cwd=str(cwd),
                stdout=log_file,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            log_file.write(f"{e}\n")
            logger.error(f"构建步骤 {step} 缺少必要程序: {args[0]}")
            raise BuildFailedError(step, EXIT_COMMAND_NOT_FOUND, log_path, str(e)) from e
        except OSError as e:
            log_file.write(f"{e}\n")
            logger.error(f"构建步骤 {step} 无法启动: {e}")
            raise BuildFailedError(step, None, log_path, str(e)) from e

    if result.returncode != 0:
        logger.error(f"构建步骤 {step} 失败，退出状态 {result.returncode}，日志: {log_path}")
        raise BuildFailedError(step, result.returncode, log_path, _read_tail(log_path))
    return log_path


def publish_tree(image: Path, install_dir: Path) -> Optional[Path]:
    """
    把构建好的目录树原子地发布到安装目录。

    已存在的安装目录先改名挪开，新目录再改名到位。挪开的旧目录由调用方在
    安装完全成功后用 discard_previous 删除，失败时用 restore_previous 还原。
    挪开的目录名不是版本号，注册表不会把它当作候选。

    参数:
        image: staging 中构建好的目录树
        install_dir: 最终安装目录

    返回:
        挪开的旧目录，没有旧安装时返回 None
    """
    install_dir.parent.mkdir(parents=True, exist_ok=True)
    old_dir: Optional[Path] = None
    if install_dir.exists():
        old_dir = install_dir.with_name(f".{install_dir.name}.old-{os.getpid()}")
        if old_dir.exists():
            shutil.rmtree(old_dir)
        os.rename(install_dir, old_dir)
        logger.info(f"已将旧的安装目录移到 {old_dir}")

    try:
        os.rename(image, install_dir)
    except OSError:
        if old_dir is not None:
            os.rename(old_dir, install_dir)
        raise

    logger.info(f"已发布工具链到 {install_dir}")
    return old_dir


def restore_previous(install_dir: Path, old_dir: Path, failed_dir: Path) -> None:
    """
    撤销一次发布：新目录树移到 failed_dir 以便排查，旧目录改回原名。

    参数:
        install_dir: 最终安装目录
        old_dir: publish_tree 挪开的旧目录
        failed_dir: 存放失败目录树的位置
    """
    if failed_dir.exists():
        shutil.rmtree(failed_dir)
    if install_dir.exists():
        os.rename(install_dir, failed_dir)
    os.rename(old_dir, install_dir)
    logger.warning(f"安装失败，已恢复之前的 {install_dir}，失败的目录树保留在 {failed_dir}")


def discard_previous(old_dir: Optional[Path]) -> None:
    if old_dir is not None:
        shutil.rmtree(old_dir, ignore_errors=True)


def write_install_info(install_dir: Path, version: Version, platform_key: str, source_url: Optional[str] = None) -> Path:
    """
    写入完成标记。必须是安装的最后一步。

    参数:
        install_dir: 安装目录
        version: 版本
        platform_key: unix 或 windows
        source_url: 归档来源

    返回:
        标记文件路径
    """
    marker = install_dir / INFO_FILE_NAME
    temp_path = marker.with_name(marker.name + ".tmp")
    info = {
        "version": str(version),
        "platform": platform_key,
        "source_url": source_url,
        "install_date": datetime.now().isoformat(),
    }
    with open(temp_path, "w", encoding="utf-8") as f:
        json.dump(info, f, indent=2, ensure_ascii=False)
    os.replace(temp_path, marker)
    return marker


class ToolchainBuilder(IToolchainBuilder):
    """
    工具链构建器基类。

    build() 固定了 准备镜像 → 检查 → 发布 → 发布后步骤 → 写完成标记 的顺序，
    子类只负责平台相关的部分。
    """

    platform_key = ""
    windows = False

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager

    @abstractmethod
    def prepare_image(self, source_root: Path, staging_dir: Path, version: Version, install_dir: Path) -> Path:
        """在 staging 中生成待发布的目录树并返回其路径。"""
        pass

    def post_publish(self, install_dir: Path, staging_dir: Path, version: Version) -> None:
        """发布后在最终位置执行的步骤。"""
        pass

    def _check_image(self, image: Path, version: Version, step: str) -> None:
        executable = image / interpreter_relpath(version, self.windows)
        if not is_executable_file(executable):
            raise BuildFailedError(step, None, None, f"构建结果中缺少解释器 {executable}")

    def build(
        self,
        staging_dir: Path,
        version: Version,
        install_dir: Path,
        source_url: Optional[str] = None,
    ) -> InstalledToolchain:
        """
        构建并发布工具链。

        参数:
            staging_dir: staging 目录，归档已解压到其中的 source 子目录
            version: 目标版本
            install_dir: 最终安装目录
            source_url: 归档来源，写入完成标记

        返回:
            新安装的 InstalledToolchain

        抛出:
            BuildFailedError: 任一步骤失败；staging 保留以便排查，重新安装时恢复之前的安装
        """
        source_root = content_root(staging_dir / SOURCE_SUBDIR)
        image = self.prepare_image(source_root, staging_dir, version, install_dir)

        try:
            old_dir = publish_tree(image, install_dir)
        except OSError as e:
            raise BuildFailedError("publish", None, None, str(e)) from e

        try:
            self.post_publish(install_dir, staging_dir, version)
            try:
                write_install_info(install_dir, version, self.platform_key, source_url)
            except OSError as e:
                raise BuildFailedError("publish", None, None, str(e)) from e
        except BaseException:
            if old_dir is not None:
                restore_previous(install_dir, old_dir, staging_dir / FAILED_SUBDIR)
            raise
        discard_previous(old_dir)

        logger.info(f"Python {version} 已安装到 {install_dir}")
        return InstalledToolchain(
            version=version,
            path=tool_dirs(install_dir, self.windows)[0],
            origin=ORIGIN_MANAGED,
            root=install_dir,
            executable=install_dir / interpreter_relpath(version, self.windows),
        )


class UnixToolchainBuilder(ToolchainBuilder):
    """从源码构建: configure → make → make install DESTDIR=..."""

    platform_key = "unix"
    windows = False

    def prepare_image(self, source_root: Path, staging_dir: Path, version: Version, install_dir: Path) -> Path:
        log_dir = staging_dir / LOG_SUBDIR
        destdir = staging_dir / "destdir"
        if destdir.exists():
            shutil.rmtree(destdir)

        configure = [
            source_root / "configure",
            f"--prefix={install_dir}",
            *self.config_manager.get_configure_options(),
        ]
        run_step("configure", configure, source_root, log_dir)
        run_step("make", ["make", f"-j{self.config_manager.get_build_jobs()}"], source_root, log_dir)
        run_step("install", ["make", "install", f"DESTDIR={destdir}"], source_root, log_dir)

        # DESTDIR 安装会把完整的 prefix 路径嵌在 destdir 下
        image = destdir / install_dir.relative_to(install_dir.anchor)
        self._check_image(image, version, "install")
        return image


class WindowsToolchainBuilder(ToolchainBuilder):
    """使用 NuGet python 包中 tools/ 目录下的免安装解释器。"""

    platform_key = "windows"
    windows = True

    def prepare_image(self, source_root: Path, staging_dir: Path, version: Version, install_dir: Path) -> Path:
        tools_dir = source_root / "tools"
        image = staging_dir / "image"
        if not tools_dir.is_dir():
            raise BuildFailedError("layout", None, None, f"安装包中没有 tools 目录: {source_root}")
        try:
            if image.exists():
                shutil.rmtree(image)
            shutil.copytree(tools_dir, image)
        except OSError as e:
            logger.error(f"复制解释器目录失败: {e}")
            raise BuildFailedError("layout", None, None, str(e)) from e

        self._check_image(image, version, "layout")
        return image

    def post_publish(self, install_dir: Path, staging_dir: Path, version: Version) -> None:
        # pip 的启动器内嵌绝对路径，只能在最终位置上安装
        python = install_dir / interpreter_relpath(version, windows=True)
        run_step(
            "ensurepip",
            [python, "-m", "ensurepip", "--default-pip"],
            install_dir,
            staging_dir / LOG_SUBDIR,
        )


def get_builder(config_manager: ConfigManager, windows: bool = IS_WINDOWS) -> ToolchainBuilder:
    """
    按平台选择构建器。

    参数:
        config_manager: 配置管理器实例
        windows: 是否为 Windows 平台

    返回:
        ToolchainBuilder 实例
    """
    if windows:
        return WindowsToolchainBuilder(config_manager)
    return UnixToolchainBuilder(config_manager)
