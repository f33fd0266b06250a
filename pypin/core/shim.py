"""
Shim 模块。

Shim 是以工具名命名、指向 pypin 可执行文件的链接。以 shim 方式启动时，
按当前目录的 pin 文件解析工具链，再用真实的工具替换当前进程。
"""

import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from pypin.core.config_manager import ConfigManager
from pypin.core.errors import PypinError, ToolNotFoundInToolchainError
from pypin.core.local_manager import LocalManager
from pypin.core.pin_file import load_selected_specifier
from pypin.core.resolver import Unmatched, not_installed_error, resolve
from pypin.core.toolchain import InstalledToolchain, is_executable_file
from pypin.utils.input_validator import InputValidator, InputValidationError
from pypin.utils.logger import get_logger
from pypin.utils.paths import EXECUTABLE_NAME, IS_WINDOWS

logger = get_logger()

BASE_SHIM_NAMES = ("python", "python3", "pip", "pip3")


def tool_name_from_argv0(argv0: str) -> str:
    """
    从 argv[0] 取出工具名。

    参数:
        argv0: 进程启动时的 argv[0]

    返回:
        去掉目录和 Windows 下 .exe 后缀的工具名
    """
    name = Path(argv0).name
    if IS_WINDOWS and name.lower().endswith(".exe"):
        name = name[:-4]
    return name


def exec_tool(target: Path, args: Sequence[str], env: Mapping[str, str]) -> int:
    """
    用目标程序替换当前进程。

    POSIX 上调用 os.execve，不会返回。Windows 没有进程替换，
    改为启动子进程、继承标准流和环境、等待并返回其退出码。

    参数:
        target: 目标可执行文件
        args: 转发的参数
        env: 环境变量

    返回:
        子进程退出码（仅 Windows）
    """
    # argv[0] 使用真实路径，解释器据此定位 sys.prefix
    argv = [str(target), *args]
    logger.debug(f"执行 {argv}")
    if IS_WINDOWS:
        completed = subprocess.run(argv, env=dict(env))
        return completed.returncode
    os.execve(str(target), argv, dict(env))
    return 0


class ShimDispatcher:
    """
    Shim 分发器类。

    分发过程不会自动安装，也不会写任何文件。
    """

    def __init__(self, config_manager: ConfigManager, local_manager: Optional[LocalManager] = None):
        """
        初始化分发器。

        参数:
            config_manager: 配置管理器实例
            local_manager: 可选的注册表实例
        """
        self.config_manager = config_manager
        self.local_manager = local_manager or LocalManager(config_manager)

    def resolve_toolchain(self, cwd: Path) -> InstalledToolchain:
        """
        解析 cwd 处生效的工具链。

        参数:
            cwd: 当前工作目录

        返回:
            工具链

        抛出:
            ToolchainNotInstalledError: 说明符没有匹配的已安装版本
        """
        selected = load_selected_specifier(cwd, self.config_manager.get_default_version())
        resolution = resolve(selected.specifier, self.local_manager.candidates_for(selected.specifier))
        if isinstance(resolution, Unmatched):
            raise not_installed_error(resolution, selected.path)
        return resolution.toolchain

    def locate(self, tool: str, cwd: Path) -> Path:
        """
        找到工具在生效工具链中的可执行文件。

        参数:
            tool: 工具名
            cwd: 当前工作目录

        返回:
            可执行文件路径

        抛出:
            ToolchainNotInstalledError: 说明符没有匹配的已安装版本
            ToolNotFoundInToolchainError: 工具链中没有该工具
        """
        try:
            InputValidator.validate_tool_name(tool)
        except InputValidationError as e:
            raise PypinError(str(e)) from e

        toolchain = self.resolve_toolchain(cwd)
        target, search_dirs = toolchain.find_tool(tool)
        if target is None:
            raise ToolNotFoundInToolchainError(tool, str(toolchain.version), search_dirs)

        shims_dir = self.config_manager.shims_dir.absolute()
        if target.absolute().parent == shims_dir:
            logger.error(f"解析结果指向 shim 自身: {target}")
            raise ToolNotFoundInToolchainError(tool, str(toolchain.version), search_dirs)

        logger.debug(f"{tool} -> {target} (Python {toolchain.version})")
        return target

    def dispatch(self, invoked_name: str, args: Sequence[str], cwd: Path, env: Mapping[str, str]) -> int:
        """
        分发一次 shim 调用。

        参数:
            invoked_name: 调用时使用的工具名
            args: 转发的参数
            cwd: 当前工作目录
            env: 环境变量

        返回:
            子进程退出码（仅 Windows；POSIX 上进程已被替换）
        """
        target = self.locate(invoked_name, cwd)
        return exec_tool(target, args, env)


class ShimManager:
    """
    Shim 目录管理类。

    为受管工具链中出现的每个可执行文件名在 shims 目录下建立指向 pypin 的链接。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        local_manager: Optional[LocalManager] = None,
        launcher: Optional[Path] = None,
    ):
        self.config_manager = config_manager
        self.local_manager = local_manager or LocalManager(config_manager)
        self.launcher = launcher

    def find_launcher(self) -> Path:
        """
        找到 pypin 可执行文件。

        返回:
            可执行文件路径

        抛出:
            PypinError: 找不到 pypin 可执行文件
        """
        if self.launcher is not None:
            return self.launcher

        argv0 = Path(sys.argv[0])
        if tool_name_from_argv0(sys.argv[0]) == EXECUTABLE_NAME and is_executable_file(argv0):
            return argv0.absolute()

        found = shutil.which(EXECUTABLE_NAME)
        if found:
            return Path(found).absolute()
        raise PypinError(f"找不到 {EXECUTABLE_NAME} 可执行文件，无法创建 shim")

    def collect_names(self) -> List[str]:
        """
        收集需要 shim 的工具名。

        返回:
            排序后的工具名列表
        """
        names = set(BASE_SHIM_NAMES)
        for toolchain in self.local_manager.scan():
            for directory in toolchain.search_dirs:
                try:
                    children = list(directory.iterdir())
                except OSError:
                    continue
                for child in children:
                    if IS_WINDOWS and child.suffix.lower() != ".exe":
                        continue
                    if not is_executable_file(child):
                        continue
                    name = tool_name_from_argv0(child.name)
                    try:
                        InputValidator.validate_tool_name(name)
                    except InputValidationError:
                        continue
                    if name != EXECUTABLE_NAME:
                        names.add(name)
        return sorted(names)

    def _shim_path(self, name: str) -> Path:
        suffix = ".exe" if IS_WINDOWS else ""
        return self.config_manager.shims_dir / f"{name}{suffix}"

    def _link(self, launcher: Path, shim_path: Path) -> None:
        """依次尝试硬链接、符号链接和复制。"""
        try:
            os.link(launcher, shim_path)
            return
        except OSError as e:
            logger.debug(f"无法创建硬链接 {shim_path}: {e}")
        try:
            os.symlink(launcher, shim_path)
            return
        except OSError as e:
            logger.debug(f"无法创建符号链接 {shim_path}: {e}")
        shutil.copy2(launcher, shim_path)

    def refresh(self) -> List[str]:
        """
        重新生成 shims 目录。

        不再对应任何工具的旧 shim 会被删除。

        返回:
            生成的工具名列表
        """
        launcher = self.find_launcher()
        shims_dir = self.config_manager.shims_dir
        shims_dir.mkdir(parents=True, exist_ok=True)

        names = self.collect_names()
        wanted = {self._shim_path(name).name for name in names}
        for existing in shims_dir.iterdir():
            if existing.name not in wanted and not existing.is_dir():
                existing.unlink()
                logger.debug(f"已删除过时的 shim {existing}")

        for name in names:
            shim_path = self._shim_path(name)
            if shim_path.exists() or shim_path.is_symlink():
                shim_path.unlink()
            self._link(launcher, shim_path)

        logger.info(f"已在 {shims_dir} 中生成 {len(names)} 个 shim")
        return names
