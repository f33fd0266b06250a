"""
本地版本管理模块。

扫描受管根目录中已安装的工具链，并在 PATH 中发现外部解释器。
每次调用都重新读取文件系统，不保留长期缓存。
"""

import json
import os
import re
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pypin.core.config_manager import ConfigManager
from pypin.core.interfaces import ILocalManager
from pypin.core.specifier import PathSpecifier, VersionSpecifier
from pypin.core.toolchain import (
    InstalledToolchain,
    ORIGIN_DISCOVERED,
    ORIGIN_MANAGED,
    interpreter_relpath,
    is_executable_file,
    tool_dirs,
)
from pypin.core.version_utils import Version
from pypin.utils.logger import get_logger
from pypin.utils.paths import INFO_FILE_NAME, IS_WINDOWS

logger = get_logger()

PYTHON_EXE_PATTERN = re.compile(r"^python(\d+(\.\d+)?)?(\.exe)?$", re.IGNORECASE)
VERSION_OUTPUT_PATTERN = re.compile(r"Python (\d+\.\d+\.\d+(?:(?:a|b|rc)\d+)?)")
VERSION_CMD_TIMEOUT = 10
PATH_INTERPRETER_NAMES = ("python3", "python", "python.exe")


class LocalManager(ILocalManager):
    """
    本地版本管理器类，即已安装工具链的注册表。

    实现 ILocalManager 抽象接口。
    """

    def __init__(self, config_manager: ConfigManager):
        """
        初始化本地版本管理器。

        参数:
            config_manager: 配置管理器实例
        """
        self.config_manager = config_manager

    def _load_toolchain(self, item_path: Path) -> Optional[InstalledToolchain]:
        """
        把受管根目录下的一个子目录识别为工具链。

        目录名必须是完整版本号，且包含完成标记和解释器可执行文件；
        中断安装留下的目录缺少完成标记，会被跳过。

        参数:
            item_path: 子目录路径

        返回:
            InstalledToolchain，不是有效工具链时返回 None
        """
        version = Version.try_parse(item_path.name)
        if version is None:
            logger.debug(f"目录名不是版本号，跳过: {item_path}")
            return None

        if not (item_path / INFO_FILE_NAME).is_file():
            logger.debug(f"目录缺少完成标记，跳过: {item_path}")
            return None

        executable = item_path / interpreter_relpath(version)
        if not is_executable_file(executable):
            logger.debug(f"目录缺少解释器可执行文件，跳过: {executable}")
            return None

        return InstalledToolchain(
            version=version,
            path=tool_dirs(item_path)[0],
            origin=ORIGIN_MANAGED,
            root=item_path,
            executable=executable,
        )

    def scan(self) -> List[InstalledToolchain]:
        """
        扫描受管根目录中已安装的工具链。

        返回:
            按版本降序排列的工具链列表
        """
        root_path = self.config_manager.installed_dir
        if not root_path.is_dir():
            logger.debug(f"安装目录不存在: {root_path}")
            return []

        toolchains: Dict[Version, InstalledToolchain] = {}
        try:
            entries = sorted(root_path.iterdir())
        except OSError as e:
            logger.error(f"扫描安装目录失败: {e}")
            return []

        for item_path in entries:
            try:
                if not item_path.is_dir():
                    continue
                toolchain = self._load_toolchain(item_path)
            except OSError as e:
                logger.warning(f"处理目录 {item_path} 时出错: {e}")
                continue
            if toolchain is not None:
                # 3.8.0 与 3.8.0+local 视为同一版本，保留先扫描到的
                toolchains.setdefault(toolchain.version, toolchain)

        logger.debug(f"找到 {len(toolchains)} 个已安装的工具链")
        return sorted(toolchains.values(), key=lambda t: t.version, reverse=True)

    def load_path_toolchain(self, location: Path) -> Optional[InstalledToolchain]:
        """
        把 pin 文件中给出的路径识别为工具链。

        路径可以是解释器文件本身，也可以是包含 bin/、Scripts/ 或直接包含解释器的目录。
        得到的工具链 origin 为 discovered，root 为该路径。

        参数:
            location: 解释器文件或目录

        返回:
            InstalledToolchain，找不到可运行的解释器时返回 None
        """
        location = Path(location)
        if is_executable_file(location):
            executables = [location]
        else:
            executables = [
                directory / name
                for directory in (location / "bin", location / "Scripts", location)
                for name in PATH_INTERPRETER_NAMES
            ]

        for executable in executables:
            if not is_executable_file(executable):
                continue
            version = self.get_python_version_by_cmd(executable)
            if version is None:
                continue
            return InstalledToolchain(
                version=version,
                path=executable.parent,
                origin=ORIGIN_DISCOVERED,
                root=location,
                executable=executable,
            )

        logger.debug(f"路径中没有可运行的解释器: {location}")
        return None

    def candidates_for(self, specifier: VersionSpecifier) -> List[InstalledToolchain]:
        """
        返回解析说明符时使用的候选工具链。

        路径说明符只考虑该路径上的解释器，其余说明符使用受管工具链。
        """
        if isinstance(specifier, PathSpecifier):
            toolchain = self.load_path_toolchain(specifier.path)
            return [toolchain] if toolchain is not None else []
        return self.scan()

    def get_toolchain(self, version: Version) -> Optional[InstalledToolchain]:
        """
        获取指定版本的已安装工具链。

        参数:
            version: 版本

        返回:
            工具链，未安装返回 None
        """
        item_path = self.config_manager.installed_dir / str(version)
        if not item_path.is_dir():
            return None
        return self._load_toolchain(item_path)

    def read_install_info(self, toolchain: InstalledToolchain) -> Dict[str, Any]:
        """
        读取工具链的完成标记内容。

        参数:
            toolchain: 受管工具链

        返回:
            标记中的元数据，读取失败返回空字典
        """
        if toolchain.root is None:
            return {}
        try:
            with open(toolchain.root / INFO_FILE_NAME, "r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.debug(f"读取安装信息失败: {e}")
            return {}

    def get_python_version_by_cmd(self, executable: Path) -> Optional[Version]:
        """
        通过执行 --version 获取解释器版本。

        参数:
            executable: 解释器可执行文件路径

        返回:
            版本，获取失败返回 None
        """
        kwargs: Dict[str, Any] = {}
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW

        try:
            result = subprocess.run(
                [str(executable), "--version"],
                capture_output=True,
                text=True,
                timeout=VERSION_CMD_TIMEOUT,
                **kwargs,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"获取 {executable} 版本超时 ({VERSION_CMD_TIMEOUT}秒)")
            return None
        except OSError as e:
            logger.debug(f"无法执行 {executable}: {e}")
            return None

        output = (result.stdout or "") + (result.stderr or "")
        match = VERSION_OUTPUT_PATTERN.search(output)
        if not match:
            logger.debug(f"无法从输出中解析版本: {executable}")
            return None
        return Version.try_parse(match.group(1))

    def _excluded_dirs(self) -> List[Path]:
        return [self.config_manager.shims_dir.absolute(), self.config_manager.home.absolute()]

    def _is_excluded(self, directory: Path) -> bool:
        directory = directory.absolute()
        for excluded in self._excluded_dirs():
            if directory == excluded or excluded in directory.parents:
                return True
        return False

    def discover_path_toolchains(self, env: Optional[Mapping[str, str]] = None) -> List[InstalledToolchain]:
        """
        在 PATH 中发现受管根目录之外的 Python 解释器。

        仅用于 list 报告，不会被用来满足受管安装请求。

        参数:
            env: 环境变量映射，默认为 os.environ

        返回:
            按版本去重（PATH 中靠前者优先）并降序排列的工具链列表
        """
        env = os.environ if env is None else env
        found: Dict[Version, InstalledToolchain] = {}
        tested: set = set()

        for entry in env.get("PATH", "").split(os.pathsep):
            if not entry:
                continue
            directory = Path(entry)
            try:
                if not directory.is_dir() or self._is_excluded(directory):
                    continue
                children = sorted(directory.iterdir())
            except OSError:
                continue

            for child in children:
                if not PYTHON_EXE_PATTERN.match(child.name) or not is_executable_file(child):
                    continue
                try:
                    real = child.resolve()
                except OSError:
                    continue
                if real in tested:
                    continue
                tested.add(real)

                version = self.get_python_version_by_cmd(child)
                if version is None or version in found:
                    continue
                found[version] = InstalledToolchain(
                    version=version,
                    path=directory.absolute(),
                    origin=ORIGIN_DISCOVERED,
                    root=directory.absolute(),
                    executable=child.absolute(),
                )

        logger.debug(f"在 PATH 中发现 {len(found)} 个解释器")
        return sorted(found.values(), key=lambda t: t.version, reverse=True)
