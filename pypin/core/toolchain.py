"""
工具链数据模型模块。

描述一个已安装的解释器目录，以及在其中查找具体工具可执行文件的规则。
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from pypin.core.version_utils import Version
from pypin.utils.paths import IS_WINDOWS

ORIGIN_MANAGED = "managed"
ORIGIN_DISCOVERED = "discovered"

# 这些工具族在源码安装中通常只有带版本号的名字，例如 python3、pip3.7
_VERSIONED_FAMILIES = ("python", "pip", "idle", "pydoc")
_FAMILY_RE = re.compile(r"^(?P<family>python|pip|idle|pydoc)(?P<suffix>\d+(?:\.\d+)?)?$")


def is_executable_file(path: Path) -> bool:
    """判断路径是否为可执行的普通文件。"""
    try:
        if not path.is_file():
            return False
    except OSError:
        return False
    if IS_WINDOWS:
        return True
    return os.access(path, os.X_OK)


def interpreter_relpath(version: Version, windows: bool = IS_WINDOWS) -> Path:
    """返回工具链目录内解释器可执行文件的相对路径。"""
    if windows:
        return Path("python.exe")
    return Path("bin") / f"python{version.major}"


def tool_dirs(root: Path, windows: bool = IS_WINDOWS) -> List[Path]:
    """返回工具链目录中存放工具可执行文件的目录，按查找优先级排列。"""
    if windows:
        return [root, root / "Scripts"]
    return [root / "bin"]


@dataclass(frozen=True)
class InstalledToolchain:
    """
    已安装的工具链。

    属性:
        version: 解释器版本
        path: bin 目录的绝对路径
        origin: managed（受管安装）或 discovered（在 PATH 中发现）
        root: 工具链根目录
        executable: 解释器可执行文件
    """

    version: Version
    path: Path
    origin: str = ORIGIN_MANAGED
    root: Optional[Path] = field(default=None, compare=False)
    executable: Optional[Path] = field(default=None, compare=False)

    @property
    def is_managed(self) -> bool:
        return self.origin == ORIGIN_MANAGED

    @property
    def search_dirs(self) -> List[Path]:
        """查找工具时依次搜索的目录。"""
        if self.root is None or self.root == self.executable:
            return [self.path]
        if self.is_managed:
            return tool_dirs(self.root)
        extra = [d for d in tool_dirs(self.root) if d != self.path and d.is_dir()]
        return [self.path, *extra]

    def candidate_names(self, tool: str) -> List[str]:
        """
        生成某个工具名在本工具链中的候选文件名。

        先尝试原名，再按 python → python3 → python3.7 的顺序回退；
        在 Windows 上 python3 这类名字最终回退到 python.exe。

        参数:
            tool: 调用时使用的工具名

        返回:
            去重后的候选文件名列表
        """
        names = [tool]
        match = _FAMILY_RE.match(tool)
        if match:
            family = match.group("family")
            major = str(self.version.major)
            minor = f"{self.version.major}.{self.version.minor}"
            suffix = match.group("suffix")
            if suffix is None:
                names += [family + major, family + minor]
            elif suffix == major:
                names.append(family + minor)
            if IS_WINDOWS and suffix in (major, minor):
                names.append(family)
        if IS_WINDOWS:
            names = [n for name in names for n in (name + ".exe", name)]
        seen = set()
        return [n for n in names if not (n in seen or seen.add(n))]

    def find_tool(self, tool: str) -> Tuple[Optional[Path], List[Path]]:
        """
        在工具链中查找工具可执行文件。

        参数:
            tool: 工具名，例如 pip 或 python3

        返回:
            (找到的路径或 None, 搜索过的目录列表)
        """
        dirs = self.search_dirs
        for name in self.candidate_names(tool):
            for directory in dirs:
                candidate = directory / name
                if is_executable_file(candidate):
                    return candidate, dirs
        return None, dirs
