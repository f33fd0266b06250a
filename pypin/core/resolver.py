"""
版本解析模块。

在候选工具链中为说明符挑选唯一的最佳版本。
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from pypin.core.errors import ToolchainNotInstalledError
from pypin.core.specifier import PathSpecifier, VersionSpecifier
from pypin.core.toolchain import InstalledToolchain
from pypin.core.version_utils import Version


@dataclass(frozen=True)
class Resolved:
    """解析成功，携带选中的工具链。"""

    toolchain: InstalledToolchain

    @property
    def version(self) -> Version:
        return self.toolchain.version


@dataclass(frozen=True)
class Unmatched:
    """没有候选满足说明符，携带原始请求以便报告“已选择但未安装”。"""

    specifier: VersionSpecifier

    @property
    def requested(self) -> str:
        return self.specifier.requested


Resolution = Union[Resolved, Unmatched]


def resolve(specifier: VersionSpecifier, candidates: Iterable[InstalledToolchain]) -> Resolution:
    """
    解析说明符。

    过滤出满足说明符的候选，取版本最高者。只读操作，不修改候选。
    候选集合由 Registry 按版本去重，因此不会出现并列。

    参数:
        specifier: 版本说明符
        candidates: 候选工具链

    返回:
        Resolved 或 Unmatched
    """
    by_version = {}
    for toolchain in candidates:
        if specifier.accepts(toolchain):
            by_version.setdefault(toolchain.version, toolchain)

    if not by_version:
        return Unmatched(specifier)
    return Resolved(by_version[max(by_version)])


def not_installed_error(resolution: Unmatched, source: Optional[Path] = None) -> ToolchainNotInstalledError:
    """为未匹配的解析结果构造带修复提示的错误。"""
    if isinstance(resolution.specifier, PathSpecifier):
        return ToolchainNotInstalledError(
            resolution.requested,
            source,
            hint=f"{resolution.requested} 中没有可运行的 Python 解释器，请检查路径或重新运行 pypin select",
        )
    return ToolchainNotInstalledError(resolution.requested, source)
