"""
版本工具模块。

提供不可变的 Version 值类型，以及版本排序、分组等工具函数。
"""

import re
from dataclasses import dataclass, field
from functools import total_ordering
from typing import Iterable, List, Dict, Optional, Tuple, Union

PreIdentifier = Union[int, str]

_VERSION_RE = re.compile(
    r"""
    ^
    (?P<major>0|[1-9]\d*)
    \.(?P<minor>0|[1-9]\d*)
    \.(?P<patch>0|[1-9]\d*)
    (?:-?(?P<pre>[0-9A-Za-z]+(?:\.[0-9A-Za-z]+)*))?
    (?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
    $
    """,
    re.VERBOSE,
)
_PRE_PART_RE = re.compile(r"\d+|[A-Za-z]+")


def parse_pre_release(text: Optional[str]) -> Tuple[PreIdentifier, ...]:
    """
    解析预发布标签为标识符元组。

    同时接受 Python 风格（rc1）与语义化版本风格（rc.1），两者得到相同结果。

    参数:
        text: 预发布标签文本，可以为 None

    返回:
        标识符元组，例如 ("rc", 1)
    """
    if not text:
        return ()
    identifiers: List[PreIdentifier] = []
    for part in text.split("."):
        for token in _PRE_PART_RE.findall(part):
            identifiers.append(int(token) if token.isdigit() else token.lower())
    return tuple(identifiers)


def format_pre_release(pre: Tuple[PreIdentifier, ...]) -> str:
    """
    把预发布标识符元组格式化为文本，parse_pre_release 能解析回同一个元组。

    字母与数字交替处直接相连（rc1），相邻的同类标识符用 . 分隔（alpha.beta）；
    以数字开头时加 - 前缀，避免与修订号连在一起。

    参数:
        pre: 标识符元组

    返回:
        预发布标签文本，没有预发布标签时为空字符串
    """
    text = "-" if pre and isinstance(pre[0], int) else ""
    for index, identifier in enumerate(pre):
        if index and isinstance(identifier, int) == isinstance(pre[index - 1], int):
            text += "."
        text += str(identifier)
    return text


def _pre_key(pre: Tuple[PreIdentifier, ...]) -> tuple:
    # 正式版排在所有预发布版之后；数字标识符排在字母标识符之前
    if not pre:
        return (1,)
    return (0,) + tuple((0, p, "") if isinstance(p, int) else (1, 0, p) for p in pre)


@total_ordering
@dataclass(frozen=True)
class Version:
    """
    语义化版本值 (major, minor, patch) 加可选的预发布与构建标签。

    按语义化版本优先级全序比较；构建标签不参与比较和哈希。
    """

    major: int
    minor: int
    patch: int
    pre: Tuple[PreIdentifier, ...] = ()
    build: str = field(default="", compare=False)

    @classmethod
    def parse(cls, text: str) -> "Version":
        """
        解析完整的版本字符串。

        参数:
            text: 例如 3.7.2、3.8.0rc1 或 3.8.0-rc.1+local

        返回:
            Version 实例

        抛出:
            ValueError: 文本不是完整的三段式版本号
        """
        match = _VERSION_RE.match(text.strip()) if text else None
        if not match:
            raise ValueError(f"无效的版本号: {text!r}")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            pre=parse_pre_release(match.group("pre")),
            build=match.group("build") or "",
        )

    @classmethod
    def try_parse(cls, text: str) -> Optional["Version"]:
        """解析失败时返回 None 而不是抛出异常。"""
        try:
            return cls.parse(text)
        except ValueError:
            return None

    @property
    def release(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    @property
    def release_str(self) -> str:
        """不含预发布标签的 X.Y.Z 文本，对应 python.org 的目录名。"""
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def is_prerelease(self) -> bool:
        return bool(self.pre)

    def _sort_key(self) -> tuple:
        return (self.major, self.minor, self.patch, _pre_key(self.pre))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __str__(self) -> str:
        text = self.release_str + format_pre_release(self.pre)
        if self.build:
            text += f"+{self.build}"
        return text


def sort_versions_desc(versions: Iterable[Version]) -> List[Version]:
    """
    按版本号降序排列并去重。

    参数:
        versions: 版本列表

    返回:
        排序后的版本列表
    """
    return sorted(set(versions), reverse=True)


def group_versions_by_minor(versions: Iterable[Version]) -> List[Dict[str, object]]:
    """
    按 major.minor 分组版本列表。

    参数:
        versions: 版本列表

    返回:
        分组后的列表，每个分组包含 series、latest 和 versions
    """
    groups: Dict[Tuple[int, int], List[Version]] = {}
    for version in sort_versions_desc(versions):
        groups.setdefault((version.major, version.minor), []).append(version)

    result = []
    for (major, minor), members in sorted(groups.items(), reverse=True):
        stable = [v for v in members if not v.is_prerelease]
        result.append({
            "series": f"{major}.{minor}",
            "latest": (stable or members)[0],
            "versions": members,
        })
    return result
