"""
版本说明符模块。

把 pin 文件行或命令行参数解析为结构化的版本约束。支持的形式:

- 精确版本: ``3.7.2``、``=3.7.2``、``==3.8.0rc1``
- 部分版本: ``3.7``（即 3.7.x 中最新的补丁版本）、``3``
- 比较运算: ``>=3.6``、``<3.8``、``>3.7.1``、``<=3.9``，可用逗号或空白组合
- 波浪号与脱字符: ``~3.7``、``~3.7.2``、``^3.6``、``^0.2.3``
- 通配符: ``*``、``x``、``3.*``、``3.7.x``
- 字面量 ``latest``

pin 文件和 select 命令还可以给出自定义解释器的路径，解析为 PathSpecifier（见 pin_file.parse_selection）。
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from pypin.core.errors import MalformedSpecifierError
from pypin.core.version_utils import Version, parse_pre_release
from pypin.utils.input_validator import InputValidator, InputValidationError

LATEST = "latest"
_WILDCARDS = ("*", "x", "X")

_TERM_RE = re.compile(r"\s*(?P<op>\^|~>?|>=|<=|==|=|>|<)?\s*(?P<version>[^\s,<>=~^]+)?")
_PARTIAL_RE = re.compile(
    r"""
    ^
    (?P<major>\d+|[*xX])
    (?:\.(?P<minor>\d+|[*xX]))?
    (?:\.(?P<patch>\d+|[*xX]))?
    (?:-?(?P<pre>[0-9A-Za-z]+(?:\.[0-9A-Za-z]+)*))?
    (?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
    $
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class Comparator:
    """单个比较条件，例如 >=3.7.0。"""

    op: str
    bound: Version

    def matches(self, version: Version) -> bool:
        if self.op == "=":
            return version == self.bound
        if self.op == ">":
            return version > self.bound
        if self.op == ">=":
            return version >= self.bound
        if self.op == "<":
            return version < self.bound
        if self.op == "<=":
            return version <= self.bound
        raise ValueError(f"未知的比较运算符: {self.op}")

    def __str__(self) -> str:
        return f"{self.op}{self.bound}"


class VersionSpecifier(ABC):
    """版本说明符的公共接口，构造后不可变。"""

    text: str

    @abstractmethod
    def matches(self, version: Version) -> bool:
        """判断版本是否满足说明符。"""

    def accepts(self, toolchain) -> bool:
        """判断工具链是否满足说明符。"""
        return self.matches(toolchain.version)

    @property
    def requested(self) -> str:
        """在错误消息中展示的请求版本。"""
        return self.text

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class ExactSpecifier(VersionSpecifier):
    """精确匹配单个版本。"""

    version: Version
    text: str = ""

    def matches(self, version: Version) -> bool:
        return version == self.version

    @property
    def requested(self) -> str:
        return str(self.version)

    def __str__(self) -> str:
        return self.text or str(self.version)


@dataclass(frozen=True)
class RangeSpecifier(VersionSpecifier):
    """
    由若干比较条件组成的范围，全部满足才算匹配。

    预发布版本只有在某个条件的边界与它的 X.Y.Z 相同且本身带预发布标签时才会匹配，
    这样 ``>=3.7`` 不会选中 ``3.8.0rc1``。
    """

    comparators: Tuple[Comparator, ...]
    text: str = ""

    def matches(self, version: Version) -> bool:
        if not all(c.matches(version) for c in self.comparators):
            return False
        if not version.is_prerelease:
            return True
        return any(c.bound.is_prerelease and c.bound.release == version.release for c in self.comparators)

    def __str__(self) -> str:
        return self.text or ", ".join(str(c) for c in self.comparators) or "*"


@dataclass(frozen=True)
class LatestSpecifier(VersionSpecifier):
    """匹配任意正式版本，最终选择最高者。"""

    text: str = LATEST

    def matches(self, version: Version) -> bool:
        return not version.is_prerelease


@dataclass(frozen=True)
class PathSpecifier(VersionSpecifier):
    """
    指向自定义解释器目录（或解释器文件）的选择。

    不按版本匹配，只接受根目录就是该路径的工具链。
    """

    path: Path
    text: str = ""

    def matches(self, version: Version) -> bool:
        return False

    def accepts(self, toolchain) -> bool:
        return toolchain.root is not None and toolchain.root == self.path

    @property
    def requested(self) -> str:
        return str(self.path)

    def __str__(self) -> str:
        return str(self.path)


def _parse_partial(fragment: str, text: str):
    """解析可能缺少 minor/patch 或带通配符的版本片段。"""
    match = _PARTIAL_RE.match(fragment)
    if not match:
        raise MalformedSpecifierError(text, fragment, "不是有效的版本号")

    parts = []
    for name in ("major", "minor", "patch"):
        value = match.group(name)
        if value is None or value in _WILDCARDS:
            break
        parts.append(int(value))
    else:
        name = None

    # 通配符之后不能再出现具体数字，例如 3.*.1
    if name is not None:
        later = ("major", "minor", "patch")[("major", "minor", "patch").index(name) + 1:]
        if any(match.group(n) not in (None,) + _WILDCARDS for n in later):
            raise MalformedSpecifierError(text, fragment, "通配符之后不能出现具体版本号")

    pre = parse_pre_release(match.group("pre"))
    if pre and len(parts) < 3:
        raise MalformedSpecifierError(text, fragment, "预发布标签需要完整的 X.Y.Z")
    return tuple(parts), pre, match.group("build") or ""


def _expand(op: str, parts: Tuple[int, ...], pre, build: str, text: str, fragment: str) -> Tuple[Comparator, ...]:
    """把一个运算符加部分版本展开为比较条件。"""
    if not parts:
        if op in ("", "=", "==", "~", "~>", "^", ">=", "<="):
            return ()
        raise MalformedSpecifierError(text, fragment, f"运算符 {op} 不能与通配符一起使用")

    major = parts[0]
    minor = parts[1] if len(parts) > 1 else 0
    patch = parts[2] if len(parts) > 2 else 0
    low = Version(major, minor, patch, pre, build)

    if len(parts) == 1:
        next_up = Version(major + 1, 0, 0)
    elif len(parts) == 2:
        next_up = Version(major, minor + 1, 0)
    else:
        next_up = None

    if op in ("", "=", "=="):
        if next_up is None:
            return (Comparator("=", low),)
        return (Comparator(">=", low), Comparator("<", next_up))
    if op in ("~", "~>"):
        upper = Version(major + 1, 0, 0) if len(parts) == 1 else Version(major, minor + 1, 0)
        return (Comparator(">=", low), Comparator("<", upper))
    if op == "^":
        if major > 0 or len(parts) == 1:
            upper = Version(major + 1, 0, 0)
        elif minor > 0 or len(parts) == 2:
            upper = Version(0, minor + 1, 0)
        else:
            upper = Version(0, 0, patch + 1)
        return (Comparator(">=", low), Comparator("<", upper))
    if op == ">=":
        return (Comparator(">=", low),)
    if op == ">":
        return (Comparator(">", low),) if next_up is None else (Comparator(">=", next_up),)
    if op == "<":
        return (Comparator("<", low),)
    if op == "<=":
        return (Comparator("<=", low),) if next_up is None else (Comparator("<", next_up),)
    raise MalformedSpecifierError(text, op, "未知运算符")


def _split_terms(text: str):
    """把说明符拆分为 (运算符, 版本片段) 序列。"""
    terms = []
    for chunk in text.split(","):
        if not chunk.strip():
            raise MalformedSpecifierError(text, chunk, "逗号之间缺少条件")
        position = 0
        while position < len(chunk):
            if not chunk[position:].strip():
                break
            match = _TERM_RE.match(chunk, position)
            if not match or match.end() == position:
                raise MalformedSpecifierError(text, chunk[position:].strip(), "无法识别的字符")
            op = match.group("op") or ""
            fragment = match.group("version")
            if not fragment:
                raise MalformedSpecifierError(text, chunk[position:].strip(), "运算符后缺少版本号")
            terms.append((op, fragment))
            position = match.end()
    return terms


def parse_specifier(text: str) -> VersionSpecifier:
    """
    解析版本说明符。

    纯函数，无副作用。

    参数:
        text: 说明符文本

    返回:
        ExactSpecifier、RangeSpecifier 或 LatestSpecifier

    抛出:
        MalformedSpecifierError: 无法解析时抛出，携带出错的片段
    """
    try:
        stripped = InputValidator.validate_specifier_text(text)
    except InputValidationError as e:
        raise MalformedSpecifierError(text or "", text or "", str(e)) from e

    normalized = " ".join(stripped.split())
    if normalized.lower() == LATEST:
        return LatestSpecifier()

    terms = _split_terms(normalized)

    if len(terms) == 1:
        op, fragment = terms[0]
        if op in ("", "=", "=="):
            parts, pre, build = _parse_partial(fragment, normalized)
            if len(parts) == 3:
                return ExactSpecifier(Version(*parts, pre=pre, build=build), normalized)

    comparators = []
    for op, fragment in terms:
        parts, pre, build = _parse_partial(fragment, normalized)
        comparators.extend(_expand(op, parts, pre, build, normalized, fragment))
    return RangeSpecifier(tuple(comparators), normalized)
