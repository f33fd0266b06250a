"""
Pin 文件模块。

读取、查找和写入项目目录中的 .python-version 文件。
pin 文件的内容是一个版本说明符，或者一个指向自定义解释器目录的路径。
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pypin.core.errors import MalformedSpecifierError
from pypin.core.specifier import PathSpecifier, VersionSpecifier, parse_specifier, LATEST
from pypin.utils.logger import get_logger
from pypin.utils.paths import PIN_FILE_NAME, DEFAULT_VERSION_ENV_VAR

logger = get_logger()

SOURCE_PIN_FILE = "pin-file"
SOURCE_ENV = "environment"
SOURCE_CONFIG = "config"
SOURCE_BUILTIN = "builtin"


@dataclass(frozen=True)
class SelectedSpecifier:
    """当前目录生效的说明符及其来源。"""

    specifier: VersionSpecifier
    source: str
    path: Optional[Path] = None


def looks_like_path(text: str) -> bool:
    """版本说明符中不会出现路径分隔符。"""
    return "/" in text or "\\" in text or text in (".", "..")


def parse_selection(text: str, base_dir: Path, must_exist: bool = False) -> VersionSpecifier:
    """
    解析 pin 文件行或 select 参数。

    先按版本说明符解析；失败且文本像路径时，解析为 PathSpecifier。
    相对路径相对于 base_dir，~ 展开为用户目录。

    参数:
        text: 原始文本
        base_dir: 相对路径的基准目录
        must_exist: 路径不存在时是否报错

    返回:
        VersionSpecifier

    抛出:
        MalformedSpecifierError: 既不是说明符也不是路径，或路径不存在
    """
    try:
        return parse_specifier(text)
    except MalformedSpecifierError:
        stripped = (text or "").strip()
        if not looks_like_path(stripped):
            raise

    location = Path(stripped).expanduser()
    if not location.is_absolute():
        location = Path(base_dir) / location
    location = Path(os.path.normpath(location.absolute()))
    if must_exist and not location.exists():
        raise MalformedSpecifierError(stripped, stripped, "路径不存在")
    return PathSpecifier(location, stripped)


def read_pin_file(path: Path) -> VersionSpecifier:
    """
    读取 pin 文件中的说明符。

    取第一个非空且不以 # 开头的行。Windows 编辑器写入的 UTF-8 BOM 会被忽略，
    相对路径相对于 pin 文件所在目录。

    参数:
        path: pin 文件路径

    返回:
        解析后的说明符

    抛出:
        MalformedSpecifierError: 文件中没有说明符或说明符无效
    """
    logger.debug(f"读取 pin 文件: {path}")
    with open(path, "r", encoding="utf-8-sig") as f:
        for line in f:
            stripped = line.strip()
            if stripped and not stripped.startswith("#"):
                return parse_selection(stripped, Path(path).parent)
    raise MalformedSpecifierError("", "", f"{path} 中没有版本说明符")


def find_pin_file(start: Path) -> Optional[Path]:
    """
    从 start 开始逐级向上查找 pin 文件，直到文件系统根目录。

    参数:
        start: 起始目录

    返回:
        找到的 pin 文件路径，未找到返回 None
    """
    current = Path(start).absolute()
    while True:
        candidate = current / PIN_FILE_NAME
        if candidate.is_file():
            logger.debug(f"找到 pin 文件: {candidate}")
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def write_pin_file(directory: Path, specifier: VersionSpecifier) -> Path:
    """
    在目录中写入 pin 文件。

    参数:
        directory: 目标目录
        specifier: 要写入的说明符

    返回:
        写入的文件路径
    """
    path = Path(directory) / PIN_FILE_NAME
    temp_path = path.with_name(path.name + ".tmp")
    with open(temp_path, "w", encoding="utf-8") as f:
        f.write(f"{specifier}\n")
    os.replace(temp_path, path)
    logger.info(f"已写入 pin 文件 {path}: {specifier}")
    return path


def default_specifier(configured: Optional[str] = None) -> SelectedSpecifier:
    """
    返回进程级默认说明符。

    优先级: PYPIN_DEFAULT_VERSION 环境变量 > 配置中的 default_version > latest。

    参数:
        configured: 配置文件中的 default_version

    返回:
        SelectedSpecifier
    """
    from_env = os.environ.get(DEFAULT_VERSION_ENV_VAR, "").strip()
    if from_env:
        return SelectedSpecifier(parse_specifier(from_env), SOURCE_ENV)
    if configured:
        return SelectedSpecifier(parse_specifier(configured), SOURCE_CONFIG)
    return SelectedSpecifier(parse_specifier(LATEST), SOURCE_BUILTIN)


def load_selected_specifier(cwd: Path, configured_default: Optional[str] = None) -> SelectedSpecifier:
    """
    确定 cwd 处生效的说明符。

    参数:
        cwd: 当前工作目录
        configured_default: 配置文件中的 default_version

    返回:
        SelectedSpecifier
    """
    pin_file = find_pin_file(cwd)
    if pin_file is not None:
        return SelectedSpecifier(read_pin_file(pin_file), SOURCE_PIN_FILE, pin_file)
    logger.debug("没有找到 pin 文件，使用默认说明符")
    return default_specifier(configured_default)
