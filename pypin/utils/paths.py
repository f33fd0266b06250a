"""
路径与平台常量模块。

定义受管根目录的布局以及与平台相关的常量。
"""

import os
import sys
from pathlib import Path

from platformdirs import user_data_path

EXECUTABLE_NAME = "pypin"
HOME_ENV_VAR = "PYPIN_HOME"
DEFAULT_VERSION_ENV_VAR = "PYPIN_DEFAULT_VERSION"

PIN_FILE_NAME = ".python-version"
INFO_FILE_NAME = f"installed_by_{EXECUTABLE_NAME}.txt"
EXTRA_PACKAGES_FILE_NAME = "extra-packages-to-install.txt"

EXTRA_PACKAGES_TEMPLATE = """\
# 每行一个包说明符，安装或选择解释器后会用该解释器的 pip 逐个安装。
# 以 # 开头的行会被忽略。
#
# 示例:
# wheel
# black==24.1.0
"""

IS_WINDOWS = sys.platform == "win32"


def get_home_dir() -> Path:
    """
    获取受管根目录。

    优先使用 PYPIN_HOME 环境变量，否则使用平台的用户数据目录。

    返回:
        受管根目录的 Path 对象
    """
    home = os.environ.get(HOME_ENV_VAR)
    if home:
        return Path(home).expanduser().absolute()
    return user_data_path(EXECUTABLE_NAME, appauthor=False)


def current_platform() -> str:
    """返回当前平台的归档类别键（windows 或 unix）。"""
    return "windows" if IS_WINDOWS else "unix"


def installed_dir(home: Path) -> Path:
    return home / "installed"


def staging_dir(home: Path) -> Path:
    return home / "staging"


def cache_dir(home: Path) -> Path:
    return home / "cache"


def shims_dir(home: Path) -> Path:
    return home / "shims"


def config_dir(home: Path) -> Path:
    return home / "config"


def extra_packages_file(home: Path) -> Path:
    return home / EXTRA_PACKAGES_FILE_NAME
