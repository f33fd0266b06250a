"""
Pypin 核心模块。

提供版本说明符解析、工具链注册表、归档下载与构建、shim 分发和版本管理功能。
"""

from .interfaces import IConfigManager, ILocalManager, IRemoteFetcher, IDownloadManager, IToolchainBuilder
from .errors import (
    PypinError, MalformedSpecifierError, ToolchainNotInstalledError, ToolNotFoundInToolchainError,
    DownloadFailedError, ExtractionFailedError, BuildFailedError, InstallInProgressError,
    VersionNotAvailableError, ConfigError,
)
from .config_manager import ConfigManager, ConfigValidationError, ConfigSaveError
from .version_utils import Version
from .specifier import VersionSpecifier, ExactSpecifier, RangeSpecifier, LatestSpecifier, parse_specifier
from .toolchain import InstalledToolchain
from .resolver import Resolved, Unmatched, resolve
from .local_manager import LocalManager
from .remote_fetcher import RemoteFetcher, MirrorStatus
from .download_manager import DownloadManager
from .archive_extractor import ArchiveExtractor
from .builder import ToolchainBuilder, UnixToolchainBuilder, WindowsToolchainBuilder, get_builder
from .shim import ShimDispatcher, ShimManager
from .version_manager import VersionManager, ListReport

__all__ = [
    "IConfigManager", "ILocalManager", "IRemoteFetcher", "IDownloadManager", "IToolchainBuilder",
    "PypinError", "MalformedSpecifierError", "ToolchainNotInstalledError", "ToolNotFoundInToolchainError",
    "DownloadFailedError", "ExtractionFailedError", "BuildFailedError", "InstallInProgressError",
    "VersionNotAvailableError", "ConfigError",
    "ConfigManager", "ConfigValidationError", "ConfigSaveError",
    "Version",
    "VersionSpecifier", "ExactSpecifier", "RangeSpecifier", "LatestSpecifier", "parse_specifier",
    "InstalledToolchain",
    "Resolved", "Unmatched", "resolve",
    "LocalManager",
    "RemoteFetcher", "MirrorStatus",
    "DownloadManager",
    "ArchiveExtractor",
    "ToolchainBuilder", "UnixToolchainBuilder", "WindowsToolchainBuilder", "get_builder",
    "ShimDispatcher", "ShimManager",
    "VersionManager", "ListReport",
]
