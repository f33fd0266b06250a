"""
核心模块抽象接口定义。

定义配置管理、工具链注册表、远程版本获取、归档获取和工具链构建的抽象接口。
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from pypin.core.toolchain import InstalledToolchain
    from pypin.core.version_utils import Version

ProgressCallback = Callable[[int, int], None]


class IConfigManager(ABC):
    """配置管理器抽象接口。"""

    @abstractmethod
    def get_config(self) -> dict[str, Any]:
        """获取配置字典。"""
        pass

    @abstractmethod
    def save_config(self, config: dict[str, Any] | None = None) -> None:
        """保存配置到文件。"""
        pass

    @abstractmethod
    def get_settings(self) -> dict[str, Any]:
        """获取 settings 配置部分。"""
        pass

    @abstractmethod
    def get_mirror_list(self, platform_key: str) -> list[str]:
        """获取指定平台的下载镜像源列表。"""
        pass

    @abstractmethod
    def get_version_index_list(self) -> list[str]:
        """获取版本索引页面列表。"""
        pass

    @abstractmethod
    def get_default_version(self) -> Optional[str]:
        """获取配置中的默认说明符。"""
        pass

    @abstractmethod
    def get_cache(self) -> dict[str, Any]:
        """获取缓存字典。"""
        pass

    @abstractmethod
    def set_cache(self, key: str, value: Any) -> None:
        """设置缓存值。"""
        pass

    @abstractmethod
    def save_cache(self, cache: dict[str, Any] | None = None) -> None:
        """保存缓存到文件。"""
        pass


class ILocalManager(ABC):
    """已安装工具链注册表抽象接口。"""

    @abstractmethod
    def scan(self) -> List["InstalledToolchain"]:
        """扫描受管根目录中的工具链。"""
        pass

    @abstractmethod
    def discover_path_toolchains(self, env: Optional[Mapping[str, str]] = None) -> List["InstalledToolchain"]:
        """在 PATH 中发现受管根目录之外的解释器。"""
        pass


class IRemoteFetcher(ABC):
    """远程版本获取器抽象接口。"""

    @abstractmethod
    def get_available_versions(self, use_cache: bool = True) -> List["Version"]:
        """获取可供下载的版本列表。"""
        pass


class IDownloadManager(ABC):
    """归档获取器抽象接口。"""

    @abstractmethod
    def fetch(
        self,
        version: "Version",
        platform_key: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Path:
        """获取归档并返回本地缓存路径。"""
        pass

    @abstractmethod
    def is_available(self, version: "Version", platform_key: str) -> bool:
        """检查镜像源上是否存在该版本的归档。"""
        pass

    @abstractmethod
    def invalidate(self, version: "Version", platform_key: str) -> None:
        """删除缓存条目。"""
        pass


class IToolchainBuilder(ABC):
    """工具链构建器抽象接口。"""

    @abstractmethod
    def build(
        self,
        staging_dir: Path,
        version: "Version",
        install_dir: Path,
        source_url: Optional[str] = None,
    ) -> "InstalledToolchain":
        """在 staging 目录中构建并发布到 install_dir。"""
        pass
