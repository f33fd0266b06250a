"""
配置管理器模块。

提供应用程序配置的加载、保存和验证功能。
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Optional

from pypin.core.errors import ConfigError, MalformedSpecifierError
from pypin.core.interfaces import IConfigManager
from pypin.core.specifier import parse_specifier
from pypin.utils.logger import get_logger
from pypin.utils import paths

logger = get_logger()

LOCK_POLICY_WAIT = "wait"
LOCK_POLICY_FAIL = "fail"
LOCK_POLICIES = (LOCK_POLICY_WAIT, LOCK_POLICY_FAIL)


class ConfigValidationError(ConfigError):
    """配置验证错误异常。"""
    pass


class ConfigSaveError(ConfigError):
    """配置保存错误异常。"""
    pass


def _atomic_save_json(file_path: Path, data: Any, indent: int = 2) -> None:
    """
    原子保存 JSON 数据到文件，防止写入中断导致文件损坏。

    参数:
        file_path: 目标文件路径
        data: 要保存的数据
        indent: JSON 缩进
    """
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
        os.replace(temp_path, file_path)
    except BaseException:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
        raise


class ConfigManager(IConfigManager):
    """
    配置管理器类。

    负责管理应用程序配置的加载、保存、验证和访问，
    以及受管根目录下各子目录的定位。
    实现 IConfigManager 抽象接口。
    """

    REQUIRED_FIELDS = {
        "settings": dict,
        "sources": dict,
    }

    SETTINGS_FIELDS = {
        "cache_expire_time": int,
        "request_rate_limit": int,
        "download_retry_count": int,
        "download_timeout": int,
        "download_speed_limit": int,
        "install_lock_policy": str,
        "build_jobs": int,
        "configure_options": list,
    }

    SOURCE_FIELDS = {
        "mirror_list": list,
        "download_url_template": str,
        "archive_format": str,
    }

    def __init__(self, home: Optional[Path] = None):
        """
        初始化配置管理器。

        参数:
            home: 受管根目录，默认由 PYPIN_HOME 或平台数据目录决定
        """
        self.home = Path(home).absolute() if home is not None else paths.get_home_dir()
        self.CONFIG_DIR = paths.config_dir(self.home)
        self.CONFIG_FILE = self.CONFIG_DIR / "config.json"
        self.CACHE_FILE = self.CONFIG_DIR / "cache.json"
        self._config: dict[str, Any] = {}
        self._cache: dict[str, Any] = {}
        self._loaded = False

    @property
    def installed_dir(self) -> Path:
        return paths.installed_dir(self.home)

    @property
    def staging_dir(self) -> Path:
        return paths.staging_dir(self.home)

    @property
    def cache_dir(self) -> Path:
        return paths.cache_dir(self.home)

    @property
    def shims_dir(self) -> Path:
        return paths.shims_dir(self.home)

    @property
    def extra_packages_file(self) -> Path:
        return paths.extra_packages_file(self.home)

    def ensure_layout(self) -> None:
        """创建受管根目录的各个子目录和额外包模板文件。"""
        for directory in (self.CONFIG_DIR, self.installed_dir, self.staging_dir, self.cache_dir, self.shims_dir):
            directory.mkdir(parents=True, exist_ok=True)
        if not self.extra_packages_file.exists():
            self.extra_packages_file.write_text(paths.EXTRA_PACKAGES_TEMPLATE, encoding="utf-8")
            logger.debug(f"已创建额外包模板文件 {self.extra_packages_file}")

    def _get_builtin_default_config(self) -> dict[str, Any]:
        """获取内置默认配置。"""
        return {
            "settings": {
                "default_version": None,
                "cache_expire_time": 86400,
                "request_rate_limit": 10,
                "download_retry_count": 3,
                "download_timeout": 300,
                "download_speed_limit": 0,
                "install_lock_policy": LOCK_POLICY_WAIT,
                "build_jobs": 0,
                "configure_options": ["--with-ensurepip=install"],
            },
            "sources": {
                "version_index_list": [
                    "https://www.python.org/ftp/python/",
                    "https://mirrors.huaweicloud.com/python/",
                ],
                "unix": {
                    "mirror_list": [
                        "https://www.python.org/ftp/python/",
                        "https://mirrors.huaweicloud.com/python/",
                    ],
                    "download_url_template": "{mirror}{release}/Python-{version}.tgz",
                    "archive_format": "tar.gz",
                },
                "windows": {
                    "mirror_list": [
                        "https://www.nuget.org/api/v2/package/",
                    ],
                    "download_url_template": "{mirror}python/{version}",
                    "archive_format": "zip",
                },
            },
        }

    def get_default_config(self) -> dict[str, Any]:
        """
        获取默认配置。

        返回:
            默认配置字典的深拷贝
        """
        return copy.deepcopy(self._get_builtin_default_config())

    def load_config(self) -> dict[str, Any]:
        """
        加载配置文件。

        配置文件不存在时返回默认配置（不写盘，shim 路径保持只读）；
        配置文件损坏或验证失败时记录错误并回退到默认配置。

        返回:
            配置字典
        """
        self._loaded = True
        try:
            if not self.CONFIG_FILE.exists():
                logger.debug(f"配置文件不存在，使用默认配置: {self.CONFIG_FILE}")
                self._config = self.get_default_config()
                return self._config

            logger.debug(f"从文件加载配置: {self.CONFIG_FILE}")
            with open(self.CONFIG_FILE, "r", encoding="utf-8") as f:
                self._config = json.load(f)

            self._ensure_backward_compatibility()
            self.validate_config(self._config)
            logger.debug("配置加载成功")
            return self._config
        except (IOError, OSError, json.JSONDecodeError) as e:
            logger.error(f"加载配置文件失败，使用默认配置: {e}")
            self._config = self.get_default_config()
            return self._config
        except ConfigValidationError as e:
            logger.error(f"配置验证失败，使用默认配置: {e}")
            self._config = self.get_default_config()
            return self._config

    def _ensure_backward_compatibility(self) -> None:
        """
        确保配置向后兼容，为旧版本配置补齐新字段。
        """
        if not isinstance(self._config, dict):
            raise ConfigValidationError("配置文件顶层必须是对象")

        default_config = self.get_default_config()
        settings = self._config.setdefault("settings", {})
        if isinstance(settings, dict):
            for key, value in default_config["settings"].items():
                settings.setdefault(key, value)

        sources = self._config.setdefault("sources", {})
        if isinstance(sources, dict):
            for key, value in default_config["sources"].items():
                if key not in sources:
                    sources[key] = value
                elif isinstance(value, dict) and isinstance(sources[key], dict):
                    for sub_key, sub_value in value.items():
                        sources[key].setdefault(sub_key, sub_value)

    def validate_config(self, config: dict[str, Any]) -> bool:
        """
        验证配置的有效性。

        参数:
            config: 要验证的配置字典

        返回:
            验证通过返回 True

        抛出:
            ConfigValidationError: 配置验证失败时抛出
        """
        for field, expected_type in self.REQUIRED_FIELDS.items():
            if field not in config:
                raise ConfigValidationError(f"缺少必需字段: {field}")
            if not isinstance(config[field], expected_type):
                raise ConfigValidationError(
                    f"字段 '{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(config[field]).__name__}"
                )

        settings = config["settings"]
        for field, expected_type in self.SETTINGS_FIELDS.items():
            if field not in settings:
                raise ConfigValidationError(f"settings 中缺少必需字段: {field}")
            value = settings[field]
            if not isinstance(value, expected_type) or (expected_type is int and isinstance(value, bool)):
                raise ConfigValidationError(
                    f"字段 'settings.{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(value).__name__}"
                )

        default_version = settings.get("default_version")
        if default_version is not None:
            if not isinstance(default_version, str):
                raise ConfigValidationError("字段 'settings.default_version' 必须是字符串或 null")
            try:
                parse_specifier(default_version)
            except MalformedSpecifierError as e:
                raise ConfigValidationError(f"字段 'settings.default_version' 不是有效的版本说明符: {e}") from e

        if settings["install_lock_policy"] not in LOCK_POLICIES:
            raise ConfigValidationError(
                f"字段 'settings.install_lock_policy' 必须是 {' 或 '.join(LOCK_POLICIES)}"
            )

        sources = config["sources"]
        if not isinstance(sources.get("version_index_list", []), list):
            raise ConfigValidationError("字段 'sources.version_index_list' 必须是 list 类型")
        for platform_key in ("unix", "windows"):
            source = sources.get(platform_key)
            if not isinstance(source, dict):
                raise ConfigValidationError(f"缺少下载源配置: sources.{platform_key}")
            for field, expected_type in self.SOURCE_FIELDS.items():
                if not isinstance(source.get(field), expected_type):
                    raise ConfigValidationError(
                        f"字段 'sources.{platform_key}.{field}' 必须是 {expected_type.__name__} 类型"
                    )
            if source["archive_format"] not in ("tar.gz", "zip"):
                raise ConfigValidationError(
                    f"字段 'sources.{platform_key}.archive_format' 必须是 tar.gz 或 zip"
                )

        logger.debug("配置验证通过")
        return True

    def save_config(self, config: dict[str, Any] | None = None) -> None:
        """
        保存配置到文件。

        参数:
            config: 要保存的配置字典，如果为 None 则保存当前配置
        """
        if config is not None:
            self._config = config

        try:
            self.validate_config(self._config)
        except ConfigValidationError as e:
            logger.error(f"配置验证失败，无法保存: {e}")
            raise

        try:
            self.CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            logger.debug(f"保存配置到 {self.CONFIG_FILE}")
            _atomic_save_json(self.CONFIG_FILE, self._config, indent=2)
            logger.debug("配置保存成功")
        except (IOError, OSError) as e:
            logger.error(f"保存配置失败: {e}")
            raise ConfigSaveError(f"无法保存配置到 {self.CONFIG_FILE}: {e}") from e

    def _load_cache(self) -> None:
        """加载缓存文件。"""
        self._cache = {}
        if self.CACHE_FILE.exists():
            try:
                with open(self.CACHE_FILE, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    self._cache = data
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"加载缓存文件失败，忽略缓存: {e}")

    def get_cache(self) -> dict[str, Any]:
        """
        获取缓存字典（延迟加载）。

        返回:
            缓存字典
        """
        if not self._cache:
            self._load_cache()
        return self._cache

    def set_cache(self, key: str, value: Any) -> None:
        """
        设置缓存值。

        参数:
            key: 缓存键
            value: 缓存值
        """
        self.get_cache()[key] = value

    def save_cache(self, cache: dict[str, Any] | None = None) -> None:
        """
        保存缓存到文件。

        参数:
            cache: 要保存的缓存字典，如果为 None 则保存当前缓存
        """
        if cache is not None:
            self._cache = cache
        try:
            self.CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            _atomic_save_json(self.CACHE_FILE, self._cache, indent=2)
            logger.debug(f"缓存已保存到 {self.CACHE_FILE}")
        except (IOError, OSError) as e:
            # 缓存写入失败不影响主流程
            logger.warning(f"保存缓存失败: {e}")

    @property
    def config(self) -> dict[str, Any]:
        """
        获取配置字典（延迟加载）。

        返回:
            配置字典
        """
        if not self._loaded:
            self.load_config()
        return self._config

    def get_config(self) -> dict[str, Any]:
        return self.config

    def get_settings(self) -> dict[str, Any]:
        return self.config.get("settings", {})

    def get_sources(self, platform_key: str) -> dict[str, Any]:
        """
        获取指定平台的下载源配置。

        参数:
            platform_key: unix 或 windows

        返回:
            下载源配置字典
        """
        return self.config.get("sources", {}).get(platform_key, {})

    def get_mirror_list(self, platform_key: str) -> list[str]:
        return list(self.get_sources(platform_key).get("mirror_list", []))

    def get_download_url_template(self, platform_key: str) -> str:
        return self.get_sources(platform_key).get("download_url_template", "")

    def get_archive_format(self, platform_key: str) -> str:
        return self.get_sources(platform_key).get("archive_format", "tar.gz")

    def get_version_index_list(self) -> list[str]:
        return list(self.config.get("sources", {}).get("version_index_list", []))

    def get_default_version(self) -> Optional[str]:
        return self.get_settings().get("default_version")

    def get_cache_expire_time(self) -> int:
        return self.get_settings().get("cache_expire_time", 86400)

    def get_request_rate_limit(self) -> int:
        return self.get_settings().get("request_rate_limit", 10)

    def get_download_retry_count(self) -> int:
        return self.get_settings().get("download_retry_count", 3)

    def get_download_timeout(self) -> int:
        return self.get_settings().get("download_timeout", 300)

    def get_download_speed_limit(self) -> int:
        return self.get_settings().get("download_speed_limit", 0)

    def get_install_lock_policy(self) -> str:
        return self.get_settings().get("install_lock_policy", LOCK_POLICY_WAIT)

    def get_build_jobs(self) -> int:
        """返回并行编译任务数，0 表示使用 CPU 核数。"""
        jobs = self.get_settings().get("build_jobs", 0)
        return jobs if jobs > 0 else (os.cpu_count() or 1)

    def get_configure_options(self) -> list[str]:
        return [str(option) for option in self.get_settings().get("configure_options", [])]

    def reset_to_default(self) -> dict[str, Any]:
        """
        重置配置为默认配置并保存。

        返回:
            默认配置字典
        """
        self._config = self.get_default_config()
        self._loaded = True
        self.save_config()
        logger.info("配置已重置为默认值")
        return self._config
