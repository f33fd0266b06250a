"""
远程版本获取模块。

从版本索引页面获取可供下载的 Python 版本列表，并跟踪镜像源状态。
"""

import re
from datetime import datetime
from typing import Any, Dict, List

import requests

from pypin.core.config_manager import ConfigManager
from pypin.core.interfaces import IRemoteFetcher
from pypin.core.version_utils import Version, sort_versions_desc
from pypin.utils.logger import get_logger
from pypin.utils.rate_limiter import RateLimiter
from pypin.utils.retry import RetryHandler

logger = get_logger()

CACHE_KEY = "python_versions"
VERSION_HREF_PATTERN = re.compile(r'href="(\d+\.\d+\.\d+)/"')
INDEX_TIMEOUT = 10


class MirrorStatus:
    """
    镜像源状态跟踪类。

    记录镜像源的可用状态、失败时间和原因。
    """

    def __init__(self):
        self._status: dict[str, dict[str, Any]] = {}

    def record_success(self, mirror_url: str) -> None:
        """
        记录镜像源成功。

        参数:
            mirror_url: 镜像源 URL
        """
        self._status[mirror_url] = {
            "last_success": datetime.now(),
            "last_failure": None,
            "failure_reason": None,
            "consecutive_failures": 0
        }

    def record_failure(self, mirror_url: str, reason: str) -> None:
        """
        记录镜像源失败。

        参数:
            mirror_url: 镜像源 URL
            reason: 失败原因
        """
        current = self._status.get(mirror_url, {
            "last_success": None,
            "consecutive_failures": 0
        })
        current["last_failure"] = datetime.now()
        current["failure_reason"] = reason
        current["consecutive_failures"] = current.get("consecutive_failures", 0) + 1
        self._status[mirror_url] = current

    def get_sorted_mirrors(self, mirror_list: List[str]) -> List[str]:
        """
        获取按优先级排序的镜像源列表。

        优先使用最近成功的镜像源，其次是连续失败次数少的镜像源；
        排序稳定，未记录状态的镜像源保持配置顺序。

        参数:
            mirror_list: 原始镜像源列表

        返回:
            排序后的镜像源列表
        """
        def get_priority(mirror_url: str) -> tuple:
            status = self._status.get(mirror_url, {})
            last_success = status.get("last_success")
            consecutive_failures = status.get("consecutive_failures", 0)

            if last_success is None:
                return (1, consecutive_failures, 0)

            return (0, consecutive_failures, -last_success.timestamp())

        return sorted(mirror_list, key=get_priority)

    def get_failure_summary(self) -> str:
        """
        获取失败摘要信息。

        返回:
            失败摘要字符串
        """
        summaries = []
        for mirror_url, status in self._status.items():
            if status.get("last_failure"):
                summaries.append(
                    f"{mirror_url}: {status.get('failure_reason', '未知错误')} "
                    f"(连续失败 {status.get('consecutive_failures', 0)} 次)"
                )
        return "; ".join(summaries) if summaries else "无失败记录"


class RemoteFetcher(IRemoteFetcher):
    """
    远程版本获取器类。

    负责从版本索引页面获取可供下载的版本列表，结果缓存在 cache.json 中。
    实现 IRemoteFetcher 抽象接口。
    """

    def __init__(self, config_manager: ConfigManager, session: requests.Session | None = None):
        """
        初始化远程版本获取器。

        参数:
            config_manager: 配置管理器实例
            session: 可选的 requests 会话
        """
        self.config_manager = config_manager
        self.session = session or requests.Session()
        self.rate_limiter = RateLimiter(requests_per_second=config_manager.get_request_rate_limit())
        self.retry_handler = RetryHandler(max_retries=config_manager.get_download_retry_count())
        self.mirror_status = MirrorStatus()

    def _read_cache(self, allow_expired: bool = False) -> List[Version] | None:
        """
        读取缓存的版本列表。

        参数:
            allow_expired: 是否接受过期缓存

        返回:
            版本列表，无可用缓存时返回 None
        """
        cached = self.config_manager.get_cache().get(CACHE_KEY)
        if not isinstance(cached, dict):
            return None
        try:
            last_update = datetime.fromisoformat(cached.get("last_update", "2000-01-01"))
        except (TypeError, ValueError):
            return None

        age = (datetime.now() - last_update).total_seconds()
        if not allow_expired and age >= self.config_manager.get_cache_expire_time():
            return None

        versions = [Version.try_parse(v) for v in cached.get("versions", [])]
        return sort_versions_desc(v for v in versions if v is not None)

    def _update_cache(self, versions: List[Version]) -> None:
        """
        更新版本缓存。

        参数:
            versions: 版本列表
        """
        self.config_manager.set_cache(CACHE_KEY, {
            "last_update": datetime.now().isoformat(),
            "versions": [str(v) for v in versions],
        })
        self.config_manager.save_cache()

    def _fetch_index(self, index_url: str) -> List[Version]:
        """
        抓取一个版本索引页面。

        参数:
            index_url: 索引页面 URL

        返回:
            页面中出现的版本列表
        """
        def _do_get() -> requests.Response:
            self.rate_limiter.acquire()
            response = self.session.get(index_url, timeout=INDEX_TIMEOUT)
            response.raise_for_status()
            return response

        response = self.retry_handler.execute(_do_get)
        versions = [Version.try_parse(v) for v in VERSION_HREF_PATTERN.findall(response.text)]
        return sort_versions_desc(v for v in versions if v is not None)

    def get_available_versions(self, use_cache: bool = True) -> List[Version]:
        """
        获取可供下载的版本。

        参数:
            use_cache: 是否使用未过期的缓存

        返回:
            降序排列的版本列表；所有索引都失败时回退到过期缓存，仍无结果则返回空列表
        """
        if use_cache:
            cached = self._read_cache()
            if cached is not None:
                logger.info("使用本地缓存的版本信息")
                return cached

        index_list = self.config_manager.get_version_index_list()
        if not index_list:
            logger.warning("未配置版本索引页面")

        for index_url in self.mirror_status.get_sorted_mirrors(index_list):
            try:
                logger.info(f"尝试从索引获取版本列表: {index_url}")
                versions = self._fetch_index(index_url)
            except requests.exceptions.RequestException as e:
                logger.warning(f"从 {index_url} 获取版本列表失败: {e}")
                self.mirror_status.record_failure(index_url, str(e))
                continue

            if not versions:
                logger.warning(f"索引 {index_url} 返回空版本列表")
                self.mirror_status.record_failure(index_url, "空版本列表")
                continue

            self.mirror_status.record_success(index_url)
            self._update_cache(versions)
            logger.info(f"成功从 {index_url} 获取 {len(versions)} 个版本")
            return versions

        if index_list:
            logger.error(f"所有索引获取版本列表失败。失败详情: {self.mirror_status.get_failure_summary()}")
        stale = self._read_cache(allow_expired=True)
        if stale is not None:
            logger.info("网络错误，使用过期缓存的版本信息")
            return stale
        return []
