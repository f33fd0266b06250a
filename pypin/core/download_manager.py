"""
下载管理模块。

按 (版本, 平台) 获取发布归档并缓存在受管根目录中，支持镜像切换、
重试、断点续传和内容完整性校验。
"""

import hashlib
import os
import re
from pathlib import Path
from typing import List, Optional

import requests
from filelock import FileLock

from pypin.core.config_manager import ConfigManager
from pypin.core.errors import DownloadFailedError
from pypin.core.interfaces import IDownloadManager, ProgressCallback
from pypin.core.remote_fetcher import MirrorStatus
from pypin.core.version_utils import Version
from pypin.utils.logger import get_logger
from pypin.utils.rate_limiter import RateLimiter
from pypin.utils.retry import IncompleteDownloadError, RetryHandler
from pypin.utils.speed_limiter import SpeedLimiter

logger = get_logger()

CHUNK_SIZE = 64 * 1024
DIGEST_SUFFIX = ".sha256"
PART_SUFFIX = ".part"
SOURCE_PREFIX = "# source: "
HEAD_TIMEOUT = 10
MISSING_STATUS_CODES = frozenset({404, 410})


def file_sha256(path: Path) -> str:
    """计算文件的 sha256 十六进制摘要。"""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


class _MonotonicProgress:
    """包装进度回调，保证上报的字节数单调不减。"""

    def __init__(self, callback: Optional[ProgressCallback]):
        self._callback = callback
        self._reported = 0

    def __call__(self, downloaded: int, total: int) -> None:
        if self._callback is None or downloaded < self._reported:
            return
        self._reported = downloaded
        self._callback(downloaded, max(total, downloaded))


class DownloadManager(IDownloadManager):
    """
    下载管理器类。

    负责归档的下载与缓存。缓存条目为 <cache>/<platform>/<version>.<ext>，
    旁边的 .sha256 文件记录内容摘要；两者一致时才视为缓存命中。
    """

    def __init__(self, config_manager: ConfigManager, session: Optional[requests.Session] = None):
        """
        初始化下载管理器。

        参数:
            config_manager: 配置管理器实例
            session: 可选的 requests 会话
        """
        self.config_manager = config_manager
        self.session = session or requests.Session()
        self.rate_limiter = RateLimiter(requests_per_second=config_manager.get_request_rate_limit())
        self.retry_handler = RetryHandler(max_retries=config_manager.get_download_retry_count())
        self.speed_limiter = SpeedLimiter(speed_limit_bytes=config_manager.get_download_speed_limit())
        self.mirror_status = MirrorStatus()

    def archive_path(self, version: Version, platform_key: str) -> Path:
        """
        返回缓存条目的归档路径。

        参数:
            version: 版本
            platform_key: unix 或 windows

        返回:
            归档路径
        """
        ext = self.config_manager.get_archive_format(platform_key)
        return self.config_manager.cache_dir / platform_key / f"{version}.{ext}"

    def _digest_path(self, archive: Path) -> Path:
        return archive.with_name(archive.name + DIGEST_SUFFIX)

    def _part_path(self, archive: Path) -> Path:
        return archive.with_name(archive.name + PART_SUFFIX)

    def _render_url_template(self, template: str, mirror_url: str, version: Version) -> str:
        """
        渲染下载 URL 模板，替换 {mirror}、{version}、{release} 占位符。

        参数:
            template: URL 模板字符串
            mirror_url: 镜像源 URL
            version: 版本

        返回:
            渲染后的 URL
        """
        variables = {
            "mirror": mirror_url,
            "version": str(Version(version.major, version.minor, version.patch, version.pre)),
            "release": version.release_str,
        }
        result = template
        for key, value in variables.items():
            result = result.replace("{" + key + "}", value)
        return result

    def build_download_urls(self, version: Version, platform_key: str) -> List[str]:
        """
        按镜像源优先级生成候选下载 URL。

        参数:
            version: 版本
            platform_key: unix 或 windows

        返回:
            URL 列表
        """
        template = self.config_manager.get_download_url_template(platform_key)
        mirrors = self.mirror_status.get_sorted_mirrors(self.config_manager.get_mirror_list(platform_key))
        return [self._render_url_template(template, mirror, version) for mirror in mirrors]

    def is_cached(self, version: Version, platform_key: str) -> bool:
        """
        检查缓存条目是否完整且摘要匹配。

        参数:
            version: 版本
            platform_key: unix 或 windows

        返回:
            缓存有效返回 True
        """
        archive = self.archive_path(version, platform_key)
        digest_file = self._digest_path(archive)
        if not archive.is_file() or not digest_file.is_file():
            return False
        try:
            expected = digest_file.read_text(encoding="utf-8").split()[0]
            actual = file_sha256(archive)
        except (OSError, IndexError) as e:
            logger.warning(f"读取缓存条目失败: {e}")
            return False
        if expected != actual:
            logger.warning(f"缓存归档摘要不匹配: {archive}")
            return False
        return True

    def invalidate(self, version: Version, platform_key: str) -> None:
        """
        删除缓存条目（归档、摘要和残留的临时文件）。

        参数:
            version: 版本
            platform_key: unix 或 windows
        """
        archive = self.archive_path(version, platform_key)
        for path in (archive, self._digest_path(archive), self._part_path(archive)):
            try:
                path.unlink()
                logger.info(f"已删除缓存文件 {path}")
            except FileNotFoundError:
                pass

    def _head_status(self, url: str) -> int:
        def _do_head() -> int:
            self.rate_limiter.acquire()
            response = self.session.head(url, allow_redirects=True, timeout=HEAD_TIMEOUT)
            if response.status_code not in MISSING_STATUS_CODES:
                response.raise_for_status()
            return response.status_code

        return self.retry_handler.execute(_do_head)

    def is_available(self, version: Version, platform_key: str) -> bool:
        """
        检查版本在镜像源上是否有可下载的发布归档。

        版本索引中的目录可能只包含预发布包，挑选安装版本前要确认归档确实存在。
        有效的缓存条目直接视为可用。

        参数:
            version: 版本
            platform_key: unix 或 windows

        返回:
            任一镜像源上存在归档返回 True，所有镜像源都返回 404/410 时返回 False

        抛出:
            DownloadFailedError: 所有镜像源都无法访问，无法判断
        """
        if self.is_cached(version, platform_key):
            return True

        urls = self.build_download_urls(version, platform_key)
        errors = []
        for url in urls:
            try:
                status = self._head_status(url)
            except requests.exceptions.RequestException as e:
                logger.warning(f"检查 {url} 失败: {e}")
                errors.append(f"{url}: {e}")
                continue
            if status not in MISSING_STATUS_CODES:
                return True
            logger.info(f"{url} 不存在 (HTTP {status})")

        if urls and len(errors) == len(urls):
            raise DownloadFailedError("; ".join(errors))
        return False

    def _check_resume(self, url: str, part_path: Path) -> tuple[int, dict]:
        """
        检查是否存在可续传的临时文件。

        参数:
            url: 下载 URL
            part_path: 临时文件路径

        返回:
            (已下载字节数, 请求头) 元组
        """
        downloaded = part_path.stat().st_size if part_path.exists() else 0
        headers = {}
        if downloaded > 0:
            logger.info(f"发现部分下载文件，已下载 {downloaded} 字节")
            headers["Range"] = f"bytes={downloaded}-"
        return downloaded, headers

    def _download_once(self, url: str, part_path: Path, progress: _MonotonicProgress) -> None:
        """
        执行一次下载尝试，写入临时文件。

        参数:
            url: 下载 URL
            part_path: 临时文件路径
            progress: 进度回调
        """
        downloaded, headers = self._check_resume(url, part_path)
        self.rate_limiter.acquire()
        response = self.session.get(
            url,
            headers=headers,
            stream=True,
            timeout=self.config_manager.get_download_timeout(),
        )
        with response:
            response.raise_for_status()

            if downloaded > 0 and response.status_code == 206:
                mode = "ab"
                total = downloaded + int(response.headers.get("content-length", 0) or 0)
                content_range = response.headers.get("Content-Range", "")
                match = re.search(r"/(\d+)$", content_range)
                if match:
                    total = int(match.group(1))
                logger.info("服务器支持断点续传，继续下载")
            else:
                if downloaded > 0:
                    logger.info("服务器不支持断点续传，从头开始下载")
                mode = "wb"
                downloaded = 0
                total = int(response.headers.get("content-length", 0) or 0)

            self.speed_limiter.reset()
            with open(part_path, mode) as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    self.speed_limiter.write_with_limit(f, chunk)
                    downloaded += len(chunk)
                    progress(downloaded, total)

        if total and downloaded < total:
            raise IncompleteDownloadError(f"下载不完整: 收到 {downloaded}/{total} 字节")

    def get_source_url(self, version: Version, platform_key: str) -> Optional[str]:
        """
        读取缓存条目记录的下载来源。

        参数:
            version: 版本
            platform_key: unix 或 windows

        返回:
            下载 URL，没有记录时返回 None
        """
        digest_file = self._digest_path(self.archive_path(version, platform_key))
        try:
            lines = digest_file.read_text(encoding="utf-8").splitlines()
        except OSError:
            return None
        for line in lines:
            if line.startswith(SOURCE_PREFIX):
                return line[len(SOURCE_PREFIX):].strip()
        return None

    def _publish(self, part_path: Path, archive: Path, url: str) -> None:
        """写入摘要后把临时文件原子地移动到缓存位置。"""
        digest = file_sha256(part_path)
        digest_file = self._digest_path(archive)
        temp_digest = digest_file.with_name(digest_file.name + ".tmp")
        temp_digest.write_text(f"{digest}  {archive.name}\n{SOURCE_PREFIX}{url}\n", encoding="utf-8")
        os.replace(temp_digest, digest_file)
        os.replace(part_path, archive)
        logger.info(f"归档已缓存: {archive} (sha256 {digest})")

    def fetch(
        self,
        version: Version,
        platform_key: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Path:
        """
        获取指定版本的归档，优先使用缓存。

        同一缓存条目的并发请求通过锁文件串行化，后到者直接复用缓存。

        参数:
            version: 版本
            platform_key: unix 或 windows
            progress_callback: 下载进度回调 (已下载字节, 总字节)

        返回:
            本地归档路径

        抛出:
            DownloadFailedError: 所有镜像源在重试后仍然失败
        """
        archive = self.archive_path(version, platform_key)
        archive.parent.mkdir(parents=True, exist_ok=True)

        with FileLock(str(archive.with_name(archive.name + ".lock"))):
            if self.is_cached(version, platform_key):
                logger.info(f"使用缓存的归档: {archive}")
                return archive
            if archive.exists():
                self.invalidate(version, platform_key)

            part_path = self._part_path(archive)
            progress = _MonotonicProgress(progress_callback)
            urls = self.build_download_urls(version, platform_key)
            if not urls:
                raise DownloadFailedError(f"未配置 {platform_key} 平台的下载镜像源")

            errors = []
            completed = False
            try:
                for url in urls:
                    mirror_url = next(
                        (m for m in self.config_manager.get_mirror_list(platform_key) if url.startswith(m)),
                        url,
                    )
                    logger.info(f"正在从 {url} 下载 Python {version}")
                    try:
                        self.retry_handler.execute(self._download_once, url, part_path, progress)
                    except requests.exceptions.RequestException as e:
                        logger.warning(f"从 {url} 下载失败: {e}")
                        self.mirror_status.record_failure(mirror_url, str(e))
                        errors.append(f"{url}: {e}")
                        # 换镜像时不续传其他服务器的部分内容
                        if part_path.exists():
                            part_path.unlink()
                        continue
                    except OSError as e:
                        raise DownloadFailedError(f"写入 {part_path} 失败: {e}") from e

                    self.mirror_status.record_success(mirror_url)
                    self._publish(part_path, archive, url)
                    completed = True
                    return archive
            finally:
                if not completed and part_path.exists():
                    part_path.unlink()
                    logger.debug(f"已删除临时下载文件 {part_path}")

            summary = "; ".join(errors)
            logger.error(f"所有镜像源下载 Python {version} 失败: {summary}")
            raise DownloadFailedError(summary)
