"""
版本管理器模块。

协调说明符解析、注册表扫描、下载、解压、构建和 shim 生成，
为命令行的 install、select、list、path、version、run、shims 命令提供实现。
"""

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, Union

from filelock import FileLock, Timeout

from pypin.core.archive_extractor import ArchiveExtractor
from pypin.core.builder import SOURCE_SUBDIR, ToolchainBuilder, get_builder
from pypin.core.config_manager import ConfigManager, LOCK_POLICY_FAIL
from pypin.core.download_manager import DownloadManager
from pypin.core.errors import (
    ExtractionFailedError,
    InstallInProgressError,
    MalformedSpecifierError,
    PypinError,
    ToolNotFoundInToolchainError,
    VersionNotAvailableError,
)
from pypin.core.interfaces import ProgressCallback
from pypin.core.local_manager import LocalManager
from pypin.core.pin_file import SelectedSpecifier, load_selected_specifier, parse_selection, write_pin_file
from pypin.core.remote_fetcher import RemoteFetcher
from pypin.core.resolver import Resolution, Resolved, Unmatched, not_installed_error, resolve
from pypin.core.shim import ShimManager, exec_tool
from pypin.core.specifier import ExactSpecifier, PathSpecifier, VersionSpecifier, parse_specifier
from pypin.core.toolchain import InstalledToolchain
from pypin.core.version_utils import Version
from pypin.utils.input_validator import InputValidator, InputValidationError
from pypin.utils.logger import get_logger
from pypin.utils.paths import current_platform

logger = get_logger()

StatusCallback = Callable[[str], None]
PIP_INSTALL_TIMEOUT = 600


def parse_user_specifier(text: str) -> VersionSpecifier:
    """
    解析命令行传入的说明符。

    参数:
        text: 原始文本

    返回:
        VersionSpecifier

    抛出:
        MalformedSpecifierError: 文本为空、过长或无法解析
    """
    try:
        text = InputValidator.validate_specifier_text(text)
    except InputValidationError as e:
        raise MalformedSpecifierError(text or "", reason=str(e)) from e
    return parse_specifier(text)


@dataclass
class ListReport:
    """list 命令的报告内容。"""

    selected: SelectedSpecifier
    resolution: Resolution
    installed: List[InstalledToolchain] = field(default_factory=list)
    discovered: List[InstalledToolchain] = field(default_factory=list)

    @property
    def active_toolchain(self) -> Optional[InstalledToolchain]:
        if isinstance(self.resolution, Resolved):
            return self.resolution.toolchain
        return None

    @property
    def active_version(self) -> Optional[Version]:
        active = self.active_toolchain
        return active.version if active is not None else None

    @property
    def missing(self) -> Optional[str]:
        """已选择但未安装的请求版本。"""
        if isinstance(self.resolution, Unmatched):
            return self.resolution.requested
        return None


class VersionManager:
    """
    版本管理器类。

    本类作为协调者，将具体工作委托给各个专用模块。
    每次调用都重新扫描注册表，不在内存中保留工具链状态。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        local_manager: Optional[LocalManager] = None,
        remote_fetcher: Optional[RemoteFetcher] = None,
        download_manager: Optional[DownloadManager] = None,
        extractor: Optional[ArchiveExtractor] = None,
        builder: Optional[ToolchainBuilder] = None,
        shim_manager: Optional[ShimManager] = None,
        platform_key: Optional[str] = None,
    ):
        """
        初始化版本管理器。

        参数:
            config_manager: 配置管理器实例
            其余参数: 可替换的协作者，默认按配置创建
        """
        self.config_manager = config_manager
        self.local_manager = local_manager or LocalManager(config_manager)
        self.remote_fetcher = remote_fetcher or RemoteFetcher(config_manager)
        self.download_manager = download_manager or DownloadManager(config_manager)
        self.extractor = extractor or ArchiveExtractor()
        self.builder = builder or get_builder(config_manager)
        self.shim_manager = shim_manager or ShimManager(config_manager, self.local_manager)
        self.platform_key = platform_key or current_platform()

    def scan_installed(self) -> List[InstalledToolchain]:
        return self.local_manager.scan()

    def get_remote_versions(self, use_cache: bool = True) -> List[Version]:
        return self.remote_fetcher.get_available_versions(use_cache)

    def get_selected(self, cwd: Path) -> SelectedSpecifier:
        """返回 cwd 处生效的说明符。"""
        return load_selected_specifier(cwd, self.config_manager.get_default_version())

    def resolve_active(self, cwd: Path) -> Tuple[SelectedSpecifier, Resolution]:
        """
        解析 cwd 处生效的说明符。

        参数:
            cwd: 当前工作目录

        返回:
            (SelectedSpecifier, Resolved 或 Unmatched)
        """
        selected = self.get_selected(cwd)
        return selected, resolve(selected.specifier, self.local_manager.candidates_for(selected.specifier))

    def get_active_toolchain(self, cwd: Path) -> InstalledToolchain:
        """
        返回 cwd 处生效的工具链。

        抛出:
            ToolchainNotInstalledError: 生效的说明符没有匹配的已安装版本
        """
        selected, resolution = self.resolve_active(cwd)
        if isinstance(resolution, Unmatched):
            raise not_installed_error(resolution, selected.path)
        return resolution.toolchain

    def pick_install_version(self, specifier: VersionSpecifier) -> Version:
        """
        为安装挑选具体版本。

        精确说明符直接使用其版本，不访问版本索引；
        其余说明符在远程可用版本中从高到低挑选第一个确实有发布归档的匹配版本。

        参数:
            specifier: 版本说明符

        返回:
            要安装的版本

        抛出:
            VersionNotAvailableError: 没有可用版本满足说明符
            DownloadFailedError: 镜像源无法访问
        """
        if isinstance(specifier, ExactSpecifier):
            return specifier.version
        if isinstance(specifier, PathSpecifier):
            raise VersionNotAvailableError(str(specifier))

        matching = sorted((v for v in self.get_remote_versions() if specifier.matches(v)), reverse=True)
        for candidate in matching:
            if self.download_manager.is_available(candidate, self.platform_key):
                logger.info(f"说明符 {specifier} 解析为可下载版本 {candidate}")
                return candidate
            logger.info(f"Python {candidate} 没有可下载的发布归档，尝试更低的版本")
        raise VersionNotAvailableError(str(specifier))

    def install(
        self,
        specifier: Union[str, VersionSpecifier],
        force: bool = False,
        extra_packages: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
        status_callback: Optional[StatusCallback] = None,
    ) -> InstalledToolchain:
        """
        安装满足说明符的 Python 版本。

        同一版本的安装通过 installed/<version>.lock 串行化；
        锁策略为 fail 时，锁已被占用会立即失败。

        参数:
            specifier: 说明符文本或对象
            force: 已安装时是否重新安装
            extra_packages: 是否安装额外包文件中列出的包
            progress_callback: 下载进度回调
            status_callback: 状态消息回调

        返回:
            已安装的工具链

        抛出:
            MalformedSpecifierError, VersionNotAvailableError, InstallInProgressError,
            DownloadFailedError, ExtractionFailedError, BuildFailedError
        """
        if isinstance(specifier, str):
            specifier = parse_user_specifier(specifier)
        status = status_callback or (lambda message: None)

        self.config_manager.ensure_layout()
        version = self.pick_install_version(specifier)

        lock_path = self.config_manager.installed_dir / f"{version}.lock"
        policy = self.config_manager.get_install_lock_policy()
        lock = FileLock(str(lock_path), timeout=0 if policy == LOCK_POLICY_FAIL else -1)
        try:
            lock.acquire()
        except Timeout as e:
            logger.warning(f"Python {version} 正在由其他进程安装")
            raise InstallInProgressError(str(version), lock_path) from e

        try:
            toolchain, fresh = self._install_locked(version, force, progress_callback, status)
        finally:
            lock.release()

        if not fresh:
            return toolchain

        try:
            self.refresh_shims()
        except (PypinError, OSError) as e:
            logger.warning(f"更新 shim 失败: {e}")
            status(f"警告: 更新 shim 失败: {e}")
        if extra_packages:
            self.install_extra_packages(toolchain, status)
        return toolchain

    def _install_locked(
        self,
        version: Version,
        force: bool,
        progress_callback: Optional[ProgressCallback],
        status: StatusCallback,
    ) -> Tuple[InstalledToolchain, bool]:
        existing = self.local_manager.get_toolchain(version)
        if existing is not None and not force:
            logger.info(f"Python {version} 已安装，跳过")
            status(f"Python {version} 已安装: {existing.root}")
            return existing, False

        staging = self.config_manager.staging_dir / str(version)
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)

        status(f"正在获取 Python {version} 归档...")
        archive = self.download_manager.fetch(version, self.platform_key, progress_callback)

        status("正在解压...")
        try:
            self.extractor.extract(
                archive,
                staging / SOURCE_SUBDIR,
                self.config_manager.get_archive_format(self.platform_key),
            )
        except ExtractionFailedError:
            self.download_manager.invalidate(version, self.platform_key)
            raise

        status("正在构建，可能需要几分钟...")
        install_dir = self.config_manager.installed_dir / str(version)
        toolchain = self.builder.build(
            staging,
            version,
            install_dir,
            self.download_manager.get_source_url(version, self.platform_key),
        )

        shutil.rmtree(staging, ignore_errors=True)
        status(f"Python {version} 已安装到 {install_dir}")
        return toolchain, True

    def read_extra_packages(self) -> List[str]:
        """
        读取额外包文件。

        返回:
            包说明符列表，文件不存在时返回空列表
        """
        path = self.config_manager.extra_packages_file
        try:
            with open(path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except FileNotFoundError:
            return []
        return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]

    def install_extra_packages(
        self,
        toolchain: InstalledToolchain,
        status_callback: Optional[StatusCallback] = None,
    ) -> Tuple[List[str], List[str]]:
        """
        用工具链的 pip 逐个安装额外包。单个包失败只记录日志。

        参数:
            toolchain: 目标工具链
            status_callback: 状态消息回调

        返回:
            (成功的包列表, 失败的包列表)
        """
        status = status_callback or (lambda message: None)
        installed: List[str] = []
        failed: List[str] = []

        for package in self.read_extra_packages():
            try:
                InputValidator.validate_package_spec(package)
            except InputValidationError as e:
                logger.warning(f"跳过无效的包说明符: {e}")
                failed.append(package)
                continue

            status(f"正在安装额外包 {package}...")
            try:
                result = subprocess.run(
                    [str(toolchain.executable), "-m", "pip", "install", package],
                    capture_output=True,
                    text=True,
                    timeout=PIP_INSTALL_TIMEOUT,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.error(f"安装额外包 {package} 失败: {e}")
                failed.append(package)
                continue

            logger.debug(result.stdout)
            if result.returncode != 0:
                logger.error(f"安装额外包 {package} 失败，退出码 {result.returncode}: {result.stderr.strip()}")
                failed.append(package)
            else:
                logger.info(f"已安装额外包 {package}")
                installed.append(package)

        if failed:
            status(f"{len(failed)} 个额外包安装失败，详见日志")
        return installed, failed

    def select(self, specifier_text: str, cwd: Path, install: bool = False) -> Tuple[Path, Resolution]:
        """
        在 cwd 写入 pin 文件。

        参数:
            specifier_text: 说明符文本，或自定义解释器目录的路径
            cwd: 目标目录
            install: 没有匹配的已安装版本时是否先安装（对路径无效）

        返回:
            (pin 文件路径, 解析结果)

        抛出:
            MalformedSpecifierError: 说明符无法解析，或路径不存在
        """
        specifier = parse_selection(specifier_text, cwd, must_exist=True)
        resolution = resolve(specifier, self.local_manager.candidates_for(specifier))
        if isinstance(resolution, Unmatched) and install and not isinstance(specifier, PathSpecifier):
            resolution = Resolved(self.install(specifier))
        elif isinstance(resolution, Unmatched):
            logger.warning(f"{specifier} 没有匹配的已安装版本")

        path = write_pin_file(cwd, specifier)
        return path, resolution

    def list_report(self, cwd: Path, include_discovered: bool = True) -> ListReport:
        """
        生成 list 命令的报告。

        参数:
            cwd: 当前工作目录
            include_discovered: 是否包含 PATH 中发现的解释器

        返回:
            ListReport
        """
        installed = self.scan_installed()
        selected = self.get_selected(cwd)
        candidates = installed
        if isinstance(selected.specifier, PathSpecifier):
            candidates = self.local_manager.candidates_for(selected.specifier)
        report = ListReport(
            selected=selected,
            resolution=resolve(selected.specifier, candidates),
            installed=installed,
        )
        if include_discovered:
            report.discovered = self.local_manager.discover_path_toolchains()
        return report

    def run(self, command: str, args: Sequence[str], cwd: Path, env: Optional[Mapping[str, str]] = None) -> int:
        """
        在生效工具链的环境中运行命令。

        工具链的可执行文件目录被放到 PATH 最前面，然后用命令替换当前进程。

        参数:
            command: 命令名
            args: 命令参数
            cwd: 当前工作目录
            env: 环境变量，默认为 os.environ

        返回:
            子进程退出码（仅 Windows）
        """
        toolchain = self.get_active_toolchain(cwd)
        env = dict(os.environ if env is None else env)
        search_dirs = toolchain.search_dirs
        path_entries = [str(d) for d in search_dirs]
        if env.get("PATH"):
            path_entries.append(env["PATH"])
        env["PATH"] = os.pathsep.join(path_entries)

        found = shutil.which(command, path=env["PATH"])
        if found is None:
            raise ToolNotFoundInToolchainError(command, str(toolchain.version), search_dirs)
        return exec_tool(Path(found), args, env)

    def refresh_shims(self) -> List[str]:
        return self.shim_manager.refresh()
