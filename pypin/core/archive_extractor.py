"""
归档解压模块。

把 tar.gz（Unix 源码包）或 zip（Windows NuGet 包）解压到 staging 目录，防止路径遍历。
"""

import shutil
import tarfile
import zipfile
import zlib
from pathlib import Path

from pypin.core.errors import ExtractionFailedError
from pypin.utils.input_validator import InputValidator, InputValidationError
from pypin.utils.logger import get_logger

logger = get_logger()

FORMAT_TAR_GZ = "tar.gz"
FORMAT_ZIP = "zip"


def _reset_destination(destination: Path) -> None:
    """清空目标目录，保证重复解压不会混入旧文件。"""
    if destination.exists():
        shutil.rmtree(destination)
    destination.mkdir(parents=True)


def content_root(destination: Path) -> Path:
    """
    返回解压后的内容根目录。

    如果目标目录下只有一个子目录（例如 Python-3.7.2/），返回该子目录。

    参数:
        destination: 解压目标目录

    返回:
        内容根目录
    """
    children = list(destination.iterdir())
    if len(children) == 1 and children[0].is_dir():
        return children[0]
    return destination


class ArchiveExtractor:
    """
    归档解压器类。

    解压格式由请求的平台决定（配置中的 archive_format），不做文件嗅探。
    """

    def _extract_tar(self, archive: Path, destination: Path) -> None:
        with tarfile.open(archive, "r:gz") as tf:
            members = tf.getmembers()
            for member in members:
                InputValidator.validate_archive_member(member.name)
                InputValidator.safe_join_path(str(destination), member.name)
                if member.issym() or member.islnk():
                    link_base = destination / Path(member.name).parent if member.issym() else destination
                    InputValidator.safe_join_path(str(link_base), member.linkname)
            if hasattr(tarfile, "data_filter"):
                tf.extractall(destination, members=members, filter="data")
            else:
                tf.extractall(destination, members=members)

    def _extract_zip(self, archive: Path, destination: Path) -> None:
        with zipfile.ZipFile(archive, "r") as zf:
            bad_member = zf.testzip()
            if bad_member is not None:
                raise zipfile.BadZipFile(f"成员 {bad_member} 校验失败")
            for name in zf.namelist():
                InputValidator.validate_archive_member(name)
                InputValidator.safe_join_path(str(destination), name)
            zf.extractall(destination)

    def extract(self, archive: Path, destination: Path, archive_format: str) -> Path:
        """
        解压归档。

        参数:
            archive: 归档路径
            destination: 目标 staging 目录，解压前会被清空
            archive_format: tar.gz 或 zip

        返回:
            解压后的内容根目录

        抛出:
            ExtractionFailedError: 归档截断、损坏或包含非法路径
        """
        logger.info(f"正在解压 {archive} 到 {destination}")
        _reset_destination(destination)

        try:
            if archive_format == FORMAT_TAR_GZ:
                self._extract_tar(archive, destination)
            elif archive_format == FORMAT_ZIP:
                self._extract_zip(archive, destination)
            else:
                raise ExtractionFailedError(f"不支持的归档格式: {archive_format}")
        except ExtractionFailedError:
            raise
        except (tarfile.TarError, zipfile.BadZipFile, zlib.error, EOFError, InputValidationError) as e:
            logger.error(f"解压 {archive} 失败: {e}")
            raise ExtractionFailedError(f"{archive.name}: {e}") from e
        except OSError as e:
            logger.error(f"解压 {archive} 时发生文件系统错误: {e}")
            raise ExtractionFailedError(f"{archive.name}: {e}") from e

        root = content_root(destination)
        logger.info(f"解压完成，内容根目录: {root}")
        return root
