from __future__ import annotations

import io
import tarfile
import zipfile
from pathlib import Path

import pytest

from pypin.core.archive_extractor import FORMAT_TAR_GZ, FORMAT_ZIP, ArchiveExtractor
from pypin.core.errors import ExtractionFailedError


def make_tar(path: Path, members: dict[str, bytes]) -> Path:
    with tarfile.open(path, "w:gz") as tf:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tf.addfile(info, io.BytesIO(data))
    return path


def make_zip(path: Path, members: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return path


def test_extract_tar_returns_single_top_directory(tmp_path: Path) -> None:
    archive = make_tar(tmp_path / "src.tar.gz", {"Python-3.7.2/configure": b"#!/bin/sh\n", "Python-3.7.2/README": b"hi"})
    root = ArchiveExtractor().extract(archive, tmp_path / "dest", FORMAT_TAR_GZ)
    assert root == tmp_path / "dest" / "Python-3.7.2"
    assert (root / "README").read_bytes() == b"hi"


def test_extract_zip_keeps_flat_layout(tmp_path: Path) -> None:
    archive = make_zip(tmp_path / "python.zip", {"tools/python.exe": b"MZ", "python.nuspec": b"<xml/>"})
    root = ArchiveExtractor().extract(archive, tmp_path / "dest", FORMAT_ZIP)
    assert root == tmp_path / "dest"
    assert (root / "tools" / "python.exe").read_bytes() == b"MZ"


def test_destination_is_cleared_first(tmp_path: Path) -> None:
    dest = tmp_path / "dest"
    (dest / "stale").mkdir(parents=True)
    (dest / "stale" / "old.txt").write_text("old", encoding="utf-8")
    archive = make_zip(tmp_path / "python.zip", {"tools/python.exe": b"MZ"})
    ArchiveExtractor().extract(archive, dest, FORMAT_ZIP)
    assert not (dest / "stale").exists()


def test_format_comes_from_caller_not_content(tmp_path: Path) -> None:
    archive = make_zip(tmp_path / "python.tar.gz", {"tools/python.exe": b"MZ"})
    with pytest.raises(ExtractionFailedError):
        ArchiveExtractor().extract(archive, tmp_path / "dest", FORMAT_TAR_GZ)


def test_truncated_tar_fails(tmp_path: Path) -> None:
    archive = make_tar(tmp_path / "src.tar.gz", {"Python-3.7.2/big": bytes(range(256)) * 400})
    data = archive.read_bytes()
    archive.write_bytes(data[: len(data) // 2])
    with pytest.raises(ExtractionFailedError) as exc_info:
        ArchiveExtractor().extract(archive, tmp_path / "dest", FORMAT_TAR_GZ)
    assert exc_info.value.exit_code == 7


def test_corrupt_zip_fails(tmp_path: Path) -> None:
    archive = tmp_path / "python.zip"
    archive.write_bytes(b"PK\x03\x04 definitely not a zip")
    with pytest.raises(ExtractionFailedError):
        ArchiveExtractor().extract(archive, tmp_path / "dest", FORMAT_ZIP)


@pytest.mark.parametrize("name", ["../evil.txt", "/etc/evil.txt", "a/../../evil.txt"])
def test_path_traversal_rejected(tmp_path: Path, name: str) -> None:
    archive = make_zip(tmp_path / "evil.zip", {name: b"x"})
    with pytest.raises(ExtractionFailedError):
        ArchiveExtractor().extract(archive, tmp_path / "dest", FORMAT_ZIP)
    assert not (tmp_path / "evil.txt").exists()


def test_tar_symlink_escape_rejected(tmp_path: Path) -> None:
    archive = tmp_path / "link.tar.gz"
    with tarfile.open(archive, "w:gz") as tf:
        info = tarfile.TarInfo("Python-3.7.2/escape")
        info.type = tarfile.SYMTYPE
        info.linkname = "../../outside"
        tf.addfile(info)
    with pytest.raises(ExtractionFailedError):
        ArchiveExtractor().extract(archive, tmp_path / "dest", FORMAT_TAR_GZ)


def test_unknown_format(tmp_path: Path) -> None:
    archive = make_zip(tmp_path / "python.zip", {"a": b"b"})
    with pytest.raises(ExtractionFailedError):
        ArchiveExtractor().extract(archive, tmp_path / "dest", "rar")
