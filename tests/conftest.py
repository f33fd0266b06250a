from __future__ import annotations

import json
import os
import stat
from pathlib import Path
from typing import Callable

import pytest

from pypin.core.config_manager import ConfigManager
from pypin.core.version_utils import Version
from pypin.utils.paths import INFO_FILE_NAME, IS_WINDOWS

MakeToolchain = Callable[..., Path]


def make_executable(path: Path, content: str = "#!/bin/sh\nexit 0\n") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "pypin-home"
    root.mkdir()
    monkeypatch.setenv("PYPIN_HOME", str(root))
    monkeypatch.delenv("PYPIN_DEFAULT_VERSION", raising=False)
    monkeypatch.delenv("PYPIN_LOG", raising=False)
    return root


@pytest.fixture
def config_manager(home: Path) -> ConfigManager:
    return ConfigManager(home)


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return project


@pytest.fixture
def make_toolchain(config_manager: ConfigManager) -> MakeToolchain:
    """Create a fake managed toolchain tree under installed/<version>."""

    def _make(version: str, tools: tuple[str, ...] = ("pip3",), marker: bool = True, interpreter: bool = True) -> Path:
        parsed = Version.parse(version)
        root = config_manager.installed_dir / version
        root.mkdir(parents=True)
        if IS_WINDOWS:
            if interpreter:
                make_executable(root / "python.exe")
            for tool in tools:
                make_executable(root / "Scripts" / f"{tool}.exe")
        else:
            if interpreter:
                make_executable(root / "bin" / f"python{parsed.major}")
                make_executable(root / "bin" / f"python{parsed.major}.{parsed.minor}")
            for tool in tools:
                make_executable(root / "bin" / tool)
        if marker:
            (root / INFO_FILE_NAME).write_text(json.dumps({"version": version}), encoding="utf-8")
        return root

    return _make


@pytest.fixture
def posix_only() -> None:
    if IS_WINDOWS or os.name != "posix":  # pragma: no cover
        pytest.skip("requires a POSIX file layout")
