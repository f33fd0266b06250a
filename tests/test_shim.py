from __future__ import annotations

from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from conftest import MakeToolchain, make_executable
from pypin.core.config_manager import ConfigManager
from pypin.core.errors import PypinError, ToolchainNotInstalledError, ToolNotFoundInToolchainError
from pypin.core.shim import ShimDispatcher, ShimManager, tool_name_from_argv0
from pypin.core.toolchain import ORIGIN_DISCOVERED, InstalledToolchain
from pypin.core.version_utils import Version
from pypin.utils.paths import PIN_FILE_NAME


def test_tool_name_from_argv0() -> None:
    assert tool_name_from_argv0("/home/u/.pypin/shims/pip3") == "pip3"
    assert tool_name_from_argv0("python3.7") == "python3.7"


def test_no_pin_and_no_toolchain(config_manager: ConfigManager, workdir: Path) -> None:
    with pytest.raises(ToolchainNotInstalledError) as exc_info:
        ShimDispatcher(config_manager).locate("python", workdir)
    assert exc_info.value.requested == "latest"
    assert exc_info.value.exit_code == 4


def test_pinned_version_not_installed_names_pin_file(
    config_manager: ConfigManager,
    make_toolchain: MakeToolchain,
    workdir: Path,
) -> None:
    make_toolchain("3.7.2")
    (workdir / PIN_FILE_NAME).write_text("3.6\n", encoding="utf-8")
    with pytest.raises(ToolchainNotInstalledError) as exc_info:
        ShimDispatcher(config_manager).locate("python", workdir)
    assert exc_info.value.requested == "3.6"
    assert exc_info.value.source == workdir / PIN_FILE_NAME
    assert "pypin install 3.6" in exc_info.value.hint


@pytest.mark.usefixtures("posix_only")
def test_unversioned_names_fall_back(
    config_manager: ConfigManager,
    make_toolchain: MakeToolchain,
    workdir: Path,
) -> None:
    root = make_toolchain("3.7.2")
    make_toolchain("3.6.8")
    (workdir / PIN_FILE_NAME).write_text("~3.7\n", encoding="utf-8")
    dispatcher = ShimDispatcher(config_manager)
    assert dispatcher.locate("pip", workdir) == root / "bin" / "pip3"
    assert dispatcher.locate("python", workdir) == root / "bin" / "python3"
    assert dispatcher.locate("python3.7", workdir) == root / "bin" / "python3.7"


def test_missing_tool(config_manager: ConfigManager, make_toolchain: MakeToolchain, workdir: Path) -> None:
    make_toolchain("3.7.2")
    with pytest.raises(ToolNotFoundInToolchainError) as exc_info:
        ShimDispatcher(config_manager).locate("black", workdir)
    assert exc_info.value.tool == "black"
    assert exc_info.value.version == "3.7.2"
    assert exc_info.value.exit_code == 5


def test_invalid_tool_name(config_manager: ConfigManager, workdir: Path) -> None:
    with pytest.raises(PypinError):
        ShimDispatcher(config_manager).locate("../python", workdir)


@pytest.mark.usefixtures("posix_only")
def test_refuses_to_dispatch_into_shims_dir(
    config_manager: ConfigManager,
    workdir: Path,
    mocker: MockerFixture,
) -> None:
    make_executable(config_manager.shims_dir / "python")
    dispatcher = ShimDispatcher(config_manager)
    looping = InstalledToolchain(Version(3, 7, 2), config_manager.shims_dir, ORIGIN_DISCOVERED)
    mocker.patch.object(dispatcher.local_manager, "scan", return_value=[looping])
    with pytest.raises(ToolNotFoundInToolchainError):
        dispatcher.locate("python", workdir)


@pytest.mark.usefixtures("posix_only")
def test_dispatch_replaces_process(
    config_manager: ConfigManager,
    make_toolchain: MakeToolchain,
    workdir: Path,
    mocker: MockerFixture,
) -> None:
    root = make_toolchain("3.7.2")
    execve = mocker.patch("pypin.core.shim.os.execve")
    env = {"PATH": "/usr/bin"}

    ShimDispatcher(config_manager).dispatch("pip3", ["install", "wheel"], workdir, env)

    target = str(root / "bin" / "pip3")
    execve.assert_called_once_with(target, [target, "install", "wheel"], env)


@pytest.mark.usefixtures("posix_only")
def test_refresh_creates_and_prunes_shims(
    tmp_path: Path,
    config_manager: ConfigManager,
    make_toolchain: MakeToolchain,
) -> None:
    make_toolchain("3.7.2", tools=("pip3", "2to3-3.7"))
    launcher = make_executable(tmp_path / "bin" / "pypin")
    config_manager.shims_dir.mkdir(parents=True)
    (config_manager.shims_dir / "stale-tool").write_text("", encoding="utf-8")

    names = ShimManager(config_manager, launcher=launcher).refresh()

    assert {"python", "python3", "python3.7", "pip", "pip3", "2to3-3.7"} <= set(names)
    assert not (config_manager.shims_dir / "stale-tool").exists()
    shim = config_manager.shims_dir / "pip3"
    assert shim.read_bytes() == launcher.read_bytes()


def test_refresh_without_launcher_fails(config_manager: ConfigManager, mocker: MockerFixture) -> None:
    mocker.patch("pypin.core.shim.sys.argv", ["pytest"])
    mocker.patch("pypin.core.shim.shutil.which", return_value=None)
    with pytest.raises(PypinError):
        ShimManager(config_manager).refresh()
