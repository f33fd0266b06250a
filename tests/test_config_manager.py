from __future__ import annotations

import json
from pathlib import Path

import pytest

from pypin.core.config_manager import LOCK_POLICY_FAIL, ConfigManager, ConfigValidationError
from pypin.utils.paths import EXTRA_PACKAGES_FILE_NAME


def test_missing_file_uses_defaults_without_writing(config_manager: ConfigManager) -> None:
    assert config_manager.get_install_lock_policy() == "wait"
    assert config_manager.get_archive_format("unix") == "tar.gz"
    assert config_manager.get_archive_format("windows") == "zip"
    assert not config_manager.CONFIG_FILE.exists()


def test_home_from_environment(home: Path) -> None:
    assert ConfigManager().home == home
    assert ConfigManager().installed_dir == home / "installed"


def test_partial_file_is_completed(config_manager: ConfigManager) -> None:
    config_manager.CONFIG_DIR.mkdir(parents=True)
    config_manager.CONFIG_FILE.write_text(
        json.dumps({"settings": {"install_lock_policy": "fail"}, "sources": {}}),
        encoding="utf-8",
    )
    assert config_manager.get_install_lock_policy() == LOCK_POLICY_FAIL
    assert config_manager.get_download_retry_count() == 3
    assert config_manager.get_mirror_list("unix")


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps(["a", "list"]),
        json.dumps({"settings": {"install_lock_policy": "sometimes"}, "sources": {}}),
        json.dumps({"settings": {"build_jobs": True}, "sources": {}}),
    ],
)
def test_broken_file_falls_back_to_defaults(config_manager: ConfigManager, content: str) -> None:
    config_manager.CONFIG_DIR.mkdir(parents=True)
    config_manager.CONFIG_FILE.write_text(content, encoding="utf-8")
    assert config_manager.get_config() == config_manager.get_default_config()


def test_save_rejects_invalid_config(config_manager: ConfigManager) -> None:
    config = config_manager.get_default_config()
    config["sources"]["unix"]["archive_format"] = "rar"
    with pytest.raises(ConfigValidationError) as exc_info:
        config_manager.save_config(config)
    assert exc_info.value.exit_code == 11
    assert not config_manager.CONFIG_FILE.exists()


def test_default_version_round_trip(config_manager: ConfigManager) -> None:
    config_manager.get_settings()["default_version"] = "~3.7"
    config_manager.save_config()
    assert ConfigManager(config_manager.home).get_default_version() == "~3.7"


@pytest.mark.parametrize("value", [">>>", "3.7 <", 3.6])
def test_save_rejects_invalid_default_version(config_manager: ConfigManager, value: object) -> None:
    config_manager.get_settings()["default_version"] = value
    with pytest.raises(ConfigValidationError):
        config_manager.save_config()
    assert not config_manager.CONFIG_FILE.exists()


def test_build_jobs_zero_means_cpu_count(config_manager: ConfigManager) -> None:
    assert config_manager.get_build_jobs() >= 1
    config_manager.get_settings()["build_jobs"] = 3
    assert config_manager.get_build_jobs() == 3


def test_ensure_layout(config_manager: ConfigManager) -> None:
    config_manager.ensure_layout()
    for directory in ("installed", "staging", "cache", "shims", "config"):
        assert (config_manager.home / directory).is_dir()
    template = config_manager.home / EXTRA_PACKAGES_FILE_NAME
    assert template.read_text(encoding="utf-8").startswith("#")

    template.write_text("wheel\n", encoding="utf-8")
    config_manager.ensure_layout()
    assert template.read_text(encoding="utf-8") == "wheel\n"


def test_cache_persists(config_manager: ConfigManager) -> None:
    config_manager.set_cache("remote_versions", {"versions": ["3.7.2"]})
    config_manager.save_cache()
    assert ConfigManager(config_manager.home).get_cache() == {"remote_versions": {"versions": ["3.7.2"]}}


def test_reset_to_default(config_manager: ConfigManager) -> None:
    config_manager.get_settings()["download_timeout"] = 5
    config_manager.save_config()
    config_manager.reset_to_default()
    assert ConfigManager(config_manager.home).get_download_timeout() == 300
