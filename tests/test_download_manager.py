from __future__ import annotations

import hashlib
from pathlib import Path

import pytest
import requests
from pytest_mock import MockerFixture

from pypin.core.config_manager import ConfigManager
from pypin.core.download_manager import DownloadManager, file_sha256
from pypin.core.errors import DownloadFailedError
from pypin.core.version_utils import Version
from pypin.utils.retry import RetryHandler

PAYLOAD = b"python-source-archive" * 1000
VERSION = Version(3, 7, 2)


class FakeResponse:
    def __init__(self, body: bytes, status: int = 200, total: int | None = None, headers: dict | None = None):
        self.body = body
        self.status_code = status
        self.headers = {"content-length": str(len(body) if total is None else total)}
        self.headers.update(headers or {})

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error", response=self)

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start:start + chunk_size]


@pytest.fixture
def manager(config_manager: ConfigManager, mocker: MockerFixture) -> DownloadManager:
    sources = config_manager.get_sources("unix")
    sources["mirror_list"] = ["https://m1.example/", "https://m2.example/"]
    sources["download_url_template"] = "{mirror}{release}/Python-{version}.tgz"
    result = DownloadManager(config_manager, session=mocker.Mock(spec=requests.Session))
    result.retry_handler = RetryHandler(max_retries=1, sleep=lambda _: None)
    return result


def test_build_download_urls(manager: DownloadManager) -> None:
    assert manager.build_download_urls(Version.parse("3.8.0rc1"), "unix") == [
        "https://m1.example/3.8.0/Python-3.8.0rc1.tgz",
        "https://m2.example/3.8.0/Python-3.8.0rc1.tgz",
    ]


def test_fetch_downloads_and_caches(manager: DownloadManager) -> None:
    manager.session.get.return_value = FakeResponse(PAYLOAD)
    progress: list[tuple[int, int]] = []

    archive = manager.fetch(VERSION, "unix", lambda done, total: progress.append((done, total)))

    assert archive == manager.config_manager.cache_dir / "unix" / "3.7.2.tar.gz"
    assert archive.read_bytes() == PAYLOAD
    assert manager.is_cached(VERSION, "unix")
    assert manager.get_source_url(VERSION, "unix") == "https://m1.example/3.7.2/Python-3.7.2.tgz"
    assert not archive.with_name(archive.name + ".part").exists()
    assert progress[-1] == (len(PAYLOAD), len(PAYLOAD))
    assert [done for done, _ in progress] == sorted(done for done, _ in progress)


def test_cache_hit_skips_network(manager: DownloadManager) -> None:
    manager.session.get.return_value = FakeResponse(PAYLOAD)
    first = manager.fetch(VERSION, "unix")
    manager.session.get.reset_mock()
    assert manager.fetch(VERSION, "unix") == first
    manager.session.get.assert_not_called()


def test_digest_mismatch_triggers_redownload(manager: DownloadManager) -> None:
    manager.session.get.return_value = FakeResponse(PAYLOAD)
    archive = manager.fetch(VERSION, "unix")
    archive.write_bytes(PAYLOAD[: len(PAYLOAD) // 2])
    assert not manager.is_cached(VERSION, "unix")

    manager.session.get.reset_mock()
    manager.session.get.return_value = FakeResponse(PAYLOAD)
    manager.fetch(VERSION, "unix")
    assert manager.session.get.call_count == 1
    assert file_sha256(archive) == hashlib.sha256(PAYLOAD).hexdigest()


def test_truncated_download_is_retried(manager: DownloadManager) -> None:
    manager.session.get.side_effect = [
        FakeResponse(PAYLOAD[:100], total=len(PAYLOAD)),
        FakeResponse(PAYLOAD),
    ]
    archive = manager.fetch(VERSION, "unix")
    assert archive.read_bytes() == PAYLOAD


def test_resume_appends_partial_content(manager: DownloadManager) -> None:
    archive = manager.archive_path(VERSION, "unix")
    archive.parent.mkdir(parents=True)
    archive.with_name(archive.name + ".part").write_bytes(PAYLOAD[:500])
    manager.session.get.return_value = FakeResponse(
        PAYLOAD[500:],
        status=206,
        headers={"Content-Range": f"bytes 500-{len(PAYLOAD) - 1}/{len(PAYLOAD)}"},
    )

    assert manager.fetch(VERSION, "unix").read_bytes() == PAYLOAD
    assert manager.session.get.call_args.kwargs["headers"] == {"Range": "bytes=500-"}


def test_persistent_failure_raises_and_cleans_up(manager: DownloadManager) -> None:
    manager.session.get.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(DownloadFailedError) as exc_info:
        manager.fetch(VERSION, "unix")

    assert exc_info.value.exit_code == 6
    assert "m1.example" in exc_info.value.reason
    assert "m2.example" in exc_info.value.reason
    assert manager.session.get.call_count == 4
    cache = manager.config_manager.cache_dir / "unix"
    assert not any(p.name.endswith((".part", ".tar.gz")) for p in cache.iterdir())


def test_mirror_failover_on_not_found(manager: DownloadManager) -> None:
    manager.session.get.side_effect = [FakeResponse(b"", status=404), FakeResponse(PAYLOAD)]
    archive = manager.fetch(VERSION, "unix")
    assert archive.read_bytes() == PAYLOAD
    assert manager.get_source_url(VERSION, "unix").startswith("https://m2.example/")


def test_interrupt_removes_partial_file(manager: DownloadManager) -> None:
    class Interrupted(FakeResponse):
        def iter_content(self, chunk_size: int = 1):
            yield self.body[:10]
            raise KeyboardInterrupt

    manager.session.get.return_value = Interrupted(PAYLOAD)
    with pytest.raises(KeyboardInterrupt):
        manager.fetch(VERSION, "unix")
    archive = manager.archive_path(VERSION, "unix")
    assert not archive.exists()
    assert not archive.with_name(archive.name + ".part").exists()


def test_invalidate_removes_entry(manager: DownloadManager) -> None:
    manager.session.get.return_value = FakeResponse(PAYLOAD)
    archive = manager.fetch(VERSION, "unix")
    manager.invalidate(VERSION, "unix")
    assert not archive.exists()
    assert not Path(str(archive) + ".sha256").exists()
    manager.invalidate(VERSION, "unix")


def test_is_available_tries_next_mirror_after_404(manager: DownloadManager) -> None:
    manager.session.head.side_effect = [FakeResponse(b"", status=404), FakeResponse(b"")]
    assert manager.is_available(VERSION, "unix") is True
    assert manager.session.head.call_args.args[0] == "https://m2.example/3.7.2/Python-3.7.2.tgz"


def test_is_available_false_when_every_mirror_lacks_archive(manager: DownloadManager) -> None:
    manager.session.head.return_value = FakeResponse(b"", status=404)
    assert manager.is_available(Version(3, 15, 0), "unix") is False
    manager.session.get.assert_not_called()


def test_is_available_raises_when_mirrors_unreachable(manager: DownloadManager) -> None:
    manager.session.head.side_effect = requests.exceptions.ConnectionError("offline")
    with pytest.raises(DownloadFailedError):
        manager.is_available(VERSION, "unix")


def test_is_available_uses_cache(manager: DownloadManager) -> None:
    manager.session.get.return_value = FakeResponse(PAYLOAD)
    manager.fetch(VERSION, "unix")
    assert manager.is_available(VERSION, "unix") is True
    manager.session.head.assert_not_called()
