from __future__ import annotations

from datetime import datetime, timedelta

import pytest
import requests
from pytest_mock import MockerFixture

from pypin.core.config_manager import ConfigManager
from pypin.core.remote_fetcher import CACHE_KEY, MirrorStatus, RemoteFetcher
from pypin.core.version_utils import Version
from pypin.utils.retry import RetryHandler

INDEX_HTML = """
<a href="../">../</a>
<a href="2.7.18/">2.7.18/</a>
<a href="3.7.2/">3.7.2/</a>
<a href="3.8.0/">3.8.0/</a>
<a href="3.7.2/">3.7.2/</a>
<a href="doc/">doc/</a>
"""


def make_response(mocker: MockerFixture, text: str = INDEX_HTML, status: int = 200):
    response = mocker.Mock(spec=requests.Response)
    response.text = text
    response.status_code = status
    if status >= 400:
        error = requests.exceptions.HTTPError(f"{status} error", response=response)
        response.raise_for_status.side_effect = error
    return response


@pytest.fixture
def fetcher(config_manager: ConfigManager, mocker: MockerFixture) -> RemoteFetcher:
    config_manager.config["sources"]["version_index_list"] = ["https://a.example/python/", "https://b.example/python/"]
    result = RemoteFetcher(config_manager, session=mocker.Mock(spec=requests.Session))
    result.retry_handler = RetryHandler(max_retries=1, sleep=lambda _: None)
    return result


def test_fetch_parses_and_sorts(fetcher: RemoteFetcher, mocker: MockerFixture) -> None:
    fetcher.session.get.return_value = make_response(mocker)
    versions = fetcher.get_available_versions(use_cache=False)
    assert [str(v) for v in versions] == ["3.8.0", "3.7.2", "2.7.18"]
    cached = fetcher.config_manager.get_cache()[CACHE_KEY]
    assert cached["versions"] == ["3.8.0", "3.7.2", "2.7.18"]


def test_uses_fresh_cache_without_network(fetcher: RemoteFetcher) -> None:
    fetcher.config_manager.set_cache(CACHE_KEY, {"last_update": datetime.now().isoformat(), "versions": ["3.6.8"]})
    assert fetcher.get_available_versions() == [Version(3, 6, 8)]
    fetcher.session.get.assert_not_called()


def test_expired_cache_is_refreshed(fetcher: RemoteFetcher, mocker: MockerFixture) -> None:
    stale = (datetime.now() - timedelta(days=30)).isoformat()
    fetcher.config_manager.set_cache(CACHE_KEY, {"last_update": stale, "versions": ["3.6.8"]})
    fetcher.session.get.return_value = make_response(mocker)
    assert Version(3, 8, 0) in fetcher.get_available_versions()


def test_mirror_failover(fetcher: RemoteFetcher, mocker: MockerFixture) -> None:
    fetcher.session.get.side_effect = [
        requests.exceptions.ConnectionError("down"),
        requests.exceptions.ConnectionError("still down"),
        make_response(mocker),
    ]
    versions = fetcher.get_available_versions(use_cache=False)
    assert Version(3, 7, 2) in versions
    urls = [call.args[0] for call in fetcher.session.get.call_args_list]
    assert urls == ["https://a.example/python/", "https://a.example/python/", "https://b.example/python/"]


def test_client_error_is_not_retried(fetcher: RemoteFetcher, mocker: MockerFixture) -> None:
    fetcher.session.get.side_effect = [make_response(mocker, status=404), make_response(mocker)]
    fetcher.get_available_versions(use_cache=False)
    assert fetcher.session.get.call_count == 2


def test_all_mirrors_fail_falls_back_to_stale_cache(fetcher: RemoteFetcher) -> None:
    stale = (datetime.now() - timedelta(days=30)).isoformat()
    fetcher.config_manager.set_cache(CACHE_KEY, {"last_update": stale, "versions": ["3.6.8"]})
    fetcher.session.get.side_effect = requests.exceptions.ConnectionError("offline")
    assert fetcher.get_available_versions() == [Version(3, 6, 8)]


def test_all_mirrors_fail_without_cache(fetcher: RemoteFetcher) -> None:
    fetcher.session.get.side_effect = requests.exceptions.Timeout("slow")
    assert fetcher.get_available_versions() == []


def test_mirror_status_prefers_recent_success() -> None:
    status = MirrorStatus()
    status.record_failure("a", "timeout")
    status.record_success("b")
    assert status.get_sorted_mirrors(["a", "b", "c"]) == ["b", "c", "a"]
    assert "a: timeout" in status.get_failure_summary()
