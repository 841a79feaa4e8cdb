"""End-to-end library updates against canned Mikan, Bangumi and TMDB responses."""

import threading
from unittest.mock import Mock, patch

import httpx
import pytest

from mikanlib.collaborators import DownloadRequest
from mikanlib.config import Settings
from mikanlib.main import LibraryService
from mikanlib.overrides import SeasonOverride

from conftest import make_response
from test_bangumi_client import SUBJECT_PAYLOAD
from test_detail_page import BANGUMI_PAGE, EPISODE_PAGE
from test_rss_fetcher import feed_item, make_feed

FEED_URL = "https://mikanani.me/RSS/MyBangumi?token=secret"
HISTORY_URL = "https://mikanani.me/RSS/Bangumi?bangumiId=3141&subgroupid=370"
TITLE = "[LoliHouse] 葬送的芙莉莲 / Sousou no Frieren - 04 [WebRip 1080p HEVC-10bit AAC][简繁内封字幕]"

EPISODES_PAYLOAD = {
    "data": [
        {"id": 1003, "type": 0, "ep": 3, "sort": 3, "name": "ep3", "airdate": "2023-10-13"},
        {"id": 1004, "type": 0, "ep": 4, "sort": 4, "name": "ep4", "airdate": "2023-10-20"},
    ],
    "total": 2,
    "limit": 100,
    "offset": 0,
}

TMDB_DETAILS = {
    "ja": {"name": "葬送のフリーレン", "seasons": [{"season_number": 1, "name": "シーズン1"}]},
    "zh-CN": {"name": "葬送的芙莉莲", "seasons": [{"season_number": 1, "name": "第 1 季"}]},
    "en-US": {
        "name": "Frieren: Beyond Journey's End",
        "seasons": [{"season_number": 1, "name": "Season 1"}],
    },
}


def route(url, params=None, headers=None):
    if url in (FEED_URL, HISTORY_URL):
        return make_response(text=make_feed(feed_item("abc123", TITLE)))
    if url == "https://mikanani.me/Home/Episode/abc123":
        return make_response(text=EPISODE_PAGE)
    if url == "https://mikanani.me/Home/Bangumi/3141":
        return make_response(text=BANGUMI_PAGE)
    if url == "https://api.bgm.tv/v0/subjects/400602":
        return make_response(json_data=SUBJECT_PAYLOAD)
    if url == "https://api.bgm.tv/v0/episodes":
        return make_response(json_data=EPISODES_PAYLOAD)
    if url == "https://api.themoviedb.org/3/search/tv":
        return make_response(json_data={"results": [{"id": 209867}]})
    if url == "https://api.themoviedb.org/3/tv/209867":
        return make_response(json_data=TMDB_DETAILS[params["language"]])
    raise httpx.ConnectError(f"unexpected {url}")


@pytest.fixture
def service(fixed_time):
    client = Mock()
    client.get.side_effect = route
    config = Settings(db_path=":memory:", rss_urls=[FEED_URL], retry_attempts=1)
    return LibraryService(
        config,
        client=client,
        download_client=Mock(),
        now_func=lambda: fixed_time,
        sleep=Mock(),
    )


def requested_urls(service) -> list[str]:
    return [c.args[0] for c in service.client.get.call_args_list]


def test_update_builds_library(service, fixed_time):
    """Test a full update from feed to snapshot and download requests."""
    stats = service.update()

    assert stats.seasons_created == 1
    assert stats.items_upserted == 1
    assert service.last_update == fixed_time

    [season] = service.db.get_seasons()
    assert season.key == (3141, 370)
    assert season.series_name == "葬送的芙莉莲"
    assert season.season_num == 1
    assert season.season_name == "第 1 季"
    assert season.conf_language == "hans,hant"
    assert season.conf_codec == "hevc"

    [item] = service.db.get_all_items()
    assert item.release_id == "abc123"
    assert item.bangumi_episode_id == 1004
    assert item.display_episode_num == 4

    [series] = service.snapshot.read()
    assert series.series_name == "葬送的芙莉莲"
    assert series.seasons[0].episodes[0].sort_key == "4"

    service.download_client.sync.assert_called_once_with(
        [
            DownloadRequest(
                magnet_link="magnet:?xt=urn:btih:abcdef0123456789&tr=http://t.example/announce",
                series_name="葬送的芙莉莲",
                season_name="第 1 季",
                season_num=1,
                episode_num=4,
            )
        ]
    )


def test_second_update_uses_cache(service):
    service.update()
    first_urls = requested_urls(service)
    service.client.get.reset_mock()

    service.update()

    assert requested_urls(service) == [FEED_URL, HISTORY_URL]
    assert first_urls.count("https://mikanani.me/Home/Episode/abc123") == 1
    assert len(service.db.get_all_items()) == 1


def test_update_survives_unreachable_feed(service):
    service.config.rss_urls = ["https://mikanani.me/RSS/missing"]

    stats = service.update()

    assert stats.items_upserted == 0
    assert service.snapshot.read() == []


def test_apply_override_refreshes_snapshot(service):
    service.update()

    service.apply_override(
        SeasonOverride(
            mikan_subject_id=3141,
            mikan_subgroup_id=370,
            override_season_num=True,
            season_num=2,
            episode_offset=-3,
        )
    )

    [series] = service.snapshot.read()
    view = series.seasons[0]
    assert view.season.season_num == 2
    assert view.episodes[0].item.display_episode_num == 1
    assert view.episodes[0].sort_key == "4"


def test_watch_status_refresh_after_update(service):
    service.config.watch_status_enabled = True
    with patch.object(service.watch_status, "refresh", return_value=1) as mock_refresh:
        service.update()

    mock_refresh.assert_called_once()


def test_request_update_runs_one_at_a_time(service):
    started = threading.Event()
    release = threading.Event()

    def slow_update():
        started.set()
        release.wait(5)

    with patch.object(service, "update", side_effect=slow_update):
        assert service.request_update()
        assert started.wait(5)
        assert not service.request_update()
        release.set()
        service.wait_for_update(5)
        assert service.request_update()
        service.wait_for_update(5)


def test_failed_background_update_is_logged(service):
    with patch.object(service, "update", side_effect=RuntimeError("boom")):
        assert service.request_update()
        service.wait_for_update(5)

    assert service.last_update is None
