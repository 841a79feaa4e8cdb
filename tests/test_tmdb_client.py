from unittest.mock import Mock, patch

import httpx
import pytest

from mikanlib.errors import NetworkError
from mikanlib.tmdb_client import TMDBClient

from conftest import make_response


@pytest.fixture
def tmdb(mock_client):
    return TMDBClient(mock_client, access_token="token", retry_attempts=1, sleep=Mock())


def test_search_tv_returns_first_result(tmdb):
    payload = {"results": [{"id": 209867, "name": "葬送的芙莉莲"}, {"id": 1, "name": "x"}]}
    with patch.object(
        tmdb.client, "get", return_value=make_response(json_data=payload)
    ) as mock_get:
        assert tmdb.search_tv("葬送的芙莉莲") == 209867

    args, kwargs = mock_get.call_args
    assert args[0] == "https://api.themoviedb.org/3/search/tv"
    assert kwargs["params"] == {
        "query": "葬送的芙莉莲",
        "include_adult": "false",
        "language": "zh-CN",
    }
    assert kwargs["headers"]["Authorization"] == "Bearer token"


def test_search_tv_no_results(tmdb):
    with patch.object(
        tmdb.client, "get", return_value=make_response(json_data={"results": []})
    ):
        assert tmdb.search_tv("nothing") is None


def test_get_tv_details_skips_failed_languages(tmdb):
    def fake_get(url, params=None, headers=None):
        if params["language"] == "ja":
            raise httpx.ConnectError("down")
        return make_response(json_data={"name": f"name-{params['language']}"})

    with patch.object(tmdb.client, "get", side_effect=fake_get):
        details = tmdb.get_tv_details(209867, ["ja", "zh-CN", "en-US"])

    assert details == {
        "zh-CN": {"name": "name-zh-CN"},
        "en-US": {"name": "name-en-US"},
    }


def test_get_tv_details_all_languages_fail(tmdb):
    with patch.object(tmdb.client, "get", side_effect=httpx.ConnectError("down")):
        with pytest.raises(NetworkError):
            tmdb.get_tv_details(209867, ["ja", "zh-CN"])
