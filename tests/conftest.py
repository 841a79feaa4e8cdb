from unittest.mock import Mock

import httpx
import pytest
from whenever import Instant

from mikanlib.cache import CacheStore
from mikanlib.database import Database
from mikanlib.library import LibraryReconciler
from mikanlib.models import ResolvedRelease, SubjectMapping


@pytest.fixture
def fixed_time():
    """Provide a fixed time for testing."""
    return Instant.from_utc(2025, 1, 1, 12, 0, 0)


@pytest.fixture
def temp_db(fixed_time):
    """Create a temporary database for testing."""
    db = Database(":memory:", now_func=lambda: fixed_time)
    yield db


@pytest.fixture
def cache(temp_db):
    return CacheStore(temp_db)


@pytest.fixture
def mock_client():
    """Create a mock HTTP client for testing."""
    return httpx.Client(timeout=30.0)


@pytest.fixture
def reconciler(temp_db, cache):
    return LibraryReconciler(temp_db, cache)


def make_response(text: str = "", json_data=None, status_code: int = 200) -> Mock:
    """Build a mock httpx response."""
    response = Mock()
    response.text = text
    response.status_code = status_code
    response.json = Mock(return_value=json_data)
    response.raise_for_status = Mock()
    return response


def make_release(release_id: str = "abc123", **overrides) -> ResolvedRelease:
    fields = {
        "release_id": release_id,
        "title": "[LoliHouse] Frieren - 03 [WebRip 1080p HEVC-10bit AAC][简繁内封字幕]",
        "pub_date": "2025-01-01T12:00:00",
        "mikan_subject_id": 3310,
        "mikan_subgroup_id": 370,
        "episode_num": 3,
        "language": "hans,hant",
        "codec": "hevc",
        "magnet_link": f"magnet:?xt=urn:btih:{release_id}",
        "subject_title": "葬送的芙莉莲",
        "subgroup_name": "LoliHouse",
        "episode_title": "[LoliHouse] Frieren - 03",
        "bangumi_subject_id": 400602,
    }
    fields.update(overrides)
    return ResolvedRelease(**fields)


def make_mapping(mikan_subject_id: int = 3310, **overrides) -> SubjectMapping:
    fields = {
        "mikan_subject_id": mikan_subject_id,
        "mikan_image_url": "https://mikanani.me/images/Bangumi/202309/poster.jpg",
        "bangumi_subject_id": 400602,
        "bangumi_subject_name": "葬送的芙莉莲",
        "bangumi_season_num": -1,
        "bangumi_image_url": "https://lain.bgm.tv/pic/cover/l/poster.jpg",
        "tmdb_series_id": 209867,
        "tmdb_series_name": "葬送的芙莉莲",
        "tmdb_season_num": 1,
        "tmdb_season_name": "第 1 季",
    }
    fields.update(overrides)
    return SubjectMapping(**fields)
