from unittest.mock import patch

import pytest

from mikanlib.config import Settings
from mikanlib.main import build_parser, main
from mikanlib.overrides import SeasonOverride


@pytest.fixture
def fresh_settings():
    with patch("mikanlib.main.settings", Settings()) as patched:
        yield patched


def test_parser_override_arguments(fresh_settings):
    args = build_parser().parse_args(
        ["override", "3141", "370", "--season", "2", "--episode-offset", "-12"]
    )

    assert args.command == "override"
    assert (args.subject_id, args.subgroup_id) == (3141, 370)
    assert args.season == 2
    assert args.episode_offset == -12
    assert args.bangumi_episode_offset == 0


def test_parser_defaults_to_daemon(fresh_settings):
    args = build_parser().parse_args(["--rss-url", "a", "--rss-url", "b"])

    assert args.command is None
    assert args.rss_urls == ["a", "b"]
    assert args.db_path == "mikanlib.db"


def test_main_applies_cli_overrides(fresh_settings):
    with patch("mikanlib.main.LibraryService") as mock_service:
        with pytest.raises(SystemExit) as exc_info:
            main(["--db-path", "test.db", "--rss-url", "https://mikanani.me/RSS/x", "update"])

    assert exc_info.value.code == 0
    assert fresh_settings.db_path == "test.db"
    assert fresh_settings.rss_urls == ["https://mikanani.me/RSS/x"]
    mock_service.assert_called_once_with(fresh_settings)
    mock_service.return_value.update.assert_called_once()
    mock_service.return_value.close.assert_called_once()


def test_main_override_command(fresh_settings):
    with patch("mikanlib.main.LibraryService") as mock_service:
        with pytest.raises(SystemExit):
            main(["override", "3141", "370", "--episode-offset", "5"])

    mock_service.return_value.apply_override.assert_called_once_with(
        SeasonOverride(
            mikan_subject_id=3141,
            mikan_subgroup_id=370,
            override_season_num=False,
            season_num=1,
            episode_offset=5,
            bangumi_episode_offset=0,
        )
    )


def test_main_invalidate_command(fresh_settings):
    with patch("mikanlib.main.LibraryService") as mock_service:
        with pytest.raises(SystemExit):
            main(["invalidate", "--release", "r1", "--subject", "3141"])

    cache = mock_service.return_value.cache
    cache.invalidate_release.assert_called_once_with("r1")
    cache.invalidate_subject.assert_called_once_with(3141)


def test_main_fatal_error_exits_nonzero(fresh_settings):
    with patch("mikanlib.main.LibraryService") as mock_service:
        mock_service.return_value.update.side_effect = RuntimeError("boom")
        with pytest.raises(SystemExit) as exc_info:
            main(["update"])

    assert exc_info.value.code == 1
