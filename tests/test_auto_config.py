import pytest

from mikanlib.auto_config import auto_config_clean, choose_config, score_pair
from mikanlib.models import LibraryItem, LibrarySeason

from conftest import make_release


def make_item(release_id: str, language: str, codec: str) -> LibraryItem:
    return LibraryItem(
        release_id=release_id,
        mikan_subject_id=1,
        mikan_subgroup_id=2,
        title=release_id,
        language=language,
        codec=codec,
    )


@pytest.mark.parametrize(
    "language,codec,expected",
    [
        ("hans", "avc", 9),
        ("hans,hant", "hevc", 8),
        ("hant", "avc", 5),
        ("hant,jpn", "hevc", 4),
        ("jpn", "avc", 3),
        ("", "avc", 1),
        ("", "", 0),
    ],
)
def test_score_pair(language, codec, expected):
    assert score_pair(language, codec) == expected


def test_choose_config_prefers_highest_score():
    items = [
        make_item("a", "hant", "hevc"),
        make_item("b", "hans", "avc"),
        make_item("c", "hans", "hevc"),
    ]
    assert choose_config(items) == ("hans", "avc")


def test_choose_config_tie_goes_to_first_pair_alphabetically():
    items = [
        make_item("a", "hans,jpn", "hevc"),
        make_item("b", "hans", "hevc"),
        make_item("c", "hans", "vp9"),
    ]
    assert choose_config(items) == ("hans", "hevc")


def test_choose_config_empty():
    assert choose_config([]) is None


def test_auto_config_clean_prunes_to_best_pair(reconciler):
    """Three hans/avc releases beat one hant/hevc release, which is deleted."""
    reconciler.reconcile(
        [
            make_release("e1", episode_num=1, language="hans", codec="avc"),
            make_release("e2", episode_num=2, language="hans", codec="avc"),
            make_release("e3", episode_num=3, language="hans", codec="avc"),
            make_release("e3-hevc", episode_num=3, language="hant", codec="hevc"),
        ]
    )

    changed = auto_config_clean(reconciler)

    assert changed == 1
    season = reconciler.db.get_season(3310, 370)
    assert (season.conf_language, season.conf_codec) == ("hans", "avc")
    items = reconciler.db.get_season_items(3310, 370)
    assert [i.release_id for i in items] == ["e1", "e2", "e3"]


def test_auto_config_clean_is_stable(reconciler):
    reconciler.reconcile([make_release("e1", language="hans", codec="avc")])

    assert auto_config_clean(reconciler) == 1
    assert auto_config_clean(reconciler) == 0


def test_auto_config_clean_skips_empty_seasons(reconciler):
    reconciler.db.upsert_season(LibrarySeason(mikan_subject_id=9, mikan_subgroup_id=9))

    assert auto_config_clean(reconciler) == 0
    assert reconciler.db.get_season(9, 9).conf_language == ""


def test_auto_config_clean_prunes_overlapping_tag_sets(reconciler):
    """A release whose tags merely include the chosen pair is still pruned."""
    reconciler.reconcile(
        [
            make_release("a3", episode_num=3, language="hans", codec="avc"),
            make_release("b3", episode_num=3, language="hans,jpn", codec="avc"),
        ]
    )

    auto_config_clean(reconciler)

    season = reconciler.db.get_season(3310, 370)
    assert (season.conf_language, season.conf_codec) == ("hans", "avc")
    items = reconciler.db.get_season_items(3310, 370)
    assert [(i.release_id, i.display_episode_num) for i in items] == [("a3", 3)]
