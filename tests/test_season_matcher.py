import pytest

from mikanlib.season_matcher import (
    forward_match_length,
    match_season,
    normalize_season_text,
    parse_season_number_from_aliases,
    replace_cjk_numerals,
    season_names_from_details,
)


@pytest.mark.parametrize(
    "aliases,expected",
    [
        (["Sousou no Frieren Season 2"], 2),
        (["Mushoku Tensei SEASON2"], 2),
        (["进击的巨人 第3季"], 3),
        (["某科学的超电磁炮 第2期"], 2),
        (["Show S02"], 2),
        (["进击的巨人 第三季"], 3),
        (["某动画 第十二季"], 12),
        (["某动画 第二十期"], 20),
        (["葬送的芙莉莲", "Mobile Suit"], -1),
        ([], -1),
    ],
)
def test_parse_season_number_from_aliases(aliases, expected):
    assert parse_season_number_from_aliases(aliases) == expected


def test_numeric_rules_beat_spelled_numerals():
    assert parse_season_number_from_aliases(["第二季", "Season 4"]) == 4


def test_replace_cjk_numerals():
    assert replace_cjk_numerals("第三季") == "第3季"
    assert replace_cjk_numerals("第十一季") == "第11季"
    assert replace_cjk_numerals("第二十季") == "第20季"
    assert replace_cjk_numerals("第十季") == "第10季"


def test_normalize_season_text():
    assert normalize_season_text("第 2 季") == "第2季"
    assert normalize_season_text("シーズン 3") == "第3シーズン"
    assert normalize_season_text("シーズン3") == "第3シーズン"
    assert normalize_season_text("Season 1") == "Season 1"


def test_forward_match_length():
    assert forward_match_length("第2季", "第2季") == 3
    assert forward_match_length("xabc", "abc") == 3
    # Only the alias pointer skips on a mismatch
    assert forward_match_length("abc", "xbc") == 0
    assert forward_match_length("", "abc") == 0


def test_season_names_from_details():
    details = {
        "ja": {
            "name": "葬送のフリーレン",
            "seasons": [
                {"season_number": 0, "name": "特別編"},
                {"season_number": 1, "name": "シーズン1"},
            ],
        },
        "zh-CN": {"seasons": [{"season_number": 1, "name": "第 1 季"}]},
        "en-US": {},
    }
    assert season_names_from_details(details) == {
        0: {"ja": "特別編"},
        1: {"ja": "シーズン1", "zh-CN": "第 1 季"},
    }


def test_match_season_picks_best_alias_match():
    season_names = {
        1: {"zh-CN": "第 1 季", "ja": "シーズン1", "en-US": "Season 1"},
        2: {"zh-CN": "第 2 季", "ja": "シーズン2", "en-US": "Season 2"},
    }
    match = match_season(season_names, ["进击的巨人 第二季"])

    assert match.season_num == 2
    assert match.season_name == "第 2 季"
    assert match.score == 3


def test_match_season_empty_inputs_fall_back_to_season_one():
    """No aliases and no season names is not an error."""
    match = match_season({}, [])

    assert match.season_num == 1
    assert match.season_name == ""


def test_match_season_zero_score_uses_season_one_name():
    season_names = {1: {"zh-CN": "第 1 季"}, 2: {"zh-CN": "第 2 季"}}
    match = match_season(season_names, ["Frieren"])

    assert match.season_num == 1
    assert match.season_name == "第 1 季"


def test_match_season_zero_score_without_season_one_uses_series_name():
    match = match_season({2: {"zh-CN": "第 2 季"}}, ["Frieren"], series_name="葬送的芙莉莲")

    assert match.season_num == 1
    assert match.season_name == "葬送的芙莉莲"


def test_match_season_ties_go_to_lowest_season():
    match = match_season({2: {"zh-CN": "A"}, 1: {"zh-CN": "A"}}, ["A"])

    assert match.season_num == 1
