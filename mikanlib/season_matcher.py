"""Season number parsing from aliases and season-name matching against TMDB."""

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

UNKNOWN_SEASON = -1

# Compounds first so that "二十" never becomes "210" and "十一" never "101".
CJK_NUMERALS = [
    ("二十", "20"),
    ("十一", "11"),
    ("十二", "12"),
    ("十三", "13"),
    ("十四", "14"),
    ("十五", "15"),
    ("十六", "16"),
    ("十七", "17"),
    ("十八", "18"),
    ("十九", "19"),
    ("十", "10"),
    ("一", "1"),
    ("二", "2"),
    ("三", "3"),
    ("四", "4"),
    ("五", "5"),
    ("六", "6"),
    ("七", "7"),
    ("八", "8"),
    ("九", "9"),
]

SEASON_NUMBER_RULES = [
    re.compile(r"season (\d+)"),
    re.compile(r"season(\d+)"),
    re.compile(r"第(\d+)季"),
    re.compile(r"第(\d+)期"),
    re.compile(r"(?<![a-z])s(\d{1,2})(?!\d)"),
]

SPELLED_SEASONS = [
    "一",
    "二",
    "三",
    "四",
    "五",
    "六",
    "七",
    "八",
    "九",
    "十",
    "十一",
    "十二",
    "十三",
    "十四",
    "十五",
    "十六",
    "十七",
    "十八",
    "十九",
    "二十",
]

SPACED_SEASON_PATTERN = re.compile(r"第 ?(\d+) ?季")
KATAKANA_SEASON_PATTERN = re.compile(r"シーズン ?(\d+)")


def parse_season_number_from_aliases(aliases: list[str]) -> int:
    """Derive a season number from subject aliases, or -1 if none says.

    Numeric rules are tried first across all aliases ("Season 2", "S02",
    "第2季", "第2期"), then spelled-out CJK numerals 1-20.
    """
    lowered = [alias.lower() for alias in aliases]
    for rule in SEASON_NUMBER_RULES:
        for alias in lowered:
            match = rule.search(alias)
            if match:
                return int(match.group(1))

    # Longest spellings first so 第十二季 is not read as 第十季 or 第二季
    spelled = sorted(enumerate(SPELLED_SEASONS, start=1), key=lambda x: -len(x[1]))
    for number, numeral in spelled:
        for suffix in ("季", "期"):
            if any(f"第{numeral}{suffix}" in alias for alias in lowered):
                return number
    return UNKNOWN_SEASON


def replace_cjk_numerals(text: str) -> str:
    for numeral, digits in CJK_NUMERALS:
        text = text.replace(numeral, digits)
    return text


def normalize_season_text(text: str) -> str:
    """Collapse "第 N 季" to "第N季" and "シーズン N" to "第Nシーズン"."""
    text = SPACED_SEASON_PATTERN.sub(r"第\1季", text)
    return KATAKANA_SEASON_PATTERN.sub(r"第\1シーズン", text)


def forward_match_length(alias: str, season_name: str) -> int:
    """Single forward pass: both pointers advance on a match, only the alias
    pointer on a mismatch."""
    i = j = matched = 0
    while i < len(alias) and j < len(season_name):
        if alias[i] == season_name[j]:
            matched += 1
            j += 1
        i += 1
    return matched


def season_names_from_details(details: dict[str, dict]) -> dict[int, dict[str, str]]:
    """Build {season_number: {language: season_name}} from per-language TMDB details."""
    names: dict[int, dict[str, str]] = {}
    for language, payload in details.items():
        for season in payload.get("seasons") or []:
            number = season.get("season_number")
            name = season.get("name")
            if not isinstance(number, int) or not isinstance(name, str):
                continue
            names.setdefault(number, {})[language] = name
    return names


@dataclass
class SeasonMatch:
    season_num: int
    season_name: str
    score: int


def match_season(
    season_names: dict[int, dict[str, str]],
    aliases: list[str],
    primary_language: str = "zh-CN",
    series_name: str = "",
) -> SeasonMatch:
    """Pick the season whose localized name best matches any alias.

    Candidates are visited by ascending season number, then language, then
    alias order; only a strictly higher score replaces the best so far. With
    no positive score the result is season 1, named by its primary-locale
    name, else series_name, else "".
    """
    normalized_aliases = [
        normalize_season_text(replace_cjk_numerals(alias)) for alias in aliases
    ]

    best = SeasonMatch(season_num=1, season_name="", score=-1)
    for season_num in sorted(season_names):
        localized = season_names[season_num]
        primary_name = localized.get(primary_language, "")
        for language in sorted(localized):
            season_name = normalize_season_text(localized[language])
            for alias in normalized_aliases:
                score = forward_match_length(alias, season_name)
                if score > best.score:
                    best = SeasonMatch(season_num, primary_name, score)
                    logger.debug(
                        f"Season match improved: season {season_num} "
                        f"({language} {season_name!r}) vs {alias!r} = {score}"
                    )

    if best.score <= 0:
        fallback_name = season_names.get(1, {}).get(primary_language, "") or series_name
        logger.debug(f"No season matched, falling back to season 1: {fallback_name!r}")
        return SeasonMatch(season_num=1, season_name=fallback_name, score=max(best.score, 0))

    return best
