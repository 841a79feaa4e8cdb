"""Pure helpers extracting episode number, language and codec from release titles."""

import re

UNKNOWN_EPISODE = -1

# Order matters: the first rule whose capture is an integer wins.
EPISODE_RULES = [
    # "Name - 03", "Name - 03v2", "Name - 12 END"
    re.compile(
        r"(.*) - (\d{1,4}(?!\d|p)|\d{1,4}\.\d{1,2}(?!\d|p))(?:v\d{1,2})?(?: )?(?:END)?(.*)"
    ),
    # "[03]", " E03 "
    re.compile(
        r"(.*)[\[ E](\d{1,4}|\d{1,4}\.\d{1,2})(?:v\d{1,2})?(?: )?(?:END)?[\] ](.*)"
    ),
    # "[第03话]", "[03集]"
    re.compile(r"(.*)\[(?:第)?(\d*\.*\d*)[话集話](?:END)?\](.*)"),
    # "第03话"
    re.compile(r"(.*?)第?(\d+\.?\d*)[话話集](?:END)?(.*)"),
    # "S01EP03", "EP03"
    re.compile(r"(.*)(?:S\d{2})?EP?(\d+)(.*)"),
]

LANGUAGE_MARKERS = [
    ("hans", ["CHS", "chs", "GB", "gb", "简"]),
    ("hant", ["CHT", "cht", "BIG5", "big5", "繁"]),
    ("jpn", ["JP", "中日", "汉日", "简日", "繁日", "双语"]),
]

CODEC_MARKERS = [
    ("avc", ["AVC", "avc", "264", "MP4", "mp4"]),
    ("hevc", ["HEVC", "hevc", "265", "MKV", "mkv"]),
    ("vp9", ["VP9", "vp9"]),
    ("av1", ["AV1", "av1"]),
]

BUNDLE_PATTERN = re.compile(r"\d+-\d")


def parse_episode(title: str) -> int:
    """Return the episode number of a release title, or -1 if none is found."""
    for rule in EPISODE_RULES:
        match = rule.search(title)
        if not match:
            continue
        try:
            return int(match.group(2))
        except ValueError:
            continue
    return UNKNOWN_EPISODE


def _tags_present(title: str, markers: list[tuple[str, list[str]]]) -> str:
    return ",".join(
        tag for tag, needles in markers if any(needle in title for needle in needles)
    )


def parse_language(title: str) -> str:
    """Comma-joined language tags (hans, hant, jpn) whose markers occur in the title."""
    return _tags_present(title, LANGUAGE_MARKERS)


def parse_codec(title: str) -> str:
    """Comma-joined codec tags (avc, hevc, vp9, av1) whose markers occur in the title."""
    return _tags_present(title, CODEC_MARKERS)


def split_tags(tags: str) -> frozenset[str]:
    return frozenset(tag for tag in tags.split(",") if tag)


def is_bundle(title: str) -> bool:
    """Titles like "01-12" announce multi-episode or multi-season packs."""
    return BUNDLE_PATTERN.search(title) is not None
