"""Pick one language/codec pair per season and prune the rest."""

import logging

from .library import LibraryReconciler
from .models import LibraryItem
from .title_parser import split_tags

logger = logging.getLogger(__name__)


def score_pair(language: str, codec: str) -> int:
    """hans 8, else hant 4, else jpn 2; plus 1 for avc."""
    languages = split_tags(language)
    codecs = split_tags(codec)
    score = 0
    if "hans" in languages:
        score += 8
    elif "hant" in languages:
        score += 4
    elif "jpn" in languages:
        score += 2
    if "avc" in codecs:
        score += 1
    return score


def choose_config(items: list[LibraryItem]) -> tuple[str, str] | None:
    """Best-scoring (language, codec) pair observed among items.

    Ties go to the alphabetically first pair. None when there are no items.
    """
    pairs = {(item.language, item.codec) for item in items}
    if not pairs:
        return None
    return min(pairs, key=lambda pair: (-score_pair(*pair), pair[0], pair[1]))


def auto_config_clean(reconciler: LibraryReconciler) -> int:
    """Configure every season with its best observed pair and prune items.

    Returns the number of seasons whose configuration changed.
    """
    changed = 0
    for season in reconciler.db.get_seasons():
        items = reconciler.db.get_season_items(
            season.mikan_subject_id, season.mikan_subgroup_id
        )
        best = choose_config(items)
        if best is None:
            continue

        language, codec = best
        if (season.conf_language, season.conf_codec) != (language, codec):
            logger.info(
                f"Auto-configuring {season.series_name} ({season.subgroup_name}): "
                f"language={language!r} codec={codec!r}"
            )
            changed += 1
        reconciler.apply_season_config(
            season.model_copy(update={"conf_language": language, "conf_codec": codec})
        )
    return changed
