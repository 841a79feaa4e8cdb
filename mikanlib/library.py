"""Merge resolved releases into per-subgroup library seasons."""

import logging
from dataclasses import dataclass
from typing import Any, NamedTuple

from .cache import CacheStore
from .database import Database
from .models import LibraryItem, LibrarySeason, ResolvedRelease, SubjectMapping
from .title_parser import split_tags

logger = logging.getLogger(__name__)

DEFAULT_SEASON_NUM = 1
MISSING_VALUES = (None, "", -1)


class Candidate(NamedTuple):
    source: str
    value: Any


def first_present(candidates: list[Candidate]) -> Candidate:
    """First candidate whose value is not missing (None, "" or -1).

    The last candidate is returned when all are missing.
    """
    for candidate in candidates:
        if candidate.value not in MISSING_VALUES:
            return candidate
    return candidates[-1]


def series_name_candidates(season: LibrarySeason) -> list[Candidate]:
    return [
        Candidate("tmdb", season.tmdb_series_name),
        Candidate("bangumi", season.bangumi_subject_name),
        Candidate("mikan", season.subject_title),
    ]


def season_num_candidates(season: LibrarySeason) -> list[Candidate]:
    return [
        Candidate("override", season.conf_season_num),
        Candidate("tmdb", season.tmdb_season_num),
        Candidate("bangumi", season.bangumi_season_num),
        Candidate("default", DEFAULT_SEASON_NUM),
    ]


def season_name_candidates(season: LibrarySeason, season_num: int) -> list[Candidate]:
    # A TMDB season name only describes the season TMDB matched
    tmdb_name = season.tmdb_season_name if season_num == season.tmdb_season_num else ""
    return [
        Candidate("tmdb", tmdb_name),
        Candidate("synthesized", f"Season {season_num}"),
    ]


def thumbnail_candidates(mapping: SubjectMapping) -> list[Candidate]:
    return [
        Candidate("mikan", mapping.mikan_image_url),
        Candidate("bangumi", mapping.bangumi_image_url),
    ]


def with_display_fields(season: LibrarySeason) -> LibrarySeason:
    """Recompute the denormalized series/season names and season number."""
    season_num = first_present(season_num_candidates(season)).value
    return season.model_copy(
        update={
            "series_name": first_present(series_name_candidates(season)).value,
            "season_num": season_num,
            "season_name": first_present(
                season_name_candidates(season, season_num)
            ).value,
        }
    )


def passes_filter(item_tags: str, filter_tags: str) -> bool:
    """An empty filter passes everything; otherwise the item's tag set must equal
    the filter's, so a season keeps a single language/codec combination."""
    wanted = split_tags(filter_tags)
    return not wanted or wanted == split_tags(item_tags)


def item_passes(season: LibrarySeason, language: str, codec: str) -> bool:
    return passes_filter(language, season.conf_language) and passes_filter(
        codec, season.conf_codec
    )


@dataclass
class ReconcileStats:
    seasons_created: int = 0
    items_upserted: int = 0
    items_filtered: int = 0


class LibraryReconciler:
    """Applies resolved releases to the library tables."""

    def __init__(self, db: Database, cache: CacheStore):
        self.db = db
        self.cache = cache

    def build_season(
        self, release: ResolvedRelease, mapping: SubjectMapping | None
    ) -> LibrarySeason:
        """New season for the release's subject/subgroup pair, unconfigured."""
        if mapping is None:
            logger.warning(
                f"No subject mapping cached for Mikan subject {release.mikan_subject_id}, "
                f"using feed title {release.subject_title!r}"
            )
            mapping = SubjectMapping(mikan_subject_id=release.mikan_subject_id)

        season = LibrarySeason(
            mikan_subject_id=release.mikan_subject_id,
            mikan_subgroup_id=release.mikan_subgroup_id,
            subject_title=release.subject_title,
            subgroup_name=release.subgroup_name,
            image_url=first_present(thumbnail_candidates(mapping)).value,
            bangumi_subject_id=mapping.bangumi_subject_id,
            bangumi_subject_name=mapping.bangumi_subject_name,
            bangumi_season_num=mapping.bangumi_season_num,
            tmdb_series_id=mapping.tmdb_series_id,
            tmdb_series_name=mapping.tmdb_series_name,
            tmdb_season_num=mapping.tmdb_season_num,
            tmdb_season_name=mapping.tmdb_season_name,
            bangumi_to_tmdb_episode_offset=mapping.bangumi_to_tmdb_episode_offset,
        )
        return with_display_fields(season)

    def build_item(self, release: ResolvedRelease, season: LibrarySeason) -> LibraryItem:
        return LibraryItem(
            release_id=release.release_id,
            mikan_subject_id=release.mikan_subject_id,
            mikan_subgroup_id=release.mikan_subgroup_id,
            title=release.title,
            pub_date=release.pub_date,
            magnet_link=release.magnet_link,
            episode_num=release.episode_num,
            display_episode_num=release.episode_num + season.conf_episode_offset,
            language=release.language,
            codec=release.codec,
            bangumi_episode_id=release.bangumi_episode_id,
        )

    def reconcile(self, releases: list[ResolvedRelease]) -> ReconcileStats:
        """Place each release into its season, creating seasons on first sight.

        Safe to repeat: the same release always yields the same item row.
        """
        stats = ReconcileStats()
        for release in releases:
            if release.mikan_subject_id < 0 or release.mikan_subgroup_id < 0:
                logger.warning(f"Release {release.release_id} has no subject, skipping")
                continue
            season = self.db.get_season(release.mikan_subject_id, release.mikan_subgroup_id)
            if season is None:
                mapping = self.cache.get_subject_mapping(release.mikan_subject_id)
                season = self.build_season(release, mapping)
                self.db.upsert_season(season)
                stats.seasons_created += 1
                logger.info(
                    f"Created season {season.series_name} / {season.season_name} "
                    f"({season.subgroup_name})"
                )
            elif not item_passes(season, release.language, release.codec):
                logger.debug(f"Release {release.release_id} filtered out of {season.key}")
                stats.items_filtered += 1
                continue

            self.db.upsert_item(self.build_item(release, season))
            stats.items_upserted += 1

        logger.info(
            f"Reconciled {len(releases)} releases: {stats.items_upserted} items, "
            f"{stats.seasons_created} new seasons, {stats.items_filtered} filtered"
        )
        return stats

    def apply_season_config(self, season: LibrarySeason) -> list[LibraryItem]:
        """Store the season's configuration and bring its items in line.

        Items failing the filters are deleted and every remaining display
        number is recomputed. Returns the surviving items.
        """
        items = self.db.get_season_items(season.mikan_subject_id, season.mikan_subgroup_id)
        rejected = [
            item.release_id
            for item in items
            if not item_passes(season, item.language, item.codec)
        ]
        self.db.apply_season_config(season, rejected)
        if rejected:
            logger.info(f"Pruned {len(rejected)} items from season {season.key}")
        return self.db.get_season_items(season.mikan_subject_id, season.mikan_subgroup_id)
