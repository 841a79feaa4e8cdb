"""Best-effort facade over the resolution cache tables.

A failing store never aborts the caller: reads degrade to "nothing cached"
and writes are logged and dropped.
"""

import logging
from collections.abc import Iterable

from .database import Database
from .errors import CacheError
from .models import BangumiEpisode, ResolvedRelease, SubjectMapping

logger = logging.getLogger(__name__)


class CacheStore:
    def __init__(self, db: Database):
        self.db = db

    def exists(self, release_id: str) -> bool:
        try:
            return self.db.release_exists(release_id)
        except CacheError as e:
            logger.warning(f"Cache read failed for release {release_id}: {e}")
            return False

    def upsert_release(self, release: ResolvedRelease) -> None:
        try:
            self.db.upsert_release(release)
        except CacheError as e:
            logger.error(f"Cache write failed for release {release.release_id}: {e}")

    def fetch_releases(self, release_ids: Iterable[str]) -> list[ResolvedRelease]:
        release_ids = list(release_ids)
        try:
            return self.db.get_releases(release_ids)
        except CacheError as e:
            logger.warning(f"Cache read failed for {len(release_ids)} releases: {e}")
            return []

    def get_subject_mapping(self, mikan_subject_id: int) -> SubjectMapping | None:
        try:
            return self.db.get_subject(mikan_subject_id)
        except CacheError as e:
            logger.warning(f"Cache read failed for subject {mikan_subject_id}: {e}")
            return None

    def upsert_subject_mapping(self, mapping: SubjectMapping) -> None:
        try:
            self.db.upsert_subject(mapping)
        except CacheError as e:
            logger.error(
                f"Cache write failed for subject {mapping.mikan_subject_id}: {e}"
            )

    def replace_episodes(
        self, bangumi_subject_id: int, episodes: list[BangumiEpisode]
    ) -> None:
        try:
            self.db.replace_episodes(bangumi_subject_id, episodes)
        except CacheError as e:
            logger.error(
                f"Cache write failed for episodes of subject {bangumi_subject_id}: {e}"
            )

    def get_episodes(self, bangumi_subject_id: int) -> list[BangumiEpisode]:
        try:
            return self.db.get_episodes(bangumi_subject_id)
        except CacheError as e:
            logger.warning(
                f"Cache read failed for episodes of subject {bangumi_subject_id}: {e}"
            )
            return []

    def invalidate_release(self, release_id: str) -> None:
        """Forget a release so the next ingest resolves it again."""
        try:
            self.db.delete_release(release_id)
            logger.info(f"Invalidated cached release {release_id}")
        except CacheError as e:
            logger.error(f"Failed to invalidate release {release_id}: {e}")

    def invalidate_subject(self, mikan_subject_id: int) -> None:
        """Forget a subject mapping so the next resolution rebuilds it."""
        try:
            self.db.delete_subject(mikan_subject_id)
            logger.info(f"Invalidated cached subject {mikan_subject_id}")
        except CacheError as e:
            logger.error(f"Failed to invalidate subject {mikan_subject_id}: {e}")
