"""In-memory read model of the library and the watch-status refresh."""

import copy
import logging
import queue
import random
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field

from .bangumi_client import BangumiClient
from .database import Database
from .models import EpisodeCollection, LibraryItem, LibrarySeason, WatchStatus

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self, timeout: float | None = None) -> bool:
        with self._cond:
            if not self._cond.wait_for(
                lambda: not self._writer and not self._writers_waiting, timeout
            ):
                return False
            self._readers += 1
            return True

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @property
    def write_locked(self) -> bool:
        with self._cond:
            return self._writer

    @contextmanager
    def writing(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


def episode_sort_key(item: LibraryItem, season: LibrarySeason) -> str:
    """Bangumi sort index a library item corresponds to."""
    return str(
        item.display_episode_num
        - season.conf_episode_offset
        + season.conf_bangumi_episode_offset
    )


@dataclass
class EpisodeView:
    item: LibraryItem
    sort_key: str
    bangumi_sort: str = ""
    bangumi_name: str = ""
    bangumi_name_cn: str = ""
    bangumi_airdate: str = ""
    watch_status: WatchStatus = WatchStatus.NOT_COLLECTED


@dataclass
class SeasonView:
    season: LibrarySeason
    episodes: list[EpisodeView] = field(default_factory=list)


@dataclass
class SeriesView:
    series_name: str
    seasons: list[SeasonView] = field(default_factory=list)


def build_series(
    seasons: list[LibrarySeason], items: list[LibraryItem]
) -> list[SeriesView]:
    """Group seasons by series name; order series by name, seasons by number
    and episodes by display number."""
    items_by_season: dict[tuple[int, int], list[LibraryItem]] = {}
    for item in items:
        items_by_season.setdefault(
            (item.mikan_subject_id, item.mikan_subgroup_id), []
        ).append(item)

    series_by_name: dict[str, SeriesView] = {}
    for season in seasons:
        season_items = sorted(
            items_by_season.get(season.key, []),
            key=lambda item: (item.display_episode_num, item.release_id),
        )
        view = SeasonView(
            season=season,
            episodes=[
                EpisodeView(item=item, sort_key=episode_sort_key(item, season))
                for item in season_items
            ],
        )
        series_by_name.setdefault(
            season.series_name, SeriesView(series_name=season.series_name)
        ).seasons.append(view)

    result = sorted(series_by_name.values(), key=lambda series: series.series_name)
    for series in result:
        series.seasons.sort(key=lambda view: (view.season.season_num, view.season.key))
    return result


class LibrarySnapshot:
    """The library as shown to readers.

    Readers never wait on an update: while the write lock is held, read()
    returns None and callers show an "updating" state.
    """

    def __init__(self):
        self.lock = ReadWriteLock()
        self._series: list[SeriesView] = []

    def read(self, timeout: float = 0.0) -> list[SeriesView] | None:
        if not self.lock.acquire_read(timeout):
            return None
        try:
            return copy.deepcopy(self._series)
        finally:
            self.lock.release_read()

    @property
    def updating(self) -> bool:
        return self.lock.write_locked

    def subject_ids(self) -> list[int]:
        """Distinct Bangumi subject ids in the library, in display order."""
        self.lock.acquire_read()
        try:
            ids = []
            for series in self._series:
                for view in series.seasons:
                    subject_id = view.season.bangumi_subject_id
                    if subject_id > 0 and subject_id not in ids:
                        ids.append(subject_id)
            return ids
        finally:
            self.lock.release_read()

    def rebuild(self, db: Database) -> None:
        """Reload from the database; the write lock is only held for the swap."""
        series = build_series(db.get_seasons(), db.get_all_items())
        with self.lock.writing():
            self._carry_over_watch_status(series)
            self._series = series
        logger.info(f"Library snapshot rebuilt with {len(series)} series")

    def _carry_over_watch_status(self, series: list[SeriesView]) -> None:
        previous = {
            episode.item.release_id: episode
            for old in self._series
            for view in old.seasons
            for episode in view.episodes
        }
        for new in series:
            for view in new.seasons:
                for episode in view.episodes:
                    old_episode = previous.get(episode.item.release_id)
                    if old_episode is not None and old_episode.sort_key == episode.sort_key:
                        episode.bangumi_sort = old_episode.bangumi_sort
                        episode.bangumi_name = old_episode.bangumi_name
                        episode.bangumi_name_cn = old_episode.bangumi_name_cn
                        episode.bangumi_airdate = old_episode.bangumi_airdate
                        episode.watch_status = old_episode.watch_status

    def apply_watch_status(
        self, subject_id: int, collections: list[EpisodeCollection]
    ) -> int:
        """Write one subject's watch status onto matching episodes.

        Returns the number of episodes updated.
        """
        by_sort = {collection.sort: collection for collection in collections}
        updated = 0
        with self.lock.writing():
            for series in self._series:
                for view in series.seasons:
                    if view.season.bangumi_subject_id != subject_id:
                        continue
                    for episode in view.episodes:
                        collection = by_sort.get(episode.sort_key)
                        if collection is None:
                            continue
                        episode.bangumi_sort = collection.sort
                        episode.bangumi_name = collection.name
                        episode.bangumi_name_cn = collection.name_cn
                        episode.bangumi_airdate = collection.airdate
                        episode.watch_status = collection.status
                        updated += 1
        return updated


class WatchStatusRefresher:
    """Fetches Bangumi watch status for every subject in the snapshot.

    One task per subject, each delayed by a random jitter. Results are applied
    one subject at a time as they arrive.
    """

    def __init__(
        self,
        bangumi: BangumiClient,
        snapshot: LibrarySnapshot,
        jitter_seconds: float = 1.0,
        max_workers: int = 8,
        sleep: Callable[[float], None] = time.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
    ):
        self.bangumi = bangumi
        self.snapshot = snapshot
        self.jitter_seconds = jitter_seconds
        self.max_workers = max_workers
        self.sleep = sleep
        self.uniform = uniform

    def _fetch(self, subject_id: int, results: queue.Queue) -> None:
        collections = None
        try:
            self.sleep(self.uniform(0, self.jitter_seconds))
            collections = self.bangumi.get_episode_collection(subject_id)
        except Exception as e:
            logger.warning(f"Failed to fetch watch status for subject {subject_id}: {e}")
        finally:
            results.put((subject_id, collections))

    def refresh(self) -> int:
        """Returns the number of subjects whose status was applied."""
        subject_ids = self.snapshot.subject_ids()
        if not subject_ids:
            return 0

        results: queue.Queue = queue.Queue()
        applied = 0
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for subject_id in subject_ids:
                executor.submit(self._fetch, subject_id, results)
            for _ in subject_ids:
                subject_id, collections = results.get()
                if collections is None:
                    continue
                updated = self.snapshot.apply_watch_status(subject_id, collections)
                logger.debug(f"Applied watch status to {updated} episodes of {subject_id}")
                applied += 1

        logger.info(f"Watch status refreshed for {applied}/{len(subject_ids)} subjects")
        return applied
