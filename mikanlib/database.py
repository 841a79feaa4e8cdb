import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager

from whenever import Instant

from .errors import CacheError
from .models import (
    BangumiEpisode,
    EpisodeType,
    LibraryItem,
    LibrarySeason,
    ResolvedRelease,
    SubjectMapping,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_release (
    release_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    pub_date TEXT,
    mikan_subject_id INTEGER,
    mikan_subgroup_id INTEGER,
    episode_num INTEGER,
    language TEXT,
    codec TEXT,
    magnet_link TEXT,
    subject_title TEXT,
    subgroup_name TEXT,
    episode_title TEXT,
    bangumi_subject_id INTEGER,
    bangumi_episode_id INTEGER,
    resolved_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS cache_subject (
    mikan_subject_id INTEGER PRIMARY KEY,
    mikan_image_url TEXT,
    bangumi_subject_id INTEGER,
    bangumi_subject_name TEXT,
    bangumi_season_num INTEGER,
    bangumi_image_url TEXT,
    tmdb_series_id INTEGER,
    tmdb_series_name TEXT,
    tmdb_season_num INTEGER,
    tmdb_season_name TEXT,
    bangumi_to_tmdb_episode_offset INTEGER DEFAULT 0,
    resolved_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS cache_episode (
    subject_id INTEGER NOT NULL,
    episode_id INTEGER NOT NULL,
    type INTEGER,
    ep INTEGER,
    sort TEXT,
    name TEXT,
    name_cn TEXT,
    airdate TEXT,
    PRIMARY KEY (subject_id, episode_id)
);

CREATE TABLE IF NOT EXISTS library_season (
    mikan_subject_id INTEGER NOT NULL,
    mikan_subgroup_id INTEGER NOT NULL,
    subject_title TEXT,
    subgroup_name TEXT,
    image_url TEXT,
    bangumi_subject_id INTEGER,
    bangumi_subject_name TEXT,
    bangumi_season_num INTEGER,
    tmdb_series_id INTEGER,
    tmdb_series_name TEXT,
    tmdb_season_num INTEGER,
    tmdb_season_name TEXT,
    bangumi_to_tmdb_episode_offset INTEGER DEFAULT 0,
    series_name TEXT,
    season_name TEXT,
    season_num INTEGER,
    conf_language TEXT DEFAULT '',
    conf_codec TEXT DEFAULT '',
    conf_episode_offset INTEGER DEFAULT 0,
    conf_season_num INTEGER,
    conf_bangumi_episode_offset INTEGER DEFAULT 0,
    PRIMARY KEY (mikan_subject_id, mikan_subgroup_id)
);

CREATE TABLE IF NOT EXISTS library_item (
    release_id TEXT PRIMARY KEY,
    mikan_subject_id INTEGER NOT NULL,
    mikan_subgroup_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    pub_date TEXT,
    magnet_link TEXT,
    episode_num INTEGER,
    display_episode_num INTEGER,
    language TEXT,
    codec TEXT,
    bangumi_episode_id INTEGER,
    FOREIGN KEY (mikan_subject_id, mikan_subgroup_id)
        REFERENCES library_season(mikan_subject_id, mikan_subgroup_id)
);

CREATE INDEX IF NOT EXISTS idx_library_item_season
    ON library_item(mikan_subject_id, mikan_subgroup_id);
CREATE INDEX IF NOT EXISTS idx_cache_episode_subject ON cache_episode(subject_id);
"""

RELEASE_COLUMNS = [
    "release_id",
    "title",
    "pub_date",
    "mikan_subject_id",
    "mikan_subgroup_id",
    "episode_num",
    "language",
    "codec",
    "magnet_link",
    "subject_title",
    "subgroup_name",
    "episode_title",
    "bangumi_subject_id",
    "bangumi_episode_id",
    "resolved_at",
]

SUBJECT_COLUMNS = [
    "mikan_subject_id",
    "mikan_image_url",
    "bangumi_subject_id",
    "bangumi_subject_name",
    "bangumi_season_num",
    "bangumi_image_url",
    "tmdb_series_id",
    "tmdb_series_name",
    "tmdb_season_num",
    "tmdb_season_name",
    "bangumi_to_tmdb_episode_offset",
    "resolved_at",
]

SEASON_COLUMNS = list(LibrarySeason.model_fields)
ITEM_COLUMNS = list(LibraryItem.model_fields)


def _insert_sql(table: str, columns: list[str]) -> str:
    placeholders = ", ".join(f":{column}" for column in columns)
    return (
        f"INSERT OR REPLACE INTO {table} ({', '.join(columns)}) "
        f"VALUES ({placeholders})"
    )


class Database:
    def __init__(
        self,
        db_path: str = "mikanlib.db",
        now_func: Callable[[], Instant] = Instant.now,
    ):
        self.db_path = db_path
        self._memory_conn = None
        self.now_func = now_func
        self.init_db()

    def init_db(self) -> None:
        """Initialize the database with schema."""
        with self.get_conn() as conn:
            # Only enable WAL mode for file-based databases, not in-memory
            if self.db_path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")

            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def get_conn(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with row factory.

        Any sqlite3 error raised while the connection is in use surfaces as
        CacheError.
        """
        if self.db_path == ":memory:":
            # For in-memory databases, maintain a persistent connection
            if self._memory_conn is None:
                self._memory_conn = sqlite3.connect(
                    self.db_path,
                    detect_types=sqlite3.PARSE_DECLTYPES,
                    check_same_thread=False,
                )
                self._memory_conn.row_factory = sqlite3.Row
                self._register_adapters_converters(self._memory_conn)
            try:
                yield self._memory_conn
            except sqlite3.Error as e:
                try:
                    self._memory_conn.rollback()
                except sqlite3.Error:
                    logger.debug("Rollback after failed statement also failed")
                raise CacheError(str(e)) from e
        else:
            # For file databases, create new connections as needed
            try:
                conn = sqlite3.connect(
                    self.db_path, detect_types=sqlite3.PARSE_DECLTYPES
                )
            except sqlite3.Error as e:
                raise CacheError(str(e)) from e
            conn.row_factory = sqlite3.Row
            self._register_adapters_converters(conn)
            try:
                yield conn
            except sqlite3.Error as e:
                raise CacheError(str(e)) from e
            finally:
                conn.close()

    def _register_adapters_converters(self, conn: sqlite3.Connection) -> None:
        """Register adapters and converters for custom types."""

        def adapt_instant(instant: Instant) -> str:
            return instant.format_common_iso()

        def convert_instant(s: bytes) -> Instant:
            return Instant.parse_common_iso(s.decode())

        sqlite3.register_adapter(Instant, adapt_instant)
        sqlite3.register_converter("TIMESTAMP", convert_instant)

    # Release cache

    def release_exists(self, release_id: str) -> bool:
        """Check if a release has already been resolved."""
        with self.get_conn() as conn:
            cursor = conn.execute(
                "SELECT 1 FROM cache_release WHERE release_id = ?", (release_id,)
            )
            return cursor.fetchone() is not None

    def upsert_release(self, release: ResolvedRelease) -> None:
        row = release.model_dump(include=set(RELEASE_COLUMNS))
        if row["resolved_at"] is None:
            row["resolved_at"] = self.now_func()
        with self.get_conn() as conn:
            conn.execute(_insert_sql("cache_release", RELEASE_COLUMNS), row)
            conn.commit()

    def get_releases(self, release_ids: Iterable[str]) -> list[ResolvedRelease]:
        """Fetch cached releases, preserving the order of release_ids."""
        release_ids = list(release_ids)
        if not release_ids:
            return []
        placeholders = ", ".join("?" for _ in release_ids)
        with self.get_conn() as conn:
            cursor = conn.execute(
                f"SELECT * FROM cache_release WHERE release_id IN ({placeholders})",
                release_ids,
            )
            by_id = {row["release_id"]: ResolvedRelease(**dict(row)) for row in cursor}
        return [by_id[release_id] for release_id in release_ids if release_id in by_id]

    def delete_release(self, release_id: str) -> None:
        with self.get_conn() as conn:
            conn.execute("DELETE FROM cache_release WHERE release_id = ?", (release_id,))
            conn.commit()

    # Subject cache

    def get_subject(self, mikan_subject_id: int) -> SubjectMapping | None:
        with self.get_conn() as conn:
            cursor = conn.execute(
                "SELECT * FROM cache_subject WHERE mikan_subject_id = ?",
                (mikan_subject_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return SubjectMapping(**dict(row))

    def upsert_subject(self, mapping: SubjectMapping) -> None:
        row = mapping.model_dump(include=set(SUBJECT_COLUMNS))
        if row["resolved_at"] is None:
            row["resolved_at"] = self.now_func()
        with self.get_conn() as conn:
            conn.execute(_insert_sql("cache_subject", SUBJECT_COLUMNS), row)
            conn.commit()

    def delete_subject(self, mikan_subject_id: int) -> None:
        with self.get_conn() as conn:
            conn.execute(
                "DELETE FROM cache_subject WHERE mikan_subject_id = ?",
                (mikan_subject_id,),
            )
            conn.commit()

    # Episode cache

    def replace_episodes(
        self, subject_id: int, episodes: list[BangumiEpisode]
    ) -> None:
        """Replace the whole episode list of a subject in one transaction."""
        with self.get_conn() as conn:
            conn.execute("DELETE FROM cache_episode WHERE subject_id = ?", (subject_id,))
            conn.executemany(
                """
                INSERT OR REPLACE INTO cache_episode (
                    subject_id, episode_id, type, ep, sort, name, name_cn, airdate
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        subject_id,
                        episode.episode_id,
                        int(episode.type),
                        episode.ep,
                        episode.sort,
                        episode.name,
                        episode.name_cn,
                        episode.airdate,
                    )
                    for episode in episodes
                ],
            )
            conn.commit()

    def get_episodes(self, subject_id: int) -> list[BangumiEpisode]:
        with self.get_conn() as conn:
            cursor = conn.execute(
                "SELECT * FROM cache_episode WHERE subject_id = ? ORDER BY episode_id",
                (subject_id,),
            )
            return [
                BangumiEpisode(**{**dict(row), "type": EpisodeType.from_code(row["type"])})
                for row in cursor.fetchall()
            ]

    # Library

    def get_season(
        self, mikan_subject_id: int, mikan_subgroup_id: int
    ) -> LibrarySeason | None:
        with self.get_conn() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM library_season
                WHERE mikan_subject_id = ? AND mikan_subgroup_id = ?
                """,
                (mikan_subject_id, mikan_subgroup_id),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return LibrarySeason(**dict(row))

    def get_seasons(self) -> list[LibrarySeason]:
        with self.get_conn() as conn:
            cursor = conn.execute(
                "SELECT * FROM library_season ORDER BY mikan_subject_id, mikan_subgroup_id"
            )
            return [LibrarySeason(**dict(row)) for row in cursor.fetchall()]

    def upsert_season(self, season: LibrarySeason) -> None:
        with self.get_conn() as conn:
            conn.execute(
                _insert_sql("library_season", SEASON_COLUMNS), season.model_dump()
            )
            conn.commit()

    def upsert_item(self, item: LibraryItem) -> None:
        """Insert or replace an item. Its season row must already exist."""
        with self.get_conn() as conn:
            cursor = conn.execute(
                """
                SELECT 1 FROM library_season
                WHERE mikan_subject_id = ? AND mikan_subgroup_id = ?
                """,
                (item.mikan_subject_id, item.mikan_subgroup_id),
            )
            if cursor.fetchone() is None:
                raise CacheError(
                    f"Season ({item.mikan_subject_id}, {item.mikan_subgroup_id}) "
                    f"does not exist for item {item.release_id}"
                )
            conn.execute(_insert_sql("library_item", ITEM_COLUMNS), item.model_dump())
            conn.commit()

    def get_season_items(
        self, mikan_subject_id: int, mikan_subgroup_id: int
    ) -> list[LibraryItem]:
        with self.get_conn() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM library_item
                WHERE mikan_subject_id = ? AND mikan_subgroup_id = ?
                ORDER BY display_episode_num, release_id
                """,
                (mikan_subject_id, mikan_subgroup_id),
            )
            return [LibraryItem(**dict(row)) for row in cursor.fetchall()]

    def get_all_items(self) -> list[LibraryItem]:
        with self.get_conn() as conn:
            cursor = conn.execute(
                "SELECT * FROM library_item ORDER BY mikan_subject_id, "
                "mikan_subgroup_id, display_episode_num, release_id"
            )
            return [LibraryItem(**dict(row)) for row in cursor.fetchall()]

    def apply_season_config(
        self, season: LibrarySeason, delete_release_ids: list[str]
    ) -> None:
        """Store a season's configuration, drop rejected items and recompute
        display numbers for the rest, all in one transaction."""
        with self.get_conn() as conn:
            conn.execute(
                _insert_sql("library_season", SEASON_COLUMNS), season.model_dump()
            )
            conn.executemany(
                "DELETE FROM library_item WHERE release_id = ?",
                [(release_id,) for release_id in delete_release_ids],
            )
            conn.execute(
                """
                UPDATE library_item
                SET display_episode_num = episode_num + ?
                WHERE mikan_subject_id = ? AND mikan_subgroup_id = ?
                """,
                (
                    season.conf_episode_offset,
                    season.mikan_subject_id,
                    season.mikan_subgroup_id,
                ),
            )
            conn.commit()

    def vacuum(self) -> None:
        """Vacuum the database for maintenance."""
        with self.get_conn() as conn:
            conn.execute("VACUUM")
            conn.commit()
