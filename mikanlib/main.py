import argparse
import logging
import signal
import sys
import threading
import time
from collections.abc import Callable

import httpx
from whenever import Instant

from .auto_config import auto_config_clean
from .bangumi_client import BangumiClient
from .cache import CacheStore
from .collaborators import DownloadClient, DownloadRequest
from .config import Settings, settings
from .database import Database
from .library import LibraryReconciler, ReconcileStats
from .models import LibraryItem
from .overrides import OverrideReconciler, SeasonOverride
from .resolver import DetailResolver
from .rss_fetcher import RSSFetcher
from .snapshot import LibrarySnapshot, WatchStatusRefresher
from .tmdb_client import TMDBClient

logger = logging.getLogger(__name__)


class LibraryService:
    """Wires all components and runs library updates in the background."""

    def __init__(
        self,
        config: Settings,
        client: httpx.Client | None = None,
        download_client: DownloadClient | None = None,
        now_func: Callable[[], Instant] = Instant.now,
        sleep: Callable[[float], None] | None = None,
    ):
        self.config = config
        self.now_func = now_func
        self.db = Database(config.db_path, now_func)
        self.cache = CacheStore(self.db)

        # Create HTTP client with proper configuration
        self.client = client or httpx.Client(
            timeout=30.0,
            headers={"User-Agent": config.user_agent},
            follow_redirects=True,
        )
        retry = {
            "retry_attempts": config.retry_attempts,
            "retry_delay": config.retry_delay_seconds,
            "sleep": sleep,
        }
        self.bangumi = BangumiClient(
            self.client,
            api_url=config.bangumi_api_url,
            access_token=config.bangumi_access_token,
            **retry,
        )
        self.tmdb = TMDBClient(
            self.client,
            api_url=config.tmdb_api_url,
            access_token=config.tmdb_access_token,
            include_adult=config.tmdb_include_adult,
            search_language=config.tmdb_primary_language,
            **retry,
        )
        self.resolver = DetailResolver(
            self.cache,
            self.client,
            self.bangumi,
            self.tmdb,
            mikan_base_url=config.mikan_base_url,
            tmdb_languages=config.tmdb_languages,
            primary_language=config.tmdb_primary_language,
            now_func=now_func,
            **retry,
        )
        self.fetcher = RSSFetcher(
            self.cache,
            self.client,
            self.resolver,
            mikan_base_url=config.mikan_base_url,
            **retry,
        )
        self.reconciler = LibraryReconciler(self.db, self.cache)
        self.download_client = download_client
        self.overrides = OverrideReconciler(self.reconciler, download_client)
        self.snapshot = LibrarySnapshot()
        self.watch_status = WatchStatusRefresher(
            self.bangumi,
            self.snapshot,
            jitter_seconds=config.watch_status_jitter_seconds,
            max_workers=config.watch_status_workers,
        )

        self.running = True
        self.last_update: Instant | None = None
        self._update_thread: threading.Thread | None = None
        self._update_lock = threading.Lock()

    def update(self) -> ReconcileStats:
        """Ingest feeds, reconcile the library and refresh the snapshot."""
        releases = self.fetcher.ingest(
            self.config.rss_urls, expand_history=self.config.expand_history
        )
        stats = self.reconciler.reconcile(releases)
        changed = auto_config_clean(self.reconciler)
        logger.info(f"Auto-config changed {changed} seasons")

        self.snapshot.rebuild(self.db)
        self._sync_downloads(self.db.get_all_items())
        if self.config.watch_status_enabled:
            self.watch_status.refresh()

        self.last_update = self.now_func()
        return stats

    def _sync_downloads(self, items: list[LibraryItem]) -> None:
        if self.download_client is None:
            return
        seasons = {season.key: season for season in self.db.get_seasons()}
        requests = [
            DownloadRequest.for_item(
                seasons[(item.mikan_subject_id, item.mikan_subgroup_id)], item
            )
            for item in items
            if (item.mikan_subject_id, item.mikan_subgroup_id) in seasons
        ]
        try:
            self.download_client.sync(requests)
        except Exception as e:
            logger.error(f"Download client sync failed: {e}")

    def _run_update(self) -> None:
        try:
            self.update()
        except Exception as e:
            logger.error(f"Library update failed: {e}", exc_info=True)

    def request_update(self) -> bool:
        """Start an update on a background thread.

        Returns False when an update is already running.
        """
        with self._update_lock:
            if self._update_thread is not None and self._update_thread.is_alive():
                logger.info("Update already in progress")
                return False
            self._update_thread = threading.Thread(
                target=self._run_update, name="library-update", daemon=True
            )
            self._update_thread.start()
            return True

    def wait_for_update(self, timeout: float | None = None) -> None:
        thread = self._update_thread
        if thread is not None:
            thread.join(timeout)

    def apply_override(self, override: SeasonOverride) -> list[LibraryItem]:
        items = self.overrides.apply(override)
        self.snapshot.rebuild(self.db)
        return items

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Shutdown signal received (signal {signum})")
        self.running = False

    def run(self) -> None:
        """Main daemon loop."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        logger.info("Starting mikanlib daemon")
        logger.info(f"Feeds: {self.config.rss_urls}")
        logger.info(f"Database: {self.config.db_path}")
        logger.info(f"Update interval: {self.config.update_interval_seconds} seconds")

        self.snapshot.rebuild(self.db)
        while self.running:
            loop_start = time.time()
            self.request_update()

            # Sleep in small intervals to allow responsive signal handling
            end_time = loop_start + self.config.update_interval_seconds
            while time.time() < end_time and self.running:
                remaining = min(0.1, end_time - time.time())
                if remaining > 0:
                    time.sleep(remaining)

        logger.info("Shutting down daemon")
        self.wait_for_update()
        self.close()

    def close(self) -> None:
        """Clean up resources."""
        try:
            self.client.close()
            self.db.vacuum()
            logger.info("Cleanup completed")
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Maintain an anime library from Mikan RSS feeds"
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=settings.db_path,
        help=f"Path to SQLite database (default: {settings.db_path})",
    )
    parser.add_argument(
        "--rss-url",
        action="append",
        dest="rss_urls",
        help="Mikan RSS feed URL (repeatable, replaces configured feeds)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=f"Logging level (default: {settings.log_level})",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Run the update daemon (default)")
    subparsers.add_parser("update", help="Run a single library update and exit")

    override = subparsers.add_parser("override", help="Override a season's numbering")
    override.add_argument("subject_id", type=int, help="Mikan subject id")
    override.add_argument("subgroup_id", type=int, help="Mikan subgroup id")
    override.add_argument(
        "--season", type=int, default=None, help="Season number (omit to clear)"
    )
    override.add_argument("--episode-offset", type=int, default=0)
    override.add_argument("--bangumi-episode-offset", type=int, default=0)

    invalidate = subparsers.add_parser(
        "invalidate", help="Forget cached resolutions so they are resolved again"
    )
    invalidate.add_argument("--release", action="append", default=[])
    invalidate.add_argument("--subject", type=int, action="append", default=[])
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Update settings with command line args
    settings.db_path = args.db_path
    settings.log_level = args.log_level
    if args.rss_urls:
        settings.rss_urls = args.rss_urls

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        service = LibraryService(settings)
        command = args.command or "run"
        if command == "run":
            service.run()
        elif command == "update":
            stats = service.update()
            logger.info(f"Update complete: {stats}")
            service.close()
        elif command == "override":
            items = service.apply_override(
                SeasonOverride(
                    mikan_subject_id=args.subject_id,
                    mikan_subgroup_id=args.subgroup_id,
                    override_season_num=args.season is not None,
                    season_num=args.season if args.season is not None else 1,
                    episode_offset=args.episode_offset,
                    bangumi_episode_offset=args.bangumi_episode_offset,
                )
            )
            logger.info(f"Override applied to {len(items)} items")
            service.close()
        elif command == "invalidate":
            for release_id in args.release:
                service.cache.invalidate_release(release_id)
            for subject_id in args.subject:
                service.cache.invalidate_subject(subject_id)
            service.close()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, exiting...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
