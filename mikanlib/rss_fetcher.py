import logging
from collections.abc import Callable

import httpx
from bs4 import BeautifulSoup

from .cache import CacheStore
from .errors import MikanlibError, ParseError
from .http_utils import get_with_retry
from .models import ReleaseItem, ResolvedRelease
from .resolver import DetailResolver
from .title_parser import is_bundle, parse_codec, parse_episode, parse_language

logger = logging.getLogger(__name__)


class RSSFetcher:
    def __init__(
        self,
        cache: CacheStore,
        client: httpx.Client,
        resolver: DetailResolver,
        mikan_base_url: str = "https://mikanani.me",
        retry_attempts: int = 10,
        retry_delay: float = 5.0,
        sleep: Callable[[float], None] | None = None,
    ):
        self.cache = cache
        self.client = client
        self.resolver = resolver
        self.mikan_base_url = mikan_base_url.rstrip("/")
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep

    def fetch_feed(self, url: str) -> str:
        """Fetch a Mikan RSS feed document."""
        kwargs = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        try:
            response = get_with_retry(
                self.client,
                url,
                attempts=self.retry_attempts,
                delay=self.retry_delay,
                **kwargs,
            )
            return response.text
        except Exception as e:
            logger.error(f"Failed to fetch RSS feed {url}: {e}")
            raise

    def parse_feed(self, xml: str) -> list[ReleaseItem]:
        """Parse feed items into release items, dropping multi-episode bundles."""
        soup = BeautifulSoup(xml, "xml")
        channel = soup.find("channel")
        if channel is None:
            raise ParseError("RSS document has no channel")

        items = []
        for entry in channel.find_all("item", recursive=False):
            try:
                item = self.parse_entry(entry)
            except ParseError as e:
                logger.warning(f"Skipping feed item: {e}")
                continue
            if item is not None:
                items.append(item)
        return items

    def parse_entry(self, entry) -> ReleaseItem | None:
        """Parse one feed item. Returns None for bundles."""
        title_tag = entry.find("title", recursive=False)
        link_tag = entry.find("link", recursive=False)
        if title_tag is None or link_tag is None:
            raise ParseError("Feed item without title or link")

        title = title_tag.get_text().strip()
        if is_bundle(title):
            logger.info(f"Skipping bundle: {title}")
            return None

        link = link_tag.get_text().strip()
        release_id = link.rstrip("/").rsplit("/", 1)[-1]
        if not release_id:
            raise ParseError(f"Cannot derive release id from link {link!r}")

        pub_date = ""
        torrent = entry.find("torrent", recursive=False)
        if torrent is not None:
            pub_date_tag = torrent.find("pubDate")
            if pub_date_tag is not None:
                pub_date = pub_date_tag.get_text().strip()

        return ReleaseItem(
            release_id=release_id,
            title=title,
            pub_date=pub_date,
            episode_num=parse_episode(title),
            language=parse_language(title),
            codec=parse_codec(title),
        )

    def process_feed(self, url: str) -> list[ResolvedRelease]:
        """Ingest one feed: resolve uncached items, then return every known one.

        Items that fail to resolve are skipped for this run and retried on the
        next one. Newly resolved releases are returned even when the cache
        write fails.
        """
        items = self.parse_feed(self.fetch_feed(url))

        resolved: dict[str, ResolvedRelease] = {}
        for item in items:
            if item.release_id in resolved or self.cache.exists(item.release_id):
                logger.debug(f"Release {item.release_id} already cached, skipping")
                continue
            try:
                release = self.resolver.resolve(item)
            except MikanlibError as e:
                logger.error(f"Failed to resolve release {item.release_id} ({item.title}): {e}")
                continue
            self.cache.upsert_release(release)
            resolved[item.release_id] = release

        release_ids = list(dict.fromkeys(item.release_id for item in items))
        available = {
            release.release_id: release
            for release in self.cache.fetch_releases(
                release_id for release_id in release_ids if release_id not in resolved
            )
        }
        available.update(resolved)
        releases = [
            available[release_id] for release_id in release_ids if release_id in available
        ]
        logger.info(
            f"Processed {len(items)} items from {url}: "
            f"{len(resolved)} newly resolved, {len(releases)} available"
        )
        return releases

    def history_url(self, mikan_subject_id: int, mikan_subgroup_id: int) -> str:
        return (
            f"{self.mikan_base_url}/RSS/Bangumi?"
            f"bangumiId={mikan_subject_id}&subgroupid={mikan_subgroup_id}"
        )

    def expand_history(self, releases: list[ResolvedRelease]) -> list[ResolvedRelease]:
        """Ingest the per-subgroup feed of every distinct subject/subgroup pair."""
        expanded = []
        visited = set()
        for release in releases:
            key = (release.mikan_subject_id, release.mikan_subgroup_id)
            if key in visited or release.mikan_subject_id < 0:
                continue
            visited.add(key)
            try:
                expanded.extend(self.process_feed(self.history_url(*key)))
            except MikanlibError as e:
                logger.error(f"Failed to expand history for {key}: {e}")
        return expanded

    def ingest(self, urls: list[str], expand_history: bool = True) -> list[ResolvedRelease]:
        """Ingest every configured feed, optionally with history.

        Returns each release once, in first-seen order.
        """
        releases = []
        for url in urls:
            try:
                releases.extend(self.process_feed(url))
            except MikanlibError as e:
                logger.error(f"Failed to ingest feed {url}: {e}")

        if expand_history:
            releases.extend(self.expand_history(releases))

        unique = {}
        for release in releases:
            unique.setdefault(release.release_id, release)
        return list(unique.values())
