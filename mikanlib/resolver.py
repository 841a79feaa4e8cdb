import logging
from collections.abc import Callable

import httpx
from whenever import Instant

from .bangumi_client import BangumiClient
from .cache import CacheStore
from .detail_page import DetailPageExtractor, EpisodePage
from .errors import MikanlibError, ResolutionError
from .http_utils import get_with_retry
from .models import (
    BangumiEpisode,
    BangumiSubject,
    EpisodeType,
    ReleaseItem,
    ResolvedRelease,
    SubjectMapping,
)
from .season_matcher import match_season, season_names_from_details
from .tmdb_client import TMDBClient

logger = logging.getLogger(__name__)

UNSUPPORTED_MEDIA_TYPES = {"剧场版", "OVA"}


def link_episode(episodes: list[BangumiEpisode], episode_num: int) -> int | None:
    """Id of the main-story episode whose sort index equals episode_num."""
    if episode_num < 0:
        return None
    wanted = str(episode_num)
    for episode in episodes:
        if episode.type == EpisodeType.MAIN_STORY and episode.sort == wanted:
            return episode.episode_id
    return None


class DetailResolver:
    """Resolves a release to its detail-page fields and canonical subject.

    Complete subject mappings are cached for good. A mapping left partial by a
    TMDB failure is returned uncached so the next release retries TMDB.
    """

    def __init__(
        self,
        cache: CacheStore,
        client: httpx.Client,
        bangumi: BangumiClient,
        tmdb: TMDBClient,
        extractor: DetailPageExtractor | None = None,
        mikan_base_url: str = "https://mikanani.me",
        tmdb_languages: list[str] | None = None,
        primary_language: str = "zh-CN",
        retry_attempts: int = 10,
        retry_delay: float = 5.0,
        sleep: Callable[[float], None] | None = None,
        now_func: Callable[[], Instant] = Instant.now,
    ):
        self.cache = cache
        self.client = client
        self.bangumi = bangumi
        self.tmdb = tmdb
        self.mikan_base_url = mikan_base_url.rstrip("/")
        self.extractor = extractor or DetailPageExtractor(self.mikan_base_url)
        self.tmdb_languages = tmdb_languages or ["ja", "zh-CN", "en-US"]
        self.primary_language = primary_language
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.now_func = now_func

    def _fetch_page(self, url: str) -> str:
        kwargs = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        response = get_with_retry(
            self.client,
            url,
            attempts=self.retry_attempts,
            delay=self.retry_delay,
            **kwargs,
        )
        return response.text

    def resolve(self, item: ReleaseItem) -> ResolvedRelease:
        """Fetch and scrape the detail page, then link the release to its subject.

        Raises NetworkError or ParseError when the detail page cannot be
        used, and ResolutionError when the subject has no Bangumi identity.
        """
        html = self._fetch_page(f"{self.mikan_base_url}/Home/Episode/{item.release_id}")
        page = self.extractor.parse_episode_page(html)

        mapping = self.resolve_subject(page)
        episode_id = None
        if mapping.bangumi_subject_id > 0:
            episode_id = link_episode(
                self.cache.get_episodes(mapping.bangumi_subject_id), item.episode_num
            )

        resolved = ResolvedRelease(
            **item.model_dump(exclude={"mikan_subject_id", "mikan_subgroup_id"}),
            mikan_subject_id=page.mikan_subject_id,
            mikan_subgroup_id=page.mikan_subgroup_id,
            magnet_link=page.magnet_link,
            subject_title=page.subject_title,
            subgroup_name=page.subgroup_name,
            episode_title=page.episode_title,
            bangumi_subject_id=mapping.bangumi_subject_id,
            bangumi_episode_id=episode_id,
            resolved_at=self.now_func(),
        )
        logger.debug(
            f"Resolved {item.release_id}: subject {page.mikan_subject_id}, "
            f"subgroup {page.mikan_subgroup_id}, episode {item.episode_num}"
        )
        return resolved

    def resolve_subject(self, page: EpisodePage) -> SubjectMapping:
        """Return the cached mapping for the page's subject, resolving it on a miss."""
        cached = self.cache.get_subject_mapping(page.mikan_subject_id)
        if cached is not None:
            return cached

        try:
            html = self._fetch_page(
                f"{self.mikan_base_url}/Home/Bangumi/{page.mikan_subject_id}"
            )
            bangumi_subject_id = self.extractor.parse_bangumi_page(html)
            subject = self.bangumi.get_subject(bangumi_subject_id)
        except MikanlibError as e:
            raise ResolutionError(
                f"Could not find Bangumi subject for Mikan subject "
                f"{page.mikan_subject_id}: {e}"
            ) from e

        if not subject.aliases:
            raise ResolutionError(f"Bangumi subject {subject.subject_id} has no names")

        self._refresh_episodes(subject.subject_id)

        mapping = SubjectMapping(
            mikan_subject_id=page.mikan_subject_id,
            mikan_image_url=page.image_url,
            bangumi_subject_id=subject.subject_id,
            bangumi_subject_name=subject.name,
            bangumi_season_num=subject.season_num,
            bangumi_image_url=subject.image_url,
            resolved_at=self.now_func(),
        )
        if subject.media_type in UNSUPPORTED_MEDIA_TYPES:
            # TMDB will never match these, so the Bangumi-only mapping is final
            logger.info(
                f"Media type {subject.media_type} of {subject.name} is not searched on TMDB"
            )
            self.cache.upsert_subject_mapping(mapping)
            return mapping

        try:
            mapping = self._with_tmdb(mapping, subject)
        except MikanlibError as e:
            # Not cached, so TMDB is asked again on the next release of this subject
            logger.warning(
                f"Using uncached partial mapping for Mikan subject "
                f"{page.mikan_subject_id} ({subject.name}): {e}"
            )
            return mapping

        self.cache.upsert_subject_mapping(mapping)
        return mapping

    def _refresh_episodes(self, bangumi_subject_id: int) -> None:
        try:
            episodes = self.bangumi.get_episodes(bangumi_subject_id)
        except MikanlibError as e:
            logger.warning(
                f"Failed to fetch episodes of Bangumi subject {bangumi_subject_id}: {e}"
            )
            return
        self.cache.replace_episodes(bangumi_subject_id, episodes)

    def _with_tmdb(self, mapping: SubjectMapping, subject: BangumiSubject) -> SubjectMapping:
        series_id = self.search_series(subject.aliases)
        details = self.tmdb.get_tv_details(series_id, self.tmdb_languages)
        if not details:
            raise ResolutionError(f"No TMDB details fetched for series {series_id}")
        primary = details.get(self.primary_language) or next(iter(details.values()))
        series_name = primary.get("name") or ""

        match = match_season(
            season_names_from_details(details),
            subject.aliases,
            primary_language=self.primary_language,
            series_name=series_name,
        )
        logger.info(
            f"Matched {subject.name} to TMDB {series_name} season "
            f"{match.season_num} ({match.season_name})"
        )
        return mapping.model_copy(
            update={
                "tmdb_series_id": series_id,
                "tmdb_series_name": series_name,
                "tmdb_season_num": match.season_num,
                "tmdb_season_name": match.season_name,
            }
        )

    def search_series(self, aliases: list[str]) -> int:
        """Search TMDB by each alias in order, then by the first half of each."""
        queries = list(aliases) + [alias[: len(alias) // 2] for alias in aliases]
        for query in queries:
            if not query:
                continue
            try:
                series_id = self.tmdb.search_tv(query)
            except MikanlibError as e:
                logger.warning(f"TMDB search failed for {query!r}: {e}")
                continue
            if series_id is not None:
                return series_id
        raise ResolutionError(f"No TMDB series found for aliases {aliases}")
