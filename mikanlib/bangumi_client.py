"""Bangumi (bgm.tv) REST API client."""

import logging
from collections.abc import Callable

import httpx

from .errors import ParseError
from .http_utils import get_with_retry
from .models import BangumiEpisode, BangumiSubject, EpisodeCollection, EpisodeType, WatchStatus
from .season_matcher import parse_season_number_from_aliases

logger = logging.getLogger(__name__)

ALIAS_INFOBOX_KEY = "别名"
PAGE_SIZE = 100


def _int_or(value, default: int) -> int:
    return value if isinstance(value, int) else default


def normalize_sort(sort) -> str:
    """Render Bangumi's numeric sort index as a decimal string ("3", "7.5")."""
    if sort is None or sort == "":
        return ""
    value = float(sort)
    if value.is_integer():
        return str(int(value))
    return str(value)


class BangumiClient:
    """Client for the Bangumi v0 API."""

    def __init__(
        self,
        client: httpx.Client,
        api_url: str = "https://api.bgm.tv",
        access_token: str = "",
        retry_attempts: int = 10,
        retry_delay: float = 5.0,
        sleep: Callable[[float], None] | None = None,
    ):
        """Initialize Bangumi client.

        Args:
            client: Shared HTTP client (carries User-Agent and timeouts)
            api_url: Bangumi API base URL
            access_token: Bearer token, only needed for collection reads
            retry_attempts: Attempts per request before giving up
            retry_delay: Fixed delay between attempts in seconds
            sleep: Sleep function used between attempts
        """
        self.client = client
        self.api_url = api_url.rstrip("/")
        self.access_token = access_token
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep

    def _get_json(
        self, path: str, params: dict | None = None, headers: dict | None = None
    ):
        kwargs = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        response = get_with_retry(
            self.client,
            f"{self.api_url}{path}",
            params=params,
            headers=headers,
            attempts=self.retry_attempts,
            delay=self.retry_delay,
            **kwargs,
        )
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {path}: {e}") from e

    def _get_pages(
        self, path: str, params: dict | None = None, headers: dict | None = None
    ) -> list[dict]:
        """Collect every record of a limit/offset paginated endpoint."""
        records = []
        offset = 0
        while True:
            page_params = dict(params or {})
            page_params.update({"limit": PAGE_SIZE, "offset": offset})
            payload = self._get_json(path, params=page_params, headers=headers)
            if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
                raise ParseError(f"Unexpected response shape from {path}")

            data = payload["data"]
            records.extend(data)
            offset += len(data)
            total = payload.get("total", offset)
            if not data or offset >= total:
                return records

    def get_subject(self, subject_id: int) -> BangumiSubject:
        """Fetch a subject's aliases, media type and poster."""
        payload = self._get_json(f"/v0/subjects/{subject_id}")
        if not isinstance(payload, dict):
            raise ParseError(f"Unexpected subject payload for {subject_id}")

        aliases = self.parse_aliases(payload)
        image_url = (payload.get("images") or {}).get("large") or ""
        media_type = payload.get("platform") or ""

        subject = BangumiSubject(
            subject_id=subject_id,
            aliases=aliases,
            media_type=media_type,
            image_url=image_url,
            season_num=parse_season_number_from_aliases(aliases),
        )
        logger.debug(
            f"Bangumi subject {subject_id}: {subject.name!r} ({media_type}), "
            f"season {subject.season_num}, {len(aliases)} aliases"
        )
        return subject

    @staticmethod
    def parse_aliases(payload: dict) -> list[str]:
        """Chinese name, original name, then every infobox alias, in that order."""
        aliases = []
        for key in ("name_cn", "name"):
            name = payload.get(key)
            if isinstance(name, str) and name:
                aliases.append(name)

        for entry in payload.get("infobox") or []:
            if not isinstance(entry, dict) or entry.get("key") != ALIAS_INFOBOX_KEY:
                continue
            value = entry.get("value")
            if isinstance(value, str):
                if value:
                    aliases.append(value)
                continue
            for alias in value or []:
                if isinstance(alias, dict) and isinstance(alias.get("v"), str):
                    aliases.append(alias["v"])
        return aliases

    def get_episodes(self, subject_id: int) -> list[BangumiEpisode]:
        """Fetch a subject's full episode list."""
        episodes = []
        for record in self._get_pages("/v0/episodes", params={"subject_id": subject_id}):
            try:
                episodes.append(
                    BangumiEpisode(
                        subject_id=subject_id,
                        episode_id=record["id"],
                        type=EpisodeType.from_code(record.get("type", 0)),
                        ep=_int_or(record.get("ep"), -1),
                        sort=normalize_sort(record.get("sort")),
                        name=record.get("name") or "",
                        name_cn=record.get("name_cn") or "",
                        airdate=record.get("airdate") or "",
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed episode of subject {subject_id}: {e}")
        return episodes

    def get_episode_collection(self, subject_id: int) -> list[EpisodeCollection]:
        """Fetch the authenticated user's watch status for a subject's episodes."""
        headers = {"Authorization": f"Bearer {self.access_token}"}
        collections = []
        for record in self._get_pages(
            f"/v0/users/-/collections/{subject_id}/episodes", headers=headers
        ):
            episode = record.get("episode") or {}
            try:
                collections.append(
                    EpisodeCollection(
                        episode_id=episode["id"],
                        sort=normalize_sort(episode.get("sort")),
                        ep=_int_or(episode.get("ep"), -1),
                        type=EpisodeType.from_code(episode.get("type", 0)),
                        name=episode.get("name") or "",
                        name_cn=episode.get("name_cn") or "",
                        airdate=episode.get("airdate") or "",
                        status=WatchStatus.from_code(record.get("type", 0)),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    f"Skipping malformed collection entry of subject {subject_id}: {e}"
                )
        return collections
