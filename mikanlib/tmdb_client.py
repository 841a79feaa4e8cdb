"""TMDB v3 API client for series and season lookups."""

import logging
from collections.abc import Callable

import httpx

from .errors import MikanlibError, ParseError
from .http_utils import get_with_retry

logger = logging.getLogger(__name__)


class TMDBClient:
    """Client for querying TMDB tv search and details."""

    def __init__(
        self,
        client: httpx.Client,
        api_url: str = "https://api.themoviedb.org/3",
        access_token: str = "",
        include_adult: bool = False,
        search_language: str = "zh-CN",
        retry_attempts: int = 10,
        retry_delay: float = 5.0,
        sleep: Callable[[float], None] | None = None,
    ):
        self.client = client
        self.api_url = api_url.rstrip("/")
        self.access_token = access_token
        self.include_adult = include_adult
        self.search_language = search_language
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep

    def _get_json(self, path: str, params: dict) -> dict:
        kwargs = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        response = get_with_retry(
            self.client,
            f"{self.api_url}{path}",
            params=params,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "accept": "application/json",
            },
            attempts=self.retry_attempts,
            delay=self.retry_delay,
            **kwargs,
        )
        try:
            payload = response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {path}: {e}") from e
        if not isinstance(payload, dict):
            raise ParseError(f"Unexpected response shape from {path}")
        return payload

    def search_tv(self, query: str) -> int | None:
        """Return the id of the first tv search result, or None when nothing matches."""
        payload = self._get_json(
            "/search/tv",
            {
                "query": query,
                "include_adult": str(self.include_adult).lower(),
                "language": self.search_language,
            },
        )
        results = payload.get("results") or []
        if not results:
            logger.debug(f"TMDB search returned nothing for {query!r}")
            return None
        try:
            return int(results[0]["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Malformed TMDB search result for {query!r}") from e

    def get_tv_details(self, series_id: int, languages: list[str]) -> dict[str, dict]:
        """Fetch series details once per language.

        Languages that fail are left out of the result. Raises the last error
        if no language could be fetched.
        """
        details = {}
        last_error = None
        for language in languages:
            try:
                details[language] = self._get_json(
                    f"/tv/{series_id}", {"language": language}
                )
            except MikanlibError as e:
                logger.warning(
                    f"Failed to fetch TMDB series {series_id} in {language}: {e}"
                )
                last_error = e
        if not details and last_error is not None:
            raise last_error
        return details
