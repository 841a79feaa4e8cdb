import logging
import time
from collections.abc import Callable

import httpx

from .errors import NetworkError

logger = logging.getLogger(__name__)


def get_with_retry(
    client: httpx.Client,
    url: str,
    *,
    params: dict | None = None,
    headers: dict | None = None,
    attempts: int = 10,
    delay: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> httpx.Response:
    """GET a URL, retrying transport and HTTP status errors with a fixed delay.

    Raises NetworkError once every attempt has failed.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            response = client.get(url, params=params, headers=headers)
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            if attempt < attempts - 1:
                logger.warning(
                    f"Request to {url} failed (attempt {attempt + 1}/{attempts}): {e}. "
                    f"Retrying in {delay}s..."
                )
                sleep(delay)
            else:
                logger.error(f"Request to {url} failed after {attempts} attempts: {e}")
                raise NetworkError(f"GET {url} failed after {attempts} attempts") from e
    raise NetworkError(f"GET {url} failed")
