import logging
import re
from dataclasses import dataclass
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup

from .errors import ParseError

logger = logging.getLogger(__name__)

BANGUMI_SUBJECT_PATTERN = re.compile(r"bgm\.tv/subject/(\d+)")
POSTER_URL_PATTERN = re.compile(r"url\(['\"]?([^'\")]+)['\"]?\)")


@dataclass
class EpisodePage:
    """Fields scraped from a Mikan episode detail page."""

    subject_title: str
    subgroup_name: str
    magnet_link: str
    episode_title: str
    mikan_subject_id: int
    mikan_subgroup_id: int
    image_url: str = ""


class DetailPageExtractor:
    """Scrapes Mikan detail pages.

    All markup knowledge lives here; any anchor that cannot be found raises
    ParseError for the page being parsed.
    """

    def __init__(self, base_url: str = "https://mikanani.me"):
        self.base_url = base_url.rstrip("/")

    def parse_episode_page(self, html: str) -> EpisodePage:
        soup = BeautifulSoup(html, "lxml")

        title_block = soup.find(class_="bangumi-title")
        title_link = title_block.find("a") if title_block else None
        if title_link is None:
            raise ParseError("No bangumi-title link found on episode page")
        subject_title = title_link.get_text().strip()

        subgroup_link = soup.find(class_="magnet-link-wrap")
        if subgroup_link is None:
            raise ParseError("No magnet-link-wrap found on episode page")
        subgroup_name = subgroup_link.get_text().strip()

        magnet = soup.find("a", href=re.compile(r"^magnet:"))
        if magnet is None:
            raise ParseError("No magnet link found on episode page")
        magnet_link = magnet["href"]

        episode_block = soup.find(class_="episode-title")
        if episode_block is None:
            raise ParseError("No episode-title found on episode page")
        episode_title = self._strip_size_suffix(episode_block.get_text().strip())

        mikan_subject_id, mikan_subgroup_id = self._extract_subscription_ids(soup)

        return EpisodePage(
            subject_title=subject_title,
            subgroup_name=subgroup_name,
            magnet_link=magnet_link,
            episode_title=episode_title,
            mikan_subject_id=mikan_subject_id,
            mikan_subgroup_id=mikan_subgroup_id,
            image_url=self._extract_poster(soup),
        )

    def parse_bangumi_page(self, html: str) -> int:
        """Return the Bangumi subject id linked from a Mikan subject page."""
        soup = BeautifulSoup(html, "lxml")
        link = soup.find("a", href=BANGUMI_SUBJECT_PATTERN)
        if link is None:
            raise ParseError("No bgm.tv subject link found on subject page")
        match = BANGUMI_SUBJECT_PATTERN.search(link["href"])
        return int(match.group(1))

    def _strip_size_suffix(self, episode_title: str) -> str:
        """Drop the trailing " [...]" suffix, e.g. the file size."""
        end = episode_title.rfind(" [")
        if end == -1:
            return episode_title
        return episode_title[:end]

    def _extract_subscription_ids(self, soup: BeautifulSoup) -> tuple[int, int]:
        """Extract bangumiId and subgroupid from the page's RSS subscription link."""
        for link in soup.find_all("a", href=re.compile(r"bangumiId=", re.IGNORECASE)):
            query_params = {
                key.lower(): values
                for key, values in parse_qs(urlparse(link["href"]).query).items()
            }
            if "bangumiid" not in query_params or "subgroupid" not in query_params:
                continue
            try:
                return (
                    int(query_params["bangumiid"][0]),
                    int(query_params["subgroupid"][0]),
                )
            except ValueError as e:
                raise ParseError(f"Malformed subscription link: {link['href']}") from e
        raise ParseError("No bangumiId/subgroupid link found on episode page")

    def _extract_poster(self, soup: BeautifulSoup) -> str:
        poster = soup.find(class_="bangumi-poster")
        if poster is None:
            return ""
        match = POSTER_URL_PATTERN.search(poster.get("style", ""))
        if not match:
            logger.debug("Poster element has no background url")
            return ""
        return urljoin(self.base_url + "/", match.group(1))
