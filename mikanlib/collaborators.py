"""Interfaces of the components that consume the library."""

from dataclasses import dataclass
from typing import Protocol

from .models import LibraryItem, LibrarySeason


@dataclass(frozen=True)
class DownloadRequest:
    magnet_link: str
    series_name: str
    season_name: str
    season_num: int
    episode_num: int

    @classmethod
    def for_item(cls, season: LibrarySeason, item: LibraryItem) -> "DownloadRequest":
        return cls(
            magnet_link=item.magnet_link,
            series_name=season.series_name,
            season_name=season.season_name,
            season_num=season.season_num,
            episode_num=item.display_episode_num,
        )


class DownloadClient(Protocol):
    """Receives the items to download. Reports nothing back."""

    def sync(self, requests: list[DownloadRequest]) -> None: ...
