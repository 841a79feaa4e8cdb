import logging

from pydantic import BaseModel, ConfigDict

from .collaborators import DownloadClient, DownloadRequest
from .errors import MikanlibError
from .library import LibraryReconciler, with_display_fields
from .models import LibraryItem, LibrarySeason

logger = logging.getLogger(__name__)


class SeasonOverride(BaseModel):
    """A user's correction to one season.

    Offsets are the new absolute values, not deltas.
    """

    model_config = ConfigDict(extra="forbid")

    mikan_subject_id: int
    mikan_subgroup_id: int
    override_season_num: bool = False
    season_num: int = 1
    episode_offset: int = 0
    bangumi_episode_offset: int = 0


class OverrideReconciler:
    def __init__(
        self,
        reconciler: LibraryReconciler,
        download_client: DownloadClient | None = None,
    ):
        self.reconciler = reconciler
        self.download_client = download_client

    def apply(self, override: SeasonOverride) -> list[LibraryItem]:
        """Store the override, recompute the season and resync its downloads.

        Only the overridden season's items are sent to the download client.
        """
        db = self.reconciler.db
        season = db.get_season(override.mikan_subject_id, override.mikan_subgroup_id)
        if season is None:
            raise MikanlibError(
                f"Season ({override.mikan_subject_id}, {override.mikan_subgroup_id}) "
                f"is not in the library"
            )

        updated = with_display_fields(
            season.model_copy(
                update={
                    "conf_season_num": (
                        override.season_num if override.override_season_num else None
                    ),
                    "conf_episode_offset": override.episode_offset,
                    "conf_bangumi_episode_offset": override.bangumi_episode_offset,
                }
            )
        )
        logger.info(
            f"Override for {updated.series_name} ({updated.subgroup_name}): "
            f"season {updated.season_num}, episode offset "
            f"{season.conf_episode_offset} -> {updated.conf_episode_offset}, "
            f"bangumi offset {updated.conf_bangumi_episode_offset}"
        )

        items = self.reconciler.apply_season_config(updated)
        self._notify(updated, items)
        return items

    def _notify(self, season: LibrarySeason, items: list[LibraryItem]) -> None:
        if self.download_client is None:
            return
        requests = [DownloadRequest.for_item(season, item) for item in items]
        try:
            self.download_client.sync(requests)
        except Exception as e:
            logger.error(f"Download client sync failed for season {season.key}: {e}")
