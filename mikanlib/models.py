"""Pydantic models for mikanlib data structures."""

from enum import IntEnum

from pydantic import BaseModel, ConfigDict
from whenever import Instant


class EpisodeType(IntEnum):
    """Bangumi episode type codes."""

    MAIN_STORY = 0
    SPECIAL = 1
    OPENING = 2
    ENDING = 3
    OTHER = 4

    @classmethod
    def from_code(cls, code: int) -> "EpisodeType":
        try:
            return cls(code)
        except ValueError:
            return cls.OTHER


class WatchStatus(IntEnum):
    """Bangumi episode collection status codes."""

    NOT_COLLECTED = 0
    WANT_TO_WATCH = 1
    WATCHED = 2
    DROPPED = 3

    @classmethod
    def from_code(cls, code: int) -> "WatchStatus":
        try:
            return cls(code)
        except ValueError:
            return cls.NOT_COLLECTED


class ReleaseItem(BaseModel):
    """A release announced in the Mikan feed, before resolution."""

    model_config = ConfigDict(extra="forbid")

    release_id: str
    title: str
    pub_date: str = ""
    mikan_subject_id: int = -1
    mikan_subgroup_id: int = -1
    episode_num: int = -1
    language: str = ""
    codec: str = ""


class ResolvedRelease(ReleaseItem):
    """A release enriched from its Mikan detail page and the subject mapping."""

    magnet_link: str = ""
    subject_title: str = ""
    subgroup_name: str = ""
    episode_title: str = ""
    bangumi_subject_id: int = -1
    bangumi_episode_id: int | None = None
    resolved_at: Instant | None = None


class SubjectMapping(BaseModel):
    """Canonical identity of a Mikan subject across Bangumi and TMDB."""

    model_config = ConfigDict(extra="forbid")

    mikan_subject_id: int
    mikan_image_url: str = ""
    bangumi_subject_id: int = -1
    bangumi_subject_name: str = ""
    bangumi_season_num: int = -1
    bangumi_image_url: str = ""
    tmdb_series_id: int = -1
    tmdb_series_name: str = ""
    tmdb_season_num: int = -1
    tmdb_season_name: str = ""
    bangumi_to_tmdb_episode_offset: int = 0
    resolved_at: Instant | None = None


class BangumiSubject(BaseModel):
    """Subject metadata from the Bangumi API."""

    model_config = ConfigDict(extra="forbid")

    subject_id: int
    aliases: list[str]
    media_type: str = ""
    image_url: str = ""
    season_num: int = -1

    @property
    def name(self) -> str:
        return self.aliases[0] if self.aliases else ""


class BangumiEpisode(BaseModel):
    """An episode in a Bangumi subject's episode list."""

    model_config = ConfigDict(extra="forbid")

    subject_id: int
    episode_id: int
    type: EpisodeType = EpisodeType.MAIN_STORY
    ep: int = -1
    sort: str = ""
    name: str = ""
    name_cn: str = ""
    airdate: str = ""


class EpisodeCollection(BaseModel):
    """A user's watch status for one Bangumi episode."""

    model_config = ConfigDict(extra="forbid")

    episode_id: int
    sort: str
    ep: int = -1
    type: EpisodeType = EpisodeType.MAIN_STORY
    name: str = ""
    name_cn: str = ""
    airdate: str = ""
    status: WatchStatus = WatchStatus.NOT_COLLECTED


class LibrarySeason(BaseModel):
    """One subject/subgroup pair in the library, with its configuration."""

    model_config = ConfigDict(extra="forbid")

    mikan_subject_id: int
    mikan_subgroup_id: int
    subject_title: str = ""
    subgroup_name: str = ""
    image_url: str = ""
    bangumi_subject_id: int = -1
    bangumi_subject_name: str = ""
    bangumi_season_num: int = -1
    tmdb_series_id: int = -1
    tmdb_series_name: str = ""
    tmdb_season_num: int = -1
    tmdb_season_name: str = ""
    bangumi_to_tmdb_episode_offset: int = 0

    series_name: str = ""
    season_name: str = ""
    season_num: int = 1

    conf_language: str = ""
    conf_codec: str = ""
    conf_episode_offset: int = 0
    conf_season_num: int | None = None
    conf_bangumi_episode_offset: int = 0

    @property
    def key(self) -> tuple[int, int]:
        return (self.mikan_subject_id, self.mikan_subgroup_id)


class LibraryItem(BaseModel):
    """A release accepted into a library season."""

    model_config = ConfigDict(extra="forbid")

    release_id: str
    mikan_subject_id: int
    mikan_subgroup_id: int
    title: str
    pub_date: str = ""
    magnet_link: str = ""
    episode_num: int = -1
    display_episode_num: int = -1
    language: str = ""
    codec: str = ""
    bangumi_episode_id: int | None = None
