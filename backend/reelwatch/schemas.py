from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


def _parse_int(val: Any) -> int | None:
    if val is None or isinstance(val, bool):
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("[actor] epoch timestamp %r out of range, treating as missing", value)
            return None
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("[actor] unparseable timestamp %r, treating as missing", value)
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Actor payload ────────────────────────────────────────────


class MusicInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    artist_name: str | None = None
    song_name: str | None = None
    uses_original_audio: bool | None = None
    audio_id: str | None = None

    @field_validator("artist_name", "song_name", "audio_id", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str | None:
        if value is None or isinstance(value, (dict, list)):
            return None
        return str(value)

    @field_validator("uses_original_audio", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool | None:
        return value if isinstance(value, bool) else None


class ActorItemBase(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str | None = None
    url: str | None = None
    short_code: str | None = Field(default=None, alias="shortCode")
    # verbatim actor item, kept for audit
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @field_validator("url", "short_code", mode="before")
    @classmethod
    def _str_or_none(cls, value: Any) -> str | None:
        return value if isinstance(value, str) and value else None


class VideoItem(ActorItemBase):
    kind: Literal["video"] = "video"

    input_url: str | None = Field(default=None, alias="inputUrl")
    caption: str | None = None
    owner_username: str | None = Field(default=None, alias="ownerUsername")
    likes_count: int | None = Field(default=None, alias="likesCount")
    comments_count: int | None = Field(default=None, alias="commentsCount")
    video_play_count: int | None = Field(default=None, alias="videoPlayCount")
    video_view_count: int | None = Field(default=None, alias="videoViewCount")
    timestamp: datetime | None = None
    display_url: str | None = Field(default=None, alias="displayUrl")
    video_url: str | None = Field(default=None, alias="videoUrl")
    music_info: MusicInfo | None = Field(default=None, alias="musicInfo")

    @field_validator("likes_count", "comments_count", "video_play_count", "video_view_count", mode="before")
    @classmethod
    def _lenient_int(cls, value: Any) -> int | None:
        return _parse_int(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _lenient_dt(cls, value: Any) -> datetime | None:
        return _parse_dt(value)

    @field_validator("music_info", mode="before")
    @classmethod
    def _music_dict_only(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("input_url", "caption", "owner_username", "display_url", "video_url", mode="before")
    @classmethod
    def _text_or_none(cls, value: Any) -> str | None:
        return value if isinstance(value, str) and value else None

    @property
    def views(self) -> int | None:
        if self.video_play_count is not None:
            return self.video_play_count
        return self.video_view_count


class OtherItem(ActorItemBase):
    """Non-video post (image, sidecar, ...). Carried only so it can be counted and skipped."""

    kind: Literal["other"] = "other"


ActorItem = Union[VideoItem, OtherItem]


def is_video_type(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() == "video"


def parse_actor_item(raw: dict[str, Any]) -> ActorItem:
    if is_video_type(raw.get("type")):
        return VideoItem.model_validate({**raw, "raw": raw})
    return OtherItem.model_validate({**raw, "raw": raw})


# ── Canonical records ────────────────────────────────────────


class ReelRecord(BaseModel):
    """Canonical reel, before it is stamped with project/source and stored."""

    reel_url: str
    profile_url: str | None = None
    author_username: str | None = None
    description: str | None = None
    views_count: int = 0
    likes_count: int = 0
    comments_count: int = 0
    published_at: datetime | None = None
    audio_title: str | None = None
    audio_artist: str | None = None
    thumbnail_url: str | None = None
    video_download_url: str | None = None
    raw_data: dict[str, Any] = Field(default_factory=dict)


# ── API read models ──────────────────────────────────────────


class ReelRead(BaseModel):
    id: int
    reel_url: str
    project_id: int
    source_type: str
    source_identifier: str
    author_username: str | None = None
    description: str | None = None
    views_count: int
    likes_count: int
    comments_count: int
    published_at: datetime | None = None
    audio_title: str | None = None
    audio_artist: str | None = None
    thumbnail_url: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class RunRead(BaseModel):
    run_id: str
    parent_run_id: str | None = None
    project_id: int | None = None
    source_type: str
    source_id: int | None = None
    status: str
    started_at: datetime
    ended_at: datetime | None = None
    reels_found_count: int
    reels_added_count: int
    errors_count: int
    log_message: str | None = None
    error_details: dict | None = None

    class Config:
        from_attributes = True


class RunDetail(RunRead):
    children: list[RunRead] = []
