"""Pydantic models describing catalog rows, matches and persisted state."""

from __future__ import annotations

import time

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .utils import DISPLAY_TITLE_LIMIT, clean_base_name, truncate_title


class CatalogRow(BaseModel):
    """A single immutable row of the catalog database."""

    model_config = ConfigDict(frozen=True)

    name: str
    full_name: str | None = None
    year: int | None = None
    link: str
    poster_link: str | None = None

    def display_title(self) -> str:
        """Return the title shown to users, truncated for list rows."""

        title = (self.full_name or self.name or "").strip()
        return truncate_title(title, DISPLAY_TITLE_LIMIT)


class MatchCandidate(BaseModel):
    """A scored catalog match. Derived on every search, never persisted."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    link: str
    score: int = Field(default=0, ge=0)
    poster_link: str | None = Field(
        default=None,
        validation_alias=AliasChoices("poster_link", "posterLink"),
        serialization_alias="posterLink",
    )
    base_name: str = Field(
        validation_alias=AliasChoices("base_name", "baseName"),
        serialization_alias="baseName",
    )
    year: int | None = None

    @property
    def has_poster(self) -> bool:
        return bool((self.poster_link or "").strip())

    @classmethod
    def from_row(cls, row: CatalogRow, score: int) -> "MatchCandidate":
        return cls(
            title=row.display_title(),
            link=row.link,
            score=score,
            poster_link=row.poster_link,
            base_name=row.name,
            year=row.year,
        )


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TrackSelection(_CamelModel):
    """Audio and subtitle choices remembered for a playback link."""

    audio_label: str | None = Field(default=None, alias="audioLabel")
    audio_language: str | None = Field(default=None, alias="audioLanguage")
    audio_group_index: int | None = Field(default=None, alias="audioGroupIndex")
    audio_track_index: int | None = Field(default=None, alias="audioTrackIndex")
    subtitle_label: str | None = Field(default=None, alias="subtitleLabel")
    subtitle_language: str | None = Field(default=None, alias="subtitleLanguage")
    subtitle_group_index: int | None = Field(default=None, alias="subtitleGroupIndex")
    subtitle_track_index: int | None = Field(default=None, alias="subtitleTrackIndex")
    subtitle_enabled: bool = Field(default=False, alias="subtitleEnabled")
    subtitle_uri: str | None = Field(default=None, alias="subtitleUri")


class HistoryEntry(TrackSelection):
    """Persisted watch-history entry keyed by playback link."""

    link: str
    name: str
    position: int = 0
    duration: int = 0
    last_played_ts: int = Field(default=0, alias="lastPlayedTs")
    base_name: str | None = Field(default=None, alias="baseName")
    poster_link: str | None = Field(default=None, alias="posterLink")
    local_poster_path: str | None = Field(default=None, alias="localPosterPath")

    def resume_position_ms(self) -> int:
        """Return the resume offset in milliseconds, or 0 to start over."""

        if self.duration > 0 and self.position > 0:
            return self.position * 1000
        return 0

    def resolved_base_name(self) -> str:
        return (self.base_name or "").strip() or clean_base_name(self.name)

    def track_selection(self) -> TrackSelection:
        return TrackSelection.model_validate(
            self.model_dump(include=set(TrackSelection.model_fields))
        )


class AiCacheItem(_CamelModel):
    """One recommendation stored in the AI cache file."""

    title: str
    link: str
    poster_link: str | None = Field(default=None, alias="posterLink")
    base_name: str = Field(alias="baseName")

    @classmethod
    def from_candidate(cls, candidate: MatchCandidate) -> "AiCacheItem":
        return cls(
            title=candidate.title,
            link=candidate.link,
            poster_link=candidate.poster_link,
            base_name=candidate.base_name,
        )

    def to_candidate(self) -> MatchCandidate:
        return MatchCandidate(
            title=self.title,
            link=self.link,
            score=0,
            poster_link=self.poster_link,
            base_name=self.base_name,
        )


class AiCache(_CamelModel):
    """Persisted recommendation set with its creation time in epoch millis."""

    timestamp: int
    items: list[AiCacheItem] = Field(default_factory=list)

    @classmethod
    def build(
        cls, candidates: list[MatchCandidate], *, now_ms: int | None = None
    ) -> "AiCache":
        timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
        return cls(
            timestamp=timestamp,
            items=[AiCacheItem.from_candidate(candidate) for candidate in candidates],
        )

    def is_empty(self) -> bool:
        return not self.items

    def is_stale(self, ttl_seconds: int, *, now_ms: int | None = None) -> bool:
        current = now_ms if now_ms is not None else int(time.time() * 1000)
        return current - self.timestamp >= ttl_seconds * 1000

    def candidates(self) -> list[MatchCandidate]:
        return [item.to_candidate() for item in self.items]
