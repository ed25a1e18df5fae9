"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_MIRRORS: tuple[str, ...] = (
    "45.250.20.254",
    "172.16.50.7",
    "10.16.100.213",
    "10.100.100.12",
    "10.16.100.202",
    "10.16.100.212",
    "10.16.100.206",
    "103.153.175.254/NAS1",
    "server1.dhakamovie.com/",
    "data.kenecolor.com/data/",
)

DEFAULT_TRUSTED_POSTER_HOSTS: tuple[str, ...] = (
    "m.media-amazon.com",
    "ia.media-imdb.com",
    "img.omdbapi.com",
    "image.tmdb.org",
)


def _split_values(value: object, *, field: str) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    if isinstance(value, Iterable):
        return [str(part).strip() for part in value]
    raise TypeError(f"{field} must be a string or iterable of strings")


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="MovieMax", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    data_dir: Path = Field(default=Path("./data"), alias="DATA_DIR")

    mirrors: Annotated[tuple[str, ...], NoDecode] = Field(default=DEFAULT_MIRRORS, alias="MIRRORS")
    mirror_probe_timeout: float = Field(
        default=2.0, alias="MIRROR_PROBE_TIMEOUT", gt=0, le=30
    )

    catalog_db_url: HttpUrl = Field(
        default="https://github.com/alamin-sarkar/test/raw/refs/heads/main/test/movie_database.zip",
        alias="CATALOG_DB_URL",
    )
    catalog_version_url: HttpUrl = Field(
        default="https://raw.githubusercontent.com/alamin-sarkar/test/refs/heads/main/test/db_version.txt",
        alias="CATALOG_VERSION_URL",
    )
    download_retry_limit: int = Field(
        default=3, alias="DOWNLOAD_RETRY_LIMIT", ge=1, le=10
    )
    download_retry_delay: float = Field(
        default=1.5, alias="DOWNLOAD_RETRY_DELAY", ge=0
    )

    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash", alias="GEMINI_MODEL")
    gemini_api_url: HttpUrl = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_API_URL",
    )

    omdb_api_key: str | None = Field(default=None, alias="OMDB_API_KEY")
    omdb_api_url: HttpUrl = Field(
        default="https://www.omdbapi.com", alias="OMDB_API_URL"
    )
    trusted_poster_hosts: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_TRUSTED_POSTER_HOSTS, alias="TRUSTED_POSTER_HOSTS"
    )

    ai_cache_ttl_seconds: int = Field(
        default=43_200, alias="AI_CACHE_TTL", ge=3_600
    )
    ai_max_suggestions: int = Field(
        default=50, alias="AI_MAX_SUGGESTIONS", ge=1, le=200
    )
    result_limit: int = Field(default=20, alias="RESULT_LIMIT", ge=1, le=100)
    history_limit: int = Field(default=100, alias="HISTORY_LIMIT", ge=1, le=10_000)
    history_save_delay: float = Field(
        default=1.5, alias="HISTORY_SAVE_DELAY", ge=0
    )
    poster_cache_save_delay: float = Field(
        default=1.5, alias="POSTER_CACHE_SAVE_DELAY", ge=0
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("mirrors", mode="before")
    @classmethod
    def _parse_mirrors(cls, value: object) -> tuple[str, ...]:
        """Normalise mirror selections from environment values."""

        if value is None:
            return DEFAULT_MIRRORS
        cleaned: list[str] = []
        for entry in _split_values(value, field="MIRRORS"):
            if entry and entry not in cleaned:
                cleaned.append(entry)
        if not cleaned:
            return DEFAULT_MIRRORS
        return tuple(cleaned)

    @field_validator("trusted_poster_hosts", mode="before")
    @classmethod
    def _parse_poster_hosts(cls, value: object) -> tuple[str, ...]:
        if value is None:
            return DEFAULT_TRUSTED_POSTER_HOSTS
        cleaned: list[str] = []
        for entry in _split_values(value, field="TRUSTED_POSTER_HOSTS"):
            host = entry.lower()
            if host and host not in cleaned:
                cleaned.append(host)
        return tuple(cleaned)

    @field_validator("gemini_api_key", "omdb_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @property
    def catalog_db_path(self) -> Path:
        return self.data_dir / "movie_database.db"

    @property
    def catalog_version_path(self) -> Path:
        return self.data_dir / "db_version.txt"

    @property
    def history_path(self) -> Path:
        return self.data_dir / "history.json"

    @property
    def poster_cache_path(self) -> Path:
        return self.data_dir / "posters_cache.json"

    @property
    def ai_cache_path(self) -> Path:
        return self.data_dir / "ai_recommendations.json"

    @property
    def poster_dir(self) -> Path:
        return self.data_dir / "poster_cache"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
