"""Configuration helpers bound to python-decouple."""

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from importlib import metadata
from pathlib import Path

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv

CACHE_ITEM_DIR_NAME = "items"
CATALOG_FILE_NAME = "catalog.json"

try:
    PACKAGE_VERSION = metadata.version("link-summary")
except metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    PACKAGE_VERSION = "0.0.0"


@dataclass(slots=True, frozen=True)
class CacheSettings:
    root: Path
    expiration_seconds: int | None = None

    @property
    def item_dir(self) -> Path:
        return self.root / CACHE_ITEM_DIR_NAME

    @property
    def catalog_path(self) -> Path:
        return self.root / CATALOG_FILE_NAME

    @property
    def expiration(self) -> timedelta | None:
        if self.expiration_seconds is None:
            return None
        return timedelta(seconds=self.expiration_seconds)


@dataclass(slots=True, frozen=True)
class DeploySettings:
    root: Path
    destination_subdir: str = ""

    @property
    def destination_dir(self) -> Path:
        return self.root / self.destination_subdir


@dataclass(slots=True, frozen=True)
class FetchSettings:
    timeout_s: float = 30.0
    user_agent: str = f"link-summary/{PACKAGE_VERSION}"
    http2: bool = True


@dataclass(slots=True, frozen=True)
class LoggingSettings:
    level: str = "WARNING"


@dataclass(slots=True, frozen=True)
class Settings:
    env_path: str
    cache: CacheSettings
    deploy: DeploySettings
    fetch: FetchSettings
    logging: LoggingSettings


def load_config(env_path: str = ".env") -> DecoupleConfig:
    """Return a decouple config object anchored to the repository .env file.

    Environment variables always win over the file; when the file does not
    exist only the environment is consulted.
    """

    if Path(env_path).is_file():
        return DecoupleConfig(RepositoryEnv(env_path))
    return DecoupleConfig(RepositoryEmpty())


def _optional_int(value: str | None) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    return int(value)


def build_settings(env_path: str = ".env") -> Settings:
    config = load_config(env_path)
    default_cache_root = Path(tempfile.gettempdir()) / "link-summary"
    cache = CacheSettings(
        root=Path(config("LINK_SUMMARY_CACHE_ROOT", default=str(default_cache_root))),
        expiration_seconds=config("LINK_SUMMARY_CACHE_EXPIRATION_SECONDS", default=None, cast=_optional_int),
    )
    deploy = DeploySettings(
        root=Path(config("LINK_SUMMARY_DEPLOY_ROOT", default="public")),
        destination_subdir=config("LINK_SUMMARY_DESTINATION_SUBDIR", default=""),
    )
    fetch = FetchSettings(
        timeout_s=config("LINK_SUMMARY_FETCH_TIMEOUT_S", default=30.0, cast=float),
        user_agent=config("LINK_SUMMARY_USER_AGENT", default=f"link-summary/{PACKAGE_VERSION}"),
        http2=config("LINK_SUMMARY_HTTP2", default=True, cast=bool),
    )
    logging_settings = LoggingSettings(level=config("LINK_SUMMARY_LOG_LEVEL", default="WARNING").upper())
    return Settings(
        env_path=env_path,
        cache=cache,
        deploy=deploy,
        fetch=fetch,
        logging=logging_settings,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings built from ``.env`` and the environment."""

    return build_settings()
