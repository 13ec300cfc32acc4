"""Persistent catalog of cached site summaries backed by a single JSON file."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from link_summary.errors import (
    CatalogParseError,
    CatalogReadError,
    CatalogStateError,
    FileOperationError,
    UnsupportedCatalogVersionError,
)
from link_summary.metrics import CATALOG_SYNCS

LOGGER = logging.getLogger(__name__)

CURRENT_CATALOG_VERSION = "1"


class SiteSummary(BaseModel):
    """Catalog record for one resource URL."""

    model_config = ConfigDict(populate_by_name=True)

    metadata: dict[str, str] = Field(default_factory=dict, description="Scraped metadata fields")
    updated_at: datetime = Field(alias="updatedAt", description="Time of the last refresh")
    cached_file_path: str | None = Field(
        default=None,
        alias="cachedFilePath",
        description="Path of the cached file relative to the cache item directory",
    )

    @field_validator("metadata", mode="before")
    @classmethod
    def _drop_missing_fields(cls, value: Any) -> Any:
        # Scrapers report fields they could not find as null.
        if isinstance(value, dict):
            return {key: item for key, item in value.items() if item is not None}
        return value

    @field_validator("updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_fresh(self, now: datetime | None = None, expiration: timedelta | None = None) -> bool:
        """Return ``True`` while ``updated_at + expiration`` has not passed.

        Records never expire when ``expiration`` is ``None``.
        """

        if expiration is None:
            return True
        current = now or datetime.now(timezone.utc)
        return self.updated_at + expiration >= current


class SiteSummaryCatalog(BaseModel):
    """On-disk catalog document."""

    version: str = CURRENT_CATALOG_VERSION
    items: dict[str, SiteSummary] = Field(default_factory=dict)


def _parse_catalog(data: str, path: Path) -> SiteSummaryCatalog:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise CatalogParseError(f'failed to parse a catalog file "{path}"') from exc
    if not isinstance(payload, dict):
        raise CatalogParseError(f'failed to parse a catalog file "{path}"; expected a JSON object')

    version = payload.get("version")
    if version != CURRENT_CATALOG_VERSION:
        raise UnsupportedCatalogVersionError(version)

    try:
        return SiteSummaryCatalog.model_validate(payload)
    except ValidationError as exc:
        raise CatalogParseError(f'failed to parse a catalog file "{path}"') from exc


class CatalogStore:
    """Key to :class:`SiteSummary` map with an explicit open/sync lifecycle.

    A store starts unopened. :meth:`open` loads the catalog file once;
    every other method requires an opened store. Updates only live in
    memory until :meth:`sync` writes them back. The store assumes a single
    writer and does not lock the file.
    """

    def __init__(self) -> None:
        self._path: Path | None = None
        self._catalog: SiteSummaryCatalog | None = None
        self._opened = False
        self._dirty = False

    @property
    def opened(self) -> bool:
        return self._opened

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def path(self) -> Path:
        return self._require_opened()[0]

    async def open(self, file_path: str | Path) -> None:
        """Load the catalog at ``file_path``; a missing file yields an empty catalog."""

        if self._opened:
            raise CatalogStateError("a catalog file was already opened")

        path = Path(file_path)
        try:
            data = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            LOGGER.debug("Catalog %s does not exist yet; starting empty", path)
            catalog = SiteSummaryCatalog()
        except UnicodeDecodeError as exc:
            raise CatalogParseError(f'failed to parse a catalog file "{path}"') from exc
        except OSError as exc:
            raise CatalogReadError(f'failed to read a catalog file "{path}"') from exc
        else:
            catalog = _parse_catalog(data, path)
            LOGGER.debug("Loaded %d catalog items from %s", len(catalog.items), path)

        self._path = path
        self._catalog = catalog
        self._dirty = False
        self._opened = True

    def _require_opened(self) -> tuple[Path, SiteSummaryCatalog]:
        if not self._opened or self._path is None or self._catalog is None:
            raise CatalogStateError("a catalog file was not opened yet")
        return self._path, self._catalog

    def find_item(self, url: str) -> SiteSummary | None:
        _, catalog = self._require_opened()
        return catalog.items.get(url)

    def update_item(self, url: str, item: SiteSummary) -> None:
        _, catalog = self._require_opened()
        catalog.items[url] = item
        self._dirty = True

    def items(self) -> Iterator[tuple[str, SiteSummary]]:
        _, catalog = self._require_opened()
        return iter(list(catalog.items.items()))

    def __len__(self) -> int:
        _, catalog = self._require_opened()
        return len(catalog.items)

    async def sync(self) -> None:
        """Write the catalog when it changed since the last successful sync.

        On failure the store stays dirty so a later call retries the write.
        """

        path, catalog = self._require_opened()
        if not self._dirty:
            return
        self._dirty = False

        try:
            await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            self._dirty = True
            CATALOG_SYNCS.labels(result="error").inc()
            raise FileOperationError(f'failed to create a directory "{path.parent}"') from exc

        payload = json.dumps(
            {
                "version": catalog.version,
                "items": {
                    url: item.model_dump(mode="json", by_alias=True, exclude_none=True)
                    for url, item in catalog.items.items()
                },
            }
        )
        try:
            await asyncio.to_thread(path.write_text, payload, encoding="utf-8")
        except OSError as exc:
            self._dirty = True
            CATALOG_SYNCS.labels(result="error").inc()
            raise FileOperationError(f"failed to save a catalog file; filePath={path}") from exc

        CATALOG_SYNCS.labels(result="ok").inc()
        LOGGER.info("Saved %d catalog items to %s", len(catalog.items), path)


__all__ = [
    "CURRENT_CATALOG_VERSION",
    "CatalogStore",
    "SiteSummary",
    "SiteSummaryCatalog",
]
