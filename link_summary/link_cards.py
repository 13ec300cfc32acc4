"""Replace links in a document tree with generated summary cards.

The pass walks the tree with :func:`link_summary.visit.visit`. For each web
link matching a :class:`SiteRule` it resolves page metadata (from the
catalog when fresh, otherwise by fetching the page and running the rule's
scraper), lets the rule's generator build replacement content, and swaps
the link for it. Generators can pull remote files (thumbnails, icons) into
the deployment directory through ``cache_remote_file``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable, Mapping, Sequence
from urllib.parse import urlsplit

import httpx

from link_summary.deploy import FetchOptions, build_client, deploy_local_file, deploy_remote_file
from link_summary.metrics import record_lookup
from link_summary.settings import CACHE_ITEM_DIR_NAME, CATALOG_FILE_NAME, Settings, get_settings
from link_summary.store import CatalogStore, SiteSummary
from link_summary.tree import Node, html
from link_summary.visit import Visitor, visit

LOGGER = logging.getLogger(__name__)

MetadataScraper = Callable[[str, str], "Mapping[str, Any] | Awaitable[Mapping[str, Any]]"]


@dataclass(frozen=True, slots=True)
class TextMarkup:
    """Raw HTML markup; inserted as an ``html`` node."""

    markup: str


@dataclass(frozen=True, slots=True)
class TreeNode:
    """A ready-made node inserted as is."""

    node: Node


Generated = TextMarkup | TreeNode
CacheRemoteFile = Callable[..., Awaitable[str]]


@dataclass(slots=True)
class GeneratorParams:
    """Arguments handed to a site's generator.

    ``cache_remote_file(url, persistent=False)`` deploys a remote file and
    returns its site-absolute path. With ``persistent=True`` the file also
    stays in the cache directory and is reused by later runs.
    """

    metadata: dict[str, str]
    original_node: Node
    cache_remote_file: CacheRemoteFile


HTMLGenerator = Callable[[GeneratorParams], "Generated | Awaitable[Generated]"]


@dataclass(slots=True)
class SiteRule:
    pattern: re.Pattern[str] | Callable[[Node], bool]
    generator: HTMLGenerator
    scraper: MetadataScraper
    fetch_options: dict[str, Any] = field(default_factory=dict)
    cache_expiration: timedelta | None = None

    def matches(self, link: Node) -> bool:
        if isinstance(self.pattern, re.Pattern):
            return self.pattern.search(link.url or "") is not None
        return bool(self.pattern(link))


@dataclass(slots=True)
class LinkSummaryOptions:
    sites: Sequence[SiteRule]
    cache_root: Path
    deploy_root: Path = Path("public")
    destination_subdir: str = ""
    persist_catalog: bool = True

    @classmethod
    def from_settings(cls, sites: Sequence[SiteRule], settings: Settings | None = None) -> LinkSummaryOptions:
        cfg = settings or get_settings()
        return cls(
            sites=sites,
            cache_root=cfg.cache.root,
            deploy_root=cfg.deploy.root,
            destination_subdir=cfg.deploy.destination_subdir,
        )

    @property
    def item_dir(self) -> Path:
        return self.cache_root / CACHE_ITEM_DIR_NAME

    @property
    def catalog_path(self) -> Path:
        return self.cache_root / CATALOG_FILE_NAME

    @property
    def deployment_dir(self) -> Path:
        return self.deploy_root / self.destination_subdir


def is_web_uri(url: str | None) -> bool:
    if not url:
        return False
    parts = urlsplit(url)
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _normalize_metadata(scraped: Mapping[str, Any] | None) -> dict[str, str]:
    if not scraped:
        return {}
    return {str(key): str(value) for key, value in scraped.items() if value is not None}


def _site_path(*parts: str) -> str:
    return PurePosixPath("/", *(part for part in parts if part)).as_posix()


async def fetch_metadata(
    link: Node,
    store: CatalogStore,
    rule: SiteRule,
    *,
    client: httpx.AsyncClient,
    now: datetime | None = None,
) -> dict[str, str]:
    """Return metadata for ``link.url`` from the catalog or by scraping the page."""

    url = link.url or ""
    current = now or datetime.now(timezone.utc)
    cached = store.find_item(url)
    if cached is not None and cached.is_fresh(current, rule.cache_expiration):
        record_lookup("hit")
        LOGGER.debug("Using cached metadata for %s", url)
        return dict(cached.metadata)
    record_lookup("stale" if cached is not None else "miss")

    response = await client.get(url, **rule.fetch_options)
    response.raise_for_status()
    scraped = await _resolve(rule.scraper(str(response.url), response.text))
    metadata = _normalize_metadata(scraped)
    store.update_item(url, SiteSummary(metadata=metadata, updated_at=current))
    return metadata


@dataclass(slots=True)
class RemoteFileCacher:
    """``cache_remote_file`` implementation bound to one store and rule."""

    store: CatalogStore
    options: LinkSummaryOptions
    rule: SiteRule
    client: httpx.AsyncClient | None = None

    async def __call__(self, file_url: str, persistent: bool = False) -> str:
        now = datetime.now(timezone.utc)
        item_dir = self.options.item_dir
        deployment_dir = self.options.deployment_dir

        record = self.store.find_item(file_url)
        if (
            record is not None
            and record.cached_file_path is not None
            and record.is_fresh(now, self.rule.cache_expiration)
        ):
            cached_path = item_dir / record.cached_file_path
            if await asyncio.to_thread(cached_path.is_file):
                record_lookup("hit")
                # Copy so the cached file survives for later runs.
                await deploy_local_file(cached_path, deployment_dir / record.cached_file_path, True)
                return _site_path(self.options.destination_subdir, record.cached_file_path)
            LOGGER.warning("Cached file %s for %s is missing; fetching it again", cached_path, file_url)
            record_lookup("miss")
        else:
            record_lookup("stale" if record is not None and record.cached_file_path else "miss")

        result = await deploy_remote_file(
            file_url,
            deployment_dir,
            item_dir,
            persistent,
            self.rule.fetch_options,
            client=self.client,
        )

        if result.cached_file_path is not None:
            relative = os.path.relpath(result.cached_file_path.resolve(), item_dir.resolve())
            self.store.update_item(
                file_url,
                SiteSummary(
                    metadata={"url": file_url},
                    cached_file_path=Path(relative).as_posix(),
                    updated_at=now,
                ),
            )

        deployed = os.path.relpath(result.deployed_file_path.resolve(), self.options.deploy_root.resolve())
        return _site_path(Path(deployed).as_posix())


def to_node(generated: Generated) -> Node:
    match generated:
        case TextMarkup(markup=markup):
            return html(markup)
        case TreeNode(node=node):
            return node
        case _:
            raise TypeError(f"generator must return TextMarkup or TreeNode, got {type(generated).__name__}")


def node_replacer(
    store: CatalogStore,
    options: LinkSummaryOptions,
    *,
    client: httpx.AsyncClient,
) -> Visitor:
    """Build the visitor that swaps matching links for generated content."""

    async def replace_link(node: Node, parent: Node | None) -> bool:
        if node.type != "link" or parent is None:
            return True
        if not is_web_uri(node.url):
            return False

        for rule in options.sites:
            if not rule.matches(node):
                continue

            metadata = await fetch_metadata(node, store, rule, client=client)
            cacher = RemoteFileCacher(store=store, options=options, rule=rule, client=client)
            generated = await _resolve(
                rule.generator(GeneratorParams(metadata=metadata, original_node=node, cache_remote_file=cacher))
            )
            parent.replace_child(node, to_node(generated))
            LOGGER.debug("Replaced link %s", node.url)
            return False
        return True

    return replace_link


async def summarize_links(
    tree: Node,
    options: LinkSummaryOptions,
    store: CatalogStore,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> Node:
    """Run the link-summary pass over ``tree`` using an opened ``store``.

    The tree is modified in place and returned. The catalog is synced
    afterwards when ``options.persist_catalog`` is set.
    """

    owns_client = client is None
    http_client = client or build_client(settings)
    try:
        await visit(tree, node_replacer(store, options, client=http_client))
    finally:
        if owns_client:
            await http_client.aclose()

    if options.persist_catalog:
        await store.sync()
    return tree


async def process_document(
    tree: Node,
    options: LinkSummaryOptions,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> Node:
    """Open the catalog under ``options.cache_root`` and run :func:`summarize_links`."""

    store = CatalogStore()
    await store.open(options.catalog_path)
    return await summarize_links(tree, options, store, client=client, settings=settings)


__all__ = [
    "FetchOptions",
    "Generated",
    "GeneratorParams",
    "HTMLGenerator",
    "LinkSummaryOptions",
    "MetadataScraper",
    "RemoteFileCacher",
    "SiteRule",
    "TextMarkup",
    "TreeNode",
    "fetch_metadata",
    "is_web_uri",
    "node_replacer",
    "process_document",
    "summarize_links",
    "to_node",
]
