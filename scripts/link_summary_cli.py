#!/usr/bin/env python3
"""Command line helpers for the link-summary cache and catalog."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from link_summary.bookmark import bookmark_card, scrape_opengraph
from link_summary.deploy import CacheResult, build_client, deploy_local_file, deploy_remote_file
from link_summary.errors import LinkSummaryError
from link_summary.link_cards import LinkSummaryOptions, SiteRule, process_document
from link_summary.settings import CACHE_ITEM_DIR_NAME, CATALOG_FILE_NAME, Settings, build_settings
from link_summary.store import CatalogStore, SiteSummary
from link_summary.tree import Node

console = Console()
cli = typer.Typer(help="Cache remote files and summarize links in mdast documents")
catalog_cli = typer.Typer(help="Inspect the cached site summary catalog.")
cli.add_typer(catalog_cli, name="catalog")

_ANY_WEB_LINK = re.compile(r"^https?://")


def _resolve_settings(env_path: str) -> Settings:
    return build_settings(env_path)


def _http_client(settings: Settings) -> httpx.AsyncClient:
    return build_client(settings)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _fail(exc: Exception) -> None:
    console.print(f"[red]{exc}[/]")
    raise typer.Exit(code=1)


@cli.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LINK_SUMMARY_LOG_LEVEL"),
) -> None:
    """Cache remote files and summarize links in mdast documents."""

    ctx.obj = {"log_level": log_level}


def _load_settings(ctx: typer.Context, env_file: str) -> Settings:
    """Build settings from the command's --env-file; logging follows the same file."""

    settings = _resolve_settings(env_file)
    override = (ctx.obj or {}).get("log_level")
    _configure_logging(override or settings.logging.level)
    return settings


def _print_result(url: str, result: CacheResult) -> None:
    table = Table("Field", "Value", title=url)
    table.add_row("deployed", str(result.deployed_file_path))
    table.add_row("cached", str(result.cached_file_path) if result.cached_file_path else "-")
    console.print(table)


@cli.command()
def deploy(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Remote file to fetch"),
    dest: Optional[Path] = typer.Option(None, "--dest", help="Destination directory (defaults to the deploy settings)"),
    cache_root: Optional[Path] = typer.Option(None, "--cache-root", help="Cache root (defaults to LINK_SUMMARY_CACHE_ROOT)"),
    keep: bool = typer.Option(False, "--keep/--no-keep", help="Keep the content file in the cache directory"),
    env_file: str = typer.Option(".env", "--env-file", help="Path to the .env file"),
) -> None:
    """Fetch URL into the content cache and deploy it under its content name."""

    settings = _load_settings(ctx, env_file)
    destination = dest or settings.deploy.destination_dir
    item_dir = (cache_root / CACHE_ITEM_DIR_NAME) if cache_root else settings.cache.item_dir

    async def _run() -> CacheResult:
        async with _http_client(settings) as client:
            return await deploy_remote_file(url, destination, item_dir, keep, client=client)

    try:
        result = asyncio.run(_run())
    except (LinkSummaryError, httpx.HTTPError) as exc:
        _fail(exc)
        return
    _print_result(url, result)


@cli.command("deploy-local")
def deploy_local(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="File to deploy"),
    destination: Path = typer.Argument(..., help="Destination file path"),
    keep: bool = typer.Option(False, "--keep/--no-keep", help="Copy instead of move"),
    env_file: str = typer.Option(".env", "--env-file", help="Path to the .env file"),
) -> None:
    """Move (or copy with --keep) a local file, creating parent directories."""

    _load_settings(ctx, env_file)
    try:
        asyncio.run(deploy_local_file(source, destination, keep))
    except LinkSummaryError as exc:
        _fail(exc)
        return
    console.print(f"[green]{'Copied' if keep else 'Moved'} {source} -> {destination}[/]")


async def _load_store(path: Path) -> CatalogStore:
    store = CatalogStore()
    await store.open(path)
    return store


def _catalog_path(cache_root: Optional[Path], settings: Settings) -> Path:
    if cache_root:
        return cache_root / CATALOG_FILE_NAME
    return settings.cache.catalog_path


def _item_payload(url: str, item: SiteSummary, *, fresh: bool) -> dict[str, Any]:
    payload = item.model_dump(mode="json", by_alias=True, exclude_none=True)
    payload["key"] = url
    payload["fresh"] = fresh
    return payload


@catalog_cli.command("show")
def catalog_show(
    ctx: typer.Context,
    cache_root: Optional[Path] = typer.Option(None, "--cache-root", help="Cache root (defaults to LINK_SUMMARY_CACHE_ROOT)"),
    expiration: Optional[int] = typer.Option(
        None,
        "--expiration",
        help="Freshness window in seconds (defaults to LINK_SUMMARY_CACHE_EXPIRATION_SECONDS)",
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON lines instead of a table"),
    env_file: str = typer.Option(".env", "--env-file", help="Path to the .env file"),
) -> None:
    """List catalog items with their freshness."""

    settings = _load_settings(ctx, env_file)
    path = _catalog_path(cache_root, settings)
    try:
        store = asyncio.run(_load_store(path))
    except LinkSummaryError as exc:
        _fail(exc)
        return

    window = timedelta(seconds=expiration) if expiration is not None else settings.cache.expiration
    now = datetime.now(timezone.utc)
    rows = [(url, item, item.is_fresh(now, window)) for url, item in store.items()]

    if json_output:
        for url, item, fresh in rows:
            console.print_json(json.dumps(_item_payload(url, item, fresh=fresh)))
        return
    if not rows:
        console.print(f"[dim]No catalog items in {path}.[/]")
        return
    table = Table("Key", "Updated", "Fresh", "Cached file", "Title", title=str(path))
    for url, item, fresh in rows:
        table.add_row(
            url,
            item.updated_at.isoformat(),
            "yes" if fresh else "[yellow]no[/]",
            item.cached_file_path or "-",
            item.metadata.get("title", ""),
        )
    console.print(table)


@catalog_cli.command("get")
def catalog_get(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Resource URL"),
    cache_root: Optional[Path] = typer.Option(None, "--cache-root", help="Cache root (defaults to LINK_SUMMARY_CACHE_ROOT)"),
    env_file: str = typer.Option(".env", "--env-file", help="Path to the .env file"),
) -> None:
    """Print one catalog record as JSON."""

    settings = _load_settings(ctx, env_file)
    try:
        store = asyncio.run(_load_store(_catalog_path(cache_root, settings)))
    except LinkSummaryError as exc:
        _fail(exc)
        return
    item = store.find_item(key)
    if item is None:
        console.print(f"[red]No catalog item for {key}[/]")
        raise typer.Exit(code=1)
    console.print_json(item.model_dump_json(by_alias=True, exclude_none=True))


def _compile_patterns(expressions: Optional[list[str]]) -> list[re.Pattern[str]]:
    if not expressions:
        return [_ANY_WEB_LINK]
    patterns = []
    for expr in expressions:
        try:
            patterns.append(re.compile(expr))
        except re.error as exc:
            raise ValueError(f"invalid --site pattern {expr!r}: {exc}") from exc
    return patterns


@cli.command()
def transform(
    ctx: typer.Context,
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="mdast JSON document"),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the transformed document here (default stdout)"),
    site: Optional[list[str]] = typer.Option(
        None,
        "--site",
        help="Regular expression selecting links to summarize (repeatable; default: every web link)",
    ),
    cache_root: Optional[Path] = typer.Option(None, "--cache-root", help="Cache root (defaults to LINK_SUMMARY_CACHE_ROOT)"),
    deploy_root: Optional[Path] = typer.Option(None, "--deploy-root", help="Deployment root (defaults to LINK_SUMMARY_DEPLOY_ROOT)"),
    persist: bool = typer.Option(True, "--persist/--no-persist", help="Write the catalog back after the run"),
    env_file: str = typer.Option(".env", "--env-file", help="Path to the .env file"),
) -> None:
    """Replace matching links in an mdast JSON document with bookmark cards."""

    settings = _load_settings(ctx, env_file)
    try:
        patterns = _compile_patterns(site)
        tree = Node.from_dict(json.loads(source.read_text(encoding="utf-8")))
    except (OSError, ValueError) as exc:
        _fail(exc)
        return

    expiration = settings.cache.expiration
    rules = [
        SiteRule(pattern=pattern, generator=bookmark_card, scraper=scrape_opengraph, cache_expiration=expiration)
        for pattern in patterns
    ]
    options = LinkSummaryOptions.from_settings(rules, settings)
    if cache_root:
        options.cache_root = cache_root
    if deploy_root:
        options.deploy_root = deploy_root
    options.persist_catalog = persist

    async def _run() -> Node:
        async with _http_client(settings) as client:
            return await process_document(tree, options, client=client)

    try:
        result = asyncio.run(_run())
    except (LinkSummaryError, httpx.HTTPError) as exc:
        _fail(exc)
        return

    payload = json.dumps(result.to_dict(), indent=2)
    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(payload + "\n", encoding="utf-8")
        console.print(f"[green]Saved document to {out}[/]")
    else:
        typer.echo(payload)


if __name__ == "__main__":  # pragma: no cover
    cli()
