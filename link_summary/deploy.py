"""Content-addressed caching and deployment of local and remote files.

Remote resources are streamed into ``<cache_dir>/tmp-<sha1(url)>`` while the
content digest and file type are computed in the same pass, then renamed to
``<cache_dir>/<sha1(content)><ext>`` and deployed (copied or moved) into the
destination directory.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import shutil
from contextlib import aclosing
from dataclasses import dataclass
from functools import partial
from pathlib import Path, PurePosixPath
from typing import Any, AsyncGenerator, Callable, Mapping
from urllib.parse import urlsplit

import httpx

from link_summary.errors import AggregateError, DeployError, FileOperationError
from link_summary.metrics import DEPLOYMENTS, FETCHED_BYTES, REMOTE_FETCHES
from link_summary.settings import Settings, get_settings
from link_summary.sniff import FileType, FileTypeSniffer

LOGGER = logging.getLogger(__name__)

FetchOptions = Mapping[str, Any]
RemoteFetch = Callable[[str, "FetchOptions | None"], AsyncGenerator[bytes, None]]
PathLike = str | os.PathLike[str]


def digest(data: bytes | str) -> str:
    """Return the SHA-1 hex digest of ``data`` (strings are UTF-8 encoded)."""

    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha1(data).hexdigest()


@dataclass(slots=True)
class CacheResult:
    """Where a remote file ended up.

    ``cached_file_path`` is only set when the file was kept in the cache.
    """

    deployed_file_path: Path
    cached_file_path: Path | None = None


@dataclass(slots=True)
class FetchedFile:
    file_type: FileType | None
    content_hash: str
    size: int


def build_client(settings: Settings | None = None) -> httpx.AsyncClient:
    cfg = settings or get_settings()
    return httpx.AsyncClient(
        timeout=httpx.Timeout(cfg.fetch.timeout_s, connect=10.0),
        http2=cfg.fetch.http2,
        follow_redirects=True,
        headers={"User-Agent": cfg.fetch.user_agent},
    )


async def iter_remote_bytes(
    url: str,
    options: FetchOptions | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> AsyncGenerator[bytes, None]:
    """Stream the body of ``url``.

    ``options`` is passed through untouched as keyword arguments of
    ``httpx.AsyncClient.stream``. Transport and HTTP status errors are raised
    as-is. When ``client`` is omitted a client is created for this call.
    """

    owns_client = client is None
    http_client = client or build_client(settings)
    try:
        async with http_client.stream("GET", url, **dict(options or {})) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                yield chunk
    finally:
        if owns_client:
            await http_client.aclose()


async def _make_dirs(path: Path) -> None:
    try:
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
    except OSError as exc:
        raise FileOperationError(f'failed to create a directory "{path}"') from exc


async def _copy_file_with_dir(source: Path, destination: Path) -> None:
    await _make_dirs(destination.parent)
    try:
        await asyncio.to_thread(shutil.copyfile, source, destination)
    except OSError as exc:
        raise FileOperationError(f'failed to copy a file from "{source}" to "{destination}"') from exc


async def _move_file_with_dir(source: Path, destination: Path) -> None:
    await _make_dirs(destination.parent)
    try:
        await asyncio.to_thread(os.replace, source, destination)
    except OSError as exc:
        raise FileOperationError(f'failed to move a file from "{source}" to "{destination}"') from exc


async def _remove_file(path: Path) -> None:
    try:
        await asyncio.to_thread(os.remove, path)
    except OSError as exc:
        raise FileOperationError(f'failed to remove "{path}"; please remove it manually') from exc


async def deploy_local_file(
    source_file_path: PathLike,
    destination_file_path: PathLike,
    keep_original_file: bool = False,
) -> None:
    """Move ``source_file_path`` to ``destination_file_path``, or copy it when
    ``keep_original_file`` is true. Missing parent directories are created."""

    source = Path(source_file_path)
    destination = Path(destination_file_path)
    operation = _copy_file_with_dir if keep_original_file else _move_file_with_dir
    try:
        await operation(source, destination)
    except FileOperationError as exc:
        raise DeployError("failed to deploy a local file") from exc

    mode = "copy" if keep_original_file else "move"
    DEPLOYMENTS.labels(mode=mode).inc()
    LOGGER.debug("Deployed %s to %s (%s)", source, destination, mode)


async def _fetch_remote_file(
    url: str,
    destination: Path,
    fetch: RemoteFetch,
    options: FetchOptions | None,
) -> FetchedFile:
    hasher = hashlib.sha1()
    sniffer = FileTypeSniffer()
    size = 0

    try:
        handle = await asyncio.to_thread(destination.open, "wb")
    except OSError as exc:
        raise FileOperationError(f'failed to open a file "{destination}"') from exc

    try:
        async with aclosing(fetch(url, options)) as chunks:
            async for chunk in chunks:
                hasher.update(chunk)
                sniffer.feed(chunk)
                size += len(chunk)
                try:
                    await asyncio.to_thread(handle.write, chunk)
                except OSError as exc:
                    raise FileOperationError(f'failed to write a file "{destination}"') from exc
    finally:
        await asyncio.to_thread(handle.close)

    return FetchedFile(file_type=sniffer.result(), content_hash=hasher.hexdigest(), size=size)


def resolve_extension(url: str, file_type: FileType | None) -> str:
    """Pick the cached file's extension: URL path first, sniffed type second."""

    suffix = PurePosixPath(urlsplit(url).path).suffix
    if suffix:
        return suffix
    if file_type is not None:
        return f".{file_type.extension}"
    return ""


async def _discard_temp_file(path: Path, error: DeployError) -> None:
    try:
        await _remove_file(path)
    except FileOperationError as cleanup_exc:
        raise AggregateError([error, cleanup_exc], "failed to deploy a remote file and to clean up") from error


async def deploy_remote_file(
    file_url: str,
    destination_dir_path: PathLike,
    cache_dir_path: PathLike,
    keep_file_in_cache_dir: bool = False,
    fetch_options: FetchOptions | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
    fetch: RemoteFetch | None = None,
) -> CacheResult:
    """Fetch ``file_url`` into the cache and deploy it under its content name.

    Parameters
    ----------
    file_url:
        Remote resource to fetch.
    destination_dir_path:
        Directory receiving ``<sha1(content)><ext>``.
    cache_dir_path:
        Cache item directory holding temp and content files.
    keep_file_in_cache_dir:
        Copy instead of move so the content file stays in the cache.
    fetch_options:
        Opaque options handed to the fetch collaborator unchanged.
    client, settings:
        Used to build the default httpx-based fetcher.
    fetch:
        Replacement fetch collaborator returning an async byte stream.
    """

    cache_dir = Path(cache_dir_path)
    destination_dir = Path(destination_dir_path)
    tmp_file_path = cache_dir / f"tmp-{digest(file_url)}"

    await _make_dirs(cache_dir)

    fetcher = fetch or partial(iter_remote_bytes, client=client, settings=settings)
    LOGGER.debug("Fetching %s into %s", file_url, tmp_file_path)
    fetched = await _fetch_remote_file(file_url, tmp_file_path, fetcher, fetch_options)
    REMOTE_FETCHES.inc()
    FETCHED_BYTES.inc(fetched.size)

    file_name = f"{fetched.content_hash}{resolve_extension(file_url, fetched.file_type)}"
    cache_file_path = cache_dir / file_name

    try:
        await _move_file_with_dir(tmp_file_path, cache_file_path)
    except FileOperationError as exc:
        error = DeployError("failed to deploy a remote file")
        error.__cause__ = exc
        await _discard_temp_file(tmp_file_path, error)
        raise error from exc

    destination_file_path = destination_dir / file_name
    await deploy_local_file(cache_file_path, destination_file_path, keep_file_in_cache_dir)

    if not keep_file_in_cache_dir:
        return CacheResult(deployed_file_path=destination_file_path)
    return CacheResult(deployed_file_path=destination_file_path, cached_file_path=cache_file_path)


__all__ = [
    "CacheResult",
    "FetchOptions",
    "RemoteFetch",
    "build_client",
    "deploy_local_file",
    "deploy_remote_file",
    "digest",
    "iter_remote_bytes",
    "resolve_extension",
]
