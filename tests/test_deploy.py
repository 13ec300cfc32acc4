from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Any, AsyncGenerator

import httpx
import pytest

from link_summary import deploy
from link_summary.deploy import deploy_local_file, deploy_remote_file, digest, resolve_extension
from link_summary.errors import AggregateError, DeployError, FileOperationError
from link_summary.sniff import FileType

SAMPLE_URL = "https://x/file.txt"
SAMPLE_BYTES = b"sample text"


def _sha1(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha1(data).hexdigest()


def _fetch_chunks(*chunks: bytes):
    calls: list[tuple[str, Any]] = []

    async def fetch(url: str, options: Any) -> AsyncGenerator[bytes, None]:
        calls.append((url, options))
        for chunk in chunks:
            yield chunk

    fetch.calls = calls  # type: ignore[attr-defined]
    return fetch


def _mock_client(handler) -> httpx.AsyncClient:  # noqa: ANN001
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_digest_matches_hashlib() -> None:
    assert digest("https://x/file.txt") == _sha1("https://x/file.txt")
    assert digest(b"abc") == _sha1(b"abc")


@pytest.mark.parametrize(
    ("url", "file_type", "expected"),
    [
        ("https://x/file.txt", None, ".txt"),
        ("https://x/image.png?size=large#frag", FileType("jpg", "image/jpeg"), ".png"),
        ("https://x/feed", FileType("xml", "application/xml"), ".xml"),
        ("https://x/feed?format=.json", None, ""),
        ("https://x/", None, ""),
    ],
)
def test_resolve_extension(url: str, file_type: FileType | None, expected: str) -> None:
    assert resolve_extension(url, file_type) == expected


@pytest.mark.asyncio
async def test_deploy_local_file_moves_by_default(tmp_path: Path) -> None:
    source = tmp_path / "cache" / "items" / "a.txt"
    source.parent.mkdir(parents=True)
    source.write_bytes(b"payload")
    destination = tmp_path / "public" / "dest" / "a.txt"

    await deploy_local_file(source, destination, False)

    assert destination.read_bytes() == b"payload"
    assert not source.exists()


@pytest.mark.asyncio
async def test_deploy_local_file_copies_when_keeping_original(tmp_path: Path) -> None:
    source = tmp_path / "a.txt"
    source.write_bytes(b"payload")
    destination = tmp_path / "public" / "a.txt"

    await deploy_local_file(source, destination, True)

    assert destination.read_bytes() == b"payload"
    assert source.read_bytes() == b"payload"


@pytest.mark.asyncio
async def test_deploy_local_file_wraps_missing_source(tmp_path: Path) -> None:
    source = tmp_path / "missing.txt"
    destination = tmp_path / "public" / "missing.txt"

    with pytest.raises(DeployError) as excinfo:
        await deploy_local_file(source, destination)

    assert excinfo.value.message == "failed to deploy a local file"
    cause = excinfo.value.__cause__
    assert isinstance(cause, FileOperationError)
    assert "failed to move a file" in str(cause)
    assert str(source) in str(cause)
    assert isinstance(cause.__cause__, FileNotFoundError)


@pytest.mark.asyncio
async def test_deploy_local_file_wraps_directory_failure(tmp_path: Path) -> None:
    source = tmp_path / "a.txt"
    source.write_bytes(b"payload")
    blocker = tmp_path / "public"
    blocker.write_text("not a directory")

    with pytest.raises(DeployError) as excinfo:
        await deploy_local_file(source, blocker / "nested" / "a.txt", True)

    assert "failed to create a directory" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__.__cause__, OSError)
    assert source.exists()


@pytest.mark.asyncio
async def test_deploy_remote_file_moves_content_into_destination(tmp_path: Path) -> None:
    cache_dir = tmp_path / "cache" / "items"
    dest_dir = tmp_path / "public" / "dest"
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, content=SAMPLE_BYTES)

    async with _mock_client(handler) as client:
        result = await deploy_remote_file(SAMPLE_URL, dest_dir, cache_dir, False, client=client)

    expected_name = f"{_sha1(SAMPLE_BYTES)}.txt"
    assert seen == [SAMPLE_URL]
    assert result.deployed_file_path == dest_dir / expected_name
    assert result.cached_file_path is None
    assert result.deployed_file_path.read_bytes() == SAMPLE_BYTES
    assert not (cache_dir / f"tmp-{_sha1(SAMPLE_URL)}").exists()
    assert not (cache_dir / expected_name).exists()


@pytest.mark.asyncio
async def test_deploy_remote_file_keeps_copy_in_cache(tmp_path: Path) -> None:
    cache_dir = tmp_path / "cache" / "items"
    dest_dir = tmp_path / "public"
    fetch = _fetch_chunks(b"sample ", b"text")

    result = await deploy_remote_file(SAMPLE_URL, dest_dir, cache_dir, True, fetch=fetch)

    expected_name = f"{_sha1(SAMPLE_BYTES)}.txt"
    assert result.cached_file_path == cache_dir / expected_name
    assert result.cached_file_path.read_bytes() == SAMPLE_BYTES
    assert result.deployed_file_path.read_bytes() == SAMPLE_BYTES
    assert sorted(path.name for path in cache_dir.iterdir()) == [expected_name]


@pytest.mark.asyncio
async def test_deploy_remote_file_uses_sniffed_extension(tmp_path: Path) -> None:
    content = [b"<?x", b'ml version="1.0" encoding="utf-8"?>\n<rss version="2.0"></rss>\n']
    fetch = _fetch_chunks(*content)

    result = await deploy_remote_file("https://x/feed", tmp_path / "public", tmp_path / "items", fetch=fetch)

    assert result.deployed_file_path.name == f"{_sha1(b''.join(content))}.xml"


@pytest.mark.asyncio
async def test_deploy_remote_file_without_any_extension(tmp_path: Path) -> None:
    fetch = _fetch_chunks(SAMPLE_BYTES)

    result = await deploy_remote_file("https://x/download?id=7", tmp_path / "public", tmp_path / "items", fetch=fetch)

    assert result.deployed_file_path.name == _sha1(SAMPLE_BYTES)


@pytest.mark.asyncio
async def test_identical_content_gets_identical_names(tmp_path: Path) -> None:
    first = await deploy_remote_file(
        "https://a.example/one.txt", tmp_path / "public", tmp_path / "items", fetch=_fetch_chunks(SAMPLE_BYTES)
    )
    second = await deploy_remote_file(
        "https://b.example/two.txt?v=2", tmp_path / "public", tmp_path / "items", fetch=_fetch_chunks(SAMPLE_BYTES)
    )

    assert first.deployed_file_path == second.deployed_file_path


@pytest.mark.asyncio
async def test_deploy_remote_file_passes_fetch_options_through(tmp_path: Path) -> None:
    fetch = _fetch_chunks(SAMPLE_BYTES)
    options = {"headers": {"X-Token": "abc"}}

    await deploy_remote_file(SAMPLE_URL, tmp_path / "public", tmp_path / "items", False, options, fetch=fetch)

    assert fetch.calls == [(SAMPLE_URL, options)]


@pytest.mark.asyncio
async def test_default_fetcher_sends_options_as_request_kwargs(tmp_path: Path) -> None:
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["token"] = request.headers.get("X-Token", "")
        captured["query"] = request.url.query.decode()
        return httpx.Response(200, content=SAMPLE_BYTES)

    async with _mock_client(handler) as client:
        await deploy_remote_file(
            SAMPLE_URL,
            tmp_path / "public",
            tmp_path / "items",
            fetch_options={"headers": {"X-Token": "abc"}, "params": {"v": "1"}},
            client=client,
        )

    assert captured == {"token": "abc", "query": "v=1"}


@pytest.mark.asyncio
async def test_http_errors_propagate_unwrapped(tmp_path: Path) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="missing")

    async with _mock_client(handler) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await deploy_remote_file(SAMPLE_URL, tmp_path / "public", tmp_path / "items", client=client)

    assert not (tmp_path / "public").exists()


@pytest.mark.asyncio
async def test_transport_errors_propagate_unwrapped(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _mock_client(handler) as client:
        with pytest.raises(httpx.ConnectError):
            await deploy_remote_file(SAMPLE_URL, tmp_path / "public", tmp_path / "items", client=client)


@pytest.fixture()
def failing_temp_rename(monkeypatch: pytest.MonkeyPatch) -> None:
    real_replace = os.replace

    def fake_replace(source, destination):  # noqa: ANN001
        if Path(source).name.startswith("tmp-"):
            raise PermissionError(13, "Permission denied", str(source))
        return real_replace(source, destination)

    monkeypatch.setattr(deploy.os, "replace", fake_replace)


@pytest.mark.asyncio
@pytest.mark.usefixtures("failing_temp_rename")
async def test_rename_failure_removes_temp_file(tmp_path: Path) -> None:
    cache_dir = tmp_path / "items"

    with pytest.raises(DeployError) as excinfo:
        await deploy_remote_file(SAMPLE_URL, tmp_path / "public", cache_dir, fetch=_fetch_chunks(SAMPLE_BYTES))

    assert excinfo.value.message == "failed to deploy a remote file"
    assert isinstance(excinfo.value.__cause__, FileOperationError)
    assert isinstance(excinfo.value.__cause__.__cause__, PermissionError)
    assert list(cache_dir.iterdir()) == []


@pytest.mark.asyncio
@pytest.mark.usefixtures("failing_temp_rename")
async def test_rename_and_cleanup_failures_are_aggregated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cache_dir = tmp_path / "items"

    def fake_remove(path):  # noqa: ANN001
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(deploy.os, "remove", fake_remove)

    with pytest.raises(AggregateError) as excinfo:
        await deploy_remote_file(SAMPLE_URL, tmp_path / "public", cache_dir, fetch=_fetch_chunks(SAMPLE_BYTES))

    primary, cleanup = excinfo.value.errors
    assert isinstance(primary, DeployError)
    assert isinstance(cleanup, FileOperationError)
    assert "please remove it manually" in str(cleanup)
    assert f"tmp-{_sha1(SAMPLE_URL)}" in str(excinfo.value)
    assert (cache_dir / f"tmp-{_sha1(SAMPLE_URL)}").exists()
