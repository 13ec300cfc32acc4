from __future__ import annotations

import pytest

from link_summary.sniff import SNIFF_BYTES, FileType, FileTypeSniffer, sniff


@pytest.mark.parametrize(
    ("head", "extension"),
    [
        (b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR", "png"),
        (b"\xff\xd8\xff\xe0\x00\x10JFIF", "jpg"),
        (b"GIF89a\x01\x00", "gif"),
        (b"RIFF\x24\x00\x00\x00WEBPVP8 ", "webp"),
        (b"%PDF-1.7\n", "pdf"),
        (b"\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00", "mp4"),
        (b"\x00\x00\x00\x1cftypavif\x00\x00\x00\x00", "avif"),
        (b'<?xml version="1.0"?><svg/>', "xml"),
        (b'\xef\xbb\xbf<?xml version="1.0"?>', "xml"),
    ],
)
def test_sniff_recognises_signatures(head: bytes, extension: str) -> None:
    found = sniff(head)

    assert found is not None
    assert found.extension == extension


@pytest.mark.parametrize("head", [b"", b"sample text", b"<html><body></body></html>", b"RIFF"])
def test_sniff_returns_none_for_unknown_content(head: bytes) -> None:
    assert sniff(head) is None


def test_tar_signature_at_offset() -> None:
    head = bytes(257) + b"ustar\x0000"

    assert sniff(head) == FileType("tar", "application/x-tar")


def test_sniffer_buffers_only_the_head() -> None:
    sniffer = FileTypeSniffer()
    sniffer.feed(b"%P")
    sniffer.feed(b"DF-1.4")
    sniffer.feed(b"x" * (SNIFF_BYTES * 2))

    assert sniffer.result() == FileType("pdf", "application/pdf")
    assert len(sniffer._buffer) == SNIFF_BYTES
