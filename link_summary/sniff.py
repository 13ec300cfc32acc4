"""Detect file types from the leading bytes of a payload."""

from __future__ import annotations

from dataclasses import dataclass

SNIFF_BYTES = 4100
_UTF8_BOM = b"\xef\xbb\xbf"


@dataclass(frozen=True, slots=True)
class FileType:
    """Detected type; ``extension`` has no leading dot."""

    extension: str
    mime: str


# (offset, signature, extension, mime)
_SIGNATURES: tuple[tuple[int, bytes, str, str], ...] = (
    (0, b"\x89PNG\r\n\x1a\n", "png", "image/png"),
    (0, b"\xff\xd8\xff", "jpg", "image/jpeg"),
    (0, b"GIF87a", "gif", "image/gif"),
    (0, b"GIF89a", "gif", "image/gif"),
    (0, b"BM", "bmp", "image/bmp"),
    (0, b"\x00\x00\x01\x00", "ico", "image/x-icon"),
    (0, b"II*\x00", "tif", "image/tiff"),
    (0, b"MM\x00*", "tif", "image/tiff"),
    (0, b"8BPS", "psd", "image/vnd.adobe.photoshop"),
    (0, b"%PDF", "pdf", "application/pdf"),
    (0, b"PK\x03\x04", "zip", "application/zip"),
    (0, b"\x1f\x8b\x08", "gz", "application/gzip"),
    (0, b"BZh", "bz2", "application/x-bzip2"),
    (0, b"7z\xbc\xaf\x27\x1c", "7z", "application/x-7z-compressed"),
    (0, b"\xfd7zXZ\x00", "xz", "application/x-xz"),
    (0, b"Rar!\x1a\x07", "rar", "application/x-rar-compressed"),
    (257, b"ustar", "tar", "application/x-tar"),
    (0, b"ID3", "mp3", "audio/mpeg"),
    (0, b"OggS", "ogg", "audio/ogg"),
    (0, b"fLaC", "flac", "audio/x-flac"),
    (0, b"\x1aE\xdf\xa3", "webm", "video/webm"),
    (0, b"wOFF", "woff", "font/woff"),
    (0, b"wOF2", "woff2", "font/woff2"),
    (0, b"OTTO", "otf", "font/otf"),
    (0, b"\x00\x01\x00\x00\x00", "ttf", "font/ttf"),
    (0, b"\x00asm", "wasm", "application/wasm"),
)

_RIFF_FORMATS = {
    b"WEBP": ("webp", "image/webp"),
    b"WAVE": ("wav", "audio/vnd.wave"),
    b"AVI ": ("avi", "video/vnd.avi"),
}

_FTYP_BRANDS = {
    b"avif": ("avif", "image/avif"),
    b"heic": ("heic", "image/heic"),
    b"mif1": ("heic", "image/heif"),
    b"qt  ": ("mov", "video/quicktime"),
    b"M4A ": ("m4a", "audio/mp4"),
}


def sniff(head: bytes) -> FileType | None:
    """Return the file type recognised in ``head`` or ``None``.

    ``head`` should hold the first :data:`SNIFF_BYTES` bytes of the payload;
    shorter inputs are fine when the payload itself is shorter.
    """

    if not head:
        return None

    if head[:4] == b"RIFF" and len(head) >= 12:
        found = _RIFF_FORMATS.get(head[8:12])
        if found:
            return FileType(*found)

    if head[4:8] == b"ftyp" and len(head) >= 12:
        brand = head[8:12]
        found = _FTYP_BRANDS.get(brand)
        if found:
            return FileType(*found)
        return FileType("mp4", "video/mp4")

    for offset, signature, extension, mime in _SIGNATURES:
        if head[offset : offset + len(signature)] == signature:
            return FileType(extension, mime)

    text = head[len(_UTF8_BOM) :] if head.startswith(_UTF8_BOM) else head
    if text.startswith(b"<?xml "):
        return FileType("xml", "application/xml")

    return None


class FileTypeSniffer:
    """Collect the head of a byte stream as it passes by, then :func:`sniff` it."""

    __slots__ = ("_buffer", "_limit")

    def __init__(self, limit: int = SNIFF_BYTES) -> None:
        self._buffer = bytearray()
        self._limit = limit

    def feed(self, chunk: bytes) -> None:
        missing = self._limit - len(self._buffer)
        if missing > 0 and chunk:
            self._buffer.extend(chunk[:missing])

    def result(self) -> FileType | None:
        return sniff(bytes(self._buffer))


__all__ = ["SNIFF_BYTES", "FileType", "FileTypeSniffer", "sniff"]
