"""Typed errors raised by the cache, deployment and catalog layers.

Exports
-------
- LinkSummaryError: base class; ``str()`` appends the chained cause
- FileOperationError: a filesystem step failed (paths in the message)
- DeployError: deploying a local or remote file failed
- AggregateError: several failures surfaced together, in order
- CatalogStateError: catalog method called in the wrong lifecycle state
- CatalogReadError, CatalogParseError, UnsupportedCatalogVersionError
"""

from __future__ import annotations

from typing import Sequence


class LinkSummaryError(RuntimeError):
    """Base class for link-summary failures.

    Raise with ``from exc`` so the underlying error is kept on
    ``__cause__``; the rendered message then reads ``"<message>: <cause>"``.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        if self.__cause__ is not None:
            return f"{self.message}: {self.__cause__}"
        return self.message


class FileOperationError(LinkSummaryError):
    """A directory or file operation failed."""


class DeployError(LinkSummaryError):
    """Placing a file into the cache or a destination directory failed."""


class AggregateError(LinkSummaryError):
    """Several errors reported together.

    ``errors`` keeps the order in which the failures happened; the primary
    failure comes first and every entry is rendered in the message.
    """

    def __init__(self, errors: Sequence[BaseException], message: str = "multiple errors occurred") -> None:
        self.errors: tuple[BaseException, ...] = tuple(errors)
        super().__init__(message)

    def __str__(self) -> str:
        details = "; ".join(str(error) for error in self.errors)
        return f"{self.message} ({len(self.errors)}): {details}"


class CatalogStateError(LinkSummaryError):
    """A catalog store method was called before ``open`` or ``open`` ran twice."""


class CatalogReadError(LinkSummaryError):
    """The catalog file exists but could not be read."""


class CatalogParseError(LinkSummaryError):
    """The catalog file content is not a valid catalog document."""


class UnsupportedCatalogVersionError(LinkSummaryError):
    """The catalog file was written by an unsupported format version."""

    def __init__(self, version: object) -> None:
        self.version = version
        super().__init__(f"unsupported cache file version; loaded-version={version}")


__all__ = [
    "LinkSummaryError",
    "FileOperationError",
    "DeployError",
    "AggregateError",
    "CatalogStateError",
    "CatalogReadError",
    "CatalogParseError",
    "UnsupportedCatalogVersionError",
]
