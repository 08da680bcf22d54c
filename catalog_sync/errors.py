"""Catalog Sync exception hierarchy.

Each subsystem raises a specific error type so failures local to one unit of
work can be told apart from failures that invalidate a whole run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from catalog_sync.rollup.engine import RollupReport


class CatalogSyncError(Exception):
    """Base exception for all Catalog Sync failures."""


class ConfigurationError(CatalogSyncError):
    """Raised when a required credential or store target is missing."""


class PageFetchError(CatalogSyncError):
    """Raised when a page could not be fetched within the retry ceiling."""

    def __init__(self, page: int, cause: BaseException) -> None:
        super().__init__(f"page {page} failed after retries: {cause!r}")
        self.page = page
        self.cause = cause


class ProbeError(CatalogSyncError):
    """Raised when the total-count probe fails; no ranges can be assigned."""


class DispatchError(CatalogSyncError):
    """Raised when a range could not be delivered to a worker."""


class RollupError(CatalogSyncError):
    """Raised for rollup/retention statement failures."""


class RollupFailed(RollupError):
    """Raised after a rollup run ended in failure and released its lock."""

    def __init__(self, message: str, report: Optional["RollupReport"] = None) -> None:
        super().__init__(message)
        self.report = report


__all__ = [
    "CatalogSyncError",
    "ConfigurationError",
    "PageFetchError",
    "ProbeError",
    "DispatchError",
    "RollupError",
    "RollupFailed",
]
