"""
Domain models for Catalog Sync.

Page ranges handed to workers, raw page results from the catalog, the
normalized entity record written to the relational store, and the price samples
appended to the time-series table.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class PageRange(BaseModel):
    """
    Contiguous, inclusive set of remote pages assigned to one worker.
    """

    start: int = Field(..., ge=1, description="First page (1-based, inclusive).")
    end: int = Field(..., description="Last page (inclusive).")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _end_not_before_start(self) -> "PageRange":
        if self.end < self.start:
            raise ValueError(f"page range end {self.end} is before start {self.start}")
        return self

    def __len__(self) -> int:
        return self.end - self.start + 1

    def pages(self) -> range:
        return range(self.start, self.end + 1)

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


class WorkerAssignment(BaseModel):
    """A page range bound to the worker that should process it."""

    worker_index: int = Field(..., ge=0)
    worker_id: str
    page_range: PageRange

    model_config = {"frozen": True}


class PageResult(BaseModel):
    """
    One page of the remote catalog as returned by the API.
    """

    data: List[Dict[str, Any]] = Field(default_factory=list)
    page: int = 1
    page_size: int = Field(0, alias="pageSize")
    count: int = 0
    total_count: int = Field(0, alias="totalCount")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class EntityRecord(BaseModel):
    """
    Normalized catalog entity ready for the store.

    ``root`` holds the root table columns, ``parent`` an optional row that is
    connected-or-created before the root is written, and ``children`` the owned
    collections keyed by child table. Children are replaced, never merged.
    """

    entity_id: str
    root: Dict[str, Any]
    parent: Optional[Dict[str, Any]] = None
    children: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)

    model_config = {"frozen": True}


class PriceSample(BaseModel):
    """
    One observed price for one entity. Appended, never updated.
    """

    entity_id: str
    observed_at: datetime
    value: Optional[float] = None
    source: Optional[str] = None

    model_config = {"frozen": True}


class SyncResult(BaseModel):
    """Outcome of one worker pass over a page range."""

    owner_id: str
    page_range: PageRange
    processed_page_count: int = 0
    total_entities_seen: int = 0
    failed_pages: List[int] = Field(default_factory=list)
    entities_upserted: int = 0
    entity_failures: int = 0
    samples_appended: int = 0
    failed_tasks: int = 0


__all__ = [
    "PageRange",
    "WorkerAssignment",
    "PageResult",
    "EntityRecord",
    "PriceSample",
    "SyncResult",
]
