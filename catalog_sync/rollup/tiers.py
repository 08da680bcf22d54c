"""
Rollup tiers, bucket alignment, and the prune plan.

A tier downsamples the raw ``price_history`` samples into fixed-width buckets
holding the last non-null value seen in each bucket. ``bucket_sql`` is the SQL
expression the engine groups by; ``bucket_start`` is the same alignment done in
Python, used to compute lookback and prune cutoffs. Both assume UTC.

Pruning safety: a tier never deletes a bucket whose time span the next finer
tier (or the raw table, for the daily tier) still covers, so coverage only ever
gets coarser going back in time and never has a hole.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from catalog_sync.config import Settings
from catalog_sync.infrastructure.price_history import RAW_TABLE

THREE_DAY_ORIGIN = datetime(2000, 1, 3, tzinfo=timezone.utc)
THREE_DAYS = timedelta(days=3)


@dataclass(frozen=True)
class Span:
    """A calendar-aware duration (days plus whole months)."""

    days: int = 0
    months: int = 0

    def before(self, ts: datetime) -> datetime:
        return shift_months(ts, -self.months) - timedelta(days=self.days)


@dataclass(frozen=True)
class Tier:
    name: str
    table: str
    bucket_sql: str
    lookback: Optional[Span]
    retention: Optional[Span]


def shift_months(ts: datetime, months: int) -> datetime:
    """Move ``ts`` by whole months, clamping the day to the target month's length."""
    if months == 0:
        return ts
    index = ts.year * 12 + (ts.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(ts.day, calendar.monthrange(year, month)[1])
    return ts.replace(year=year, month=month, day=day)


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def bucket_start(tier: Tier, ts: datetime) -> datetime:
    """Start of the bucket of ``tier`` that contains ``ts``."""
    ts = _as_utc(ts)
    midnight = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if tier.name == "daily":
        return midnight
    if tier.name == "three_day":
        return THREE_DAY_ORIGIN + ((ts - THREE_DAY_ORIGIN) // THREE_DAYS) * THREE_DAYS
    if tier.name == "monthly":
        return midnight.replace(day=1)
    if tier.name == "six_month":
        return midnight.replace(month=1 if ts.month <= 6 else 7, day=1)
    raise ValueError(f"unknown tier {tier.name!r}")


DAILY_BUCKET = "date_trunc('day', observed_at)"
THREE_DAY_BUCKET = "date_bin('3 days', observed_at, TIMESTAMPTZ '2000-01-03 00:00:00+00')"
MONTHLY_BUCKET = "date_trunc('month', observed_at)"
SIX_MONTH_BUCKET = (
    "(date_trunc('year', observed_at)"
    " + make_interval(months => ((EXTRACT(MONTH FROM observed_at)::int - 1) / 6) * 6))"
)


def _days(value: Optional[int]) -> Optional[Span]:
    return None if value is None else Span(days=value)


def _months(value: Optional[int]) -> Optional[Span]:
    return None if value is None else Span(months=value)


def tiers_from_settings(settings: Settings) -> Tuple[Tier, ...]:
    """Configured tiers ordered fine to coarse."""
    return (
        Tier(
            "daily",
            "price_history_daily",
            DAILY_BUCKET,
            _days(settings.daily_lookback_days),
            _days(settings.daily_retention_days),
        ),
        Tier(
            "three_day",
            "price_history_3d",
            THREE_DAY_BUCKET,
            _days(settings.three_day_lookback_days),
            _days(settings.three_day_retention_days),
        ),
        Tier(
            "monthly",
            "price_history_monthly",
            MONTHLY_BUCKET,
            _months(settings.monthly_lookback_months),
            _months(settings.monthly_retention_months),
        ),
        Tier(
            "six_month",
            "price_history_6m",
            SIX_MONTH_BUCKET,
            _months(settings.six_month_lookback_months),
            _months(settings.six_month_retention_months),
        ),
    )


def lookback_start(tier: Tier, now: datetime) -> Optional[datetime]:
    """Earliest sample time a pass recomputes for ``tier``; ``None`` means all history."""
    if tier.lookback is None:
        return None
    return bucket_start(tier, tier.lookback.before(_as_utc(now)))


@dataclass(frozen=True)
class PruneStep:
    """Delete rows of ``table`` whose ``column`` is strictly before ``cutoff``."""

    name: str
    table: str
    column: str
    cutoff: datetime


def terminal_cutoff(now: datetime, years: int) -> datetime:
    """``date_trunc('year', now) - years``."""
    start_of_year = _as_utc(now).replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return start_of_year.replace(year=start_of_year.year - years)


def plan_prune(
    now: datetime,
    tiers: Sequence[Tier],
    raw_retention: timedelta,
    terminal_retention_years: Optional[int] = None,
) -> List[PruneStep]:
    """
    Compute the ordered prune steps for one run.

    Parameters
    ----------
    now : datetime
        Fixed reference time for every cutoff of the run.
    tiers : sequence of Tier
        Ordered fine to coarse.
    raw_retention : timedelta
        Age after which raw samples are deleted.
    terminal_retention_years : int, optional
        When set, rows before ``date_trunc('year', now) - N years`` are deleted
        from every table regardless of tier retention.

    Returns
    -------
    list of PruneStep
        Raw first, then tiers coarse to fine. Tiers that keep data forever, or
        whose finer neighbour keeps data forever, have no step unless terminal
        retention applies.
    """
    now = _as_utc(now)
    terminal = (
        terminal_cutoff(now, terminal_retention_years)
        if terminal_retention_years is not None
        else None
    )

    def _with_terminal(cutoff: Optional[datetime]) -> Optional[datetime]:
        if terminal is None:
            return cutoff
        if cutoff is None:
            return terminal
        return max(cutoff, terminal)

    raw_cutoff = now - raw_retention
    steps = [PruneStep("raw", RAW_TABLE, "observed_at", _with_terminal(raw_cutoff))]

    # Effective cutoffs fine -> coarse; None means nothing may be deleted.
    finer_cutoff: Optional[datetime] = raw_cutoff
    tier_steps: List[PruneStep] = []
    for tier in tiers:
        if tier.retention is None or finer_cutoff is None:
            effective = None
        else:
            effective = min(tier.retention.before(now), bucket_start(tier, finer_cutoff))
        cutoff = _with_terminal(effective)
        if cutoff is not None:
            tier_steps.append(PruneStep(tier.name, tier.table, "bucket_start", cutoff))
        finer_cutoff = effective

    steps.extend(reversed(tier_steps))
    return steps


def plan_from_settings(now: datetime, settings: Settings) -> List[PruneStep]:
    return plan_prune(
        now,
        tiers_from_settings(settings),
        timedelta(hours=settings.raw_retention_hours),
        settings.terminal_retention_years,
    )


__all__ = [
    "Span",
    "Tier",
    "PruneStep",
    "shift_months",
    "bucket_start",
    "tiers_from_settings",
    "lookback_start",
    "terminal_cutoff",
    "plan_prune",
    "plan_from_settings",
]
