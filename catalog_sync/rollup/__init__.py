"""
Rollup package for Catalog Sync.

Downsamples the raw price time-series into tiered buckets and prunes each
table to its retention window under a cluster-wide run lock.
"""

from catalog_sync.rollup.engine import RollupEngine, RollupOutcome, RollupReport, RollupState
from catalog_sync.rollup.lock import RunLock, lock_key
from catalog_sync.rollup.tiers import PruneStep, Tier, bucket_start, plan_prune, tiers_from_settings

__all__ = [
    "RollupEngine",
    "RollupOutcome",
    "RollupReport",
    "RollupState",
    "RunLock",
    "lock_key",
    "PruneStep",
    "Tier",
    "bucket_start",
    "plan_prune",
    "tiers_from_settings",
]
