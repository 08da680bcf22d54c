from __future__ import annotations

import pytest

from catalog_sync.pipeline.dispatcher import assign_pages, partition_pages

WORKER_IDS = [f"worker-{index + 1}" for index in range(9)]


def _covered_pages(ranges) -> list[int]:
    return [page for page_range in ranges if page_range for page in page_range.pages()]


def test_partition_100_pages_across_9_workers() -> None:
    ranges = partition_pages(100, 9)

    assert [str(r) for r in ranges] == [
        "1-12",
        "13-23",
        "24-34",
        "35-45",
        "46-56",
        "57-67",
        "68-78",
        "79-89",
        "90-100",
    ]


@pytest.mark.parametrize(
    ("total", "workers"),
    [(1, 1), (1, 9), (8, 9), (9, 9), (10, 9), (100, 9), (1000, 7), (250, 4), (13, 13)],
)
def test_partition_covers_every_page_exactly_once_and_is_balanced(total: int, workers: int) -> None:
    ranges = partition_pages(total, workers)

    assert len(ranges) == workers
    assert _covered_pages(ranges) == list(range(1, total + 1))

    sizes = [len(r) if r else 0 for r in ranges]
    assert max(sizes) - min(sizes) <= 1
    # Larger shares go to the lowest worker indices.
    assert sizes == sorted(sizes, reverse=True)


def test_partition_fewer_pages_than_workers_leaves_trailing_workers_idle() -> None:
    ranges = partition_pages(3, 5)

    assert [str(r) if r else None for r in ranges] == ["1-1", "2-2", "3-3", None, None]


def test_partition_zero_pages_assigns_nothing() -> None:
    assert partition_pages(0, 4) == [None, None, None, None]
    assert assign_pages(0, WORKER_IDS) == []


def test_partition_rejects_invalid_arguments() -> None:
    with pytest.raises(ValueError):
        partition_pages(10, 0)
    with pytest.raises(ValueError):
        partition_pages(-1, 3)


def test_assign_pages_binds_ranges_to_worker_ids_and_skips_empty_shares() -> None:
    assignments = assign_pages(7, WORKER_IDS)

    assert [a.worker_id for a in assignments] == WORKER_IDS[:7]
    assert [a.worker_index for a in assignments] == list(range(7))
    assert all(len(a.page_range) == 1 for a in assignments)
