"""
Synthetic price-history generation and loading for Catalog Sync.

Emits deterministic pseudo-random price samples (a random walk per card, with
occasional missing prices) as CSV and loads them into ``price_history`` with
Postgres COPY. Useful to exercise the rollup engine without a catalog sync.
"""

from __future__ import annotations

import csv
import random
import sys
import tempfile
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

import psycopg
import typer

from catalog_sync.infrastructure.db_factory import build_timeseries_dsn

app = typer.Typer(help="Generate synthetic price samples and load into Postgres (CSV + COPY).")

SOURCES = ("cardmarket", "tcgplayer")


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    return build_timeseries_dsn()


def _generate_samples_csv(
    csv_path: Path,
    cards: int,
    days: int,
    interval_hours: int,
    seed: int,
    null_ratio: float = 0.1,
    end: datetime | None = None,
) -> int:
    """Write ``cards x (days * 24 / interval_hours)`` samples; returns the row count."""
    rng = random.Random(seed)
    end = end or datetime.now(UTC).replace(minute=0, second=0, microsecond=0)
    start = end - timedelta(days=days)
    step = timedelta(hours=interval_hours)

    written = 0
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["entity_id", "observed_at", "value", "source"])

        for index in range(cards):
            entity_id = f"seed-{index + 1}"
            price = rng.uniform(0.1, 200.0)
            source = rng.choice(SOURCES)
            observed_at = start
            buffer: list[list[str]] = []
            while observed_at <= end:
                price = max(0.01, price * rng.uniform(0.95, 1.05))
                missing = rng.random() < null_ratio
                buffer.append(
                    [
                        entity_id,
                        observed_at.isoformat(),
                        "" if missing else f"{price:.2f}",
                        "" if missing else source,
                    ]
                )
                observed_at += step
            writer.writerows(buffer)
            written += len(buffer)
    return written


def _copy_into_db(dsn: str, csv_path: Path) -> None:
    with psycopg.connect(dsn) as conn:
        with conn.cursor() as cur:
            with cur.copy(
                """
                COPY public.price_history (entity_id, observed_at, value, source)
                FROM STDIN WITH (FORMAT csv, HEADER TRUE)
                """
            ) as copy:
                with csv_path.open("r", encoding="utf-8") as f:
                    for line in f:
                        copy.write(line)
            conn.commit()


@app.command()
def main(
    cards: int = typer.Option(1_000, "--cards", "-c", help="Number of distinct cards."),
    days: int = typer.Option(120, "--days", "-d", help="How far back samples go."),
    interval_hours: int = typer.Option(3, "--interval-hours", help="Hours between samples."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional CSV output path (if omitted, a temp file will be used).",
    ),
    dsn: str | None = typer.Option(None, "--dsn", help="Optional DSN override for Postgres."),
    no_load: bool = typer.Option(
        False,
        "--no-load",
        help="Only generate CSV; skip loading into Postgres.",
    ),
) -> None:
    """
    Generate synthetic price samples and optionally load them using COPY.
    """
    start = time.perf_counter()
    if output:
        csv_path = output
        csv_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        tmpdir = Path(tempfile.mkdtemp(prefix="price_history_csv_"))
        csv_path = tmpdir / "price_history.csv"

    typer.echo(f"Generating {cards:,} cards x {days} days -> {csv_path} (seed={seed})")
    rows = _generate_samples_csv(csv_path, cards, days, interval_hours, seed)
    gen_duration = time.perf_counter() - start
    typer.echo(f"CSV generation completed in {gen_duration:.2f}s ({rows:,} rows)")

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    load_start = time.perf_counter()
    typer.echo("Loading CSV into Postgres via COPY...")
    _copy_into_db(_build_dsn(dsn), csv_path)
    load_duration = time.perf_counter() - load_start
    typer.echo(f"Load completed in {load_duration:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
