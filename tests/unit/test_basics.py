import csv
from datetime import datetime, timezone
from pathlib import Path
from time import sleep

from catalog_sync import config
from catalog_sync.utils import profiler
from scripts import seed_price_history


def test_settings_defaults(monkeypatch):
    for name in ("DB_HOST", "DB_PORT", "DB_NAME", "WORKER_COUNT", "PAGE_SIZE", "TIMESCALE_URL"):
        monkeypatch.delenv(name, raising=False)
    settings = config.Settings(_env_file=None)
    assert settings.db_host == "localhost"
    assert settings.db_port == 5432
    assert settings.db_name == "catalog_sync"
    assert settings.page_size == 250
    assert settings.worker_count == 9
    assert settings.prune_batch_size > 0
    assert settings.scheduler_enabled is False


def test_get_settings_is_cached():
    assert config.get_settings() is config.get_settings()


def test_profile_block_measures_time():
    with profiler.profile_block("sleep") as stats:
        sleep(0.05)
    assert stats.duration_seconds >= 0.05
    assert stats.peak_rss_bytes is not None and stats.peak_rss_bytes > 0
    if stats.cpu_percent is not None:
        assert isinstance(stats.cpu_percent, float)
    assert stats.as_log_fields()["label"] == "sleep"


def test_profile_block_records_duration_on_error():
    try:
        with profiler.profile_block("boom") as stats:
            raise ValueError("boom")
    except ValueError:
        pass
    assert stats.end_ts >= stats.start_ts


def test_seed_script_writes_csv(tmp_path: Path):
    csv_path = tmp_path / "price_history.csv"
    end = datetime(2024, 5, 1, tzinfo=timezone.utc)
    # 2 days every 12 hours, both ends included -> 5 samples per card
    written = seed_price_history._generate_samples_csv(
        csv_path, cards=3, days=2, interval_hours=12, seed=123, end=end
    )
    assert written == 15
    with csv_path.open("r", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert len(rows) == 16
    assert rows[0] == ["entity_id", "observed_at", "value", "source"]
    assert {row[0] for row in rows[1:]} == {"seed-1", "seed-2", "seed-3"}
    assert rows[-1][1] == end.isoformat()
    for _, _, value, source in rows[1:]:
        # a missing price carries no source either
        assert (value == "") == (source == "")
        if value:
            assert float(value) > 0


def test_seed_script_is_deterministic(tmp_path: Path):
    end = datetime(2024, 5, 1, tzinfo=timezone.utc)
    first, second = tmp_path / "a.csv", tmp_path / "b.csv"
    seed_price_history._generate_samples_csv(first, 2, 1, 6, seed=7, end=end)
    seed_price_history._generate_samples_csv(second, 2, 1, 6, seed=7, end=end)
    assert first.read_text(encoding="utf-8") == second.read_text(encoding="utf-8")
