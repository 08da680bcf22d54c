"""
Pytest configuration for Catalog Sync.

Provides fixtures for:
- Settings with fast retry/backoff for unit tests
- In-memory stores and owner resources for pipeline tests
- Database connection management and schema setup for integration tests
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional

import httpx
import psycopg
import pytest

from catalog_sync.config import Settings
from catalog_sync.domain.models import EntityRecord, PriceSample
from catalog_sync.infrastructure.catalog_client import CatalogClient
from catalog_sync.pipeline.registry import OwnerResources
from catalog_sync.pipeline.work_queue import WorkQueue

SCHEMA_PATH = Path(__file__).parent.parent / "db" / "init.sql"


def build_settings(**overrides: Any) -> Settings:
    """Settings with no retry delays; keyword overrides use field names."""
    values: Dict[str, Any] = {
        "db_host": os.getenv("DB_HOST", "localhost"),
        "db_port": int(os.getenv("DB_PORT", "5432")),
        "db_user": os.getenv("DB_USER", "postgres"),
        "db_password": os.getenv("DB_PASSWORD", "postgres"),
        "db_name": os.getenv("DB_NAME", "catalog_sync"),
        "timescale_url": None,
        "api_key": "shared-key",
        "worker_api_keys": {},
        "worker_count": 3,
        "fetch_base_delay_seconds": 0,
        "probe_delay_seconds": 0,
        "probe_max_attempts": 3,
        "db_write_delay_seconds": 0,
        "rollup_base_delay_seconds": 0,
        "log_level": "DEBUG",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return build_settings


@pytest.fixture
def unit_settings() -> Settings:
    return build_settings()


class InMemoryEntityStore:
    """Keeps the latest replacement per entity id, like the Postgres store does."""

    def __init__(self, fail_ids: tuple = ()) -> None:
        self.records: Dict[str, EntityRecord] = {}
        self.parents: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.fail_ids = set(fail_ids)

    async def replace_entity(self, record: EntityRecord) -> None:
        self.calls.append(record.entity_id)
        if record.entity_id in self.fail_ids:
            raise RuntimeError(f"write failed for {record.entity_id}")
        if record.parent:
            self.parents.setdefault(record.parent["id"], record.parent)
        self.records[record.entity_id] = record


class InMemoryPriceStore:
    def __init__(self) -> None:
        self.samples: List[PriceSample] = []
        self.batches: List[int] = []

    async def append_samples(self, samples) -> int:
        self.samples.extend(samples)
        self.batches.append(len(samples))
        return len(samples)


@pytest.fixture
def entity_store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def price_store() -> InMemoryPriceStore:
    return InMemoryPriceStore()


@pytest.fixture
def entity_store_factory() -> Callable[..., InMemoryEntityStore]:
    return InMemoryEntityStore


def make_card(card_id: str, price: Any = None, source: str = "cardmarket") -> Dict[str, Any]:
    """Minimal catalog card; ``price`` lands where ``source`` keeps it."""
    card: Dict[str, Any] = {
        "id": card_id,
        "name": f"Card {card_id}",
        "supertype": "Pok\u00e9mon",
        "set": {"id": "base1", "name": "Base", "releaseDate": "1999/01/09"},
        "attacks": [{"name": "Tackle", "cost": ["Colorless"], "damage": "10"}],
    }
    if price is not None and source == "cardmarket":
        card["cardmarket"] = {"url": "https://cm.example", "prices": {"averageSellPrice": price}}
    elif price is not None:
        card["tcgplayer"] = {"url": "https://tcg.example", "prices": {"normal": {"market": price}}}
    return card


@pytest.fixture
def card_factory() -> Callable[..., Dict[str, Any]]:
    return make_card


@pytest.fixture
def resources_factory(
    unit_settings: Settings,
    entity_store: InMemoryEntityStore,
    price_store: InMemoryPriceStore,
) -> Callable[..., OwnerResources]:
    """Owner resources whose catalog client answers through ``handler``."""

    def _build(
        handler: Callable[[httpx.Request], httpx.Response],
        owner_id: str = "worker-1",
        concurrency: int = 1,
        settings: Optional[Settings] = None,
    ) -> OwnerResources:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return OwnerResources(
            owner_id=owner_id,
            queue=WorkQueue(concurrency, name=owner_id),
            catalog=CatalogClient.from_settings(settings or unit_settings, client=client),
            entity_store=entity_store,
            price_store=price_store,
        )

    return _build


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return build_settings()


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return test_settings.dsn


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, options="-c timezone=UTC")
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(db_connection: psycopg.Connection) -> bool:
    """
    Ensure database schema is initialized from ``db/init.sql``.
    """
    with db_connection.cursor() as cur:
        cur.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
    db_connection.commit()
    return True


@pytest.fixture(scope="function")
def clean_price_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty the raw and rollup price tables before and after each test.
    """
    statement = (
        "TRUNCATE TABLE price_history, price_history_daily, price_history_3d, "
        "price_history_monthly, price_history_6m;"
    )
    with db_connection.cursor() as cur:
        cur.execute(statement)
    db_connection.commit()
    yield
    with db_connection.cursor() as cur:
        cur.execute(statement)
    db_connection.commit()


@pytest.fixture(scope="function")
def clean_entity_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty the card tables before and after each test.
    """
    statement = "TRUNCATE TABLE card_set, card RESTART IDENTITY CASCADE;"
    with db_connection.cursor() as cur:
        cur.execute(statement)
    db_connection.commit()
    yield
    with db_connection.cursor() as cur:
        cur.execute(statement)
    db_connection.commit()
