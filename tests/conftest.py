import json
from collections.abc import Callable
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cardkeeper.models.db import Base
from cardkeeper.rules.cache import expression_cache


@pytest.fixture(autouse=True)
def clear_expression_cache():
    """Clear the process-wide expression cache between tests.

    SQLite reuses rule ids across test databases, so a stale entry could
    otherwise be served for a different rule with the same id.
    """
    expression_cache.clear()
    yield
    expression_cache.clear()


@pytest.fixture
async def async_engine():
    """In-memory SQLite engine; one shared connection so every session sees the same data."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_card() -> Callable[..., dict[str, Any]]:
    """Factory for catalog card dicts in Scryfall shape."""

    def _make_card(**overrides: Any) -> dict[str, Any]:
        card: dict[str, Any] = {
            "id": "card-1",
            "oracle_id": "oracle-1",
            "name": "Lightning Bolt",
            "set": "LEB",
            "set_name": "Limited Edition Beta",
            "rarity": "common",
            "type_line": "Instant",
            "mana_cost": "{R}",
            "cmc": 1.0,
            "colors": ["R"],
            "color_identity": ["R"],
            "keywords": [],
            "finishes": ["nonfoil"],
            "reserved": False,
            "foil": False,
            "nonfoil": True,
            "prices": {"usd": "250.00", "usd_foil": None, "eur": "199.99", "tix": None},
        }
        card.update(overrides)
        return card

    return _make_card


@pytest.fixture
def card_json(make_card) -> Callable[..., str]:
    """Factory for catalog card JSON text."""

    def _card_json(**overrides: Any) -> str:
        return json.dumps(make_card(**overrides))

    return _card_json
