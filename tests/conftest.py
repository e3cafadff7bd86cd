"""Shared pytest fixtures for CircleKeeper tests.

Fixtures:
    - temp_db: Fresh file-backed SQLite database
    - memory_db: Fresh in-memory SQLite database
    - clock: Controllable clock pinned to NOW
    - mock_config: Test configuration with temp paths
    - services: All engine services wired to memory_db and clock
    - make_contact: Factory creating contacts in memory_db
    - add_interactions: Factory recording interaction events
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Generator, Iterable, Optional

import pytest

from circlekeeper.core.config import Config
from circlekeeper.db.database import Database
from circlekeeper.db.models import Channel, Contact, InteractionEvent, Tier
from circlekeeper.engine.container import EngineServices, build_services

# Wednesday of ISO week 2026-W11
NOW = datetime(2026, 3, 11, 12, 0, 0)
OWNER = "alice"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def temp_db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a temporary database for testing.

    Yields:
        Database connected to temp file, cleaned up after test
    """
    db_path = tmp_path / "test.db"
    db = Database(str(db_path))
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def memory_db() -> Generator[Database, None, None]:
    """Create an in-memory database for fast tests.

    Yields:
        Database using :memory:, no cleanup needed
    """
    db = Database(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to NOW."""
    return FakeClock()


@pytest.fixture
def mock_config(tmp_path: Path) -> Config:
    """Test configuration with temp paths."""
    return Config(
        db_path=tmp_path / "test.db",
        log_path=tmp_path / "logs",
        debug=True,
    )


@pytest.fixture
def services(memory_db: Database, mock_config: Config, clock: FakeClock) -> EngineServices:
    """Engine services over the in-memory database."""
    return build_services(memory_db, mock_config, clock=clock)


@pytest.fixture
def make_contact(memory_db: Database) -> Callable[..., int]:
    """Factory: create a contact and return its id."""
    counter = {"n": 0}

    def _make(
        owner_id: str = OWNER,
        name: Optional[str] = None,
        tier: Optional[Tier] = None,
        tier_assigned_at: Optional[datetime] = None,
        last_interaction_at: Optional[datetime] = None,
        archived: bool = False,
    ) -> int:
        counter["n"] += 1
        if tier is not None and tier_assigned_at is None:
            tier_assigned_at = NOW - timedelta(days=400) + timedelta(minutes=counter["n"])
        return memory_db.create_contact(
            Contact(
                owner_id=owner_id,
                name=name or f"Contact {counter['n']}",
                tier=tier,
                tier_assigned_at=tier_assigned_at,
                last_interaction_at=last_interaction_at,
                archived=archived,
            )
        )

    return _make


@pytest.fixture
def add_interactions(memory_db: Database) -> Callable[..., None]:
    """Factory: record interactions at the given times."""

    def _add(
        contact_id: int,
        stamps: Iterable[datetime],
        channels: Optional[list[Channel]] = None,
        owner_id: str = OWNER,
    ) -> None:
        channels = channels or [Channel.MESSAGE]
        for i, stamp in enumerate(stamps):
            memory_db.record_interaction(
                InteractionEvent(
                    owner_id=owner_id,
                    contact_id=contact_id,
                    channel=channels[i % len(channels)],
                    occurred_at=stamp,
                )
            )

    return _add


# Markers for different test types
def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "database: marks tests requiring database")
