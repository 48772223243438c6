import os
import tempfile
import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine
from starlette.testclient import TestClient

# Set up test config before any app imports
_tmpdir = tempfile.mkdtemp()

_test_config_content = f"""\
scheduler:
  leech_threshold: 8
database:
  url: "sqlite:///{_tmpdir}/test.db"
logging:
  level: "WARNING"
  file: "{_tmpdir}/test.log"
security:
  cors_origins:
    - "http://localhost"
rate_limit:
  review: "1000/minute"
  create: "1000/minute"
"""

from pathlib import Path

_test_config_path = Path(_tmpdir) / "config.yaml"
_test_config_path.write_text(_test_config_content)
os.environ["APP_CONFIG_PATH"] = str(_test_config_path)

from cafe_srs.core.config import SchedulerSettings, get_config

get_config.cache_clear()

from cafe_srs.api.deps import get_card_store
from cafe_srs.core.exceptions import StaleCardError
from cafe_srs.main import app
from cafe_srs.models.card import DUE_PRIORITY, CardStatus, ReviewLog, SRSCard
from cafe_srs.services.card_store import MUTABLE_FIELDS, SqlCardStore
from cafe_srs.services.srs_engine import SRSEngine

START = datetime(2024, 3, 10, 9, 30, 0)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InMemoryCardStore:
    """CardStore fake. Hands out copies so callers never share state with it."""

    def __init__(self) -> None:
        self.cards: dict[str, dict] = {}
        self.reviews: list[ReviewLog] = []
        self._lock = threading.Lock()

    def put(self, card_id: str, **fields) -> None:
        """Overwrite stored fields directly, bypassing version checks."""
        self.cards[card_id].update(fields)

    def add(self, card: SRSCard) -> SRSCard:
        with self._lock:
            self.cards[card.id] = card.model_dump()
        return card

    def get(self, card_id: str) -> SRSCard | None:
        data = self.cards.get(card_id)
        return SRSCard(**data) if data is not None else None

    def update(self, card: SRSCard, expected_version: int, review: ReviewLog | None = None) -> SRSCard:
        with self._lock:
            stored = self.cards.get(card.id)
            if stored is None or stored["version"] != expected_version:
                raise StaleCardError(card.id, expected_version)
            for name in MUTABLE_FIELDS:
                stored[name] = getattr(card, name)
            stored["version"] = expected_version + 1
            if review is not None:
                self.reviews.append(review)
        card.version = expected_version + 1
        return card

    def _owned(self, user_id: str) -> list[SRSCard]:
        return [SRSCard(**data) for data in self.cards.values() if data["user_id"] == user_id]

    def due(self, user_id: str, now: datetime, limit: int) -> list[SRSCard]:
        cards = [
            c
            for c in self._owned(user_id)
            if c.status != CardStatus.SUSPENDED and (c.next_review is None or c.next_review <= now)
        ]
        cards.sort(key=lambda c: (DUE_PRIORITY[c.status], c.next_review or datetime.min, c.created_at))
        return cards[:limit]

    def new(self, user_id: str, limit: int) -> list[SRSCard]:
        cards = [c for c in self._owned(user_id) if c.status == CardStatus.NEW]
        cards.sort(key=lambda c: c.created_at)
        return cards[:limit]

    def active(self, user_id: str) -> list[SRSCard]:
        return [c for c in self._owned(user_id) if c.status != CardStatus.SUSPENDED]

    def history(self, card_id: str, limit: int) -> list[ReviewLog]:
        logs = [(i, r) for i, r in enumerate(self.reviews) if r.card_id == card_id]
        logs.sort(key=lambda pair: (pair[1].reviewed_at, pair[0]), reverse=True)
        return [r for _, r in logs[:limit]]


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock(START)


@pytest.fixture(name="store")
def store_fixture():
    return InMemoryCardStore()


@pytest.fixture(name="settings")
def settings_fixture():
    return SchedulerSettings()


@pytest.fixture(name="srs")
def srs_fixture(store, settings, clock):
    return SRSEngine(store, settings=settings, clock=clock)


@pytest.fixture(name="sql_store")
def sql_store_fixture():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(test_engine)
    return SqlCardStore(test_engine)


@pytest.fixture(name="client")
def client_fixture(sql_store):
    app.dependency_overrides[get_card_store] = lambda: sql_store
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
