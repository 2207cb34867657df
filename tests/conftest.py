"""Shared test fixtures and helpers."""

import fnmatch
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from booking_core.app.database import build_engine
from booking_core.app.models import Base
from booking_core.app.schemas.bookings import BookingCreate
from booking_core.app.schemas.slots import SlotCreate
from booking_core.app.services.bookings.orchestrator import BookingOrchestrator
from booking_core.app.services.bookings.search import BookingSearch
from booking_core.app.services.idempotency import IdempotencyCache
from booking_core.app.services.providers import ProviderProfile
from booking_core.app.services.slots import (
    AvailabilityStore,
    BookingConfig,
    ConflictValidator,
    RecurringMaterializer,
    SlotService,
)
from booking_core.app.timeutils import next_weekday_on_or_after, utcnow
from booking_core.app.transactions import TransactionRunner

PROVIDER = "prov-1"
THURSDAY = 4


# ── Fakes ───────────────────────────────────────────────────────────────


class FakeCache:
    """In-memory stand-in for RedisCache (TTL is recorded, never enforced)."""

    def __init__(self):
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    def set(self, key: str, value: Any, ttl: int) -> bool:
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, key: str) -> bool:
        self.data.pop(key, None)
        return True

    def delete_pattern(self, pattern: str) -> int:
        doomed = [key for key in self.data if fnmatch.fnmatch(key, pattern)]
        for key in doomed:
            del self.data[key]
        return len(doomed)


class RecordingNotifier:
    """Records every notify_* call as (method, args)."""

    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []

    def __getattr__(self, name: str):
        if not name.startswith("notify_"):
            raise AttributeError(name)

        def record(*args):
            self.calls.append((name, args))

        return record

    def named(self, name: str) -> list[tuple]:
        return [args for method, args in self.calls if method == name]

    def clear(self) -> None:
        self.calls.clear()


class FailingNotifier:
    def __getattr__(self, name: str):
        def fail(*args):
            raise RuntimeError("smtp down")

        return fail


class StaticProviderDirectory:
    def __init__(self, profiles: Optional[dict[str, ProviderProfile]] = None):
        self.profiles = profiles or {}

    def find_by_id(self, provider_id: str) -> Optional[ProviderProfile]:
        return self.profiles.get(provider_id)


# ── Database ────────────────────────────────────────────────────────────


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ── Components ──────────────────────────────────────────────────────────


@pytest.fixture
def config():
    return BookingConfig()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def directory():
    return StaticProviderDirectory(
        {
            PROVIDER: ProviderProfile(provider_id=PROVIDER, email="provider@example.com"),
            "manual-prov": ProviderProfile(
                provider_id="manual-prov",
                email="manual@example.com",
                booking_approval_mode="manual",
            ),
        }
    )


@pytest.fixture
def store(cache, notifier):
    return AvailabilityStore(cache, notifier)


@pytest.fixture
def validator():
    return ConflictValidator()


@pytest.fixture
def materializer(store, config):
    return RecurringMaterializer(store, config)


@pytest.fixture
def idempotency(cache):
    return IdempotencyCache(cache)


@pytest.fixture
def slot_service(store, validator, materializer, idempotency, config):
    return SlotService(store, validator, materializer, idempotency, config)


def build_orchestrator(store, validator, materializer, idempotency, notifier, directory, config, transactional):
    return BookingOrchestrator(
        store,
        validator,
        materializer,
        idempotency,
        BookingSearch(store.cache),
        notifier,
        directory,
        TransactionRunner(transactional),
        config,
    )


@pytest.fixture(params=[True, False], ids=["transactional", "sequential"])
def orchestrator(request, store, validator, materializer, idempotency, notifier, directory, config):
    return build_orchestrator(
        store, validator, materializer, idempotency, notifier, directory, config, request.param
    )


# ── Helpers ─────────────────────────────────────────────────────────────


def future_day(dow: Optional[int] = None, weeks_ahead: int = 1) -> date:
    """A date at least `weeks_ahead` weeks from today, optionally on weekday `dow`."""
    base = utcnow().date() + timedelta(weeks=weeks_ahead)
    if dow is None:
        return base
    return next_weekday_on_or_after(base, dow)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


def make_slot(
    day: Optional[date] = None,
    start: tuple[int, int] = (10, 0),
    end: tuple[int, int] = (11, 0),
    provider_id: str = PROVIDER,
    kind: str = "one_off",
    idempotency_key: Optional[str] = None,
) -> SlotCreate:
    """Helper to create a SlotCreate payload."""
    day = day or future_day()
    return SlotCreate(
        provider_id=provider_id,
        kind=kind,
        start_time=at(day, *start),
        end_time=at(day, *end),
        idempotency_key=idempotency_key,
    )


def make_booking(
    slot_id: str,
    start: datetime,
    end: datetime,
    provider_id: str = PROVIDER,
    **overrides,
) -> BookingCreate:
    """Helper to create a BookingCreate for a persisted slot id or instance ref."""
    data = {
        "provider_id": provider_id,
        "availability_id": slot_id,
        "guest_name": "Ada Guest",
        "guest_email": "ada@example.com",
        "start_time": start,
        "end_time": end,
    }
    data.update(overrides)
    return BookingCreate.model_validate(data)
