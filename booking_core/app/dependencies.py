"""
Component wiring for the HTTP layer.

Each component receives its collaborators through its constructor; this
module builds the production graph once. Tests replace the two service
providers through app.dependency_overrides.
"""

from functools import lru_cache

from .config import settings
from .database import engine, check_transaction_support
from .redis_client import redis_client
from .services.bookings.orchestrator import BookingOrchestrator
from .services.bookings.search import BookingSearch
from .services.cache import RedisCache
from .services.events import BestEffortNotifier, RedisEventNotifier
from .services.idempotency import IdempotencyCache
from .services.providers import HttpProviderDirectory
from .services.slots import (
    AvailabilityStore,
    ConflictValidator,
    RecurringMaterializer,
    SlotService,
    get_booking_config,
)
from .transactions import TransactionRunner


@lru_cache
def get_transaction_runner() -> TransactionRunner:
    # checked once per process
    return TransactionRunner(check_transaction_support(engine, settings.transactions))


@lru_cache
def get_components() -> dict:
    config = get_booking_config()
    cache = RedisCache(redis_client)
    notifier = BestEffortNotifier(RedisEventNotifier(redis_client))
    store = AvailabilityStore(cache, notifier, cache_ttl=settings.availability_cache_ttl)
    validator = ConflictValidator()
    materializer = RecurringMaterializer(store, config)
    idempotency = IdempotencyCache(cache, ttl=settings.idempotency_ttl)
    search = BookingSearch(cache, ttl=settings.booking_query_cache_ttl)
    directory = HttpProviderDirectory(
        settings.provider_directory_url,
        timeout=settings.provider_directory_timeout,
        retries=settings.provider_directory_retries,
    )
    return {
        "store": store,
        "validator": validator,
        "materializer": materializer,
        "idempotency": idempotency,
        "search": search,
        "notifier": notifier,
        "directory": directory,
        "config": config,
    }


def get_slot_service() -> SlotService:
    parts = get_components()
    return SlotService(
        parts["store"],
        parts["validator"],
        parts["materializer"],
        parts["idempotency"],
        parts["config"],
    )


def get_booking_orchestrator() -> BookingOrchestrator:
    parts = get_components()
    return BookingOrchestrator(
        parts["store"],
        parts["validator"],
        parts["materializer"],
        parts["idempotency"],
        parts["search"],
        parts["notifier"],
        parts["directory"],
        get_transaction_runner(),
        parts["config"],
    )
