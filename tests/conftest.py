"""
Shared test fixtures: an in-memory backing index and a manual clock.

`FakeRepo` mirrors `DocumentRepo`'s surface and stores documents the way
the database hands them back (JSON-ready dicts), so documents loaded from
it go through the same validation as real rows.
"""

import copy
from datetime import datetime, timedelta, timezone

import psycopg
import pytest

from models import TrackedDocument
from service_tracking import TrackingService
from settings import Settings


T0 = datetime(2018, 6, 11, 19, 43, 42, 455000, tzinfo=timezone.utc)


def tracker(n: int) -> str:
    """Deterministic 32-character tracker id."""
    return f"{n:032d}"


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRepo:
    def __init__(self, prefix: str = "goofy"):
        self.prefix = prefix
        self.indexes = set()
        self.rows = {}
        self.created = []
        self.exists_calls = []
        self.get_calls = []
        self.bulk_calls = []
        self.fail_bulk = 0
        self.fail_reads = False

    def index_name(self, application: str) -> str:
        return f"{self.prefix}_{application}"

    def index_exists(self, index: str) -> bool:
        self.exists_calls.append(index)
        if self.fail_reads:
            raise psycopg.OperationalError("database is down")
        return index in self.indexes

    def create_index(self, index: str) -> None:
        self.created.append(index)
        self.indexes.add(index)

    def get_by_id(self, index: str, tracker_id: str):
        self.get_calls.append((index, tracker_id))
        if self.fail_reads:
            raise psycopg.OperationalError("database is down")
        return copy.deepcopy(self.rows.get((index, tracker_id)))

    def bulk_upsert(self, actions) -> int:
        actions = list(actions)
        self.bulk_calls.append([(i, t, d.to_source()) for i, t, d in actions])
        if self.fail_bulk:
            self.fail_bulk -= 1
            raise psycopg.OperationalError("bulk write rejected")
        for index, tracker_id, document in actions:
            self.rows[(index, tracker_id)] = document.to_source()
        return len(actions)

    def stored(self, application: str, tracker_id: str) -> TrackedDocument:
        return TrackedDocument.model_validate(
            self.rows[(self.index_name(application), tracker_id)]
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo():
    return FakeRepo()


@pytest.fixture
def config():
    return Settings(
        flush_interval_seconds=3,
        max_cached_items=1000,
        cache_ttl_seconds=60,
        retry_delay_seconds=0,
    )


@pytest.fixture
def service(repo, config, clock):
    return TrackingService.build(repo, config, clock=clock)
