import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from facility_ingest.errors import NotificationError, StoreError
from facility_ingest.ingestion.context import TenantContext
from facility_ingest.metering.usage_meter import UsageMeter
from facility_ingest.storage import paths
from facility_ingest.storage.document_store import Change, DocumentStore, Snapshot

FIXED_NOW = datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc)


class Clock:
    """Callable clock that tests can advance."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InMemoryDocumentStore(DocumentStore):
    def __init__(self):
        self.docs: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.changes: List[Change] = []
        self.calls: List[Tuple[str, str]] = []
        self._failures: Set[Tuple[str, str]] = set()
        self._next_id = 0

    def fail(self, op: str, collection: str) -> None:
        """Make every ``op`` on ``collection`` raise StoreError."""
        self._failures.add((op, collection))

    def _check(self, op: str, collection: str) -> None:
        self.calls.append((op, collection))
        if (op, collection) in self._failures:
            raise StoreError(f"{op} {collection} failed")

    def seed(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        self.docs.setdefault(collection, {})[key] = copy.deepcopy(data)

    def all(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self.docs.get(collection, {})

    def ops(self, op: str) -> List[str]:
        return [c for o, c in self.calls if o == op]

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        self._check("get", collection)
        doc = self.docs.get(collection, {}).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def merge(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        self._check("merge", collection)
        bucket = self.docs.setdefault(collection, {})
        kind = "update" if key in bucket else "insert"
        bucket.setdefault(key, {}).update(copy.deepcopy(fields))
        self.changes.append(Change(kind, collection, key, copy.deepcopy(bucket[key])))

    async def delete(self, collection: str, key: str) -> None:
        self._check("delete", collection)
        if self.docs.get(collection, {}).pop(key, None) is not None:
            self.changes.append(Change("delete", collection, key, None))

    async def query(self, collection: str, **equals: Any) -> List[Snapshot]:
        self._check("query", collection)
        return [
            Snapshot(collection, key, copy.deepcopy(data))
            for key, data in self.docs.get(collection, {}).items()
            if all(data.get(name) == value for name, value in equals.items())
        ]

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        self._check("add", collection)
        self._next_id += 1
        key = f"auto{self._next_id}"
        self.docs.setdefault(collection, {})[key] = copy.deepcopy(data)
        return key

    async def increment(self, collection: str, key: str, deltas: Dict[str, int]) -> None:
        self._check("increment", collection)
        doc = self.docs.setdefault(collection, {}).setdefault(key, {})
        for name, delta in deltas.items():
            doc[name] = doc.get(name, 0) + delta

    async def watch(self, collection_prefix: str):
        for change in list(self.changes):
            if change.collection.startswith(collection_prefix):
                yield change


class FakePush:
    """Records sends; tokens listed in ``failing`` raise NotificationError."""

    def __init__(self, failing=()):
        self.sent: List[Tuple[str, str, str]] = []
        self.failing = set(failing)

    async def send(self, token: str, title: str, body: str) -> None:
        if token in self.failing:
            raise NotificationError(token, "unregistered token")
        self.sent.append((token, title, body))


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    s = InMemoryDocumentStore()
    s.seed(paths.COMPANIES, "acme", {"name": "Acme"})
    return s


@pytest.fixture
def meter(store, clock):
    return UsageMeter(store, threshold=10_000, flush_interval_sec=3600, clock=clock)


@pytest.fixture
def push():
    return FakePush()


@pytest.fixture
def tenant():
    return TenantContext(company_id="acme")
