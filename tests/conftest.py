# tests/conftest.py

"""
Pytest configuration and shared fixtures for testing.
"""

import asyncio
import copy
from types import SimpleNamespace
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

from core.errors import BackendError
from core.notifications import Notifier
from main import create_app
from models.enums import Role
from models.identity import Identity, Profile


# ============================================================
# In-memory backend with the same surface as core.backend.SupabaseBackend
# ============================================================
class FakeChannel:
    def __init__(self, name, table, filter, on_event, on_status):
        self.name = name
        self.table = table
        self.filter = filter
        self.on_event = on_event
        self.on_status = on_status
        self.removed = False


class FakeAuthSubscription:
    def __init__(self):
        self.active = True

    def unsubscribe(self):
        self.active = False


class FakeBackend:
    def __init__(self):
        self.tables: Dict[str, List[dict]] = {}
        self.rpc_results: Dict[str, Any] = {}
        self.rpc_calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.channels: List[FakeChannel] = []
        self.subscribe_status = "SUBSCRIBED"

        self._queued: Dict[str, List[Any]] = {}
        self._gates: Dict[str, List[asyncio.Event]] = {}

        self.session = None
        self.auth_callbacks: List[Callable] = []
        self.sign_out_error: Optional[Exception] = None
        self.sign_out_calls = 0
        self.sign_up_response = None

    # ---------------- helpers for tests ----------------
    def seed(self, table: str, *rows: dict):
        self.tables.setdefault(table, []).extend(copy.deepcopy(list(rows)))

    def queue_rpc(self, name: str, *results):
        """Successive calls to ``name`` answer with these results, in order."""
        self._queued.setdefault(name, []).extend(results)

    def hold_rpc(self, name: str) -> asyncio.Event:
        """The next call to ``name`` blocks until the returned event is set."""
        gate = asyncio.Event()
        self._gates.setdefault(name, []).append(gate)
        return gate

    def rpc_names(self) -> List[str]:
        return [name for name, _ in self.rpc_calls]

    def open_channels(self, table: Optional[str] = None) -> List[FakeChannel]:
        return [c for c in self.channels if not c.removed and (table is None or c.table == table)]

    def emit(self, table: str, kind: str, new: Optional[dict] = None, old: Optional[dict] = None, **extra):
        """Push a change to every open channel on ``table`` (JS-client payload shape)."""
        payload = {
            "eventType": kind.upper(),
            "table": table,
            "schema": "public",
            "new": new or {},
            "old": old or {},
            **extra,
        }
        for channel in self.open_channels(table):
            channel.on_event(payload)

    def fire_auth(self, event: str, session):
        for callback in list(self.auth_callbacks):
            callback(event, session)

    def _check(self, operation: str):
        error = self.failures.get(operation)
        if error is not None:
            raise error

    @staticmethod
    def _matches(row: dict, filters: Optional[dict]) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    # ---------------- rows ----------------
    async def select(self, table, filters=None, *, columns="*", order=None, descending=False, single=False):
        self._check(f"select:{table}")
        rows = [copy.deepcopy(r) for r in self.tables.get(table, []) if self._matches(r, filters)]
        if order:
            rows.sort(key=lambda r: (r.get(order) is None, r.get(order)), reverse=descending)
        if single:
            return rows[0] if rows else None
        return rows

    async def insert(self, table, values):
        self._check(f"insert:{table}")
        self.seed(table, values)
        return copy.deepcopy(values)

    async def update(self, table, filters, values):
        self._check(f"update:{table}")
        updated = []
        for row in self.tables.get(table, []):
            if self._matches(row, filters):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table, filters):
        self._check(f"delete:{table}")
        kept, removed = [], []
        for row in self.tables.get(table, []):
            (removed if self._matches(row, filters) else kept).append(row)
        self.tables[table] = kept
        return removed

    # ---------------- rpc ----------------
    async def rpc(self, name, params=None):
        self.rpc_calls.append((name, dict(params or {})))
        self._check(f"rpc:{name}")

        # Resolve the answer when the call starts, so a held call keeps its own result
        if self._queued.get(name):
            result = self._queued[name].pop(0)
        else:
            result = self.rpc_results.get(name)

        gates = self._gates.get(name)
        if gates:
            await gates.pop(0).wait()

        if callable(result):
            result = result(params or {})
        if isinstance(result, Exception):
            raise result
        return copy.deepcopy(result)

    # ---------------- realtime ----------------
    async def subscribe(self, channel_name, table, filter, on_event, on_status):
        self._check(f"subscribe:{table}")
        channel = FakeChannel(channel_name, table, filter, on_event, on_status)
        self.channels.append(channel)
        on_status(self.subscribe_status, None)
        return channel

    async def unsubscribe(self, handle):
        handle.removed = True

    # ---------------- auth ----------------
    def on_auth_state_change(self, callback):
        self.auth_callbacks.append(callback)
        return FakeAuthSubscription()

    async def get_session(self):
        self._check("get_session")
        return self.session

    async def sign_in(self, email, password):
        self._check("sign_in")
        return SimpleNamespace(session=self.session, user=getattr(self.session, "user", None))

    async def sign_up(self, email, password, metadata=None):
        self._check("sign_up")
        return self.sign_up_response

    async def sign_out(self):
        self.sign_out_calls += 1
        if self.sign_out_error is not None:
            raise self.sign_out_error


def make_session(user_id: str, email: str = "user@example.com", token: str = "access-token"):
    return SimpleNamespace(
        user=SimpleNamespace(id=user_id, email=email),
        access_token=token,
    )


def profile_row(user_id: str, **overrides) -> dict:
    row = {
        "id": f"profile-{user_id}",
        "user_id": user_id,
        "condominium_id": "condo-1",
        "role": Role.resident.value,
        "first_name": "Ana",
        "last_name": "Silva",
        "coordination_staff_id": None,
    }
    row.update(overrides)
    return row


def make_identity(user_id: str = "user-1", **overrides) -> Identity:
    return Identity.from_user(user_id, "user@example.com", Profile(**profile_row(user_id, **overrides)))


# ============================================================
# Fixtures
# ============================================================
@pytest.fixture(scope="function")
def app():
    """Create a test FastAPI application instance."""
    return create_app()


@pytest.fixture(scope="function")
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI application."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(forward_to_webhook=False)


@pytest.fixture
def backend_error():
    return BackendError("connection reset")
