"""Shared fixtures: a controllable clock and a fake LibreLinkUp upstream."""

import asyncio
from datetime import datetime, timedelta

import httpx
import pytest

from glucolink.datasource.libreview import LibreLinkUpClient
from glucolink.services.clock import Clock
from glucolink.services.fetcher import create_fetcher
from glucolink.services.storage import MemoryStore
from glucolink.settings import Settings

BASE_URL = "https://api.test"
PATIENT_ID = "patient-1"


class FakeClock(Clock):
    """Clock whose sleeps advance time instantly and are recorded."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.t = start
        self.mono = 1_000.0
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.t

    def monotonic(self) -> float:
        return self.mono

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.advance(seconds)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.t += seconds
        self.mono += seconds

    def step_wall_clock(self, seconds: float) -> None:
        """Move wall time only, as an NTP correction would."""
        self.t += seconds


def make_item(index: int, base: datetime = datetime(2026, 10, 18, 8, 0)) -> dict:
    ts = base + timedelta(minutes=15 * index)
    mmol = round(5.5 + index * 0.1, 1)
    return {
        "Timestamp": ts.strftime("%m/%d/%Y %I:%M:%S %p"),
        "FactoryTimestamp": ts.strftime("%m/%d/%Y %I:%M:%S %p"),
        "Value": mmol,
        "ValueInMgPerDl": round(mmol * 18),
        "GlucoseUnits": 0,
        "type": 0,
    }


def make_items(count: int) -> list[dict]:
    return [make_item(i) for i in range(count)]


class FakeLibreView:
    """
    In-process LibreLinkUp stand-in served through httpx.MockTransport.

    Queue status codes per endpoint in *_statuses; anything not queued is 200.
    """

    def __init__(self):
        self.calls = {"login": 0, "connections": 0, "graph": 0}
        self.requests: list[httpx.Request] = []
        self.login_statuses: list[int] = []
        self.connections_statuses: list[int] = []
        self.graph_statuses: list[int] = []
        self.login_body: dict | None = None
        self.connections = [{"patientId": PATIENT_ID}]
        self.graph_items = make_items(10)
        self.retry_after: str | None = None
        self.transport = httpx.MockTransport(self.handle)

    def total_calls(self) -> int:
        return sum(self.calls.values())

    def _status(self, queue: list[int]) -> int:
        return queue.pop(0) if queue else 200

    def _error(self, status: int) -> httpx.Response:
        headers = {}
        if status in (429, 430) and self.retry_after:
            headers["Retry-After"] = self.retry_after
        return httpx.Response(status, json={"status": status}, headers=headers)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/llu/auth/login":
            self.calls["login"] += 1
            status = self._status(self.login_statuses)
            if status != 200:
                return self._error(status)
            body = self.login_body or {
                "status": 0,
                "data": {"authTicket": {"token": f"token-{self.calls['login']}"}},
            }
            return httpx.Response(200, json=body)

        if path == "/llu/connections":
            self.calls["connections"] += 1
            status = self._status(self.connections_statuses)
            if status != 200:
                return self._error(status)
            return httpx.Response(200, json={"status": 0, "data": self.connections})

        if path == f"/llu/connections/{PATIENT_ID}/graph":
            self.calls["graph"] += 1
            status = self._status(self.graph_statuses)
            if status != 200:
                return self._error(status)
            return httpx.Response(
                200, json={"status": 0, "data": {"graphData": self.graph_items}}
            )

        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> FakeLibreView:
    return FakeLibreView()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def client(upstream) -> LibreLinkUpClient:
    return LibreLinkUpClient(
        base_url=BASE_URL,
        http_client=httpx.AsyncClient(transport=upstream.transport),
    )


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        values = {"username": "user@example.com", "password": "secret"}
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_fetcher(clock, store, client, make_settings):
    def _make(store_override=None, **overrides):
        return create_fetcher(
            make_settings(**overrides),
            clock=clock,
            store=store_override or store,
            client=client,
        )

    return _make
