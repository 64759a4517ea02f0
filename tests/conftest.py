"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Generator, List

import pytest
from fastapi.testclient import TestClient

from clock import Clock
from main import app, get_office
from schemas import IssueTicketRequest, UserCreate
from services import QueueOffice
from store import DirectoryStore

# Sunday 2026-10-18, 09:00 in Riyadh.
START = datetime(2026, 10, 18, 6, 0, tzinfo=timezone.utc)

BENEFICIARY = {
    "full_name": "Sara Ahmed Alqahtani",
    "national_id": "1098765432",
    "phone": "0551234567",
    "beneficiary_type": "citizen",
}


class ManualClock(Clock):
    """Clock whose time only moves when a test advances it."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start
        super().__init__("Asia/Riyadh", now_fn=lambda: self.current)

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Stands in for ``loop.call_later``; tests fire timers explicitly."""

    def __init__(self) -> None:
        self.created: List[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.created.append(timer)
        return timer

    def live(self) -> List[FakeTimer]:
        return [t for t in self.created if not t.cancelled and not t.fired]

    def fire(self, timer: FakeTimer) -> None:
        timer.fired = True
        timer.callback()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def store(clock: ManualClock) -> Generator[DirectoryStore, None, None]:
    """Fresh seeded store over an in-memory SQLite database."""
    directory = DirectoryStore(clock, db_path=":memory:")
    yield directory
    directory.close()


@pytest.fixture
def office(store: DirectoryStore, clock: ManualClock, timers: FakeTimers) -> QueueOffice:
    return QueueOffice(store, clock, call_later=timers.call_later)


@pytest.fixture
def client(office: QueueOffice) -> Generator[TestClient, None, None]:
    """Test client bound to the fixture office instead of the on-disk one."""
    app.dependency_overrides[get_office] = lambda: office
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def second_user(office: QueueOffice) -> Dict:
    result = office.run(office.admin.add_user, UserCreate(username="emp02", password="1234", full_name="Employee 2"))
    assert result.ok
    return result.data["user"]


@pytest.fixture
def login(office: QueueOffice) -> Callable[..., int]:
    def _login(username: str = "emp01", password: str = "1234") -> int:
        result = office.login(username, password)
        assert result.ok, result
        return result.data["session_id"]

    return _login


@pytest.fixture
def issue(office: QueueOffice) -> Callable[..., Dict]:
    def _issue(service_id: int = 1, **overrides) -> Dict:
        result = office.issue_ticket(IssueTicketRequest(service_id=service_id, **{**BENEFICIARY, **overrides}))
        assert result.ok, result
        return result.data["ticket"]

    return _issue
