"""Directory store: the authoritative in-memory office state.

The state is one ``Store`` document.  It is loaded wholesale from a SQLite
snapshot table on first use and written back wholesale after every
mutation, using the built-in ``sqlite3`` module so no external database
driver is required.  A ``DirectoryStore`` instance is owned by the
application and passed to every component; tests create their own
instance over ``:memory:``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from clock import Clock
from config import ADMIN_PASS, DB_PATH
from models import (
    SCHEMA_VERSION,
    Case,
    Counter,
    CounterDaily,
    CounterSession,
    OfficeSettings,
    Service,
    Store,
    Ticket,
    User,
)

logger = logging.getLogger(__name__)


def get_connection(db_path: str = DB_PATH) -> sqlite3.Connection:
    """Return a SQLite connection for the snapshot database."""
    if db_path.startswith("postgres"):
        raise RuntimeError("PostgreSQL is not supported for the snapshot store")
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Create the snapshot table if it does not exist."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS store_snapshot (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            payload TEXT NOT NULL,
            saved_at TEXT NOT NULL
        );
        """
    )
    conn.commit()


def seed_store(clock: Clock) -> Store:
    """Initial office: ten counters, the default services and two users."""
    work_date = clock.business_date()
    counters = [Counter(id=i, name=f"Counter {i}", priority_order=i) for i in range(1, 11)]
    settings = OfficeSettings()
    if ADMIN_PASS:
        settings.admin_passcode = ADMIN_PASS
    return Store(
        settings=settings,
        counters=counters,
        counter_daily=[CounterDaily(work_date=work_date, counter_id=c.id) for c in counters],
        services=[
            Service(id=1, name_ar="استفسار", name_en="Inquiry", code_prefix="A"),
            Service(id=2, name_ar="شكوى", name_en="Complaint", code_prefix="C"),
            Service(
                id=3,
                name_ar="متابعة طلب",
                name_en="Follow-up",
                code_prefix="F",
                requires_previous_ref=True,
            ),
            Service(
                id=4,
                name_ar="حجز لقاء مسؤول",
                name_en="Book an appointment",
                type="appointment",
                code_prefix="M",
                availability_mode="weekly_day",
                availability_weekday=4,
            ),
            Service(id=5, name_ar="طلب لقاء", name_en="Meeting request", code_prefix="L"),
        ],
        users=[
            User(id=1, username="admin", password="admin123", full_name="Admin", role="admin"),
            User(id=2, username="emp01", password="1234", full_name="Employee 1", role="counter"),
        ],
    )


_TICKET_REF_COLLECTIONS = ("ticket_calls", "ticket_transfers", "cases", "feedback", "feedback_windows")


def migrate_payload(raw: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """Bring an older snapshot up to the current schema.

    Runs once per load, before validation.  Returns the migrated payload
    and whether anything had to change.
    """
    changed = False
    if not isinstance(raw.get("settings"), dict):
        raw["settings"] = {}
        changed = True
    settings = raw["settings"]
    if settings.get("schema_version", 0) < SCHEMA_VERSION:
        settings["schema_version"] = SCHEMA_VERSION
        changed = True
    if "counter_overrides" in settings and not isinstance(settings["counter_overrides"], dict):
        settings["counter_overrides"] = {}
        changed = True

    for name in ("counters", "counter_daily", "services", "users", "sessions", "tickets",
                 "ticket_calls", "ticket_transfers", "cases", "feedback",
                 "feedback_windows", "appointments"):
        if not isinstance(raw.get(name), list):
            raw[name] = []
            changed = True
    if not isinstance(raw.get("sequences"), dict):
        raw["sequences"] = {}
        changed = True

    for user in raw["users"]:
        if not isinstance(user.get("allowed_service_ids"), list):
            user["allowed_service_ids"] = []
            changed = True
        if user.get("fixed_counter_id") == "":
            user["fixed_counter_id"] = None
            changed = True

    for session in raw["sessions"]:
        if session.get("counter_id") == "":
            session["counter_id"] = None
            changed = True

    for ticket in raw["tickets"]:
        if not isinstance(ticket.get("id"), str):
            ticket["id"] = str(ticket["id"])
            changed = True
        if "beneficiary" not in ticket:
            ticket["beneficiary"] = {
                "full_name": ticket.pop("full_name", ""),
                "national_id": ticket.pop("national_id", ""),
                "phone": ticket.pop("phone", ""),
                "beneficiary_type": ticket.pop("beneficiary_type", ""),
                "has_previous": ticket.pop("has_previous", False),
                "previous_ref": ticket.pop("previous_ref", ""),
            }
            changed = True
        if ticket.get("status") == "CLOSED":
            ticket["status"] = "CLOSED_RESOLVED"
            changed = True
        if "called_round" in ticket:
            ticket["call_round"] = ticket.pop("called_round") or 0
            changed = True

    for name in _TICKET_REF_COLLECTIONS:
        for row in raw[name]:
            if row.get("ticket_id") is not None and not isinstance(row["ticket_id"], str):
                row["ticket_id"] = str(row["ticket_id"])
                changed = True
    for slot in raw["appointments"]:
        if slot.get("booked_ticket_id") is not None and not isinstance(slot["booked_ticket_id"], str):
            slot["booked_ticket_id"] = str(slot["booked_ticket_id"])
            changed = True

    return raw, changed


class DirectoryStore:
    """Owns the office ``Store`` and its persistence."""

    def __init__(self, clock: Clock, db_path: str = DB_PATH) -> None:
        self.clock = clock
        self.db_path = db_path
        self._conn = get_connection(db_path)
        init_db(self._conn)
        self._data: Optional[Store] = None

    # -- persistence ---------------------------------------------------

    @property
    def data(self) -> Store:
        if self._data is None:
            self.load()
        return self._data

    def load(self) -> Store:
        cur = self._conn.execute("SELECT payload FROM store_snapshot WHERE id = 1")
        row = cur.fetchone()
        if row is None:
            logger.info("No snapshot in %s, seeding a new office", self.db_path)
            self._data = seed_store(self.clock)
            self.save()
            return self._data
        raw, changed = migrate_payload(json.loads(row["payload"]))
        self._data = Store.model_validate(raw)
        if changed:
            logger.info("Snapshot migrated to schema version %s", SCHEMA_VERSION)
            self.save()
        return self._data

    def save(self) -> None:
        payload = self._data.model_dump_json()
        self._conn.execute(
            "INSERT INTO store_snapshot (id, payload, saved_at) VALUES (1, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, saved_at = excluded.saved_at",
            (payload, self.clock.now().isoformat()),
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def mutation(self) -> Iterator["Mutation"]:
        """Run one externally-triggered mutation all-or-nothing.

        The state is snapshotted on entry.  If the body raises, or calls
        ``rollback()``, the snapshot is restored and nothing is saved;
        otherwise the whole store is saved on exit.
        """
        self.ensure_daily_rows(self.clock.business_date())
        m = Mutation(self.data.model_copy(deep=True))
        try:
            yield m
        except Exception:
            self._data = m.snapshot
            raise
        if m.rolled_back:
            self._data = m.snapshot
            return
        self.save()

    # -- lookups -------------------------------------------------------

    def counter(self, counter_id: Optional[int]) -> Optional[Counter]:
        return next((c for c in self.data.counters if c.id == counter_id), None)

    def service(self, service_id: Optional[int]) -> Optional[Service]:
        return next((s for s in self.data.services if s.id == service_id), None)

    def user(self, user_id: Optional[int]) -> Optional[User]:
        return next((u for u in self.data.users if u.id == user_id), None)

    def user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self.data.users if u.username == username), None)

    def session(self, session_id: Optional[int]) -> Optional[CounterSession]:
        return next((s for s in self.data.sessions if s.id == session_id), None)

    def ticket(self, ticket_id: Optional[str]) -> Optional[Ticket]:
        return next((t for t in self.data.tickets if t.id == ticket_id), None)

    def tickets_for_counter(self, counter_id: int, statuses) -> List[Ticket]:
        return [
            t for t in self.data.tickets
            if t.assigned_counter_id == counter_id and t.status in statuses
        ]

    def case_for(self, ticket_id: str) -> Optional[Case]:
        return next((c for c in self.data.cases if c.ticket_id == ticket_id), None)

    # -- daily enablement and sequences ---------------------------------

    def ensure_daily_rows(self, work_date: str) -> None:
        have = {row.counter_id for row in self.data.counter_daily if row.work_date == work_date}
        for counter in self.data.counters:
            if counter.id not in have:
                self.data.counter_daily.append(CounterDaily(work_date=work_date, counter_id=counter.id))

    def counter_daily_map(self, work_date: str) -> Dict[int, bool]:
        """Counter id -> enabled for ``work_date``; enabled unless a row says otherwise."""
        enabled = {c.id: True for c in self.data.counters}
        for row in self.data.counter_daily:
            if row.work_date == work_date:
                enabled[row.counter_id] = row.enabled_today
        return enabled

    def set_counter_enabled(self, work_date: str, counter_id: int, enabled: bool) -> None:
        row = next(
            (r for r in self.data.counter_daily if r.work_date == work_date and r.counter_id == counter_id),
            None,
        )
        if row is None:
            row = CounterDaily(work_date=work_date, counter_id=counter_id)
            self.data.counter_daily.append(row)
        row.enabled_today = enabled

    def next_sequence(self, work_date: str, service_id: int) -> int:
        per_day = self.data.sequences.setdefault(work_date, {})
        per_day[service_id] = per_day.get(service_id, 0) + 1
        return per_day[service_id]

    def next_id(self, rows: List[Any]) -> int:
        return max((row.id for row in rows), default=0) + 1


class Mutation:
    def __init__(self, snapshot: Store) -> None:
        self.snapshot = snapshot
        self.rolled_back = False

    def rollback(self) -> None:
        self.rolled_back = True
