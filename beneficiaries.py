"""Beneficiary lookup across tickets: search, recent list and history.

Tickets carry the beneficiary details entered at the kiosk, so a
beneficiary is identified by a key derived from them: the digits of the
national id, else the digits of the phone, else ``name:<full name>``,
else ``ticket:<code>``.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from clock import Clock
from models import CLOSED_STATUSES, Ticket
from store import DirectoryStore

_NON_DIGITS = re.compile(r"\D+")

SEARCH_MODES = ("auto", "nid", "phone", "ticket", "name")
# days looked back by each list range
LIST_RANGES = {"day": 1, "week": 7, "month": 30, "year": 365, "all": 3650}
SEARCH_LIMIT = 100
LIST_LIMIT = 200
# auto mode treats at least this many digits as a national id or phone
ID_DIGITS = 8


def normalize_digits(value: Optional[str]) -> str:
    return _NON_DIGITS.sub("", value or "")


def beneficiary_key(ticket: Ticket) -> str:
    person = ticket.beneficiary
    national_id = normalize_digits(person.national_id)
    if national_id:
        return national_id
    phone = normalize_digits(person.phone)
    if phone:
        return phone
    name = person.full_name.strip()
    if name:
        return f"name:{name}"
    return f"ticket:{ticket.ticket_code}"


def matches_key(ticket: Ticket, key: str) -> bool:
    key = (key or "").strip()
    if key.startswith("name:"):
        name = key[len("name:"):]
        return bool(name) and ticket.beneficiary.full_name.strip() == name
    if key.startswith("ticket:"):
        return ticket.ticket_code == key[len("ticket:"):]
    digits = normalize_digits(key)
    if not digits:
        return False
    person = ticket.beneficiary
    return digits in (normalize_digits(person.national_id), normalize_digits(person.phone))


def _last_moment(ticket: Ticket) -> datetime:
    return ticket.closed_at or ticket.created_at


def _matcher(query: str, mode: str):
    """Predicate over tickets for a search query in the given mode."""
    digits = normalize_digits(query)
    lowered = query.lower()

    def by_nid(t: Ticket) -> bool:
        return bool(digits) and normalize_digits(t.beneficiary.national_id) == digits

    def by_phone(t: Ticket) -> bool:
        phone = normalize_digits(t.beneficiary.phone)
        return bool(digits) and bool(phone) and phone.endswith(digits)

    def by_ticket(t: Ticket) -> bool:
        code = t.ticket_code.lower()
        return lowered in code or (bool(digits) and normalize_digits(code) == digits)

    def by_name(t: Ticket) -> bool:
        return bool(lowered) and lowered in t.beneficiary.full_name.lower()

    if mode == "nid":
        return by_nid
    if mode == "phone":
        return by_phone
    if mode == "ticket":
        return by_ticket
    if mode == "name":
        return by_name
    if len(digits) >= ID_DIGITS:
        return lambda t: by_nid(t) or by_phone(t)
    if digits:
        return by_ticket
    return by_name


class BeneficiaryDirectory:
    """Read-only views of the tickets grouped per beneficiary."""

    def __init__(self, store: DirectoryStore, clock: Clock) -> None:
        self.store = store
        self.clock = clock

    @property
    def data(self):
        return self.store.data

    def _summaries(self, tickets: Iterable[Ticket], limit: int) -> List[Dict[str, Any]]:
        cases = {c.ticket_id: c for c in self.data.cases}
        rows: Dict[str, Dict[str, Any]] = {}
        latest: Dict[str, datetime] = {}
        for t in tickets:
            key = beneficiary_key(t)
            person = t.beneficiary
            row = rows.setdefault(key, {
                "key": key,
                "full_name": person.full_name,
                "national_id": person.national_id,
                "phone": person.phone,
                "count": 0,
                "last_status": "",
                "last_summary": "",
            })
            row["count"] += 1
            moment = _last_moment(t)
            if key not in latest or moment > latest[key]:
                latest[key] = moment
                case = cases.get(t.id)
                row["last_status"] = t.status.value
                row["last_summary"] = case.summary if case else ""
            for field in ("full_name", "national_id", "phone"):
                if not row[field]:
                    row[field] = getattr(person, field)

        ordered = sorted(rows.values(), key=lambda r: latest[r["key"]], reverse=True)[:limit]
        for row in ordered:
            row["last_date"] = row["last_updated_at"] = latest[row["key"]].isoformat()
        return ordered

    def search(self, query: str, mode: str = "auto") -> List[Dict[str, Any]]:
        """Beneficiaries whose tickets match ``query``, most recent first.

        ``auto`` reads eight or more digits as a national id or phone,
        fewer digits as a ticket code and anything else as a name.  Unknown
        modes behave like ``auto``.
        """
        query = (query or "").strip()
        if not query:
            return []
        mode = (mode or "auto").lower()
        if mode not in SEARCH_MODES:
            mode = "auto"
        match = _matcher(query, mode)
        return self._summaries((t for t in self.data.tickets if match(t)), SEARCH_LIMIT)

    def recent(self, range_name: str = "week") -> List[Dict[str, Any]]:
        days = LIST_RANGES.get((range_name or "week").lower(), LIST_RANGES["week"])
        cutoff = self.clock.now() - timedelta(days=days)
        return self._summaries((t for t in self.data.tickets if _last_moment(t) >= cutoff), LIST_LIMIT)

    def history(self, key: str) -> Optional[Dict[str, Any]]:
        """Every ticket of one beneficiary, newest first; None if the key matches nothing."""
        tickets = sorted(
            (t for t in self.data.tickets if matches_key(t, key)),
            key=lambda t: t.created_at,
            reverse=True,
        )
        if not tickets:
            return None

        cases = {c.ticket_id: c for c in self.data.cases}
        feedback = {f.ticket_id: f for f in self.data.feedback}
        counters = {c.id: c for c in self.data.counters}
        users = {u.id: u for u in self.data.users}

        entries = []
        for t in tickets:
            case = cases.get(t.id)
            counter = counters.get(t.assigned_counter_id)
            employee = users.get(t.served_by_user_id or t.closed_by_user_id)
            rating = feedback.get(t.id)
            entries.append({
                **t.model_dump(mode="json"),
                "counter_name": counter.name if counter else "",
                "employee_name": employee.full_name if employee else "",
                "case_summary": case.summary if case else "",
                "case_details": case.details if case else "",
                "case_outcome": case.outcome_code if case and case.outcome_code else t.status.value,
                "feedback": rating.model_dump(mode="json") if rating else None,
            })

        ratings = [e["feedback"]["employee_rating"] for e in entries if e["feedback"]]
        person = tickets[0].beneficiary
        return {
            "key": key,
            "profile": {"full_name": person.full_name, "national_id": person.national_id, "phone": person.phone},
            "tickets": entries,
            "summary": {
                "total_tickets": len(entries),
                "closed_tickets": sum(1 for t in tickets if t.status in CLOSED_STATUSES),
                "last_counter": next((e["counter_name"] for e in entries if e["counter_name"]), ""),
                "last_employee": next((e["employee_name"] for e in entries if e["employee_name"]), ""),
                "avg_rating": round(sum(ratings) / len(ratings), 2) if ratings else None,
                "ratings_count": len(ratings),
            },
        }
