"""Counter assignment for tickets that do not have one yet."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from clock import Clock
from models import LOAD_STATUSES, Counter, Ticket, TicketStatus
from sessions import SessionRegistry, user_can_serve
from store import DirectoryStore

logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


class RoutingEngine:
    def __init__(self, store: DirectoryStore, clock: Clock, sessions: SessionRegistry) -> None:
        self.store = store
        self.clock = clock
        self.sessions = sessions

    def available_counters(self, business_date: Optional[str] = None) -> List[Counter]:
        """Active, enabled-today counters held by a live session, by priority."""
        work_date = business_date or self.clock.business_date()
        daily = self.store.counter_daily_map(work_date)
        held = {s.counter_id for s in self.sessions.live_sessions()}
        counters = [
            c for c in self.store.data.counters
            if c.is_active and daily.get(c.id) is True and c.id in held
        ]
        return sorted(counters, key=lambda c: (c.priority_order, c.id))

    def counter_can_serve_service(self, counter_id: int, service_id: int) -> bool:
        return user_can_serve(self.sessions.user_for_counter(counter_id), service_id)

    def last_call_at(self, counter_id: int) -> Optional[datetime]:
        """Most recent ``called_at`` among the counter's tickets."""
        stamps = [
            t.called_at for t in self.store.data.tickets
            if t.assigned_counter_id == counter_id and t.called_at is not None
        ]
        return max(stamps) if stamps else None

    def choose_least_loaded(self, counters: List[Counter]) -> Counter:
        """Pick one counter from a non-empty candidate list.

        Order: fewest ASSIGNED/CALLED/IN_SERVICE tickets, then fewest
        IN_SERVICE, then oldest last call (never called sorts first), then
        lowest priority order.
        """
        if not counters:
            raise ValueError("choose_least_loaded needs at least one counter")

        def key(counter: Counter):
            load = len(self.store.tickets_for_counter(counter.id, LOAD_STATUSES))
            in_service = len(self.store.tickets_for_counter(counter.id, {TicketStatus.IN_SERVICE}))
            return (
                load,
                in_service,
                self.last_call_at(counter.id) or _NEVER,
                counter.priority_order,
                counter.id,
            )

        return min(counters, key=key)

    def eligible_counters(self, service_id: int) -> List[Counter]:
        return [
            c for c in self.available_counters()
            if self.counter_can_serve_service(c.id, service_id)
        ]

    def assign_unassigned_tickets(self) -> List[Ticket]:
        """Route every unassigned NEW ticket, oldest first.

        Tickets with no eligible counter stay NEW in the shared queue.
        Returns the tickets that were assigned.
        """
        pending = sorted(
            (t for t in self.store.data.tickets
             if t.status == TicketStatus.NEW and t.assigned_counter_id is None),
            key=lambda t: t.created_at,
        )
        assigned: List[Ticket] = []
        for ticket in pending:
            eligible = self.eligible_counters(ticket.service_id)
            if not eligible:
                continue
            counter = self.choose_least_loaded(eligible)
            ticket.assigned_counter_id = counter.id
            ticket.status = TicketStatus.ASSIGNED
            ticket.assigned_at = self.clock.now()
            assigned.append(ticket)
            logger.info("Ticket %s assigned to counter %s", ticket.ticket_code, counter.id)
        return assigned

    def eager_counter_for(self, service_id: int) -> Optional[Counter]:
        """The routing-map counter for ``service_id`` if it can take tickets now."""
        counter_id = self.store.data.settings.service_counter_map.get(service_id)
        if counter_id is None:
            return None
        available = {c.id: c for c in self.available_counters()}
        return available.get(counter_id)
