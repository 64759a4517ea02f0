"""Per-counter call state machine and idle-rest auto-call timers."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from clock import Clock
from models import CallResult, Ticket, TicketCall, TicketStatus
from schemas import ActionResult
from sessions import SessionRegistry, user_can_serve
from store import DirectoryStore

logger = logging.getLogger(__name__)

# call_later(delay_seconds, callback) -> handle with a ``cancel()`` method,
# e.g. ``asyncio.get_running_loop().call_later``.
CallLater = Callable[[float, Callable[[], None]], Any]

PENDING_STATUSES = frozenset({TicketStatus.NEW, TicketStatus.ASSIGNED})


def clamp_int(value: Any, low: int, high: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = low
    return max(low, min(high, number))


class CallScheduler:
    """Chooses and calls the next ticket for a counter."""

    def __init__(self, store: DirectoryStore, clock: Clock, sessions: SessionRegistry) -> None:
        self.store = store
        self.clock = clock
        self.sessions = sessions

    def call_round_for(self, ticket_id: str, counter_id: int) -> int:
        """Number of ``called`` log entries so far for this ticket at this counter."""
        return sum(
            1 for c in self.store.data.ticket_calls
            if c.ticket_id == ticket_id and c.counter_id == counter_id and c.result == CallResult.called
        )

    def log_call(self, ticket: Ticket, counter_id: int, user_id: int, call_round: int,
                 result: CallResult = CallResult.called, auto: bool = False) -> TicketCall:
        calls = self.store.data.ticket_calls
        entry = TicketCall(
            id=self.store.next_id(calls),
            ticket_id=ticket.id,
            counter_id=counter_id,
            user_id=user_id,
            call_round=call_round,
            called_at=self.clock.now(),
            result=result,
            auto=auto,
        )
        calls.append(entry)
        return entry

    def _pick(self, counter_id: int, user) -> Optional[Ticket]:
        tickets = self.store.data.tickets
        now = self.clock.now()

        own = sorted(
            (t for t in tickets
             if t.assigned_counter_id == counter_id
             and t.status in PENDING_STATUSES
             and user_can_serve(user, t.service_id)),
            key=lambda t: t.created_at,
        )
        if own:
            ticket = own[0]
            if ticket.status == TicketStatus.NEW:
                # legacy NEW-with-counter is read as ASSIGNED
                ticket.status = TicketStatus.ASSIGNED
                if ticket.assigned_at is None:
                    ticket.assigned_at = now
            return ticket

        shared = sorted(
            (t for t in tickets
             if t.status == TicketStatus.NEW
             and t.assigned_counter_id in (None, counter_id)
             and user_can_serve(user, t.service_id)),
            key=lambda t: t.created_at,
        )
        if not shared:
            return None
        ticket = shared[0]
        ticket.assigned_counter_id = counter_id
        ticket.assigned_at = now
        ticket.status = TicketStatus.ASSIGNED
        return ticket

    def _no_ticket(self, counter_id: int) -> ActionResult:
        tickets = self.store.data.tickets
        pending_total = sum(1 for t in tickets if t.status in PENDING_STATUSES)
        reachable = sum(
            1 for t in tickets
            if (t.assigned_counter_id == counter_id and t.status in PENDING_STATUSES)
            or (t.assigned_counter_id is None and t.status == TicketStatus.NEW)
        )
        if pending_total == 0 or reachable == 0:
            return ActionResult.failure(
                "no_ticket", "No tickets waiting.", reason="queue_empty", pending_total=pending_total,
            )
        return ActionResult.failure(
            "no_ticket",
            "Tickets are waiting but none are permitted for this counter.",
            reason="none_eligible",
            pending_total=pending_total,
        )

    def call_next(self, counter_id: int, user_id: int, auto: bool = False) -> ActionResult:
        counter = self.store.counter(counter_id)
        if counter is None:
            return ActionResult.failure("counter_not_found", "Counter not found.")
        daily = self.store.counter_daily_map(self.clock.business_date())
        if not counter.is_active or daily.get(counter_id) is False:
            return ActionResult.failure("counter_disabled", "Counter is disabled today.")
        user = self.store.user(user_id)

        ticket = self._pick(counter_id, user)
        if ticket is None:
            result = self._no_ticket(counter_id)
            logger.info("Counter %s: nothing to call (%s)", counter_id, result.data["reason"])
            return result

        call_round = self.call_round_for(ticket.id, counter_id) + 1
        ticket.status = TicketStatus.CALLED
        ticket.called_at = self.clock.now()
        ticket.call_round = call_round
        self.log_call(ticket, counter_id, user_id, call_round, auto=auto)
        logger.info(
            "Counter %s called %s (round %s%s)",
            counter_id, ticket.ticket_code, call_round, ", auto" if auto else "",
        )
        return ActionResult.success(
            ticket_id=ticket.id,
            ticket_code=ticket.ticket_code,
            counter_id=counter_id,
            call_round=call_round,
            auto=auto,
        )


class IdleRestTimers:
    """One pending auto-call timer per counter.

    ``on_fire(counter_id)`` is invoked when a timer elapses; the owner is
    expected to re-check idleness and perform the call as a normal mutation.
    """

    def __init__(self, store: DirectoryStore, call_later: Optional[CallLater],
                 on_fire: Callable[[int], None]) -> None:
        self.store = store
        self.call_later = call_later
        self.on_fire = on_fire
        self._timers: Dict[int, Any] = {}

    def rest_seconds_for(self, counter_id: int) -> int:
        settings = self.store.data.settings
        override = settings.counter_overrides.get(counter_id)
        rest = settings.rest_seconds_default
        if override is not None and override.rest_seconds is not None:
            rest = override.rest_seconds
        return clamp_int(rest, settings.rest_seconds_min, settings.rest_seconds_max)

    def auto_enabled_for(self, counter_id: int) -> bool:
        settings = self.store.data.settings
        override = settings.counter_overrides.get(counter_id)
        if override is not None and override.auto_call_enabled is not None:
            return override.auto_call_enabled
        return settings.auto_call_enabled

    def is_idle(self, counter_id: int) -> bool:
        busy = {TicketStatus.IN_SERVICE, TicketStatus.CALLED}
        return not self.store.tickets_for_counter(counter_id, busy)

    def pending(self, counter_id: int) -> bool:
        return counter_id in self._timers

    def cancel(self, counter_id: int) -> None:
        handle = self._timers.pop(counter_id, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for counter_id in list(self._timers):
            self.cancel(counter_id)

    def reschedule(self, counter_id: Optional[int]) -> bool:
        """Cancel any pending timer and arm a new one if the counter is idle.

        Returns True if a timer is now pending.
        """
        if counter_id is None:
            return False
        self.cancel(counter_id)
        if self.call_later is None:
            return False
        if not self.auto_enabled_for(counter_id) or not self.is_idle(counter_id):
            return False
        delay = self.rest_seconds_for(counter_id)
        self._timers[counter_id] = self.call_later(delay, lambda: self._fire(counter_id))
        logger.debug("Counter %s: auto-call in %ss", counter_id, delay)
        return True

    def _fire(self, counter_id: int) -> None:
        self._timers.pop(counter_id, None)
        try:
            self.on_fire(counter_id)
        except Exception:
            logger.exception("Auto-call for counter %s failed", counter_id)
