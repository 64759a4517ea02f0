"""Counter session registry: who is logged into which counter, and liveness."""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import List, Optional, Tuple

from clock import Clock
from config import HEARTBEAT_TIMEOUT_SECONDS
from models import Counter, CounterSession, SessionStatus, User, UserRole
from schemas import ActionResult
from store import DirectoryStore

logger = logging.getLogger(__name__)


def user_can_serve(user: Optional[User], service_id: int) -> bool:
    """True if ``user``'s allow-list permits ``service_id`` (empty list = all)."""
    if user is None:
        return False
    if not user.allowed_service_ids:
        return True
    return service_id in user.allowed_service_ids


class SessionRegistry:
    def __init__(self, store: DirectoryStore, clock: Clock,
                 timeout_seconds: int = HEARTBEAT_TIMEOUT_SECONDS) -> None:
        self.store = store
        self.clock = clock
        self.timeout = timedelta(seconds=timeout_seconds)

    def is_live(self, session: CounterSession) -> bool:
        return (
            session.status == SessionStatus.active
            and self.clock.now() - session.last_heartbeat < self.timeout
        )

    def live_sessions(self) -> List[CounterSession]:
        """Active sessions holding a counter with a fresh heartbeat."""
        return [
            s for s in self.store.data.sessions
            if s.counter_id is not None and self.is_live(s)
        ]

    def live_session_for_counter(self, counter_id: int) -> Optional[CounterSession]:
        return next((s for s in self.live_sessions() if s.counter_id == counter_id), None)

    def user_for_counter(self, counter_id: int) -> Optional[User]:
        session = self.live_session_for_counter(counter_id)
        return self.store.user(session.user_id) if session else None

    def resolve(self, session_id: Optional[int],
                require_counter: bool = True) -> Tuple[Optional[CounterSession], Optional[ActionResult]]:
        """Look up a counter session that may act on tickets.

        Returns ``(session, None)`` when usable, otherwise ``(None, failure)``.
        Standby sessions pass only when ``require_counter`` is False.
        """
        session = self.store.session(session_id)
        if session is None or (require_counter and session.counter_id is None):
            return None, ActionResult.failure("no_session", "No active counter session.")
        if session.status != SessionStatus.active:
            return None, ActionResult.failure("session_ended", "Counter session has ended; log in again.")
        if self.store.user(session.user_id) is None:
            return None, ActionResult.failure("no_session", "Session user no longer exists.")
        return session, None

    # -- lifecycle -----------------------------------------------------

    def login(self, username: str, password: str) -> ActionResult:
        data = self.store.data
        user = self.store.user_by_username(username)
        if (
            user is None
            or not secrets.compare_digest(user.password, password)
            or not user.is_active
            or user.role != UserRole.counter
        ):
            return ActionResult.failure("invalid_credentials", "Invalid login details.")

        now = self.clock.now()
        for s in data.sessions:
            if s.user_id == user.id and s.status == SessionStatus.active:
                s.status = SessionStatus.ended
                s.ended_at = now

        counter = self._reserve_counter(user)
        if counter is not None:
            # A stale session may still be marked active on this counter.
            for s in data.sessions:
                if s.counter_id == counter.id and s.status == SessionStatus.active:
                    s.status = SessionStatus.ended
                    s.ended_at = now

        session = CounterSession(
            id=self.store.next_id(data.sessions),
            user_id=user.id,
            counter_id=counter.id if counter else None,
            started_at=now,
            last_heartbeat=now,
        )
        data.sessions.append(session)
        logger.info(
            "User %s logged in, session %s on counter %s",
            user.username, session.id, session.counter_id,
        )
        return ActionResult.success(
            session_id=session.id,
            user_id=user.id,
            counter_id=session.counter_id,
            standby=session.counter_id is None,
        )

    def _reserve_counter(self, user: User) -> Optional[Counter]:
        daily = self.store.counter_daily_map(self.clock.business_date())
        held = {s.counter_id for s in self.live_sessions()}

        def free(c: Optional[Counter]) -> bool:
            return c is not None and c.is_active and daily.get(c.id) is True and c.id not in held

        if user.fixed_counter_id is not None:
            fixed = self.store.counter(user.fixed_counter_id)
            if free(fixed):
                return fixed
        candidates = sorted(
            (c for c in self.store.data.counters if free(c)),
            key=lambda c: c.priority_order,
        )
        return candidates[0] if candidates else None

    def logout(self, session_id: int) -> ActionResult:
        session = self.store.session(session_id)
        if session is None:
            return ActionResult.failure("no_session", "Unknown session.")
        if session.status == SessionStatus.active:
            session.status = SessionStatus.ended
            session.ended_at = self.clock.now()
            logger.info("Session %s ended", session.id)
        return ActionResult.success(counter_id=session.counter_id)

    def heartbeat(self, session_id: int) -> ActionResult:
        session = self.store.session(session_id)
        if session is None:
            return ActionResult.failure("no_session", "Unknown session.")
        if session.status != SessionStatus.active:
            return ActionResult.failure("session_ended", "Counter session has ended; log in again.")
        session.last_heartbeat = self.clock.now()
        return ActionResult.success()
