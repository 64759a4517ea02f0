"""Time-boxed rating windows opened when a ticket is closed."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from clock import Clock
from models import Feedback, FeedbackMode, FeedbackWindow, Ticket
from schemas import ActionResult
from store import DirectoryStore

logger = logging.getLogger(__name__)


class FeedbackWindowManager:
    def __init__(self, store: DirectoryStore, clock: Clock) -> None:
        self.store = store
        self.clock = clock

    def open_window(self, ticket: Ticket, counter_id: int, user_id: int) -> FeedbackWindow:
        now = self.clock.now()
        seconds = self.store.data.settings.feedback_window_seconds
        window = FeedbackWindow(
            ticket_id=ticket.id,
            ticket_code=ticket.ticket_code,
            counter_id=counter_id,
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(seconds=seconds),
        )
        self.store.data.feedback_windows.append(window)
        logger.info("Feedback window opened for %s until %s", ticket.ticket_code, window.expires_at)
        return window

    def current_window(self, counter_id: Optional[int] = None) -> Optional[FeedbackWindow]:
        """Oldest open window, limited to ``counter_id`` in per-counter mode."""
        now = self.clock.now()
        windows = [
            w for w in self.store.data.feedback_windows
            if not w.consumed and w.expires_at > now
        ]
        if self.store.data.settings.feedback_mode == FeedbackMode.per_counter and counter_id is not None:
            windows = [w for w in windows if w.counter_id == counter_id]
        windows.sort(key=lambda w: w.created_at)
        return windows[0] if windows else None

    def current_payload(self, counter_id: Optional[int] = None) -> Dict[str, Any]:
        settings = self.store.data.settings
        window = self.current_window(counter_id)
        if window is None:
            return {"window": None}
        return {
            "window": window.model_dump(mode="json"),
            "q1": settings.question1_text,
            "q2": settings.question2_text,
        }

    def submit(self, ticket_id: str, employee_rating: Any, solved_yes_no: Optional[bool] = None,
               reason_code: Optional[str] = None, counter_id: Optional[int] = None) -> ActionResult:
        window = self.current_window(counter_id)
        if window is None or window.ticket_id != ticket_id:
            return ActionResult.failure("no_window", "No open feedback window for this ticket.")

        try:
            rating = float(employee_rating)
        except (TypeError, ValueError):
            rating = 0.0
        if not rating.is_integer() or not 1 <= rating <= 5:
            return ActionResult.failure(
                "validation_error", "Rating must be a whole number from 1 to 5.", fields=["employee_rating"],
            )

        window.consumed = True
        data = self.store.data
        recorded = any(f.ticket_id == ticket_id for f in data.feedback)
        if not recorded:
            data.feedback.append(
                Feedback(
                    id=self.store.next_id(data.feedback),
                    ticket_id=ticket_id,
                    counter_id=window.counter_id,
                    user_id=window.user_id,
                    solved_yes_no=bool(solved_yes_no) if solved_yes_no is not None else None,
                    employee_rating=int(rating),
                    reason_code=reason_code or None,
                    created_at=self.clock.now(),
                )
            )
            logger.info("Feedback stored for %s: %s", window.ticket_code, int(rating))
        return ActionResult.success(ticket_id=ticket_id, duplicate=recorded)
