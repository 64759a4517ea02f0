"""Appointment slot generation and booking."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from clock import Clock, hhmm_to_minutes, minutes_to_hhmm, next_weekday_date, weekday_sun0
from models import AppointmentSlot, SlotStatus, Ticket
from store import DirectoryStore

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class AppointmentBook:
    def __init__(self, store: DirectoryStore, clock: Clock) -> None:
        self.store = store
        self.clock = clock

    @property
    def enabled(self) -> bool:
        return self.store.data.settings.appointments.enabled

    def ensure_slots_for_date(self, date_str: str) -> None:
        """Generate the day's slots once; existing slots are left alone."""
        slots = self.store.data.appointments
        if any(a.date == date_str for a in slots):
            return
        cfg = self.store.data.settings.appointments
        start = hhmm_to_minutes(cfg.start_time)
        end = hhmm_to_minutes(cfg.end_time)
        step = cfg.slot_minutes if cfg.slot_minutes > 0 else 15
        current = start
        while current + step <= end:
            slots.append(
                AppointmentSlot(
                    id=self.store.next_id(slots),
                    date=date_str,
                    start_time=minutes_to_hhmm(current),
                    end_time=minutes_to_hhmm(current + step),
                )
            )
            current += step

    def available_on(self, date_str: str) -> List[AppointmentSlot]:
        self.ensure_slots_for_date(date_str)
        return sorted(
            (a for a in self.store.data.appointments
             if a.date == date_str and a.status == SlotStatus.available),
            key=lambda a: hhmm_to_minutes(a.start_time),
        )

    def next_slots(self) -> Dict[str, Any]:
        """Available slots on the next appointment weekday after today."""
        weekday = self.store.data.settings.appointments.weekday
        next_date = next_weekday_date(self.clock.business_date(), weekday)
        return {"date": next_date, "slots": self.available_on(next_date)}

    def slots_for(self, requested: Optional[str]) -> Dict[str, Any]:
        """Slots for ``requested``, moved forward to the appointment weekday if needed.

        Anything not shaped like ``YYYY-MM-DD`` lists the next appointment day;
        a well-shaped date that does not exist raises ``ValueError``.
        """
        requested = (requested or "")[:10]
        if not _ISO_DATE.match(requested):
            return {**self.next_slots(), "requested_date": "", "adjusted": False}
        weekday = self.store.data.settings.appointments.weekday
        use_date, adjusted = requested, False
        if weekday_sun0(requested) != weekday:
            use_date, adjusted = next_weekday_date(requested, weekday), True
        return {
            "date": use_date,
            "slots": self.available_on(use_date),
            "requested_date": requested,
            "adjusted": adjusted,
        }

    def slot(self, slot_id: Optional[int]) -> Optional[AppointmentSlot]:
        return next((a for a in self.store.data.appointments if a.id == slot_id), None)

    def book(self, slot_id: Optional[int], ticket: Ticket, user_id: int, phone: str) -> Optional[AppointmentSlot]:
        """Book an available slot for ``ticket``; None if it is not available."""
        slot = self.slot(slot_id)
        if slot is None or slot.status != SlotStatus.available:
            return None
        slot.status = SlotStatus.booked
        slot.booked_ticket_id = ticket.id
        slot.booked_by_user_id = user_id
        slot.booked_phone = phone or ""
        slot.booked_national_id = ticket.beneficiary.national_id
        slot.booked_at = self.clock.now()
        logger.info("Slot %s %s booked for %s", slot.date, slot.start_time, ticket.ticket_code)
        return slot
