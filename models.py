"""Record shapes for the counter queue.

The whole office state is one ``Store`` document: counters, services,
users, counter sessions, tickets and the append-only logs that hang off
them.  SQLModel classes are used without ``table=True``; the document is
persisted wholesale as a JSON snapshot (see ``store.py``), so these
classes are plain validated models rather than mapped tables.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from sqlmodel import Field, SQLModel

SCHEMA_VERSION = 3


class ServiceType(str, Enum):
    walkin = "walkin"
    appointment = "appointment"


class AvailabilityMode(str, Enum):
    always = "always"
    weekly_day = "weekly_day"


class UserRole(str, Enum):
    admin = "admin"
    supervisor = "supervisor"
    counter = "counter"


class SessionStatus(str, Enum):
    active = "active"
    ended = "ended"


class TicketStatus(str, Enum):
    """Ticket lifecycle states."""

    NEW = "NEW"
    ASSIGNED = "ASSIGNED"
    CALLED = "CALLED"
    IN_SERVICE = "IN_SERVICE"
    SKIPPED = "SKIPPED"
    CLOSED_RESOLVED = "CLOSED_RESOLVED"
    CLOSED_TRANSFERRED = "CLOSED_TRANSFERRED"
    CLOSED_AWAITING = "CLOSED_AWAITING"
    CLOSED_NOT_RESOLVED = "CLOSED_NOT_RESOLVED"
    CLOSED_APPOINTMENT_BOOKED = "CLOSED_APPOINTMENT_BOOKED"


CLOSED_STATUSES = frozenset(
    {
        TicketStatus.CLOSED_RESOLVED,
        TicketStatus.CLOSED_TRANSFERRED,
        TicketStatus.CLOSED_AWAITING,
        TicketStatus.CLOSED_NOT_RESOLVED,
        TicketStatus.CLOSED_APPOINTMENT_BOOKED,
    }
)

# Statuses that count towards a counter's load when balancing.
LOAD_STATUSES = frozenset(
    {TicketStatus.ASSIGNED, TicketStatus.CALLED, TicketStatus.IN_SERVICE}
)


class CallResult(str, Enum):
    called = "called"
    skipped = "skipped"


class FeedbackMode(str, Enum):
    shared = "shared"
    per_counter = "per_counter"


class SlotStatus(str, Enum):
    available = "available"
    booked = "booked"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class CounterOverride(SQLModel):
    # None means "inherit the office default".
    rest_seconds: Optional[int] = None
    auto_call_enabled: Optional[bool] = None


class AppointmentSettings(SQLModel):
    enabled: bool = True
    weekday: int = 4  # 0=Sun .. 6=Sat
    start_time: str = "10:00"
    end_time: str = "12:00"
    slot_minutes: int = 15


class WorkHours(SQLModel):
    enabled: bool = False
    start_time: str = "07:30"
    end_time: str = "14:30"
    days: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])


class OfficeSettings(SQLModel):
    schema_version: int = SCHEMA_VERSION
    rest_seconds_default: int = 30
    rest_seconds_min: int = 10
    rest_seconds_max: int = 180
    auto_call_enabled: bool = True
    counter_overrides: Dict[int, CounterOverride] = Field(default_factory=dict)
    no_show_max_rounds: int = 3
    feedback_window_seconds: int = 120
    feedback_mode: FeedbackMode = FeedbackMode.shared
    question1_text: str = "Was your request completed?"
    question2_text: str = "Rate the employee's service"
    appointments: AppointmentSettings = Field(default_factory=AppointmentSettings)
    work_hours: WorkHours = Field(default_factory=WorkHours)
    service_counter_map: Dict[int, int] = Field(default_factory=dict)
    admin_passcode: str = "demo"
    office_name: str = "Beneficiary Care Office"


# ---------------------------------------------------------------------------
# Directory records
# ---------------------------------------------------------------------------


class Counter(SQLModel):
    id: int
    name: str
    location: str = ""
    is_active: bool = True
    priority_order: int = 0


class CounterDaily(SQLModel):
    work_date: str
    counter_id: int
    enabled_today: bool = True


class Service(SQLModel):
    id: int
    name_ar: str
    name_en: str = ""
    type: ServiceType = ServiceType.walkin
    code_prefix: Optional[str] = None
    kiosk_visible: bool = True
    is_active: bool = True
    availability_mode: AvailabilityMode = AvailabilityMode.always
    availability_weekday: Optional[int] = None
    group: str = ""
    requires_previous_ref: bool = False


class User(SQLModel):
    id: int
    username: str
    password: str
    full_name: str = ""
    role: UserRole = UserRole.counter
    is_active: bool = True
    fixed_counter_id: Optional[int] = None
    # Empty list means every service is permitted.
    allowed_service_ids: List[int] = Field(default_factory=list)


class CounterSession(SQLModel):
    id: int
    user_id: int
    counter_id: Optional[int] = None
    status: SessionStatus = SessionStatus.active
    started_at: datetime
    ended_at: Optional[datetime] = None
    last_heartbeat: datetime


# ---------------------------------------------------------------------------
# Tickets and their logs
# ---------------------------------------------------------------------------


class Beneficiary(SQLModel):
    full_name: str
    national_id: str
    phone: str
    beneficiary_type: str
    has_previous: bool = False
    previous_ref: str = ""


class Ticket(SQLModel):
    id: str
    ticket_code: str
    service_id: int
    service_name_ar: str = ""
    service_name_en: str = ""
    lang: str = "ar"
    beneficiary: Beneficiary
    assigned_counter_id: Optional[int] = None
    status: TicketStatus = TicketStatus.NEW
    created_at: datetime
    assigned_at: Optional[datetime] = None
    called_at: Optional[datetime] = None
    in_service_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    skipped_at: Optional[datetime] = None
    skip_reason: str = ""
    served_by_user_id: Optional[int] = None
    closed_by_user_id: Optional[int] = None
    call_round: int = 0
    transferred_at: Optional[datetime] = None
    transferred_from_counter_id: Optional[int] = None
    transfer_note: str = ""
    barcode_value: str = ""
    qr_value: str = ""


class TicketCall(SQLModel):
    """Append-only call log entry; never mutated after creation."""

    id: int
    ticket_id: str
    counter_id: int
    user_id: int
    call_round: int
    called_at: datetime
    result: CallResult = CallResult.called
    auto: bool = False


class TicketTransfer(SQLModel):
    id: int
    ticket_id: str
    ticket_code: str
    from_counter_id: int
    to_counter_id: int
    user_id: int
    note: str = ""
    at: datetime


class Case(SQLModel):
    id: int
    ticket_id: str
    summary: str = ""
    details: str = ""
    phone: str = ""
    outcome_code: str = ""
    not_resolved_reason: str = ""
    category: str = ""
    priority: str = "normal"
    channel: str = "walkin"
    internal_notes: str = ""
    transfer_to: str = ""
    awaiting_from: str = ""
    due_date: str = ""
    appointment_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class FeedbackWindow(SQLModel):
    ticket_id: str
    ticket_code: str
    counter_id: int
    user_id: int
    created_at: datetime
    expires_at: datetime
    consumed: bool = False


class Feedback(SQLModel):
    id: int
    ticket_id: str
    counter_id: int
    user_id: int
    solved_yes_no: Optional[bool] = None
    employee_rating: int
    reason_code: Optional[str] = None
    created_at: datetime


class AppointmentSlot(SQLModel):
    id: int
    date: str
    start_time: str
    end_time: str
    status: SlotStatus = SlotStatus.available
    booked_ticket_id: Optional[str] = None
    booked_by_user_id: Optional[int] = None
    booked_phone: str = ""
    booked_national_id: str = ""
    booked_at: Optional[datetime] = None


class Store(SQLModel):
    """The whole office state, loaded and saved as one document."""

    settings: OfficeSettings = Field(default_factory=OfficeSettings)
    counters: List[Counter] = Field(default_factory=list)
    counter_daily: List[CounterDaily] = Field(default_factory=list)
    services: List[Service] = Field(default_factory=list)
    users: List[User] = Field(default_factory=list)
    sessions: List[CounterSession] = Field(default_factory=list)
    tickets: List[Ticket] = Field(default_factory=list)
    ticket_calls: List[TicketCall] = Field(default_factory=list)
    ticket_transfers: List[TicketTransfer] = Field(default_factory=list)
    cases: List[Case] = Field(default_factory=list)
    feedback: List[Feedback] = Field(default_factory=list)
    feedback_windows: List[FeedbackWindow] = Field(default_factory=list)
    appointments: List[AppointmentSlot] = Field(default_factory=list)
    # business date -> service id -> last issued sequence number
    sequences: Dict[str, Dict[int, int]] = Field(default_factory=dict)
