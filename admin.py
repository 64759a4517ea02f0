"""Administration of counters, services, routing, settings and users."""

from __future__ import annotations

import logging
import secrets
from typing import Any, Dict, List, Optional

from clock import Clock, hhmm_to_minutes, minutes_to_hhmm
from models import (
    AvailabilityMode,
    Counter,
    CounterOverride,
    FeedbackMode,
    Service,
    ServiceType,
    User,
    UserRole,
)
from scheduler import IdleRestTimers, clamp_int
from schemas import (
    ActionResult,
    CounterCreate,
    CounterToggle,
    CounterUpdate,
    RoutingUpdate,
    ServiceCreate,
    ServiceUpdate,
    SettingsUpdate,
    UserCreate,
    UserUpdate,
)
from store import DirectoryStore

logger = logging.getLogger(__name__)


def _role(value: Optional[str]) -> UserRole:
    if value in (UserRole.admin.value, UserRole.supervisor.value):
        return UserRole(value)
    return UserRole.counter


def _availability(value: Optional[str]) -> AvailabilityMode:
    return AvailabilityMode.weekly_day if value == AvailabilityMode.weekly_day.value else AvailabilityMode.always


def _service_type(value: Optional[str]) -> ServiceType:
    return ServiceType.appointment if value == ServiceType.appointment.value else ServiceType.walkin


class OfficeAdmin:
    """Admin operations; call them through ``QueueOffice.run``."""

    def __init__(self, store: DirectoryStore, clock: Clock, timers: IdleRestTimers) -> None:
        self.store = store
        self.clock = clock
        self.timers = timers

    def check_passcode(self, passcode: Optional[str]) -> bool:
        return secrets.compare_digest(passcode or "", self.store.data.settings.admin_passcode)

    def check_reports_access(self, passcode: Optional[str] = None, username: Optional[str] = None,
                             password: Optional[str] = None) -> bool:
        """Reports are open to the admin passcode or an active admin/supervisor login."""
        if passcode and self.check_passcode(passcode):
            return True
        user = self.store.user_by_username((username or "").strip())
        if user is None or not user.is_active or user.role not in (UserRole.admin, UserRole.supervisor):
            return False
        return secrets.compare_digest(user.password, password or "")

    def overview(self) -> Dict[str, Any]:
        data = self.store.data
        daily = self.store.counter_daily_map(self.clock.business_date())
        return {
            "counters": [
                {**c.model_dump(mode="json"), "enabled_today": daily.get(c.id, True)}
                for c in sorted(data.counters, key=lambda c: c.priority_order)
            ],
            "services": [s.model_dump(mode="json") for s in data.services],
            "users": [u.model_dump(mode="json", exclude={"password"}) for u in data.users],
            "service_counter_map": {str(k): v for k, v in data.settings.service_counter_map.items()},
            "settings": data.settings.model_dump(mode="json", exclude={"admin_passcode"}),
        }

    # -- counters --------------------------------------------------------

    def add_counter(self, request: CounterCreate) -> ActionResult:
        data = self.store.data
        counter_id = self.store.next_id(data.counters)
        counter = Counter(
            id=counter_id,
            name=request.name or f"Counter {counter_id}",
            priority_order=request.priority_order if request.priority_order is not None else counter_id,
        )
        data.counters.append(counter)
        self.store.set_counter_enabled(self.clock.business_date(), counter_id, True)
        data.settings.counter_overrides.setdefault(counter_id, CounterOverride())
        logger.info("Counter %s added", counter_id)
        return ActionResult.success(counter=counter.model_dump(mode="json"))

    def update_counter(self, request: CounterUpdate) -> ActionResult:
        counter = self.store.counter(request.counter_id)
        if counter is None:
            return ActionResult.failure("counter_not_found", "Counter not found.")
        if request.name:
            counter.name = request.name
        if request.priority_order is not None:
            counter.priority_order = request.priority_order
        if request.is_active is not None:
            counter.is_active = request.is_active
            if counter.is_active:
                self.timers.reschedule(counter.id)
            else:
                self.timers.cancel(counter.id)
        return ActionResult.success(counter=counter.model_dump(mode="json"))

    def toggle_counter(self, request: CounterToggle) -> ActionResult:
        if self.store.counter(request.counter_id) is None:
            return ActionResult.failure("counter_not_found", "Counter not found.")
        self.store.set_counter_enabled(self.clock.business_date(), request.counter_id, request.enabled_today)
        if request.enabled_today:
            self.timers.reschedule(request.counter_id)
        else:
            self.timers.cancel(request.counter_id)
        logger.info("Counter %s enabled today: %s", request.counter_id, request.enabled_today)
        return ActionResult.success(counter_id=request.counter_id, enabled_today=request.enabled_today)

    # -- services --------------------------------------------------------

    def add_service(self, request: ServiceCreate) -> ActionResult:
        data = self.store.data
        service_id = self.store.next_id(data.services)
        service = Service(
            id=service_id,
            name_ar=request.name_ar or f"Service {service_id}",
            name_en=request.name_en or f"Service {service_id}",
            type=_service_type(request.type),
            code_prefix=request.code_prefix or None,
            kiosk_visible=request.kiosk_visible,
            availability_mode=_availability(request.availability_mode),
            availability_weekday=request.availability_weekday,
            group=request.group.strip(),
            requires_previous_ref=request.requires_previous_ref,
        )
        data.services.append(service)
        logger.info("Service %s added", service_id)
        return ActionResult.success(service=service.model_dump(mode="json"))

    def update_service(self, request: ServiceUpdate) -> ActionResult:
        service = self.store.service(request.service_id)
        if service is None:
            return ActionResult.failure("service_not_found", "Service not found.")
        service.name_ar = request.name_ar or service.name_ar
        service.name_en = request.name_en or service.name_en or service.name_ar
        service.type = _service_type(request.type)
        service.code_prefix = request.code_prefix or None
        service.kiosk_visible = request.kiosk_visible
        service.is_active = request.is_active
        service.availability_mode = _availability(request.availability_mode)
        service.availability_weekday = request.availability_weekday
        service.group = request.group.strip()
        service.requires_previous_ref = request.requires_previous_ref
        return ActionResult.success(service=service.model_dump(mode="json"))

    def delete_service(self, service_id: int) -> ActionResult:
        """Deactivate a service, keeping its tickets for reporting."""
        service = self.store.service(service_id)
        if service is None:
            return ActionResult.failure("service_not_found", "Service not found.")
        service.is_active = False
        service.kiosk_visible = False
        self.store.data.settings.service_counter_map.pop(service_id, None)
        for user in self.store.data.users:
            if service_id in user.allowed_service_ids:
                user.allowed_service_ids = [s for s in user.allowed_service_ids if s != service_id]
        logger.info("Service %s deactivated", service_id)
        return ActionResult.success(service_id=service_id)

    def set_routing(self, request: RoutingUpdate) -> ActionResult:
        if self.store.service(request.service_id) is None:
            return ActionResult.failure("service_not_found", "Service not found.")
        routing = self.store.data.settings.service_counter_map
        if request.counter_id is None:
            routing.pop(request.service_id, None)
        else:
            if self.store.counter(request.counter_id) is None:
                return ActionResult.failure("counter_not_found", "Counter not found.")
            routing[request.service_id] = request.counter_id
        return ActionResult.success(service_counter_map={str(k): v for k, v in routing.items()})

    # -- settings --------------------------------------------------------

    def update_settings(self, request: SettingsUpdate) -> ActionResult:
        settings = self.store.data.settings
        if request.rest_seconds_default is not None:
            settings.rest_seconds_default = request.rest_seconds_default
        if request.auto_call_enabled is not None:
            settings.auto_call_enabled = request.auto_call_enabled
        if request.no_show_max_rounds is not None and request.no_show_max_rounds > 0:
            settings.no_show_max_rounds = request.no_show_max_rounds
        if request.feedback_window_seconds is not None and request.feedback_window_seconds > 0:
            settings.feedback_window_seconds = request.feedback_window_seconds
        if request.feedback_mode is not None:
            settings.feedback_mode = (
                FeedbackMode.per_counter if request.feedback_mode == FeedbackMode.per_counter.value
                else FeedbackMode.shared
            )

        work = settings.work_hours
        if request.work_hours_enabled is not None:
            work.enabled = request.work_hours_enabled
        if request.work_start_time:
            work.start_time = minutes_to_hhmm(hhmm_to_minutes(request.work_start_time))
        if request.work_end_time:
            work.end_time = minutes_to_hhmm(hhmm_to_minutes(request.work_end_time))
        if request.work_days is not None:
            work.days = sorted({d for d in request.work_days if 0 <= d <= 6})

        appointments = settings.appointments
        if request.appointments_weekday is not None and 0 <= request.appointments_weekday <= 6:
            appointments.weekday = request.appointments_weekday
        if request.appointments_slot_minutes is not None and request.appointments_slot_minutes > 0:
            appointments.slot_minutes = request.appointments_slot_minutes

        for item in request.counter_overrides:
            if self.store.counter(item.counter_id) is None:
                return ActionResult.failure("counter_not_found", f"Counter {item.counter_id} not found.")
            rest = item.rest_seconds
            if rest is not None:
                rest = clamp_int(rest, settings.rest_seconds_min, settings.rest_seconds_max)
            settings.counter_overrides[item.counter_id] = CounterOverride(
                rest_seconds=rest, auto_call_enabled=item.auto_call_enabled,
            )

        # Pending timers pick up the new rest interval or are dropped.
        for counter in self.store.data.counters:
            if self.timers.pending(counter.id):
                self.timers.reschedule(counter.id)
        logger.info("Office settings updated")
        return ActionResult.success(settings=settings.model_dump(mode="json", exclude={"admin_passcode"}))

    def set_passcode(self, passcode: str) -> ActionResult:
        if not passcode:
            return ActionResult.failure("validation_error", "Passcode is required.", fields=["passcode"])
        self.store.data.settings.admin_passcode = passcode
        return ActionResult.success()

    # -- users -----------------------------------------------------------

    def _allowed_services(self, service_ids: Optional[List[int]]) -> List[int]:
        ids = sorted(set(service_ids or []))
        # every service selected is stored as "unrestricted"
        if ids and len(ids) == len(self.store.data.services):
            return []
        return ids

    def add_user(self, request: UserCreate) -> ActionResult:
        username = request.username.strip()
        if not username:
            return ActionResult.failure("validation_error", "Username is required.", fields=["username"])
        if self.store.user_by_username(username) is not None:
            return ActionResult.failure("username_taken", "Username already exists.", fields=["username"])
        data = self.store.data
        role = _role(request.role)
        user = User(
            id=self.store.next_id(data.users),
            username=username,
            password=request.password or "1234",
            full_name=request.full_name or username,
            role=role,
            is_active=request.is_active,
        )
        if role == UserRole.counter:
            if request.fixed_counter_id and request.fixed_counter_id > 0:
                user.fixed_counter_id = request.fixed_counter_id
            user.allowed_service_ids = self._allowed_services(request.service_ids)
        data.users.append(user)
        logger.info("User %s added with role %s", username, role.value)
        return ActionResult.success(user=user.model_dump(mode="json", exclude={"password"}))

    def update_user(self, request: UserUpdate) -> ActionResult:
        user = self.store.user(request.user_id)
        if user is None:
            return ActionResult.failure("user_not_found", "User not found.")
        username = (request.username or "").strip()
        if username and username != user.username:
            other = self.store.user_by_username(username)
            if other is not None and other.id != user.id:
                return ActionResult.failure("username_taken", "Username already exists.", fields=["username"])
            user.username = username
        if request.password and request.password.strip():
            user.password = request.password.strip()
        if request.full_name:
            user.full_name = request.full_name
        if request.role is not None:
            user.role = _role(request.role)
        if request.is_active is not None:
            user.is_active = request.is_active

        if user.role == UserRole.counter:
            if request.fixed_counter_id is not None:
                user.fixed_counter_id = request.fixed_counter_id if request.fixed_counter_id > 0 else None
            if request.service_ids is not None:
                user.allowed_service_ids = self._allowed_services(request.service_ids)
        else:
            user.fixed_counter_id = None
            user.allowed_service_ids = []
        return ActionResult.success(user=user.model_dump(mode="json", exclude={"password"}))
