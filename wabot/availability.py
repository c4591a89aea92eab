"""Appointment slot availability backed by the Appointments table."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional

from wabot.config import settings, shop_tz
from wabot.datastore import STORE, Store
from wabot.runtime import get_logger, utc_now
from wabot.schema import AppointmentStatus

logger = get_logger(__name__)

BLOCKING_STATUSES = {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}


class AvailabilityError(RuntimeError):
    """The oracle could not give an answer."""


class StoreAvailabilityOracle:
    """
    A slot is free when it sits inside business hours and no pending or
    confirmed appointment overlaps it. One chair, one appointment at a time.
    """

    def __init__(self, store: Optional[Store] = None, capacity: int = 1) -> None:
        self.store = store or STORE
        self.capacity = capacity

    def _within_hours(self, start: datetime, duration_minutes: int) -> bool:
        s = settings()
        local = start.astimezone(shop_tz())
        opening = datetime.combine(local.date(), time(s.BUSINESS_START_HOUR), tzinfo=shop_tz())
        closing = datetime.combine(local.date(), time(s.BUSINESS_END_HOUR), tzinfo=shop_tz())
        return opening <= local and local + timedelta(minutes=duration_minutes) <= closing

    def _overlapping(self, start: datetime, end: datetime) -> int:
        try:
            booked = self.store.list_appointments_between(start, end)
        except Exception as exc:
            raise AvailabilityError(f"appointment lookup failed: {exc}") from exc
        return sum(1 for appt in booked if appt.status in BLOCKING_STATUSES)

    def check_availability(self, instant: datetime, duration_minutes: int = 30) -> Dict[str, bool]:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=shop_tz())
        if not self._within_hours(instant, duration_minutes):
            return {"available": False}
        end = instant + timedelta(minutes=duration_minutes)
        return {"available": self._overlapping(instant, end) < self.capacity}

    def list_open_slots(
        self, day: date, start_hour: int = 9, end_hour: int = 18, slot_minutes: int = 30
    ) -> List[Dict[str, object]]:
        tz = shop_tz()
        cursor = datetime.combine(day, time(start_hour), tzinfo=tz)
        closing = datetime.combine(day, time(end_hour), tzinfo=tz)
        try:
            booked = [
                a for a in self.store.list_appointments_between(cursor, closing) if a.status in BLOCKING_STATUSES
            ]
        except Exception as exc:
            raise AvailabilityError(f"appointment lookup failed: {exc}") from exc

        slots: List[Dict[str, object]] = []
        step = timedelta(minutes=slot_minutes)
        while cursor + step <= closing:
            end = cursor + step
            taken = sum(1 for a in booked if a.scheduled_at < end and a.ends_at > cursor)
            slots.append({"time": cursor.strftime("%H:%M"), "available": taken < self.capacity})
            cursor = end
        logger.debug("Open slots for %s: %s", day, sum(1 for s in slots if s["available"]))
        return slots


def upcoming_open_slots(
    oracle, day: date, *, now: Optional[datetime] = None, limit: int = 3
) -> List[datetime]:
    """Available slots on ``day`` strictly after ``now``, earliest first."""
    s = settings()
    now = now or utc_now()
    found: List[datetime] = []
    for slot in oracle.list_open_slots(day, s.BUSINESS_START_HOUR, s.BUSINESS_END_HOUR, s.APPOINTMENT_SLOT_MINUTES):
        if not slot.get("available"):
            continue
        hour, minute = (int(p) for p in str(slot["time"]).split(":"))
        instant = datetime.combine(day, time(hour, minute), tzinfo=shop_tz())
        if instant > now:
            found.append(instant)
        if len(found) >= limit:
            break
    return found
