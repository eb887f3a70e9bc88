"""
Delivery slot calculator.

Orders are booked for a (date, shift) slot. Customers can book from
tomorrow up to seven days ahead; same-day delivery is never offered and
the evening shift is switched off unless EVENING_DELIVERY_ENABLED is set.

Every comparison happens in local civil time (Asia/Kolkata by default),
whatever the host timezone is. Callers pass ``now`` as an aware instant.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from milkcart.config import settings
from milkcart.core.timeutils import to_local
from milkcart.models.order import DeliveryShift


# Latest local time-of-day at which tomorrow's morning slot can still be booked
MORNING_ORDER_CUTOFF = time(23, 59, 59)

# Customers may not cancel after these local hours on any day
CANCELLATION_CUTOFF_HOUR = {
    DeliveryShift.MORNING.value: 20,
    DeliveryShift.EVENING.value: 14,
}

# Local time windows in which a delivery can be marked done, end exclusive
DELIVERY_WINDOWS = {
    DeliveryShift.MORNING.value: (time(5, 0), time(11, 0)),
    DeliveryShift.EVENING.value: (time(16, 0), time(20, 0)),
}

# Customer-facing labels
DELIVERY_TIME_SLOTS = {
    DeliveryShift.MORNING.value: "5:00 AM - 11:00 AM",
    DeliveryShift.EVENING.value: "5:00 PM - 7:00 PM",
}

EVENING_DISABLED_REASON = "Evening delivery is temporarily disabled"
MORNING_CUTOFF_REASON = "Morning delivery orders must be placed before midnight"
INVALID_SHIFT_REASON = "Delivery shift must be either morning or evening"


@dataclass(frozen=True)
class SlotValidation:
    valid: bool
    reason: str = ""


@dataclass(frozen=True)
class DaySlot:
    """Bookable state of one calendar day."""
    date: date
    day_offset: int
    morning_available: bool
    morning_cutoff_passed: bool
    evening_available: bool
    morning_reason: str = ""
    evening_reason: str = ""

    @property
    def is_tomorrow(self) -> bool:
        return self.day_offset == 1


@dataclass(frozen=True)
class ShiftAvailability:
    current_local_time: datetime
    morning_available: bool
    evening_available: bool
    next_available_date: date
    messages: List[str] = field(default_factory=list)


def is_valid_shift(shift: str) -> bool:
    return shift in (DeliveryShift.MORNING.value, DeliveryShift.EVENING.value)


def is_evening_enabled() -> bool:
    return settings.EVENING_DELIVERY_ENABLED


def is_tomorrow_morning_open(now: datetime) -> bool:
    """Tomorrow's morning slot stays open until the cutoff on the current local day."""
    return to_local(now).time() <= MORNING_ORDER_CUTOFF


def _booking_days(days: Optional[int]) -> int:
    """Requested listing length, never beyond what validate_slot accepts."""
    return min(days or settings.ORDER_BOOKING_DAYS, settings.ORDER_BOOKING_DAYS)


def get_booking_window(now: datetime, days: Optional[int] = None) -> tuple[date, date]:
    """First and last bookable dates: tomorrow .. tomorrow + (days - 1)."""
    days = _booking_days(days)
    today = to_local(now).date()
    first = today + timedelta(days=1)
    return first, first + timedelta(days=days - 1)


def get_available_slots(now: datetime, days: Optional[int] = None) -> List[DaySlot]:
    """
    List the bookable days starting tomorrow.

    Tomorrow's morning depends on the cutoff; later mornings are always
    open. The evening shift keeps its place in each record but is
    unavailable while disabled.
    """
    days = _booking_days(days)
    today = to_local(now).date()
    tomorrow_open = is_tomorrow_morning_open(now)
    evening_open = is_evening_enabled()

    slots: List[DaySlot] = []
    for offset in range(1, days + 1):
        if offset == 1 and not tomorrow_open:
            morning_available, cutoff_passed, morning_reason = False, True, MORNING_CUTOFF_REASON
        else:
            morning_available, cutoff_passed, morning_reason = True, False, ""

        slots.append(
            DaySlot(
                date=today + timedelta(days=offset),
                day_offset=offset,
                morning_available=morning_available,
                morning_cutoff_passed=cutoff_passed,
                evening_available=evening_open,
                morning_reason=morning_reason,
                evening_reason="" if evening_open else EVENING_DISABLED_REASON,
            )
        )
    return slots


def validate_slot(delivery_date: date, shift: str, now: datetime) -> SlotValidation:
    """
    Check whether an order may be placed for ``delivery_date``/``shift``.

    Checks run in a fixed order so the customer sees the most specific
    reason: shift name, evening switch, same day, booking range, then the
    morning cutoff for tomorrow.
    """
    if not is_valid_shift(shift):
        return SlotValidation(False, INVALID_SHIFT_REASON)

    if shift == DeliveryShift.EVENING.value and not is_evening_enabled():
        return SlotValidation(False, EVENING_DISABLED_REASON)

    today = to_local(now).date()
    if delivery_date == today:
        return SlotValidation(False, f"Same day {shift} delivery is not available")

    first, last = get_booking_window(now)
    if delivery_date < first or delivery_date > last:
        return SlotValidation(
            False,
            f"Delivery date must be between tomorrow and {settings.ORDER_BOOKING_DAYS} days from tomorrow",
        )

    if delivery_date == first and shift == DeliveryShift.MORNING.value:
        if not is_tomorrow_morning_open(now):
            return SlotValidation(False, MORNING_CUTOFF_REASON)

    return SlotValidation(True)


def get_cancellation_cutoff_hour(shift: str) -> int:
    return CANCELLATION_CUTOFF_HOUR.get(shift, CANCELLATION_CUTOFF_HOUR[DeliveryShift.MORNING.value])


def can_cancel_now(shift: str, now: datetime) -> bool:
    """Customers may cancel until the shift's cutoff hour (local)."""
    return to_local(now).hour < get_cancellation_cutoff_hour(shift)


def get_delivery_window(shift: str) -> tuple[time, time]:
    return DELIVERY_WINDOWS[shift]


def is_within_delivery_window(shift: str, now: datetime) -> bool:
    if shift not in DELIVERY_WINDOWS:
        return False
    start, end = DELIVERY_WINDOWS[shift]
    return start <= to_local(now).time() < end


def get_delivery_time_slot(shift: str) -> str:
    return DELIVERY_TIME_SLOTS.get(shift, "")


def get_shift_availability(now: datetime) -> ShiftAvailability:
    """Summary shown at checkout: which shifts can currently be booked."""
    local = to_local(now)
    first, _ = get_booking_window(now)
    morning_available = is_tomorrow_morning_open(now)
    evening_available = is_evening_enabled()

    messages = []
    if not morning_available:
        messages.append(MORNING_CUTOFF_REASON)
    if not evening_available:
        messages.append(EVENING_DISABLED_REASON)

    return ShiftAvailability(
        current_local_time=local,
        morning_available=morning_available,
        evening_available=evening_available,
        next_available_date=first if morning_available else first + timedelta(days=1),
        messages=messages,
    )
