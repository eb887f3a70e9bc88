from datetime import date, timedelta, timezone

import pytest

from milkcart.config import settings
from milkcart.services import delivery_scheduling
from tests.factories import NOW, TOMORROW, ist


class TestAvailableSlots:
    def test_lists_seven_days_starting_tomorrow(self):
        slots = delivery_scheduling.get_available_slots(NOW)

        assert len(slots) == 7
        assert slots[0].date == TOMORROW
        assert slots[-1].date == TOMORROW + timedelta(days=6)
        assert [s.day_offset for s in slots] == list(range(1, 8))
        assert slots[0].is_tomorrow

    def test_every_morning_open_during_the_day(self):
        slots = delivery_scheduling.get_available_slots(NOW)

        assert all(s.morning_available for s in slots)
        assert not any(s.morning_cutoff_passed for s in slots)

    def test_evening_disabled_keeps_its_place(self):
        slots = delivery_scheduling.get_available_slots(NOW)

        assert not any(s.evening_available for s in slots)
        assert slots[0].evening_reason == delivery_scheduling.EVENING_DISABLED_REASON

    def test_listing_uses_local_date_not_utc(self):
        # 20:00 UTC on the 10th is already 01:30 on the 11th in Pune
        now = ist(2026, 3, 11, 1, 30).astimezone(timezone.utc)

        slots = delivery_scheduling.get_available_slots(now)

        assert slots[0].date == date(2026, 3, 12)

    def test_longer_listing_capped_at_booking_window(self):
        slots = delivery_scheduling.get_available_slots(NOW, 14)

        assert len(slots) == settings.ORDER_BOOKING_DAYS
        for slot in slots:
            assert delivery_scheduling.validate_slot(slot.date, "morning", NOW).valid

    def test_shorter_listing_allowed(self):
        assert len(delivery_scheduling.get_available_slots(NOW, 3)) == 3

    def test_evening_enabled(self, monkeypatch):
        monkeypatch.setattr(settings, "EVENING_DELIVERY_ENABLED", True)

        slots = delivery_scheduling.get_available_slots(NOW)

        assert all(s.evening_available for s in slots)
        assert slots[0].evening_reason == ""


class TestValidateSlot:
    def test_tomorrow_morning_accepted(self):
        assert delivery_scheduling.validate_slot(TOMORROW, "morning", NOW).valid

    def test_tomorrow_morning_accepted_just_before_midnight(self):
        result = delivery_scheduling.validate_slot(TOMORROW, "morning", ist(2026, 3, 10, 23, 59, 59))
        assert result.valid

    def test_evening_rejected_while_disabled(self):
        result = delivery_scheduling.validate_slot(TOMORROW, "evening", NOW)

        assert not result.valid
        assert result.reason == delivery_scheduling.EVENING_DISABLED_REASON

    def test_evening_accepted_when_enabled(self, monkeypatch):
        monkeypatch.setattr(settings, "EVENING_DELIVERY_ENABLED", True)

        assert delivery_scheduling.validate_slot(TOMORROW, "evening", NOW).valid

    def test_same_day_rejected(self):
        result = delivery_scheduling.validate_slot(NOW.date(), "morning", NOW)

        assert not result.valid
        assert "Same day" in result.reason

    @pytest.mark.parametrize("offset", [-1, 8, 30])
    def test_outside_booking_window_rejected(self, offset):
        result = delivery_scheduling.validate_slot(NOW.date() + timedelta(days=offset), "morning", NOW)

        assert not result.valid
        assert "between tomorrow" in result.reason

    def test_last_day_of_window_accepted(self):
        assert delivery_scheduling.validate_slot(TOMORROW + timedelta(days=6), "morning", NOW).valid

    def test_unknown_shift_rejected(self):
        result = delivery_scheduling.validate_slot(TOMORROW, "night", NOW)

        assert not result.valid
        assert result.reason == delivery_scheduling.INVALID_SHIFT_REASON


class TestCutoffs:
    @pytest.mark.parametrize(
        "shift,hour,minute,expected",
        [
            ("morning", 19, 59, True),
            ("morning", 20, 0, False),
            ("evening", 13, 59, True),
            ("evening", 14, 0, False),
        ],
    )
    def test_cancellation_cutoff(self, shift, hour, minute, expected):
        assert delivery_scheduling.can_cancel_now(shift, ist(2026, 3, 10, hour, minute)) is expected

    @pytest.mark.parametrize(
        "hour,minute,expected",
        [
            (4, 59, False),
            (5, 0, True),
            (10, 59, True),
            (11, 0, False),
        ],
    )
    def test_morning_delivery_window(self, hour, minute, expected):
        moment = ist(2026, 3, 11, hour, minute)
        assert delivery_scheduling.is_within_delivery_window("morning", moment) is expected

    def test_delivery_window_unknown_shift(self):
        assert not delivery_scheduling.is_within_delivery_window("night", NOW)


def test_shift_availability_summary():
    summary = delivery_scheduling.get_shift_availability(NOW)

    assert summary.morning_available
    assert not summary.evening_available
    assert summary.next_available_date == TOMORROW
    assert summary.messages == [delivery_scheduling.EVENING_DISABLED_REASON]
    assert summary.current_local_time.hour == 10
