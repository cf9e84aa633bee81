"""
Booking Policy

Time rules shared by cancellation and refund decisions.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone


@dataclass(frozen=True)
class BookingPolicy:
    cancellation_window_hours: int = 24
    check_in_time: time = time(0, 0)

    @property
    def cancellation_window(self) -> timedelta:
        return timedelta(hours=self.cancellation_window_hours)

    def check_in_moment(self, booking) -> datetime:
        """Check-in date at the configured check-in time, in UTC"""
        return datetime.combine(booking.dates.start_date, self.check_in_time, tzinfo=timezone.utc)

    def cancellation_deadline(self, booking) -> datetime:
        return self.check_in_moment(booking) - self.cancellation_window

    def is_within_free_cancellation(self, booking, now: datetime) -> bool:
        return now <= self.cancellation_deadline(booking)


def parse_check_in_time(value: str) -> time:
    """Parse an "HH:MM" setting value"""
    hours, _, minutes = value.partition(':')
    return time(int(hours), int(minutes or 0))
