"""
Business Hours Calculator
=========================

Converts between wall-clock instants and "business minutes" for a
BusinessHoursProfile.

All arithmetic is done on UTC instants; the profile's named timezone is only
used to locate each calendar day's business window, so daylight-saving
transitions shift the window rather than the arithmetic.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from helpdesk_sla.core import ProfileError
from helpdesk_sla.sla.domain.entities import BusinessHoursProfile

# Longest stretch searched for an active business day
MAX_SEARCH_DAYS = 14


def _as_utc(instant: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


class BusinessHoursCalculator:
    """
    Pure functions for business-hours arithmetic.

    A missing profile (None) behaves as 24x7 in UTC.
    """

    @staticmethod
    def zone(profile: BusinessHoursProfile) -> ZoneInfo:
        """
        Resolve and validate the profile's calendar.

        Raises:
            ProfileError: inactive profile, timezone missing/unknown, no active
                weekdays, or a window that does not end after it starts
        """
        if not profile.is_active:
            raise ProfileError("Business hours profile is inactive", profile.id)
        if not profile.timezone:
            raise ProfileError("Business hours profile has no timezone", profile.id)
        try:
            tz = ZoneInfo(profile.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ProfileError(
                f"Unknown timezone '{profile.timezone}'", profile.id
            ) from e

        if profile.is_24x7:
            return tz

        if not profile.days_of_week:
            raise ProfileError("Business hours profile has no active weekdays", profile.id)
        if any(day < 1 or day > 7 for day in profile.days_of_week):
            raise ProfileError("Weekdays must be between 1 (Mon) and 7 (Sun)", profile.id)
        if profile.end_time <= profile.start_time:
            raise ProfileError("Business day must end after it starts", profile.id)
        return tz

    @staticmethod
    def _always_open(profile: Optional[BusinessHoursProfile]) -> bool:
        if profile is None:
            return True
        if not profile.is_active:
            raise ProfileError("Business hours profile is inactive", profile.id)
        return profile.is_24x7

    @staticmethod
    def window(
        profile: BusinessHoursProfile, tz: ZoneInfo, day: date
    ) -> Optional[Tuple[datetime, datetime]]:
        """UTC [start, end) business window for a local calendar day, or None if inactive."""
        if day.isoweekday() not in profile.days_of_week:
            return None
        start = datetime.combine(day, profile.start_time, tzinfo=tz).astimezone(timezone.utc)
        end = datetime.combine(day, profile.end_time, tzinfo=tz).astimezone(timezone.utc)
        return start, end

    @classmethod
    def _windows_from(
        cls, profile: BusinessHoursProfile, tz: ZoneInfo, day: date, max_days: int
    ) -> Iterator[Tuple[datetime, datetime]]:
        for offset in range(max_days):
            bounds = cls.window(profile, tz, day + timedelta(days=offset))
            if bounds is not None:
                yield bounds

    @classmethod
    def is_within_business_hours(
        cls, profile: Optional[BusinessHoursProfile], instant: datetime
    ) -> bool:
        if cls._always_open(profile):
            return True
        tz = cls.zone(profile)
        instant = _as_utc(instant)
        bounds = cls.window(profile, tz, instant.astimezone(tz).date())
        return bounds is not None and bounds[0] <= instant < bounds[1]

    @classmethod
    def next_business_start(
        cls, profile: Optional[BusinessHoursProfile], instant: datetime
    ) -> datetime:
        """
        Roll an instant forward to the next moment that counts as business time.

        An instant inside a window is returned unchanged; one before today's
        window moves to its start; one after today's end (or on an inactive
        day) moves to the next active day's start.
        """
        instant = _as_utc(instant)
        if cls._always_open(profile):
            return instant

        tz = cls.zone(profile)
        local_day = instant.astimezone(tz).date()
        for start, end in cls._windows_from(profile, tz, local_day, MAX_SEARCH_DAYS):
            if instant < start:
                return start
            if instant < end:
                return instant

        raise ProfileError(
            f"No business day found within {MAX_SEARCH_DAYS} days", profile.id
        )

    @classmethod
    def elapsed_business_minutes(
        cls,
        profile: Optional[BusinessHoursProfile],
        start: datetime,
        end: datetime,
    ) -> int:
        """
        Whole business minutes between two instants (0 if end <= start).

        For 24x7 profiles this is plain wall-clock minutes.
        """
        start, end = _as_utc(start), _as_utc(end)
        if end <= start:
            return 0
        if cls._always_open(profile):
            return int((end - start).total_seconds() // 60)

        tz = cls.zone(profile)
        first_day = start.astimezone(tz).date()
        last_day = end.astimezone(tz).date()
        span_days = (last_day - first_day).days + 1

        total = timedelta(0)
        for window_start, window_end in cls._windows_from(profile, tz, first_day, span_days):
            overlap = min(end, window_end) - max(start, window_start)
            if overlap > timedelta(0):
                total += overlap

        return int(total.total_seconds() // 60)

    @classmethod
    def project_deadline(
        cls,
        profile: Optional[BusinessHoursProfile],
        start: datetime,
        minutes_needed: int,
    ) -> datetime:
        """
        The instant at which minutes_needed business minutes have elapsed after start.

        The start is first rolled forward to business time, so a zero budget
        returns the rolled-forward start.
        """
        if minutes_needed < 0:
            raise ValueError("minutes_needed cannot be negative")

        start = _as_utc(start)
        if cls._always_open(profile):
            return start + timedelta(minutes=minutes_needed)

        tz = cls.zone(profile)
        current = cls.next_business_start(profile, start)
        remaining = timedelta(minutes=minutes_needed)

        window_minutes = (
            datetime.combine(date.min, profile.end_time)
            - datetime.combine(date.min, profile.start_time)
        ).total_seconds() / 60
        # Enough calendar days to fit the budget even with one active weekday
        max_days = MAX_SEARCH_DAYS + int(minutes_needed / window_minutes + 1) * 7

        local_day = current.astimezone(tz).date()
        for window_start, window_end in cls._windows_from(profile, tz, local_day, max_days):
            if current >= window_end:
                continue
            segment_start = max(current, window_start)
            available = window_end - segment_start
            if remaining <= available:
                return segment_start + remaining
            remaining -= available
            current = window_end

        raise ProfileError(
            f"Deadline for {minutes_needed} minutes not found within {max_days} days",
            profile.id,
        )
