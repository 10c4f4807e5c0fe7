"""Cron recurrence rules for the time-based trigger."""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from errors import ConfigurationError


class CronSchedule:
    """A validated cron expression evaluated in a fixed timezone.

    Construction is the validation point: a malformed expression or an
    unknown timezone raises ConfigurationError here, so bad schedules are
    rejected when the job configuration loads rather than when a tick fires.
    """

    def __init__(self, expression: str, timezone: str = "UTC") -> None:
        expression = " ".join(expression.split()) if isinstance(expression, str) else ""
        if not expression or not croniter.is_valid(expression):
            raise ConfigurationError(f"Invalid cron expression: {expression!r}")
        try:
            self.tz = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"Unknown schedule timezone: {timezone!r}") from exc
        self.expression = expression
        self.timezone = timezone

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r}, timezone={self.timezone!r})"

    def previous_tick(self, now: datetime) -> datetime:
        """Return the latest tick at or before now, in UTC."""
        local_now = _aware(now).astimezone(self.tz)
        # get_prev is strictly before its start, so a tick landing exactly on
        # now has to be matched separately.
        on_boundary = local_now.second == 0 and local_now.microsecond == 0
        if on_boundary and croniter.match(self.expression, local_now):
            return local_now.astimezone(UTC)
        return croniter(self.expression, local_now).get_prev(datetime).astimezone(UTC)

    def next_fire(self, after: datetime) -> datetime:
        """Return the first tick strictly after the given time, in UTC."""
        itr = croniter(self.expression, _aware(after).astimezone(self.tz))
        return itr.get_next(datetime).astimezone(UTC)

    def upcoming(self, after: datetime, count: int) -> list[datetime]:
        fires: list[datetime] = []
        cursor = after
        for _ in range(count):
            cursor = self.next_fire(cursor)
            fires.append(cursor)
        return fires


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
