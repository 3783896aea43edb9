"""Cron expression parsing."""

from typing import Optional

from apscheduler.triggers.cron import CronTrigger

from .models import InvalidScheduleError

CRON_FIELDS = ("minute", "hour", "day", "month", "day_of_week")


def build_cron_trigger(expression: str, timezone: Optional[str] = None) -> CronTrigger:
    """Build a trigger from a cron expression.

    Five fields are standard crontab syntax. Six fields carry a leading
    seconds field.

    Args:
        expression: Cron expression.
        timezone: Timezone name the expression is evaluated in.

    Returns:
        CronTrigger for the expression.

    Raises:
        InvalidScheduleError: If the expression is empty or malformed.
    """
    if not expression or not expression.strip():
        raise InvalidScheduleError("Schedule is required")

    fields = expression.split()
    try:
        if len(fields) == 5:
            return CronTrigger.from_crontab(expression, timezone=timezone)
        if len(fields) == 6:
            second, rest = fields[0], fields[1:]
            return CronTrigger(
                second=second,
                timezone=timezone,
                **dict(zip(CRON_FIELDS, rest)),
            )
    except ValueError as e:
        raise InvalidScheduleError(f"Invalid cron expression {expression!r}: {e}") from e

    raise InvalidScheduleError(
        f"Invalid cron expression {expression!r}: expected 5 or 6 fields, got {len(fields)}"
    )
