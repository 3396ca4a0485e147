"""Five-field cron expressions evaluated in an IANA timezone.

APScheduler's CronTrigger numbers weekdays from Monday (0 = mon), while
standard cron numbers them from Sunday (0 and 7 = sun). The day-of-week field
is therefore expanded into explicit weekday names before the trigger is built.

CronTrigger also ANDs day-of-month and day-of-week. Standard cron fires when
either matches if both are restricted, so such expressions become an
OrTrigger over one CronTrigger per day field.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

CRON_PRESETS = [
    {"label": "Every day at midnight", "value": "0 0 * * *"},
    {"label": "Twice a week (Thu, Sun) at midnight", "value": "0 0 * * 4,0"},
    {"label": "Twice a week (Fri, Sun) at midnight", "value": "0 0 * * 5,0"},
    {"label": "Three times a week (Mon, Wed, Fri) at midnight", "value": "0 0 * * 1,3,5"},
    {"label": "Every Sunday at midnight", "value": "0 0 * * 0"},
]

TIMEZONE_OPTIONS = [
    {"label": "Asia/Seoul (KST)", "value": "Asia/Seoul"},
    {"label": "Asia/Tokyo (JST)", "value": "Asia/Tokyo"},
]

_WEEKDAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]
_DAY_LABELS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def _day_number(token: str) -> int:
    token = token.strip().lower()
    if token in _WEEKDAYS:
        return _WEEKDAYS.index(token)
    value = int(token)
    if not 0 <= value <= 7:
        raise ValueError(f"day of week out of range: {token}")
    return value


def expand_day_of_week(field: str) -> str:
    """Translate a cron day-of-week field into a comma list of weekday names."""
    if field in ("*", "?"):
        return "*"

    days: set[int] = set()
    for part in field.split(","):
        step = 1
        if "/" in part:
            part, raw_step = part.split("/", 1)
            step = int(raw_step)
            if step < 1:
                raise ValueError(f"invalid step in day of week: {field}")
        if part == "*":
            start, end = 0, 6
        elif "-" in part:
            low, high = part.split("-", 1)
            start, end = _day_number(low), _day_number(high)
        else:
            start = _day_number(part)
            end = start if step == 1 else 6
        if start > end:
            raise ValueError(f"invalid day of week range: {part}")
        days.update(day % 7 for day in range(start, end + 1, step))

    return ",".join(_WEEKDAYS[day] for day in sorted(days))


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone: {name}") from exc


def _restricted(field: str) -> bool:
    # Vixie cron: a field starting with "*" leaves that day field unrestricted
    return not field.startswith(("*", "?"))


def build_trigger(expression: str, tz_name: str) -> BaseTrigger:
    """Build a trigger from a standard 5-field expression. Raises ValueError."""
    fields = (expression or "").split()
    if len(fields) != 5:
        raise ValueError(f"cron expression must have 5 fields, got {len(fields)}")

    minute, hour, day, month, day_of_week = fields
    tz = resolve_timezone(tz_name)
    weekdays = expand_day_of_week(day_of_week)

    if _restricted(day) and _restricted(day_of_week):
        return OrTrigger([
            CronTrigger(minute=minute, hour=hour, day=day, month=month, timezone=tz),
            CronTrigger(minute=minute, hour=hour, month=month, day_of_week=weekdays, timezone=tz),
        ])
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=weekdays,
        timezone=tz,
    )


def next_fire_time(expression: str, tz_name: str, now: datetime | None = None) -> datetime | None:
    """Next fire instant in UTC, or None when the expression never fires again."""
    trigger = build_trigger(expression, tz_name)
    now = now or datetime.now(timezone.utc)
    fire_at = trigger.get_next_fire_time(None, now)
    if fire_at is None:
        return None
    return fire_at.astimezone(timezone.utc)


def describe_cron(expression: str) -> str:
    parts = (expression or "").split()
    if len(parts) != 5:
        return expression

    minute, hour, day, _, day_of_week = parts
    time_str = f"{hour.zfill(2)}:{minute.zfill(2)}"
    monthly = f"Day {day} of every month" if _restricted(day) else ""

    if not _restricted(day_of_week):
        return f"{monthly} at {time_str}" if monthly else f"Every day at {time_str}"

    labels = []
    for token in day_of_week.split(","):
        token = token.strip()
        if token.isdigit() and int(token) <= 7:
            labels.append(_DAY_LABELS[int(token) % 7])
        else:
            labels.append(token)
    days = ", ".join(labels)
    if monthly:
        return f"{monthly} or every {days} at {time_str}"
    return f"Every {days} at {time_str}"
