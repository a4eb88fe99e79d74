import calendar
from datetime import date, datetime, timedelta, timezone


def utcnow() -> datetime:
    # Keep naive UTC timestamps to match the DB column types.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length (Jan 31 + 1 -> Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def period_start(period_type: str, now: datetime) -> datetime | None:
    """Start of the window containing ``now``; None for lifetime/all."""
    p = (period_type or "").strip().lower()
    today = datetime(now.year, now.month, now.day)

    if p == "day":
        return today
    if p == "week":
        return today - timedelta(days=today.weekday())
    if p == "month":
        return today.replace(day=1)
    if p == "year":
        return today.replace(month=1, day=1)
    if p in ("lifetime", "all"):
        return None

    raise ValueError(f"Unsupported period: {period_type}")
