from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import DueDayPolicy
from periods import MonthPeriod, days_in_month


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def configured_due_day_policy() -> DueDayPolicy:
    raw = get_settings().due_day_policy
    try:
        return DueDayPolicy(raw)
    except ValueError as exc:
        raise ValueError(f"Unsupported due day policy: {raw}") from exc


def due_date_for(
    day_of_month: Optional[int],
    period: MonthPeriod,
    policy: DueDayPolicy = DueDayPolicy.clamp,
) -> Optional[date]:
    """Date a fixed expense falls due in ``period``.

    Days past the end of a short month either snap to the month's last day
    (``clamp``) or roll over into the following month (``rollover``), e.g.
    day 31 in April 2024 gives 2024-04-30 or 2024-05-01 respectively.
    """
    if day_of_month is None:
        return None
    if not 1 <= day_of_month <= 31:
        raise ValueError("Day of month must be between 1 and 31")

    dim = days_in_month(period.year, period.month)
    if day_of_month <= dim:
        return date(period.year, period.month, day_of_month)
    if policy == DueDayPolicy.rollover:
        return period.end + timedelta(days=day_of_month - dim)
    return period.end
