"""
Billing Period Helpers

Calendar arithmetic for billing periods and the human-readable period keys
stored on invoices ("October 2026", "Q4 2026", "Annual 2026").
"""

import calendar
import re
from datetime import date, datetime

from .errors import ValidationError
from .models import PaymentPolicy

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

POLICY_INTERVAL_MONTHS = {
    PaymentPolicy.MONTHLY: 1,
    PaymentPolicy.QUARTERLY: 3,
    PaymentPolicy.ANNUAL: 12,
}

_MONTH_KEY = re.compile(r"^([A-Za-z]+)\s+(\d{4})$")
_QUARTER_KEY = re.compile(r"^Q([1-4])\s+(\d{4})$", re.IGNORECASE)
_ANNUAL_KEY = re.compile(r"^Annual\s+(\d{4})$", re.IGNORECASE)
_ISO_MONTH = re.compile(r"^(\d{4})-(\d{2})$")


def to_date(value) -> date:
    """Coerce a date, datetime or ISO string to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}") from None


def month_range(value: date) -> tuple[date, date]:
    """First and last day of the calendar month containing `value`."""
    last_day = calendar.monthrange(value.year, value.month)[1]
    return date(value.year, value.month, 1), date(value.year, value.month, last_day)


def add_months(value: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    day = min(value.day, calendar.monthrange(year, month + 1)[1])
    return date(year, month + 1, day)


def months_between(start: date, end: date) -> int:
    """Whole months elapsed from `start` to `end` (negative if end is earlier)."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


def interval_months(policy) -> int:
    return POLICY_INTERVAL_MONTHS[PaymentPolicy(policy)]


def policy_period_start(value: date, policy) -> date:
    """Start of the calendar-aligned policy period containing `value`."""
    policy = PaymentPolicy(policy)
    if policy == PaymentPolicy.QUARTERLY:
        return date(value.year, ((value.month - 1) // 3) * 3 + 1, 1)
    if policy == PaymentPolicy.ANNUAL:
        return date(value.year, 1, 1)
    return date(value.year, value.month, 1)


def policy_period_end(value: date, policy) -> date:
    start = policy_period_start(value, policy)
    last_month = add_months(start, interval_months(policy) - 1)
    return month_range(last_month)[1]


def next_period_start(value: date, policy) -> date:
    return add_months(policy_period_start(value, policy), interval_months(policy))


def period_key(value: date, policy) -> str:
    """Invoice period key for the policy period containing `value`."""
    policy = PaymentPolicy(policy)
    if policy == PaymentPolicy.QUARTERLY:
        return f"Q{(value.month - 1) // 3 + 1} {value.year}"
    if policy == PaymentPolicy.ANNUAL:
        return f"Annual {value.year}"
    return f"{MONTH_NAMES[value.month - 1]} {value.year}"


def parse_period(value, policy) -> date:
    """
    Resolve a period given as a key, an ISO month or an ISO date to the start
    of the matching policy period.
    """
    if isinstance(value, (date, datetime)):
        return policy_period_start(to_date(value), policy)

    text = str(value).strip()

    match = _QUARTER_KEY.match(text)
    if match:
        quarter, year = int(match.group(1)), int(match.group(2))
        return policy_period_start(date(year, (quarter - 1) * 3 + 1, 1), policy)

    match = _ANNUAL_KEY.match(text)
    if match:
        return policy_period_start(date(int(match.group(1)), 1, 1), policy)

    match = _ISO_MONTH.match(text)
    if match:
        month = int(match.group(2))
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid payment period: {value!r}")
        return policy_period_start(date(int(match.group(1)), month, 1), policy)

    match = _MONTH_KEY.match(text)
    if match:
        name, year = match.group(1).capitalize(), int(match.group(2))
        if name not in MONTH_NAMES:
            raise ValidationError(f"Invalid payment period: {value!r}")
        return policy_period_start(date(year, MONTH_NAMES.index(name) + 1, 1), policy)

    try:
        return policy_period_start(to_date(text), policy)
    except ValidationError:
        raise ValidationError(f"Invalid payment period: {value!r}") from None
