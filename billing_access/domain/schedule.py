"""Recurrence descriptor for bill and payment schedules.

A schedule falls due on ``day`` of a month whenever the number of whole
months elapsed since ``begin_date`` is a multiple of ``month_interval``, for
as long as the date lies inside the ``[begin_date, end_date]`` validity
window. Days missing from a month (the
31st of April, the 30th of February) fall on that month's last day.

Everything here is pure: no storage, no clock.
"""

from __future__ import annotations

import calendar
import re
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterator
from uuid import UUID

from dateutil.relativedelta import relativedelta

from .errors import ScheduleValidationError

FAR_FUTURE = date(9999, 12, 31)
CENTS = Decimal("0.01")

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class ScheduleKind(str, Enum):
    bill = "bill"
    payment = "payment"


@dataclass(slots=True)
class Schedule:
    """Periodic obligation attached to an account."""

    schedule_id: UUID
    account_id: UUID
    kind: ScheduleKind
    name: str
    amount: Decimal
    currency: str
    day: int
    month_interval: int
    begin_date: date
    end_date: date = FAR_FUTURE
    disabled: bool = False


@dataclass(slots=True)
class ScheduledCharge:
    """A single bill or payment, optionally spawned by a schedule."""

    charge_id: UUID
    kind: ScheduleKind
    account_id: UUID
    name: str
    amount: Decimal
    currency: str
    due_date: date
    schedule_id: UUID | None = None
    transaction_ref: str | None = None
    disabled: bool = False


def validate_schedule(
    *,
    name: str,
    amount: Decimal,
    currency: str,
    day: int,
    month_interval: int,
    begin_date: date,
    end_date: date = FAR_FUTURE,
) -> None:
    """Raise :class:`ScheduleValidationError` when the attributes cannot describe a schedule."""
    if not name or not name.strip():
        raise ScheduleValidationError("schedule name is required")
    if amount < 0:
        raise ScheduleValidationError("amount must not be negative")
    if amount != amount.quantize(CENTS):
        raise ScheduleValidationError("amount must have at most two decimal places")
    if not _CURRENCY_RE.match(currency or ""):
        raise ScheduleValidationError("currency must be a three letter code")
    if not 1 <= day <= 31:
        raise ScheduleValidationError("day must be between 1 and 31")
    if month_interval < 1:
        raise ScheduleValidationError("month interval must be at least 1")
    if begin_date > end_date:
        raise ScheduleValidationError("begin date must not be after end date")


def is_active(schedule: Schedule, as_of: date) -> bool:
    """Return ``True`` when the schedule is enabled and ``as_of`` lies in its validity window."""
    return not schedule.disabled and schedule.begin_date <= as_of <= schedule.end_date


def _month_offset(start: date, later: date) -> int:
    return (later.year - start.year) * 12 + (later.month - start.month)


def _whole_months(begin: date, later: date) -> int:
    delta = relativedelta(later, begin)
    return delta.years * 12 + delta.months


def _due_date(schedule: Schedule, offset: int) -> date:
    month_start = schedule.begin_date.replace(day=1) + relativedelta(months=offset)
    last_day = calendar.monthrange(month_start.year, month_start.month)[1]
    return month_start.replace(day=min(schedule.day, last_day))


def _iter_due_dates(schedule: Schedule, after: date) -> Iterator[date]:
    start = max(after, schedule.begin_date)
    offset = _month_offset(schedule.begin_date, start)
    while True:
        try:
            due = _due_date(schedule, offset)
        except (OverflowError, ValueError):
            return
        # elapsed whole months, not calendar months: Feb 1 is zero months after Jan 15
        if due >= start and _whole_months(schedule.begin_date, due) % schedule.month_interval == 0:
            yield due
        offset += 1


def next_occurrence(schedule: Schedule, after: date) -> date:
    """Return the first due date on or after ``after``.

    Dates before ``begin_date`` are never returned. The end of the validity
    window is not applied here; use :func:`occurrences` for bounded ranges.

    Raises
    ------
    ValueError
        When no due date exists before the end of the calendar.
    """
    for due in _iter_due_dates(schedule, after):
        return due
    raise ValueError("no occurrence before the end of the calendar")


def occurrences(schedule: Schedule, start: date, end: date) -> list[date]:
    """Return every due date in ``[start, end]`` that also lies in the validity window."""
    if schedule.disabled:
        return []
    stop = min(end, schedule.end_date)
    dates: list[date] = []
    for due in _iter_due_dates(schedule, start):
        if due > stop:
            break
        dates.append(due)
    return dates


def charge_for(schedule: Schedule, due_date: date) -> ScheduledCharge:
    """Build the bill or payment a schedule spawns for ``due_date``."""
    return ScheduledCharge(
        charge_id=uuid.uuid4(),
        kind=schedule.kind,
        account_id=schedule.account_id,
        name=schedule.name,
        amount=schedule.amount,
        currency=schedule.currency,
        due_date=due_date,
        schedule_id=schedule.schedule_id,
    )
