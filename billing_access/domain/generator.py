"""Bill generator spawning bills and payments from active schedules."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, timedelta

from prometheus_client import Counter

from .errors import ScheduleValidationError
from .schedule import Schedule, charge_for, occurrences, validate_schedule
from ..repository import ScheduleRepository

logger = logging.getLogger(__name__)

CHARGES_GENERATED = Counter(
    "billing_access_generated_charges_total",
    "Charges created from schedules, by kind.",
    ["kind"],
)


@dataclass(slots=True)
class GenerationReport:
    """Outcome counters of a single generator run."""

    window_start: date
    window_end: date
    schedules: int = 0
    created: int = 0
    skipped: int = 0
    invalid: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["window_start"] = self.window_start.isoformat()
        data["window_end"] = self.window_end.isoformat()
        return data


class BillGenerator:
    """Creates one charge per (schedule, due date) inside the generation window.

    Safe to invoke repeatedly: the store ignores charges that already exist
    for a schedule and due date, so overlapping or retried runs only count
    them as skipped.
    """

    def __init__(self, schedules: ScheduleRepository, horizon_days: int = 31) -> None:
        self._schedules = schedules
        self._horizon_days = horizon_days

    def run(
        self,
        as_of: date,
        *,
        horizon_days: int | None = None,
        since: date | None = None,
    ) -> GenerationReport:
        """Generate charges due in ``[since or as_of, as_of + horizon_days]``."""
        horizon = self._horizon_days if horizon_days is None else horizon_days
        if horizon < 0:
            raise ValueError("horizon must not be negative")
        start = since or as_of
        end = as_of + timedelta(days=horizon)
        report = GenerationReport(window_start=start, window_end=end)

        for schedule in self._schedules.list_active_schedules(start):
            report.schedules += 1
            if not _is_valid(schedule):
                report.invalid += 1
                continue
            for due in occurrences(schedule, start, end):
                if self._schedules.create_charge(charge_for(schedule, due)):
                    report.created += 1
                    CHARGES_GENERATED.labels(kind=schedule.kind.value).inc()
                else:
                    report.skipped += 1

        logger.info(
            "bill generation finished: %d schedules, %d created, %d skipped, %d invalid (%s..%s)",
            report.schedules,
            report.created,
            report.skipped,
            report.invalid,
            start.isoformat(),
            end.isoformat(),
        )
        return report


def _is_valid(schedule: Schedule) -> bool:
    try:
        validate_schedule(
            name=schedule.name,
            amount=schedule.amount,
            currency=schedule.currency,
            day=schedule.day,
            month_interval=schedule.month_interval,
            begin_date=schedule.begin_date,
            end_date=schedule.end_date,
        )
    except ScheduleValidationError as exc:
        logger.warning("skipping schedule %s: %s", schedule.schedule_id, exc)
        return False
    return True
