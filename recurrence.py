import logging
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import Movement, RecurringTemplate

logger = logging.getLogger(__name__)

MAX_CATCH_UP_MONTHS = 36


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def occurrence_in_month(year: int, month: int, day_of_month: int) -> date:
    """The template's day in the given month, snapped to the month's last day."""
    return date(year, month, min(day_of_month, days_in_month(year, month)))


def first_occurrence(day_of_month: int, on_or_after: date) -> date:
    candidate = occurrence_in_month(on_or_after.year, on_or_after.month, day_of_month)
    if candidate >= on_or_after:
        return candidate
    return next_occurrence(day_of_month, candidate)


def next_occurrence(day_of_month: int, from_date: date) -> date:
    if from_date.month == 12:
        return occurrence_in_month(from_date.year + 1, 1, day_of_month)
    return occurrence_in_month(from_date.year, from_date.month + 1, day_of_month)


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def catch_up_template(
        self, template: RecurringTemplate, today: Optional[date] = None
    ) -> int:
        today = today or local_today()
        posted = 0
        iterations = 0
        while template.next_occurrence <= today and iterations < MAX_CATCH_UP_MONTHS:
            occurrence_date = template.next_occurrence
            if self._post_occurrence(template, occurrence_date):
                posted += 1
            template.next_occurrence = next_occurrence(
                template.day_of_month, occurrence_date
            )
            iterations += 1
        return posted

    def post_due_templates(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        stmt = (
            select(RecurringTemplate)
            .where(
                RecurringTemplate.active.is_(True),
                RecurringTemplate.next_occurrence <= today,
            )
            .order_by(RecurringTemplate.next_occurrence, RecurringTemplate.id)
        )
        count = 0
        for template in self.session.scalars(stmt).all():
            count += self.catch_up_template(template, today)
        self.session.flush()
        return count

    def _post_occurrence(self, template: RecurringTemplate, occurrence_date: date) -> bool:
        exists_stmt = (
            select(Movement.id)
            .where(
                Movement.owner_id == template.owner_id,
                Movement.template_id == template.id,
                Movement.occurrence_date == occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return False

        self.session.add(
            Movement(
                owner_id=template.owner_id,
                date=occurrence_date,
                type=template.type,
                amount_cents=template.amount_cents,
                account_id=template.account_id,
                category_id=template.category_id,
                fixed_var=template.fixed_var,
                note=template.note or template.name,
                template_id=template.id,
                occurrence_date=occurrence_date,
            )
        )
        self.session.flush()
        logger.info(
            f"recurring_posted: template={template.id} owner={template.owner_id} date={occurrence_date}"
        )
        return True
