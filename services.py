from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from itertools import groupby
from typing import Optional

from pydantic import ValidationError as SchemaError
from sqlalchemy import and_, case, delete, extract, func, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, joinedload

from csv_utils import export_movements, parse_csv
from errors import Conflict, NotFound, ResolutionError, ValidationError
from models import (
    Account,
    AccountType,
    Category,
    CategoryKind,
    DayNote,
    FixedFlag,
    Movement,
    MovementType,
    RecurringTemplate,
    Snapshot,
)
from periods import check_range, month_bounds
from recurrence import first_occurrence, local_today
from schemas import (
    AccountIn,
    CategoryIn,
    CSVRow,
    ImportResult,
    MovementIn,
    MovementWithNames,
    RecurringTemplateIn,
    SnapshotIn,
)

logger = logging.getLogger(__name__)


def percentage(part: int, total: int) -> float:
    if not total:
        return 0.0
    return part / total * 100


def percentage_change(current: int, previous: int) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / abs(previous) * 100


def to_with_names(movement: Movement) -> MovementWithNames:
    return MovementWithNames(
        id=movement.id,
        date=movement.date,
        type=movement.type,
        amount_cents=movement.amount_cents or 0,
        account_id=movement.account_id,
        account_name=movement.account.name if movement.account else None,
        account_from_id=movement.account_from_id,
        account_from_name=(
            movement.account_from.name if movement.account_from else None
        ),
        account_to_id=movement.account_to_id,
        account_to_name=movement.account_to.name if movement.account_to else None,
        category_id=movement.category_id,
        category_name=movement.category.name if movement.category else None,
        fixed_var=movement.fixed_var,
        note=movement.note,
    )


@dataclass
class MovementFilters:
    start: Optional[date] = None
    end: Optional[date] = None
    type: Optional[MovementType] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    fixed_var: Optional[FixedFlag] = None
    include_transfers: bool = True


class AccountService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def list_all(self, include_inactive: bool = False) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.owner_id == self.owner_id)
            .order_by(Account.name, Account.id)
        )
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.owner_id != self.owner_id:
            raise NotFound(f"Account {account_id} not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(
            owner_id=self.owner_id,
            name=data.name.strip(),
            type=data.type,
            opening_balance_cents=data.opening_balance_cents,
            is_active=data.is_active,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountIn) -> Account:
        account = self.get(account_id)
        account.name = data.name.strip()
        account.type = data.type
        account.opening_balance_cents = data.opening_balance_cents
        account.is_active = data.is_active
        self.session.commit()
        return account

    def archive(self, account_id: int) -> None:
        account = self.get(account_id)
        account.is_active = False
        self.session.commit()

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        referenced = self.session.scalar(
            select(func.count(Movement.id)).where(
                or_(
                    Movement.account_id == account_id,
                    Movement.account_from_id == account_id,
                    Movement.account_to_id == account_id,
                )
            )
        )
        referenced += self.session.scalar(
            select(func.count(RecurringTemplate.id)).where(
                RecurringTemplate.account_id == account_id
            )
        )
        if referenced:
            raise ValidationError("Account is in use; archive it instead")
        self.session.delete(account)
        self.session.commit()


class CategoryService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def list_all(
        self, kind: Optional[CategoryKind] = None, include_inactive: bool = False
    ) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.owner_id == self.owner_id)
            .order_by(Category.name, Category.id)
        )
        if kind:
            stmt = stmt.where(Category.kind == kind)
        if not include_inactive:
            stmt = stmt.where(Category.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.owner_id != self.owner_id:
            raise NotFound(f"Category {category_id} not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.owner_id == self.owner_id,
                Category.kind == data.kind,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise Conflict("Category with this name already exists")
        category = Category(
            owner_id=self.owner_id,
            name=data.name.strip(),
            kind=data.kind,
            is_fixed=data.is_fixed,
            is_active=data.is_active,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        if category.kind != data.kind and self.has_movements(category_id):
            raise ValidationError("Cannot change the kind of a category in use")
        category.name = data.name.strip()
        category.kind = data.kind
        category.is_fixed = data.is_fixed
        category.is_active = data.is_active
        self.session.commit()
        return category

    def has_movements(self, category_id: int) -> bool:
        found = self.session.scalar(
            select(Movement.id).where(Movement.category_id == category_id).limit(1)
        )
        return found is not None

    def delete(self, category_id: int, migrate_to_id: Optional[int] = None) -> None:
        category = self.get(category_id)
        if migrate_to_id is not None:
            target = self.get(migrate_to_id)
            if target.id == category.id:
                raise ValidationError("Cannot migrate a category into itself")
            if target.kind != category.kind:
                raise ValidationError("Target category has a different kind")
            self.session.execute(
                update(Movement)
                .where(Movement.category_id == category_id)
                .values(category_id=target.id)
            )
            self.session.execute(
                update(RecurringTemplate)
                .where(RecurringTemplate.category_id == category_id)
                .values(category_id=target.id)
            )
        elif self.has_movements(category_id):
            raise ValidationError("Category has movements; choose a category to migrate them to")
        self.session.delete(category)
        self.session.commit()
        logger.info(
            f"category_deleted: id={category_id} migrate_to={migrate_to_id}"
        )


class MovementService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def _base_query(self):
        return (
            select(Movement)
            .options(
                joinedload(Movement.account),
                joinedload(Movement.account_from),
                joinedload(Movement.account_to),
                joinedload(Movement.category),
            )
            .where(Movement.owner_id == self.owner_id)
        )

    def list(self, filters: Optional[MovementFilters] = None) -> list[MovementWithNames]:
        filters = filters or MovementFilters()
        stmt = self._base_query()
        if filters.start:
            stmt = stmt.where(Movement.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Movement.date <= filters.end)
        if filters.type:
            stmt = stmt.where(Movement.type == filters.type)
        if filters.account_id is not None:
            stmt = stmt.where(
                or_(
                    Movement.account_id == filters.account_id,
                    Movement.account_from_id == filters.account_id,
                    Movement.account_to_id == filters.account_id,
                )
            )
        if filters.category_id is not None:
            stmt = stmt.where(Movement.category_id == filters.category_id)
        if filters.fixed_var:
            stmt = stmt.where(Movement.fixed_var == filters.fixed_var)
        if not filters.include_transfers:
            stmt = stmt.where(Movement.type != MovementType.transfer)
        stmt = stmt.order_by(Movement.date.desc(), Movement.id.desc())
        return [to_with_names(m) for m in self.session.scalars(stmt).all()]

    def list_by_date(self, day: date) -> list[MovementWithNames]:
        stmt = (
            self._base_query()
            .where(Movement.date == day)
            .order_by(Movement.created_at.desc(), Movement.id.desc())
        )
        return [to_with_names(m) for m in self.session.scalars(stmt).all()]

    def get(self, movement_id: int) -> Movement:
        movement = self.session.get(Movement, movement_id)
        if not movement or movement.owner_id != self.owner_id:
            raise NotFound(f"Movement {movement_id} not found")
        return movement

    def _check_account(self, account_id: Optional[int], label: str) -> None:
        if account_id is None:
            raise ValidationError(f"{label} is required")
        account = self.session.get(Account, account_id)
        if not account or account.owner_id != self.owner_id:
            raise ValidationError(f"{label} {account_id} does not exist")

    def _validate(self, data: MovementIn) -> None:
        if data.type == MovementType.transfer:
            if data.account_id is not None or data.category_id is not None:
                raise ValidationError(
                    "Transfers use account_from_id/account_to_id and no category"
                )
            self._check_account(data.account_from_id, "Origin account")
            self._check_account(data.account_to_id, "Destination account")
            if data.account_from_id == data.account_to_id:
                raise ValidationError("Transfer accounts must be different")
            return

        if data.account_from_id is not None or data.account_to_id is not None:
            raise ValidationError(
                "Income and expense movements use a single account_id"
            )
        self._check_account(data.account_id, "Account")
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if not category or category.owner_id != self.owner_id:
                raise ValidationError(f"Category {data.category_id} does not exist")
            if category.kind.value != data.type.value:
                raise ValidationError(
                    f"Category '{category.name}' is for {category.kind.value} movements"
                )

    def _apply(self, movement: Movement, data: MovementIn) -> None:
        is_transfer = data.type == MovementType.transfer
        movement.date = data.date
        movement.type = data.type
        movement.amount_cents = data.amount_cents
        movement.account_id = None if is_transfer else data.account_id
        movement.account_from_id = data.account_from_id if is_transfer else None
        movement.account_to_id = data.account_to_id if is_transfer else None
        movement.category_id = None if is_transfer else data.category_id
        movement.fixed_var = None if is_transfer else data.fixed_var
        movement.note = (data.note or "").strip() or None

    def _commit(self) -> None:
        try:
            self.session.commit()
        except DBAPIError as exc:
            self.session.rollback()
            raise ValidationError(f"Movement rejected by the store: {exc.orig}") from exc
        except OverflowError as exc:
            self.session.rollback()
            raise ValidationError(f"Movement rejected by the store: {exc}") from exc

    def create(self, data: MovementIn) -> Movement:
        self._validate(data)
        movement = Movement(owner_id=self.owner_id)
        self._apply(movement, data)
        self.session.add(movement)
        self._commit()
        self.session.refresh(movement)
        logger.debug(
            f"movement_created: id={movement.id} type={movement.type.value} date={movement.date}"
        )
        return movement

    def update(self, movement_id: int, data: MovementIn) -> Movement:
        movement = self.get(movement_id)
        self._validate(data)
        self._apply(movement, data)
        self._commit()
        self.session.refresh(movement)
        return movement

    def delete(self, movement_id: int) -> None:
        movement = self.get(movement_id)
        self.session.delete(movement)
        self.session.commit()


@dataclass(frozen=True)
class Reconciliation:
    account_id: int
    as_of: date
    computed_cents: int
    snapshot_date: Optional[date]
    snapshot_cents: Optional[int]
    difference_cents: Optional[int]


class BalanceService:
    """Account balances rebuilt from the opening balance and the ledger."""

    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def _signed_sum(self, account_id: int, as_of: Optional[date]) -> int:
        amount = func.coalesce(Movement.amount_cents, 0)
        signed = case(
            (
                and_(
                    Movement.type == MovementType.income,
                    Movement.account_id == account_id,
                ),
                amount,
            ),
            (
                and_(
                    Movement.type == MovementType.expense,
                    Movement.account_id == account_id,
                ),
                -amount,
            ),
            (
                and_(
                    Movement.type == MovementType.transfer,
                    Movement.account_to_id == account_id,
                ),
                amount,
            ),
            (
                and_(
                    Movement.type == MovementType.transfer,
                    Movement.account_from_id == account_id,
                ),
                -amount,
            ),
            else_=0,
        )
        stmt = select(func.coalesce(func.sum(signed), 0)).where(
            Movement.owner_id == self.owner_id,
            or_(
                Movement.account_id == account_id,
                Movement.account_from_id == account_id,
                Movement.account_to_id == account_id,
            ),
        )
        if as_of is not None:
            stmt = stmt.where(Movement.date <= as_of)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def balance_of(self, account_id: int, as_of: Optional[date] = None) -> int:
        """Balance in cents at the end of ``as_of`` (inclusive), or of all history."""
        account = AccountService(self.session, self.owner_id).get(account_id)
        return int(account.opening_balance_cents or 0) + self._signed_sum(
            account_id, as_of
        )

    def balances(self, as_of: Optional[date] = None) -> dict[int, int]:
        accounts = AccountService(self.session, self.owner_id).list_all()
        return {
            account.id: int(account.opening_balance_cents or 0)
            + self._signed_sum(account.id, as_of)
            for account in accounts
        }

    def reconcile(self, account_id: int, as_of: date) -> Reconciliation:
        computed = self.balance_of(account_id, as_of)
        snapshot = self.session.scalar(
            select(Snapshot)
            .where(
                Snapshot.owner_id == self.owner_id,
                Snapshot.account_id == account_id,
                Snapshot.date <= as_of,
            )
            .order_by(Snapshot.date.desc())
            .limit(1)
        )
        if not snapshot:
            return Reconciliation(account_id, as_of, computed, None, None, None)
        return Reconciliation(
            account_id=account_id,
            as_of=as_of,
            computed_cents=computed,
            snapshot_date=snapshot.date,
            snapshot_cents=snapshot.balance_cents,
            difference_cents=snapshot.balance_cents - computed,
        )


@dataclass
class MonthTotals:
    income: int = 0
    expense: int = 0


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    name: str
    total: int


@dataclass
class DayRollup:
    income: int = 0
    expense: int = 0
    count: int = 0
    movements: list[MovementWithNames] = field(default_factory=list)


@dataclass(frozen=True)
class PeriodSummary:
    start: date
    end: date
    income: int
    expense: int
    balance: int
    fixed_expense: int
    variable_expense: int
    fixed_percent: float
    variable_percent: float


class AggregationService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def monthly_totals(self, year: int) -> dict[int, MonthTotals]:
        """Income/expense per month index 0..11; transfers are not counted."""
        start, _ = month_bounds(year, 1)
        _, end = month_bounds(year, 12)
        month = extract("month", Movement.date).label("month")
        stmt = (
            select(
                month,
                Movement.type,
                func.coalesce(func.sum(Movement.amount_cents), 0).label("total"),
            )
            .where(
                Movement.owner_id == self.owner_id,
                Movement.type != MovementType.transfer,
                Movement.date.between(start, end),
            )
            .group_by(month, Movement.type)
        )
        totals = {index: MonthTotals() for index in range(12)}
        for row in self.session.execute(stmt):
            bucket = totals[int(row.month) - 1]
            if row.type == MovementType.income:
                bucket.income += int(row.total or 0)
            elif row.type == MovementType.expense:
                bucket.expense += int(row.total or 0)
        return totals

    def category_breakdown(
        self, start: date, end: date, fixed_var: Optional[FixedFlag] = None
    ) -> list[CategoryTotal]:
        check_range(start, end)
        total = func.coalesce(func.sum(Movement.amount_cents), 0)
        # inner join: movements without a category are left out
        stmt = (
            select(
                Category.id.label("category_id"),
                Category.name.label("name"),
                total.label("total"),
            )
            .select_from(Movement)
            .join(Category, Category.id == Movement.category_id)
            .where(
                Movement.owner_id == self.owner_id,
                Movement.type == MovementType.expense,
                Movement.date.between(start, end),
            )
            .group_by(Category.id, Category.name)
            .order_by(total.desc(), Category.name)
        )
        if fixed_var:
            stmt = stmt.where(Movement.fixed_var == fixed_var)
        return [
            CategoryTotal(category_id=row.category_id, name=row.name, total=int(row.total))
            for row in self.session.execute(stmt)
        ]

    def daily_rollup(
        self, start: date, end: date, *, include_transfers: bool = False
    ) -> dict[date, DayRollup]:
        check_range(start, end)
        movements = MovementService(self.session, self.owner_id).list(
            MovementFilters(start=start, end=end, include_transfers=include_transfers)
        )
        days: dict[date, DayRollup] = {}
        for movement in sorted(movements, key=lambda m: (m.date, m.id)):
            day = days.setdefault(movement.date, DayRollup())
            if movement.type == MovementType.income:
                day.income += movement.amount_cents or 0
            elif movement.type == MovementType.expense:
                day.expense += movement.amount_cents or 0
            day.count += 1
            day.movements.append(movement)
        return days

    def summary(self, start: date, end: date) -> PeriodSummary:
        check_range(start, end)
        amount = func.coalesce(Movement.amount_cents, 0)
        is_expense = Movement.type == MovementType.expense
        stmt = select(
            func.coalesce(
                func.sum(case((Movement.type == MovementType.income, amount), else_=0)),
                0,
            ).label("income"),
            func.coalesce(func.sum(case((is_expense, amount), else_=0)), 0).label(
                "expense"
            ),
            func.coalesce(
                func.sum(
                    case(
                        (and_(is_expense, Movement.fixed_var == FixedFlag.fixed), amount),
                        else_=0,
                    )
                ),
                0,
            ).label("fixed"),
        ).where(
            Movement.owner_id == self.owner_id,
            Movement.type != MovementType.transfer,
            Movement.date.between(start, end),
        )
        row = self.session.execute(stmt).one()
        income = int(row.income)
        expense = int(row.expense)
        fixed = int(row.fixed)
        variable = expense - fixed
        return PeriodSummary(
            start=start,
            end=end,
            income=income,
            expense=expense,
            balance=income - expense,
            fixed_expense=fixed,
            variable_expense=variable,
            fixed_percent=percentage(fixed, expense),
            variable_percent=percentage(variable, expense),
        )


@dataclass(frozen=True)
class NetWorthPoint:
    date: date
    total: int
    per_account: dict[int, int]


class SnapshotService:
    """Recorded account balances and the net worth derived from them."""

    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def _account(self, account_id: int) -> Account:
        return AccountService(self.session, self.owner_id).get(account_id)

    def get(self, snapshot_id: int) -> Snapshot:
        snapshot = self.session.get(Snapshot, snapshot_id)
        if not snapshot or snapshot.owner_id != self.owner_id:
            raise NotFound(f"Snapshot {snapshot_id} not found")
        return snapshot

    def list_snapshots(
        self,
        account_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[Snapshot]:
        stmt = select(Snapshot).where(Snapshot.owner_id == self.owner_id)
        if account_id is not None:
            stmt = stmt.where(Snapshot.account_id == account_id)
        if start:
            stmt = stmt.where(Snapshot.date >= start)
        if end:
            stmt = stmt.where(Snapshot.date <= end)
        stmt = stmt.order_by(Snapshot.date, Snapshot.account_id)
        return self.session.scalars(stmt).all()

    def latest_snapshot(self, account_id: int) -> Optional[Snapshot]:
        return self.session.scalar(
            select(Snapshot)
            .where(
                Snapshot.owner_id == self.owner_id,
                Snapshot.account_id == account_id,
            )
            .order_by(Snapshot.date.desc())
            .limit(1)
        )

    def create_snapshot(self, data: SnapshotIn) -> Snapshot:
        self._account(data.account_id)
        existing = self.session.scalar(
            select(Snapshot.id).where(
                Snapshot.account_id == data.account_id,
                Snapshot.date == data.date,
            )
        )
        if existing:
            raise Conflict(
                f"Account {data.account_id} already has a snapshot on {data.date.isoformat()}"
            )
        snapshot = Snapshot(
            owner_id=self.owner_id,
            account_id=data.account_id,
            date=data.date,
            balance_cents=data.balance_cents,
        )
        self.session.add(snapshot)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict(
                f"Account {data.account_id} already has a snapshot on {data.date.isoformat()}"
            ) from exc
        self.session.refresh(snapshot)
        return snapshot

    def update_snapshot(self, snapshot_id: int, balance_cents: int) -> Snapshot:
        snapshot = self.get(snapshot_id)
        self._account(snapshot.account_id)
        snapshot.balance_cents = balance_cents
        self.session.commit()
        self.session.refresh(snapshot)
        return snapshot

    def delete_snapshot(self, snapshot_id: int) -> None:
        snapshot = self.get(snapshot_id)
        self._account(snapshot.account_id)
        self.session.delete(snapshot)
        self.session.commit()

    def total_net_worth(self, as_of: date) -> int:
        """Sum of each account's latest snapshot on or before ``as_of``.

        Accounts without a snapshot by then add nothing, not their opening
        balance.
        """
        latest = (
            select(
                Snapshot.account_id.label("account_id"),
                func.max(Snapshot.date).label("latest"),
            )
            .where(Snapshot.owner_id == self.owner_id, Snapshot.date <= as_of)
            .group_by(Snapshot.account_id)
            .subquery()
        )
        stmt = (
            select(func.coalesce(func.sum(Snapshot.balance_cents), 0))
            .select_from(Snapshot)
            .join(
                latest,
                and_(
                    Snapshot.account_id == latest.c.account_id,
                    Snapshot.date == latest.c.latest,
                ),
            )
            .where(Snapshot.owner_id == self.owner_id)
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def net_worth_series(self, start: date, end: date) -> list[NetWorthPoint]:
        """One point per snapshot date in range, ascending.

        Each point only sums the accounts that recorded a snapshot on that
        exact date; missing accounts are not carried forward.
        """
        check_range(start, end)
        snapshots = self.list_snapshots(start=start, end=end)
        series: list[NetWorthPoint] = []
        for day, group in groupby(snapshots, key=lambda s: s.date):
            per_account = {s.account_id: s.balance_cents for s in group}
            series.append(
                NetWorthPoint(
                    date=day, total=sum(per_account.values()), per_account=per_account
                )
            )
        return series


class DayNoteService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def get(self, day: date) -> Optional[DayNote]:
        return self.session.scalar(
            select(DayNote).where(DayNote.owner_id == self.owner_id, DayNote.date == day)
        )

    def list(self, start: Optional[date] = None, end: Optional[date] = None) -> list[DayNote]:
        stmt = select(DayNote).where(DayNote.owner_id == self.owner_id)
        if start:
            stmt = stmt.where(DayNote.date >= start)
        if end:
            stmt = stmt.where(DayNote.date <= end)
        return self.session.scalars(stmt.order_by(DayNote.date.desc())).all()

    def upsert(self, day: date, note: Optional[str]) -> Optional[DayNote]:
        """Store the note for ``day``; a blank note removes it."""
        if not note or not note.strip():
            self.session.execute(
                delete(DayNote).where(
                    DayNote.owner_id == self.owner_id, DayNote.date == day
                )
            )
            self.session.commit()
            return None

        existing = self.get(day)
        if existing:
            existing.note = note
        else:
            existing = DayNote(owner_id=self.owner_id, date=day, note=note)
            self.session.add(existing)
        self.session.commit()
        self.session.refresh(existing)
        return existing


class RecurringTemplateService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def list_all(self) -> list[RecurringTemplate]:
        stmt = (
            select(RecurringTemplate)
            .where(RecurringTemplate.owner_id == self.owner_id)
            .order_by(RecurringTemplate.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, template_id: int) -> RecurringTemplate:
        template = self.session.get(RecurringTemplate, template_id)
        if not template or template.owner_id != self.owner_id:
            raise NotFound(f"Recurring template {template_id} not found")
        return template

    def _validate(self, data: RecurringTemplateIn) -> None:
        if data.type == MovementType.transfer:
            raise ValidationError("Recurring templates cannot be transfers")
        AccountService(self.session, self.owner_id).get(data.account_id)
        category = CategoryService(self.session, self.owner_id).get(data.category_id)
        if category.kind.value != data.type.value:
            raise ValidationError(
                f"Category '{category.name}' is for {category.kind.value} movements"
            )

    def _apply(self, template: RecurringTemplate, data: RecurringTemplateIn) -> None:
        template.name = data.name.strip()
        template.type = data.type
        template.amount_cents = data.amount_cents
        template.day_of_month = data.day_of_month
        template.account_id = data.account_id
        template.category_id = data.category_id
        template.fixed_var = data.fixed_var
        template.note = data.note
        template.active = data.active
        template.next_occurrence = first_occurrence(
            data.day_of_month, data.starts_on or local_today()
        )

    def create(self, data: RecurringTemplateIn) -> RecurringTemplate:
        self._validate(data)
        template = RecurringTemplate(owner_id=self.owner_id)
        self._apply(template, data)
        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)
        return template

    def update(self, template_id: int, data: RecurringTemplateIn) -> RecurringTemplate:
        template = self.get(template_id)
        self._validate(data)
        self._apply(template, data)
        self.session.commit()
        self.session.refresh(template)
        return template

    def toggle(self, template_id: int) -> RecurringTemplate:
        template = self.get(template_id)
        template.active = not template.active
        self.session.commit()
        return template

    def delete(self, template_id: int) -> None:
        template = self.get(template_id)
        self.session.execute(
            update(Movement)
            .where(Movement.template_id == template_id)
            .values(template_id=None, occurrence_date=None)
        )
        self.session.delete(template)
        self.session.commit()


class CSVService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def export(
        self, filters: Optional[MovementFilters] = None, guard_formulas: bool = False
    ) -> str:
        movements = MovementService(self.session, self.owner_id).list(filters)
        return export_movements(movements, guard_formulas=guard_formulas)

    def _account_lookup(self) -> dict[str, int]:
        accounts = AccountService(self.session, self.owner_id).list_all()
        return {account.name.lower(): account.id for account in accounts}

    def _category_lookup(self) -> dict[tuple[Optional[CategoryKind], str], int]:
        lookup: dict[tuple[Optional[CategoryKind], str], int] = {}
        for category in CategoryService(self.session, self.owner_id).list_all():
            name = category.name.lower()
            lookup[(category.kind, name)] = category.id
            # any-kind fallback; the movement write rejects a kind mismatch
            lookup.setdefault((None, name), category.id)
        return lookup

    def _resolve(
        self,
        row: CSVRow,
        accounts: dict[str, int],
        categories: dict[tuple[Optional[CategoryKind], str], int],
    ) -> MovementIn:
        account_id = accounts.get(row.account.lower())
        if not account_id:
            raise ResolutionError(
                f'Línea {row.line}: cuenta "{row.account}" no encontrada', row.line
            )
        name = row.category.strip().lower()
        category_id = None
        # an empty cell is an uncategorized movement
        if name:
            category_id = categories.get((CategoryKind(row.type.value), name))
            if category_id is None:
                category_id = categories.get((None, name))
            if category_id is None:
                raise ResolutionError(
                    f'Línea {row.line}: categoría "{row.category}" no encontrada',
                    row.line,
                )
        return MovementIn(
            date=row.date,
            type=row.type,
            amount_cents=row.amount_cents,
            account_id=account_id,
            category_id=category_id,
            fixed_var=row.fixed_var,
            note=row.note,
        )

    def preview(self, content: str) -> tuple[list[CSVRow], list[str]]:
        """Parse and resolve without writing anything."""
        rows = parse_csv(content)
        accounts = self._account_lookup()
        categories = self._category_lookup()
        errors: list[str] = []
        for row in rows:
            try:
                self._resolve(row, accounts, categories)
            except ResolutionError as exc:
                errors.append(str(exc))
        return rows, errors

    def import_rows(self, rows: list[CSVRow]) -> ImportResult:
        accounts = self._account_lookup()
        categories = self._category_lookup()
        movements = MovementService(self.session, self.owner_id)
        result = ImportResult()
        for row in rows:
            try:
                movements.create(self._resolve(row, accounts, categories))
            except ResolutionError as exc:
                result.errors.append(str(exc))
                logger.warning(f"csv_import_row_skipped: line={row.line} reason={exc}")
                continue
            except ValidationError as exc:
                result.errors.append(f"Línea {row.line}: {exc}")
                logger.warning(f"csv_import_row_rejected: line={row.line} reason={exc}")
                continue
            except SchemaError as exc:
                message = exc.errors()[0]["msg"]
                result.errors.append(f"Línea {row.line}: {message}")
                logger.warning(f"csv_import_row_rejected: line={row.line} reason={message}")
                continue
            result.success += 1
        return result

    def import_csv(self, content: str) -> ImportResult:
        """Parse the whole file first, then write row by row.

        A :class:`FormatError` escapes before any write. Unknown names and
        rejected writes only skip their own row.
        """
        rows = parse_csv(content)
        result = self.import_rows(rows)
        logger.info(
            f"csv_import: owner={self.owner_id} rows={len(rows)} success={result.success} errors={len(result.errors)}"
        )
        return result


DEFAULT_ACCOUNTS = (
    ("Cuenta corriente", AccountType.bank),
    ("Efectivo", AccountType.cash),
)
DEFAULT_CATEGORIES = (
    ("Nómina", CategoryKind.income, True),
    ("Otros ingresos", CategoryKind.income, False),
    ("Vivienda", CategoryKind.expense, True),
    ("Suministros", CategoryKind.expense, True),
    ("Alimentación", CategoryKind.expense, False),
    ("Transporte", CategoryKind.expense, False),
    ("Ocio", CategoryKind.expense, False),
)


@dataclass(frozen=True)
class SeedResult:
    accounts: int
    categories: int


class SeedService:
    """Starter accounts and categories for an owner with an empty ledger."""

    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def needs_seeding(self) -> bool:
        found = self.session.scalar(
            select(Account.id).where(Account.owner_id == self.owner_id).limit(1)
        )
        return found is None

    def seed(self) -> SeedResult:
        if not self.needs_seeding():
            raise Conflict("Owner already has accounts")

        accounts = AccountService(self.session, self.owner_id)
        for name, account_type in DEFAULT_ACCOUNTS:
            accounts.create(AccountIn(name=name, type=account_type))

        categories = CategoryService(self.session, self.owner_id)
        existing = {
            (c.kind, c.name.lower())
            for c in categories.list_all(include_inactive=True)
        }
        created = 0
        for name, kind, is_fixed in DEFAULT_CATEGORIES:
            if (kind, name.lower()) in existing:
                continue
            categories.create(CategoryIn(name=name, kind=kind, is_fixed=is_fixed))
            created += 1

        logger.info(
            f"owner_seeded: owner={self.owner_id} accounts={len(DEFAULT_ACCOUNTS)} categories={created}"
        )
        return SeedResult(accounts=len(DEFAULT_ACCOUNTS), categories=created)
