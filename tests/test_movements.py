from datetime import date

import pytest
from sqlalchemy.orm import Session, sessionmaker

from database import Base, build_engine
from errors import Conflict, NotFound, ValidationError
from models import AccountType, CategoryKind, FixedFlag, MovementType
from schemas import AccountIn, CategoryIn, MovementIn
from services import (
    AccountService,
    CategoryService,
    DayNoteService,
    MovementFilters,
    MovementService,
)

OWNER = 1


def make_session() -> Session:
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _setup(session: Session):
    accounts = AccountService(session, OWNER)
    bank = accounts.create(AccountIn(name="Banco", type=AccountType.bank))
    cash = accounts.create(AccountIn(name="Efectivo", type=AccountType.cash))
    categories = CategoryService(session, OWNER)
    salary = categories.create(CategoryIn(name="Nómina", kind=CategoryKind.income))
    food = categories.create(CategoryIn(name="Comida", kind=CategoryKind.expense))
    return bank, cash, salary, food


def _expense(account_id, category_id, day=date(2024, 1, 10), cents=1_000, **extra):
    return MovementIn(
        date=day,
        type=MovementType.expense,
        amount_cents=cents,
        account_id=account_id,
        category_id=category_id,
        **extra,
    )


def test_transfer_requires_two_distinct_accounts() -> None:
    session = make_session()
    bank, cash, _, food = _setup(session)
    movements = MovementService(session, OWNER)

    with pytest.raises(ValidationError):
        movements.create(
            MovementIn(
                date=date(2024, 1, 1),
                type=MovementType.transfer,
                amount_cents=100,
                account_from_id=bank.id,
                account_to_id=bank.id,
            )
        )
    with pytest.raises(ValidationError):
        movements.create(
            MovementIn(
                date=date(2024, 1, 1),
                type=MovementType.transfer,
                amount_cents=100,
                account_from_id=bank.id,
            )
        )
    with pytest.raises(ValidationError):
        movements.create(
            MovementIn(
                date=date(2024, 1, 1),
                type=MovementType.transfer,
                amount_cents=100,
                account_from_id=bank.id,
                account_to_id=cash.id,
                category_id=food.id,
            )
        )
    assert movements.list() == []


def test_income_and_expense_need_a_single_account() -> None:
    session = make_session()
    bank, cash, _, food = _setup(session)
    movements = MovementService(session, OWNER)

    with pytest.raises(ValidationError):
        movements.create(_expense(None, food.id))
    with pytest.raises(ValidationError):
        movements.create(_expense(bank.id, food.id, account_to_id=cash.id))
    with pytest.raises(ValidationError):
        movements.create(_expense(999, food.id))


def test_category_kind_must_match_movement_type() -> None:
    session = make_session()
    bank, _, salary, _ = _setup(session)
    with pytest.raises(ValidationError):
        MovementService(session, OWNER).create(_expense(bank.id, salary.id))


def test_uncategorized_expense_is_allowed() -> None:
    session = make_session()
    bank, _, _, _ = _setup(session)
    movement = MovementService(session, OWNER).create(_expense(bank.id, None))
    assert movement.category_id is None


def test_list_orders_newest_first_and_applies_filters() -> None:
    session = make_session()
    bank, cash, salary, food = _setup(session)
    movements = MovementService(session, OWNER)
    a = movements.create(
        _expense(bank.id, food.id, day=date(2024, 1, 5), fixed_var=FixedFlag.fixed)
    )
    b = movements.create(_expense(cash.id, food.id, day=date(2024, 1, 7)))
    c = movements.create(
        MovementIn(
            date=date(2024, 1, 7),
            type=MovementType.income,
            amount_cents=5_000,
            account_id=bank.id,
            category_id=salary.id,
        )
    )
    d = movements.create(
        MovementIn(
            date=date(2024, 1, 9),
            type=MovementType.transfer,
            amount_cents=300,
            account_from_id=cash.id,
            account_to_id=bank.id,
        )
    )

    assert [m.id for m in movements.list()] == [d.id, c.id, b.id, a.id]
    assert [m.id for m in movements.list(MovementFilters(account_id=bank.id))] == [
        d.id,
        c.id,
        a.id,
    ]
    assert [
        m.id for m in movements.list(MovementFilters(include_transfers=False))
    ] == [c.id, b.id, a.id]
    assert [
        m.id for m in movements.list(MovementFilters(start=date(2024, 1, 6), end=date(2024, 1, 7)))
    ] == [c.id, b.id]
    assert [m.id for m in movements.list(MovementFilters(fixed_var=FixedFlag.fixed))] == [a.id]
    assert [m.id for m in movements.list(MovementFilters(type=MovementType.income))] == [c.id]

    transfer = movements.list(MovementFilters(type=MovementType.transfer))[0]
    assert transfer.account_from_name == "Efectivo"
    assert transfer.account_to_name == "Banco"
    assert transfer.category_name is None


def test_list_by_date_returns_only_that_day() -> None:
    session = make_session()
    bank, _, _, food = _setup(session)
    movements = MovementService(session, OWNER)
    movements.create(_expense(bank.id, food.id, day=date(2024, 2, 1)))
    kept = movements.create(_expense(bank.id, food.id, day=date(2024, 2, 2)))

    day = movements.list_by_date(date(2024, 2, 2))
    assert [m.id for m in day] == [kept.id]
    assert day[0].account_name == "Banco"
    assert day[0].category_name == "Comida"


def test_update_switches_shape_and_delete_removes() -> None:
    session = make_session()
    bank, cash, _, food = _setup(session)
    movements = MovementService(session, OWNER)
    movement = movements.create(_expense(bank.id, food.id, note="  café  "))
    assert movement.note == "café"

    updated = movements.update(
        movement.id,
        MovementIn(
            date=date(2024, 1, 11),
            type=MovementType.transfer,
            amount_cents=700,
            account_from_id=bank.id,
            account_to_id=cash.id,
        ),
    )
    assert updated.account_id is None
    assert updated.category_id is None
    assert (updated.account_from_id, updated.account_to_id) == (bank.id, cash.id)

    movements.delete(movement.id)
    with pytest.raises(NotFound):
        movements.get(movement.id)


def test_movements_are_scoped_to_their_owner() -> None:
    session = make_session()
    bank, _, _, food = _setup(session)
    movement = MovementService(session, OWNER).create(_expense(bank.id, food.id))

    other = MovementService(session, OWNER + 1)
    assert other.list() == []
    with pytest.raises(NotFound):
        other.get(movement.id)
    with pytest.raises(ValidationError):
        other.create(_expense(bank.id, None))


def test_day_note_upsert_and_blank_removal() -> None:
    session = make_session()
    notes = DayNoteService(session, OWNER)
    day = date(2024, 3, 3)

    assert notes.upsert(day, "Cumpleaños").note == "Cumpleaños"
    assert notes.upsert(day, "Cumpleaños de Ana").note == "Cumpleaños de Ana"
    assert len(notes.list()) == 1

    assert notes.upsert(day, "   ") is None
    assert notes.get(day) is None


def test_duplicate_category_name_per_kind_conflicts() -> None:
    session = make_session()
    _setup(session)
    categories = CategoryService(session, OWNER)
    with pytest.raises(Conflict):
        categories.create(CategoryIn(name="comida", kind=CategoryKind.expense))
    categories.create(CategoryIn(name="Comida", kind=CategoryKind.income))


def test_category_delete_migrates_movements() -> None:
    session = make_session()
    bank, _, _, food = _setup(session)
    categories = CategoryService(session, OWNER)
    dining = categories.create(CategoryIn(name="Restaurantes", kind=CategoryKind.expense))
    movements = MovementService(session, OWNER)
    movement = movements.create(_expense(bank.id, food.id))

    with pytest.raises(ValidationError):
        categories.delete(food.id)

    categories.delete(food.id, migrate_to_id=dining.id)

    session.expire_all()
    assert movements.get(movement.id).category_id == dining.id
    with pytest.raises(NotFound):
        categories.get(food.id)


def test_category_delete_refuses_other_kind_target() -> None:
    session = make_session()
    bank, _, salary, food = _setup(session)
    MovementService(session, OWNER).create(_expense(bank.id, food.id))
    with pytest.raises(ValidationError):
        CategoryService(session, OWNER).delete(food.id, migrate_to_id=salary.id)


def test_account_in_use_cannot_be_deleted() -> None:
    session = make_session()
    bank, cash, _, food = _setup(session)
    MovementService(session, OWNER).create(_expense(bank.id, food.id))
    accounts = AccountService(session, OWNER)

    with pytest.raises(ValidationError):
        accounts.delete(bank.id)

    accounts.archive(bank.id)
    assert [a.id for a in accounts.list_all()] == [cash.id]
    assert {a.id for a in accounts.list_all(include_inactive=True)} == {bank.id, cash.id}

    accounts.delete(cash.id)
    with pytest.raises(NotFound):
        accounts.get(cash.id)
