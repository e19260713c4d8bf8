from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from database import Base, build_engine
from errors import FormatError
from models import AccountType, CategoryKind, FixedFlag, Movement, MovementType
from schemas import AccountIn, CategoryIn, CSVRow, MovementIn
from services import (
    AccountService,
    CategoryService,
    CSVService,
    MovementFilters,
    MovementService,
)

OWNER = 1
HEADER = "Fecha,Tipo,Importe,Cuenta,Categoría,Fijo/Variable,Nota"


def make_session() -> Session:
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _setup(session: Session):
    accounts = AccountService(session, OWNER)
    bank = accounts.create(AccountIn(name="Banco", type=AccountType.bank))
    broker = accounts.create(AccountIn(name="Broker, S.A.", type=AccountType.broker))
    categories = CategoryService(session, OWNER)
    salary = categories.create(CategoryIn(name="Nómina", kind=CategoryKind.income))
    food = categories.create(CategoryIn(name="Comida", kind=CategoryKind.expense))
    return bank, broker, salary, food


def _count(session: Session) -> int:
    return session.scalar(select(func.count(Movement.id)))


def test_format_error_aborts_before_any_write() -> None:
    session = make_session()
    _setup(session)
    content = "\n".join(
        [
            HEADER,
            "01/01/2024,Gasto,3,Banco,Comida,Variable,",
            "02/01/2024,Gasto,4,Banco,Comida,Variable,",
            "03/01/2024,Gasto,cinco,Banco,Comida,Variable,",
        ]
    )

    with pytest.raises(FormatError) as excinfo:
        CSVService(session, OWNER).import_csv(content)

    assert excinfo.value.line == 4
    assert _count(session) == 0


def test_unknown_account_only_skips_its_row() -> None:
    session = make_session()
    _setup(session)
    content = "\n".join(
        [
            HEADER,
            "01/01/2024,Ingreso,1000,Banco,Nómina,Fijo,",
            "02/01/2024,Gasto,12.5,Banco,Comida,Variable,",
            "03/01/2024,Gasto,7,X,Comida,Variable,",
            "04/01/2024,Gasto,8,banco,comida,,",
            "05/01/2024,Gasto,9,Banco,Comida,,Última",
        ]
    )

    result = CSVService(session, OWNER).import_csv(content)

    assert result.success == 4
    assert result.errors == ['Línea 4: cuenta "X" no encontrada']
    assert _count(session) == 4


def test_unknown_category_is_reported_with_its_line() -> None:
    session = make_session()
    _setup(session)
    content = "\n".join([HEADER, "01/01/2024,Gasto,3,Banco,Ocio,,"])

    result = CSVService(session, OWNER).import_csv(content)

    assert result.success == 0
    assert result.errors == ['Línea 2: categoría "Ocio" no encontrada']


def test_category_of_the_other_kind_is_rejected_by_the_write() -> None:
    session = make_session()
    _setup(session)
    content = "\n".join([HEADER, "01/01/2024,Gasto,3,Banco,Nómina,,"])

    result = CSVService(session, OWNER).import_csv(content)

    assert result.success == 0
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Línea 2: ")
    assert _count(session) == 0


def test_category_of_the_row_kind_wins_over_same_name() -> None:
    session = make_session()
    bank, _, _, _ = _setup(session)
    categories = CategoryService(session, OWNER)
    categories.create(CategoryIn(name="Regalos", kind=CategoryKind.income))
    gifts = categories.create(CategoryIn(name="Regalos", kind=CategoryKind.expense))
    content = "\n".join([HEADER, "01/01/2024,Gasto,30,Banco,Regalos,,"])

    result = CSVService(session, OWNER).import_csv(content)

    assert result.success == 1
    stored = MovementService(session, OWNER).list()
    assert stored[0].category_id == gifts.id
    assert stored[0].account_id == bank.id


def test_transfer_rows_are_ignored_on_import() -> None:
    session = make_session()
    _setup(session)
    content = "\n".join(
        [
            HEADER,
            '01/01/2024,Transferencia,100,"Banco → Broker, S.A.",,,',
            "02/01/2024,Gasto,3,Banco,Comida,,",
        ]
    )

    result = CSVService(session, OWNER).import_csv(content)

    assert result.success == 1
    assert result.errors == []


def test_preview_writes_nothing() -> None:
    session = make_session()
    _setup(session)
    content = "\n".join(
        [
            HEADER,
            "01/01/2024,Gasto,3,Banco,Comida,,",
            "02/01/2024,Gasto,3,Caja,Comida,,",
        ]
    )

    rows, errors = CSVService(session, OWNER).preview(content)

    assert [r.line for r in rows] == [2, 3]
    assert errors == ['Línea 3: cuenta "Caja" no encontrada']
    assert _count(session) == 0


def test_export_then_import_restores_non_transfer_movements() -> None:
    source = make_session()
    bank, broker, salary, food = _setup(source)
    movements = MovementService(source, OWNER)
    movements.create(
        MovementIn(
            date=date(2024, 5, 1),
            type=MovementType.income,
            amount_cents=210_000,
            account_id=bank.id,
            category_id=salary.id,
            fixed_var=FixedFlag.fixed,
        )
    )
    movements.create(
        MovementIn(
            date=date(2024, 5, 3),
            type=MovementType.expense,
            amount_cents=1_999,
            account_id=broker.id,
            category_id=food.id,
            fixed_var=FixedFlag.variable,
            note='Menú "del día", con postre',
        )
    )
    movements.create(
        MovementIn(
            date=date(2024, 5, 2),
            type=MovementType.expense,
            amount_cents=500,
            account_id=bank.id,
        )
    )
    movements.create(
        MovementIn(
            date=date(2024, 5, 4),
            type=MovementType.transfer,
            amount_cents=5_000,
            account_from_id=bank.id,
            account_to_id=broker.id,
        )
    )
    exported = CSVService(source, OWNER).export()

    target = make_session()
    _setup(target)
    result = CSVService(target, OWNER).import_csv(exported)

    assert result.success == 3
    assert result.errors == []

    def shape(session: Session):
        return [
            (m.date, m.type, m.amount_cents, m.account_name, m.category_name, m.fixed_var, m.note)
            for m in MovementService(session, OWNER).list(
                MovementFilters(include_transfers=False)
            )
        ]

    assert shape(target) == shape(source)


def test_import_accepts_byte_order_mark() -> None:
    session = make_session()
    _setup(session)
    content = "\ufeff" + HEADER + "\r\n01/01/2024,Gasto,3,Banco,Comida,,\r\n"

    result = CSVService(session, OWNER).import_csv(content)

    assert result.success == 1


def test_out_of_range_amount_aborts_before_any_write() -> None:
    session = make_session()
    _setup(session)
    content = "\n".join(
        [
            HEADER,
            "01/01/2024,Gasto,3,Banco,Comida,,",
            "02/01/2024,Gasto,1e20,Banco,Comida,,",
            "03/01/2024,Gasto,4,Banco,Comida,,",
        ]
    )

    with pytest.raises(FormatError) as excinfo:
        CSVService(session, OWNER).import_csv(content)

    assert excinfo.value.line == 3
    assert _count(session) == 0


def test_rejected_row_does_not_stop_the_batch() -> None:
    session = make_session()
    _setup(session)

    def row(line: int, cents: int) -> CSVRow:
        return CSVRow(
            line=line,
            date=date(2024, 1, line),
            type=MovementType.expense,
            amount_cents=cents,
            account="Banco",
            category="Comida",
            fixed_var=None,
            note=None,
        )

    result = CSVService(session, OWNER).import_rows(
        [row(2, 300), row(3, 10**20), row(4, 400)]
    )

    assert result.success == 2
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Línea 3: ")
    assert sorted(m.amount_cents for m in MovementService(session, OWNER).list()) == [
        300,
        400,
    ]


def test_empty_category_imports_as_uncategorized() -> None:
    session = make_session()
    bank, _, _, _ = _setup(session)
    content = "\n".join([HEADER, "05/01/2024,Gasto,5,Banco,,,"])

    result = CSVService(session, OWNER).import_csv(content)

    assert result.success == 1
    assert result.errors == []
    stored = MovementService(session, OWNER).list()
    assert stored[0].account_id == bank.id
    assert stored[0].category_id is None
