from datetime import date

import pytest

from csv_utils import (
    export_movements,
    format_amount,
    parse_amount,
    parse_csv,
    parse_fixed_var,
    split_csv_line,
)
from errors import FormatError
from models import FixedFlag, MovementType
from schemas import MovementWithNames

HEADER = "Fecha,Tipo,Importe,Cuenta,Categoría,Fijo/Variable,Nota"


def test_split_handles_quoted_commas_and_escaped_quotes() -> None:
    line = '01/02/2024,Gasto,12.5,Banco,Comida,Variable,"Cena, con ""amigos"""'
    assert split_csv_line(line) == [
        "01/02/2024",
        "Gasto",
        "12.5",
        "Banco",
        "Comida",
        "Variable",
        'Cena, con "amigos"',
    ]


def test_split_trims_fields_and_keeps_empty_ones() -> None:
    assert split_csv_line(" a , ,c,") == ["a", "", "c", ""]


def test_parse_csv_reads_rows_with_line_numbers() -> None:
    content = "\n".join(
        [
            HEADER,
            "5/3/2024,Ingreso,\"1500,50\",Banco,Nómina,Fijo,",
            "",
            "15/03/2024,Gasto,20,Efectivo,Comida,variable,\"Menú\"",
        ]
    )
    rows = parse_csv(content)

    assert [r.line for r in rows] == [2, 4]
    first, second = rows
    assert first.date == date(2024, 3, 5)
    assert first.type == MovementType.income
    assert first.amount_cents == 150_050
    assert first.fixed_var == FixedFlag.fixed
    assert first.note is None
    assert second.type == MovementType.expense
    assert second.account == "Efectivo"
    assert second.fixed_var == FixedFlag.variable
    assert second.note == "Menú"


def test_parse_csv_skips_transfers() -> None:
    content = "\n".join(
        [
            HEADER,
            "01/01/2024,Transferencia,100,Banco → Broker,,,",
            "01/01/2024,TRANSFER,100,Banco → Broker,,,",
            "02/01/2024,Gasto,3,Banco,Comida,,",
        ]
    )
    rows = parse_csv(content)
    assert len(rows) == 1
    assert rows[0].line == 4


def test_parse_csv_rejects_missing_columns_with_line_number() -> None:
    content = "\n".join([HEADER, "01/01/2024,Gasto,3,Banco,Comida,,", "02/01/2024,Gasto,3"])
    with pytest.raises(FormatError) as excinfo:
        parse_csv(content)
    assert excinfo.value.line == 3
    assert str(excinfo.value) == "Línea 3: formato inválido (faltan columnas)"


def test_parse_csv_rejects_bad_date_anywhere() -> None:
    content = "\n".join(
        [
            HEADER,
            "01/01/2024,Gasto,3,Banco,Comida,,",
            "2024-01-02,Gasto,3,Banco,Comida,,",
        ]
    )
    with pytest.raises(FormatError) as excinfo:
        parse_csv(content)
    assert excinfo.value.line == 3
    assert "formato de fecha inválido" in str(excinfo.value)


def test_parse_csv_rejects_impossible_calendar_date() -> None:
    content = "\n".join([HEADER, "31/02/2024,Gasto,3,Banco,Comida,,"])
    with pytest.raises(FormatError) as excinfo:
        parse_csv(content)
    assert excinfo.value.line == 2


@pytest.mark.parametrize(
    "amount", ["0", "-5", "abc", "", "0,001", "NaN", "Infinity", "1e20", "1e30"]
)
def test_parse_amount_rejects_non_positive_or_garbage(amount: str) -> None:
    with pytest.raises(FormatError):
        parse_amount(amount, 7)


def test_parse_amount_accepts_comma_decimal_separator() -> None:
    assert parse_amount("12,34", 2) == 1_234
    assert parse_amount("12.345", 2) == 1_235
    assert parse_amount("7", 2) == 700


def test_parse_csv_rejects_empty_file() -> None:
    with pytest.raises(FormatError):
        parse_csv(HEADER + "\n")


def test_fixed_var_mapping() -> None:
    assert parse_fixed_var("Fijo") == FixedFlag.fixed
    assert parse_fixed_var("VARIABLE") == FixedFlag.variable
    assert parse_fixed_var("otro") is None
    assert parse_fixed_var("") is None


def test_format_amount_has_no_trailing_zeros() -> None:
    assert format_amount(1_250) == "12.5"
    assert format_amount(100_000) == "1000"
    assert format_amount(1) == "0.01"


def test_export_layout() -> None:
    movements = [
        MovementWithNames(
            id=2,
            date=date(2024, 3, 9),
            type=MovementType.transfer,
            amount_cents=50_000,
            account_from_id=1,
            account_from_name="Banco",
            account_to_id=2,
            account_to_name="Broker",
        ),
        MovementWithNames(
            id=1,
            date=date(2024, 3, 5),
            type=MovementType.expense,
            amount_cents=1_250,
            account_id=1,
            account_name="Banco",
            category_id=3,
            category_name="Comida",
            fixed_var=FixedFlag.variable,
            note='Pizza "familiar"',
        ),
        MovementWithNames(
            id=0,
            date=date(2024, 3, 1),
            type=MovementType.income,
            amount_cents=200_000,
            account_id=1,
            account_name="Banco",
            category_id=4,
            category_name="Nómina",
        ),
    ]

    assert export_movements(movements).split("\n") == [
        HEADER,
        "09/03/2024,Transferencia,500,Banco → Broker,,,",
        '05/03/2024,Gasto,12.5,Banco,Comida,Variable,"Pizza ""familiar"""',
        "01/03/2024,Ingreso,2000,Banco,Nómina,,",
    ]


def test_export_guards_formula_like_notes_on_request() -> None:
    movement = MovementWithNames(
        id=1,
        date=date(2024, 1, 1),
        type=MovementType.expense,
        amount_cents=100,
        account_id=1,
        account_name="Banco",
        category_id=1,
        category_name="Varios",
        note="=SUM(A1:A2)",
    )
    line = export_movements([movement], guard_formulas=True).split("\n")[1]
    assert line.endswith('"\t=SUM(A1:A2)"')
    assert parse_csv(HEADER + "\n" + line)[0].note == "=SUM(A1:A2)"


def test_export_writes_cells_verbatim_by_default() -> None:
    movement = MovementWithNames(
        id=1,
        date=date(2024, 1, 2),
        type=MovementType.expense,
        amount_cents=500,
        account_id=1,
        account_name="+Ahorro",
        category_id=1,
        category_name="-Varios",
        note="-5 de descuento",
    )
    line = export_movements([movement]).split("\n")[1]
    assert line == '02/01/2024,Gasto,5,+Ahorro,-Varios,,"-5 de descuento"'
    assert "\t" not in line
