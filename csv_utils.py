import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Sequence

from errors import FormatError
from models import FixedFlag, MovementType
from schemas import MAX_AMOUNT_CENTS, CSVRow, MovementWithNames

CSV_HEADER = ["Fecha", "Tipo", "Importe", "Cuenta", "Categoría", "Fijo/Variable", "Nota"]
MIN_COLUMNS = 6

TYPE_LABELS = {
    MovementType.income: "Ingreso",
    MovementType.expense: "Gasto",
    MovementType.transfer: "Transferencia",
}
FIXED_VAR_LABELS = {
    FixedFlag.fixed: "Fijo",
    FixedFlag.variable: "Variable",
}

_DATE_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.

    The importer trims every field, so the prefix never survives a round trip.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def quote_field(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _name_field(value: str, guard_formulas: bool = False) -> str:
    clean = sanitize_csv_value(value) if guard_formulas else value.strip()
    if "," in clean or '"' in clean:
        return quote_field(clean)
    return clean


def split_csv_line(line: str) -> list[str]:
    """Split one CSV line into trimmed fields.

    Commas inside double quotes do not separate fields and ``""`` inside a
    quoted section is a literal quote.
    """
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and line[i + 1 : i + 2] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1
    fields.append("".join(current).strip())
    return fields


def format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def parse_date(value: str, line: int) -> date:
    match = _DATE_RE.fullmatch(value.strip())
    if not match:
        raise FormatError(
            f"Línea {line}: formato de fecha inválido. Usa DD/MM/AAAA", line
        )
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError as exc:
        raise FormatError(
            f"Línea {line}: fecha inexistente ({value.strip()})", line
        ) from exc


def format_amount(cents: int) -> str:
    """Plain decimal string, no thousands separator and no trailing zeros."""
    value = Decimal(cents).scaleb(-2).normalize()
    return format(value, "f")


def parse_amount(value: str, line: int) -> int:
    clean = value.strip().replace("€", "").replace(" ", "")
    clean = clean.replace(",", ".", 1)
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise FormatError(f"Línea {line}: importe inválido", line) from exc
    if not amount.is_finite() or amount <= 0 or amount * 100 > MAX_AMOUNT_CENTS:
        raise FormatError(f"Línea {line}: importe inválido", line)
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents <= 0:
        raise FormatError(f"Línea {line}: importe inválido", line)
    return cents


def parse_fixed_var(value: str) -> Optional[FixedFlag]:
    lowered = value.lower()
    if "fijo" in lowered:
        return FixedFlag.fixed
    if "variable" in lowered:
        return FixedFlag.variable
    return None


def parse_csv(content: str) -> list[CSVRow]:
    """Parse an exported ledger CSV.

    Any malformed line raises :class:`FormatError` and nothing is returned,
    so callers never write a partially parsed file. Transfer rows are skipped.
    """
    lines = content.lstrip("\ufeff").strip().split("\n")
    if len(lines) < 2:
        raise FormatError("El archivo CSV está vacío o no tiene datos")

    rows: list[CSVRow] = []
    for line_number, raw in enumerate(lines[1:], start=2):
        line = raw.strip()
        if not line:
            continue

        values = split_csv_line(line)
        if len(values) < MIN_COLUMNS:
            raise FormatError(
                f"Línea {line_number}: formato inválido (faltan columnas)",
                line_number,
            )

        type_raw = values[1].lower()
        if "transfer" in type_raw:
            continue
        movement_type = (
            MovementType.income if "ingreso" in type_raw else MovementType.expense
        )

        rows.append(
            CSVRow(
                line=line_number,
                date=parse_date(values[0], line_number),
                type=movement_type,
                amount_cents=parse_amount(values[2], line_number),
                account=values[3],
                category=values[4],
                fixed_var=parse_fixed_var(values[5]),
                note=values[6] if len(values) > 6 and values[6] else None,
            )
        )
    return rows


def _account_column(movement: MovementWithNames, guard_formulas: bool) -> str:
    if movement.type == MovementType.transfer:
        origin = movement.account_from_name or ""
        target = movement.account_to_name or ""
        return _name_field(f"{origin} → {target}", guard_formulas)
    return _name_field(movement.account_name or "", guard_formulas)


def export_movements(
    movements: Sequence[MovementWithNames], guard_formulas: bool = False
) -> str:
    """Render movements in the import layout.

    With ``guard_formulas`` set, cells that a spreadsheet would evaluate get a
    leading tab; the importer trims it again.
    """
    rows = [",".join(CSV_HEADER)]
    for movement in movements:
        # one movement per line; the importer splits on newlines
        note = " ".join((movement.note or "").splitlines()).strip()
        if guard_formulas:
            note = sanitize_csv_value(note)
        fixed_var = (
            FIXED_VAR_LABELS[movement.fixed_var] if movement.fixed_var else ""
        )
        rows.append(
            ",".join(
                [
                    format_date(movement.date),
                    TYPE_LABELS[movement.type],
                    format_amount(movement.amount_cents),
                    _account_column(movement, guard_formulas),
                    _name_field(movement.category_name or "", guard_formulas),
                    fixed_var,
                    quote_field(note) if note else "",
                ]
            )
        )
    return "\n".join(rows)
