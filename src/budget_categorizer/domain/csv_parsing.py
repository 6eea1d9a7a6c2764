import csv
import io
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

SEPARATOR_PREFERENCE = (";", ",", "\t")
DEFAULT_SEPARATOR = ","

DAY_FIRST_FORMATS = ("%d/%m/%Y", "%d-%m-%Y")
MONTH_FIRST_FORMATS = ("%m/%d/%Y", "%m-%d-%Y")
ISO_FORMAT = "%Y-%m-%d"

_CURRENCY_AND_SPACE = re.compile(r"[$€£¥\s ]")
_DECIMAL_COMMA = re.compile(r".*\d+,\d{1,2}$")

# Leading characters a spreadsheet evaluates as a formula.
FORMULA_PREFIXES = ("=", "+", "-", "@")


@dataclass(frozen=True)
class RowValidationError:
    row: int
    message: str
    field: str | None = None
    raw: str = ""


@dataclass(frozen=True)
class ParsedRow:
    row: int
    date: date
    amount: Decimal
    description: str
    category: str | None = None
    merchant: str | None = None
    raw: str = ""


@dataclass(frozen=True)
class RowMapping:
    """Header-name mapping for one CSV layout."""

    date_column: str
    description_column: str
    amount_column: str | None = None
    debit_column: str | None = None
    credit_column: str | None = None
    category_column: str | None = None
    merchant_column: str | None = None


def date_formats(day_first: bool = True) -> tuple[str, ...]:
    """Ordered strptime formats; `%d` and `%m` also accept values without a leading zero."""
    first, second = (
        (DAY_FIRST_FORMATS, MONTH_FIRST_FORMATS)
        if day_first
        else (MONTH_FIRST_FORMATS, DAY_FIRST_FORMATS)
    )
    return (first[0], second[0], ISO_FORMAT, first[1], second[1])


def detect_separator(header_line: str) -> str:
    for separator in SEPARATOR_PREFERENCE:
        if header_line.count(separator) > 0:
            return separator
    return DEFAULT_SEPARATOR


def has_separator(header_line: str) -> bool:
    return any(separator in header_line for separator in SEPARATOR_PREFERENCE)


def split_header(header_line: str, separator: str) -> list[str]:
    reader = csv.reader([header_line], delimiter=separator, quotechar='"', skipinitialspace=True)
    return [cell.strip() for cell in next(reader, [])]


def split_records(text: str, separator: str) -> list[list[str]]:
    reader = csv.reader(io.StringIO(text), delimiter=separator, quotechar='"', skipinitialspace=True)
    return [[cell.strip() for cell in record] for record in reader if any(cell.strip() for cell in record)]


def sanitize_cell(value: str) -> str:
    """Neutralise formula injection by quoting cells a spreadsheet would evaluate."""
    value = value.strip()
    if value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


def parse_date(raw: str | None, formats: tuple[str, ...]) -> date | None:
    if not raw:
        return None
    value = raw.strip().split(" ", 1)[0]
    for fmt in formats:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_amount(raw: str | None) -> Decimal | None:
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None

    negative = False
    if value.startswith("(") and value.endswith(")"):
        negative = True
        value = value[1:-1]

    value = _CURRENCY_AND_SPACE.sub("", value)
    # a minus sign is only a sign at either end of the value
    if value.startswith("-"):
        negative = True
        value = value[1:]
    elif value.endswith("-"):
        negative = True
        value = value[:-1]
    value = value.lstrip("+")
    if "-" in value:
        return None

    if _DECIMAL_COMMA.match(value):
        value = value.replace(",", ".")
        head, _, tail = value.rpartition(".")
        value = f"{head.replace('.', '')}.{tail}"
    else:
        value = value.replace(",", "")

    try:
        amount = Decimal(value)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return -amount if negative else amount


def _resolve_amount(
    row: int,
    raw: str,
    amount_text: str,
    debit_text: str,
    credit_text: str,
) -> Decimal | RowValidationError:
    if amount_text and (debit_text or credit_text):
        return RowValidationError(
            row, "Both an amount and a debit/credit value are populated; resolve manually", "amount", raw
        )
    if debit_text and credit_text:
        return RowValidationError(row, "Both debit and credit are populated; resolve manually", "amount", raw)

    text = amount_text or debit_text or credit_text
    if not text:
        return RowValidationError(row, "No valid amount found", "amount", raw)

    parsed = parse_amount(text)
    if parsed is None:
        return RowValidationError(row, f"Invalid amount '{text}'", "amount", raw)
    if debit_text:
        return -abs(parsed)
    if credit_text:
        return abs(parsed)
    return parsed


def parse_row(
    cells: list[str],
    columns: dict[str, int],
    mapping: RowMapping,
    row: int,
    formats: tuple[str, ...],
    separator: str = DEFAULT_SEPARATOR,
) -> ParsedRow | RowValidationError:
    raw = separator.join(cells)

    def cell(column: str | None) -> str:
        if column is None:
            return ""
        index = columns.get(column)
        if index is None or index >= len(cells):
            return ""
        return cells[index].strip()

    date_text = cell(mapping.date_column)
    if not date_text:
        return RowValidationError(row, "Date is required", "date", raw)
    parsed_date = parse_date(date_text, formats)
    if parsed_date is None:
        return RowValidationError(row, f"Unrecognized date format '{date_text}'", "date", raw)

    description = sanitize_cell(cell(mapping.description_column))
    if not description:
        return RowValidationError(row, "Description is required", "description", raw)

    amount = _resolve_amount(
        row,
        raw,
        cell(mapping.amount_column),
        cell(mapping.debit_column),
        cell(mapping.credit_column),
    )
    if isinstance(amount, RowValidationError):
        return amount

    return ParsedRow(
        row=row,
        date=parsed_date,
        amount=amount,
        description=description,
        category=sanitize_cell(cell(mapping.category_column)) or None,
        merchant=sanitize_cell(cell(mapping.merchant_column)) or None,
        raw=raw,
    )
