from datetime import date
from decimal import Decimal

import pytest

from budget_categorizer.domain.csv_parsing import (
    ParsedRow,
    RowMapping,
    RowValidationError,
    date_formats,
    detect_separator,
    parse_amount,
    parse_date,
    parse_row,
    split_records,
)


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("Date;Libelle;Montant", ";"),
        ("Date,Description,Amount", ","),
        ("Date\tDescription\tAmount", "\t"),
        ("Date;Description,Amount", ";"),
        ("Date", ","),
    ],
)
def test_detect_separator(header: str, expected: str) -> None:
    assert detect_separator(header) == expected


def test_split_records_honours_quotes_and_skips_blank_lines() -> None:
    text = 'Date,Description,Amount\n\n"01/12/2023","Achat, magasin", "-10"\n , ,\n'
    assert split_records(text, ",") == [
        ["Date", "Description", "Amount"],
        ["01/12/2023", "Achat, magasin", "-10"],
    ]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("01/12/2023", date(2023, 12, 1)),
        ("1/2/2024", date(2024, 2, 1)),
        ("2024-03-05", date(2024, 3, 5)),
        ("05-03-2024", date(2024, 3, 5)),
        ("31/01/2024 10:22", date(2024, 1, 31)),
        ("12/31/2023", date(2023, 12, 31)),
    ],
)
def test_parse_date_day_first(raw: str, expected: date) -> None:
    assert parse_date(raw, date_formats(day_first=True)) == expected


def test_parse_date_month_first() -> None:
    assert parse_date("01/12/2023", date_formats(day_first=False)) == date(2023, 1, 12)


def test_parse_date_rejects_garbage() -> None:
    assert parse_date("yesterday", date_formats()) is None
    assert parse_date("", date_formats()) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("-45.67", Decimal("-45.67")),
        ("45,67", Decimal("45.67")),
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("1 234,56 €", Decimal("1234.56")),
        ("$12.00", Decimal("12.00")),
        ("(15.20)", Decimal("-15.20")),
        ("+8", Decimal("8")),
        ("12.50-", Decimal("-12.50")),
        ("45,67-", Decimal("-45.67")),
        ("- 12,50 €", Decimal("-12.50")),
    ],
)
def test_parse_amount(raw: str, expected: Decimal) -> None:
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "NaN", "12-34", "--5", None])
def test_parse_amount_invalid(raw: str | None) -> None:
    assert parse_amount(raw) is None


HEADERS = ["Date", "Description", "Montant", "Catégorie", "Debit", "Credit"]
COLUMNS = {name: index for index, name in enumerate(HEADERS)}


def test_parse_row_reads_mapped_columns() -> None:
    mapping = RowMapping(
        date_column="Date",
        description_column="Description",
        amount_column="Montant",
        category_column="Catégorie",
    )
    cells = ["01/12/2023", "Achat supermarché", "-45.67", "Alimentation", "", ""]

    parsed = parse_row(cells, COLUMNS, mapping, 2, date_formats())

    assert parsed == ParsedRow(
        row=2,
        date=date(2023, 12, 1),
        amount=Decimal("-45.67"),
        description="Achat supermarché",
        category="Alimentation",
        raw=",".join(cells),
    )


def test_parse_row_debit_and_credit_columns() -> None:
    mapping = RowMapping(
        date_column="Date",
        description_column="Description",
        debit_column="Debit",
        credit_column="Credit",
    )
    debit = parse_row(["01/12/2023", "Loyer", "", "", "800,00", ""], COLUMNS, mapping, 2, date_formats())
    credit = parse_row(["02/12/2023", "Salaire", "", "", "", "2500"], COLUMNS, mapping, 3, date_formats())

    assert isinstance(debit, ParsedRow) and debit.amount == Decimal("-800.00")
    assert isinstance(credit, ParsedRow) and credit.amount == Decimal("2500")


def test_parse_row_rejects_ambiguous_amount() -> None:
    mapping = RowMapping(
        date_column="Date",
        description_column="Description",
        amount_column="Montant",
        debit_column="Debit",
    )
    error = parse_row(["01/12/2023", "Achat", "-10", "", "10", ""], COLUMNS, mapping, 4, date_formats())

    assert isinstance(error, RowValidationError)
    assert error.row == 4
    assert error.field == "amount"


@pytest.mark.parametrize(
    ("cells", "field"),
    [
        (["", "Achat", "-10", "", "", ""], "date"),
        (["2023/12/01", "Achat", "-10", "", "", ""], "date"),
        (["01/12/2023", "", "-10", "", "", ""], "description"),
        (["01/12/2023", "Achat", "", "", "", ""], "amount"),
        (["01/12/2023", "Achat", "dix", "", "", ""], "amount"),
    ],
)
def test_parse_row_field_errors(cells: list[str], field: str) -> None:
    mapping = RowMapping(date_column="Date", description_column="Description", amount_column="Montant")
    error = parse_row(cells, COLUMNS, mapping, 7, date_formats())
    assert isinstance(error, RowValidationError)
    assert error.field == field


def test_parse_row_tolerates_short_rows() -> None:
    mapping = RowMapping(date_column="Date", description_column="Description", amount_column="Montant")
    error = parse_row(["01/12/2023", "Achat"], COLUMNS, mapping, 9, date_formats())
    assert isinstance(error, RowValidationError)
    assert error.message == "No valid amount found"
