from dataclasses import dataclass, replace
from datetime import date as Date
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from budget_categorizer.core.settings import DEFAULT_CSV_MAX_UPLOAD_BYTES
from budget_categorizer.domain.csv_parsing import (
    ParsedRow,
    RowMapping,
    RowValidationError,
    date_formats,
    detect_separator,
    has_separator,
    parse_row,
    sanitize_cell,
    split_header,
    split_records,
)
from budget_categorizer.errors import CsvFormatError, ImportSessionError, NotFoundError
from budget_categorizer.logger import get_logger
from budget_categorizer.models import AssignmentStatus, Direction, MappingTemplate, Transaction
from budget_categorizer.services.sessions import ImportSession, ImportSessionStore
from budget_categorizer.stores.base import MappingTemplateStore, TransactionStore
from budget_categorizer.stores.memory import InMemoryMappingTemplateStore

logger = get_logger(__name__)

HEADER_ROW = 1
BALANCED_PREVIEW_SIZE = 4

_TEMPLATE_COLUMNS = (
    "date_column",
    "description_column",
    "amount_column",
    "debit_column",
    "credit_column",
    "category_column",
    "merchant_column",
)


class ColumnMapping(BaseModel):
    account_id: str
    date_column: str
    description_column: str
    amount_column: str | None = None
    debit_column: str | None = None
    credit_column: str | None = None
    category_column: str | None = None
    merchant_column: str | None = None
    bank_name: str | None = None
    save_mapping: bool = False

    @model_validator(mode="after")
    def _require_amount_source(self) -> "ColumnMapping":
        if not (self.amount_column or self.debit_column or self.credit_column):
            raise ValueError("Map an amount column or debit/credit columns.")
        if self.save_mapping and not (self.bank_name and self.bank_name.strip()):
            raise ValueError("A bank name is required to save the mapping.")
        return self

    @classmethod
    def from_template(cls, template: MappingTemplate, account_id: str) -> "ColumnMapping":
        columns = {name: getattr(template, name) for name in _TEMPLATE_COLUMNS}
        return cls(account_id=account_id, bank_name=template.bank_name, **columns)

    def mapped_columns(self) -> dict[str, str]:
        return {name: value for name in _TEMPLATE_COLUMNS if (value := getattr(self, name))}

    def to_template(self, user_id: str) -> MappingTemplate:
        columns = {name: getattr(self, name) for name in _TEMPLATE_COLUMNS}
        return MappingTemplate(user_id=user_id, bank_name=self.bank_name or "", **columns)

    def to_row_mapping(self) -> RowMapping:
        return RowMapping(
            date_column=self.date_column,
            description_column=self.description_column,
            amount_column=self.amount_column,
            debit_column=self.debit_column,
            credit_column=self.credit_column,
            category_column=self.category_column,
            merchant_column=self.merchant_column,
        )


class RowCorrection(BaseModel):
    date: Date | None = None
    amount: Decimal | None = None
    description: str | None = None


class ImportApprovals(BaseModel):
    approved_rows: list[int] = Field(default_factory=list)
    rejected_rows: list[int] = Field(default_factory=list)
    corrections: dict[int, RowCorrection] = Field(default_factory=dict)


@dataclass(frozen=True)
class DuplicateWarning:
    row: int
    message: str


class UploadPreview(BaseModel):
    session_id: str
    separator: str
    headers: list[str]
    preview_rows: list[list[str]]
    total_row_count: int


class MappingPreview(BaseModel):
    session_id: str
    valid_rows: list[ParsedRow]
    preview: list[ParsedRow]
    valid_count: int
    errors: list[RowValidationError]
    duplicate_warnings: list[DuplicateWarning]


class ImportReport(BaseModel):
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
    transaction_ids: list[str] = Field(default_factory=list)
    template_saved: bool = False


def decode_csv_bytes(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Older French bank exports are Windows-1252.
        return content.decode("cp1252", errors="replace")


def balanced_preview(rows: list[ParsedRow], size: int = BALANCED_PREVIEW_SIZE) -> list[ParsedRow]:
    """A few rows mixing income and expenses so the sign handling can be checked at a glance.

    Each direction gets half of the slots; a short side leaves its slots to the other.
    Rows keep their file order.
    """
    income = [row for row in rows if row.amount >= 0]
    expenses = [row for row in rows if row.amount < 0]
    half = size // 2
    chosen = income[:half] + expenses[:half]
    leftovers = income[half:] + expenses[half:]
    chosen += leftovers[: size - len(chosen)]
    return sorted(chosen, key=lambda row: row.row)


class CsvImportWizard:
    def __init__(
        self,
        sessions: ImportSessionStore,
        transactions: TransactionStore,
        templates: MappingTemplateStore | None = None,
        *,
        preview_rows: int = 10,
        day_first: bool = True,
        max_upload_bytes: int = DEFAULT_CSV_MAX_UPLOAD_BYTES,
    ) -> None:
        self.sessions = sessions
        self.transactions = transactions
        self.templates = templates or InMemoryMappingTemplateStore()
        self.preview_rows = preview_rows
        self.day_first = day_first
        self.max_upload_bytes = max_upload_bytes

    def _require_session(self, user_id: str, session_id: str) -> ImportSession:
        session = self.sessions.get(session_id)
        # another user's session is reported as missing
        if session is None or session.user_id != user_id:
            raise NotFoundError("import session", session_id)
        return session

    def check_upload_size(self, size: int) -> None:
        if size > self.max_upload_bytes:
            raise CsvFormatError(f"The file exceeds the {self.max_upload_bytes} byte upload limit.")

    def ingest(self, user_id: str, content: bytes) -> UploadPreview:
        self.check_upload_size(len(content))
        lines = decode_csv_bytes(content).splitlines()
        header_index = next((index for index, line in enumerate(lines) if line.strip()), None)
        if header_index is None:
            raise CsvFormatError("The file is empty; a header row is required.")

        header_line = lines[header_index]
        if not has_separator(header_line):
            raise CsvFormatError("The header row has no ';', ',' or tab separator; the file is not a CSV export.")
        separator = detect_separator(header_line)
        headers = tuple(split_header(header_line, separator))
        if not any(headers):
            raise CsvFormatError("The header row has no column names.")

        records = split_records("\n".join(lines[header_index + 1 :]), separator)
        rows = tuple(tuple(record) for record in records)
        session = self.sessions.put(
            ImportSession(user_id=user_id, headers=headers, rows=rows, separator=separator)
        )

        logger.info(
            "[CSV] Session %s: %s rows, %s columns, separator %r.",
            session.id,
            len(rows),
            len(headers),
            separator,
        )
        return UploadPreview(
            session_id=session.id,
            separator=separator,
            headers=list(headers),
            preview_rows=[list(row) for row in rows[: self.preview_rows]],
            total_row_count=len(rows),
        )

    def list_templates(self, user_id: str) -> list[MappingTemplate]:
        return self.templates.list_for_user(user_id)

    def apply_saved_mapping(self, user_id: str, session_id: str, bank_name: str, account_id: str) -> ColumnMapping:
        self._require_session(user_id, session_id)
        template = self.templates.get(user_id, bank_name)
        if template is None:
            raise NotFoundError("mapping template", bank_name)
        return ColumnMapping.from_template(template, account_id)

    def map_columns(self, user_id: str, session_id: str, mapping: ColumnMapping) -> MappingPreview:
        session = self._require_session(user_id, session_id)

        missing = {
            name: column for name, column in mapping.mapped_columns().items() if column not in session.headers
        }
        if missing:
            errors = [
                RowValidationError(HEADER_ROW, f"Column '{column}' is not in the file", name)
                for name, column in missing.items()
            ]
            return MappingPreview(
                session_id=session.id,
                valid_rows=[],
                preview=[],
                valid_count=0,
                errors=errors,
                duplicate_warnings=[],
            )

        columns: dict[str, int] = {}
        for index, header in enumerate(session.headers):
            columns.setdefault(header, index)

        row_mapping = mapping.to_row_mapping()
        formats = date_formats(self.day_first)
        valid: list[ParsedRow] = []
        errors: list[RowValidationError] = []
        duplicates: list[DuplicateWarning] = []

        for offset, cells in enumerate(session.rows):
            row_number = offset + HEADER_ROW + 1
            parsed = parse_row(list(cells), columns, row_mapping, row_number, formats, session.separator)
            if isinstance(parsed, RowValidationError):
                errors.append(parsed)
                continue
            valid.append(parsed)
            if self.transactions.exists_duplicate(
                mapping.account_id, parsed.date, abs(parsed.amount), parsed.description
            ):
                duplicates.append(
                    DuplicateWarning(row_number, f"Possible duplicate of an existing transaction on {parsed.date}")
                )

        self.sessions.put(
            replace(
                session,
                account_id=mapping.account_id,
                mapping=row_mapping,
                parsed_rows=tuple(valid),
                template=mapping.to_template(session.user_id) if mapping.save_mapping else None,
            )
        )
        logger.info(
            "[CSV] Session %s mapped: %s valid, %s errors, %s possible duplicates.",
            session.id,
            len(valid),
            len(errors),
            len(duplicates),
        )
        return MappingPreview(
            session_id=session.id,
            valid_rows=valid,
            preview=balanced_preview(valid),
            valid_count=len(valid),
            errors=errors,
            duplicate_warnings=duplicates,
        )

    def _build_transaction(
        self,
        session: ImportSession,
        row: ParsedRow,
        correction: RowCorrection | None,
    ) -> Transaction:
        on = row.date
        amount = row.amount
        description = row.description
        if correction is not None:
            on = correction.date or on
            amount = correction.amount if correction.amount is not None else amount
            if correction.description is not None:
                description = sanitize_cell(correction.description)
        if not description:
            raise ValueError("Description is required")

        return Transaction(
            user_id=session.user_id,
            account_id=session.account_id,
            date=on,
            amount=abs(amount),
            direction=Direction.INCOME if amount >= 0 else Direction.EXPENSE,
            description=description,
            merchant_name=row.merchant,
            source_category=row.category,
            status=AssignmentStatus.UNASSIGNED,
        )

    def finalize(self, user_id: str, session_id: str, approvals: ImportApprovals) -> ImportReport:
        session = self._require_session(user_id, session_id)
        if session.mapping is None:
            raise ImportSessionError(f"Columns have not been mapped for session {session_id}.")

        approved = set(approvals.approved_rows)
        rejected = set(approvals.rejected_rows)
        report = ImportReport()

        for row in session.parsed_rows:
            if row.row in rejected or (approved and row.row not in approved):
                report.skipped += 1
                continue
            try:
                transaction = self._build_transaction(session, row, approvals.corrections.get(row.row))
            except ValueError as exc:
                report.failed += 1
                report.errors.append(f"Row {row.row}: {exc}")
                continue
            self.transactions.save(transaction)
            report.succeeded += 1
            report.transaction_ids.append(transaction.id)

        if session.template is not None:
            self.templates.save(session.template)
            report.template_saved = True
            logger.info("[CSV] Saved mapping template '%s' for user %s.", session.template.bank_name, user_id)

        self.sessions.pop(session_id)
        logger.info(
            "[CSV] Session %s finalized: %s imported, %s skipped, %s failed.",
            session_id,
            report.succeeded,
            report.skipped,
            report.failed,
        )
        return report
