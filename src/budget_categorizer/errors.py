class CategorizerError(Exception):
    """Base class for faults raised by the categorization engine."""


class NotFoundError(CategorizerError, LookupError):
    def __init__(self, kind: str, key: object) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' not found")


class ImportSessionError(CategorizerError):
    """Raised when a CSV import step runs out of order."""


class PatternTableError(CategorizerError):
    """The pattern table on disk is malformed."""


class CsvFormatError(CategorizerError):
    """The uploaded file cannot be read as a delimited text file with a header row."""
