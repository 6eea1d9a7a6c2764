import json
import re
from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from budget_categorizer.domain.merchant import pattern_specificity
from budget_categorizer.errors import PatternTableError
from budget_categorizer.logger import get_logger
from budget_categorizer.models import Category, CategoryPattern

logger = get_logger(__name__)

DEFAULT_TABLE_PATH = Path(__file__).resolve().parent.parent / "data" / "pattern_table.json"


class AmountRange(BaseModel):
    category_id: str
    min: Decimal
    max: Decimal

    def contains(self, amount: Decimal) -> bool:
        return self.min <= amount <= self.max

    def confidence(self, amount: Decimal) -> float:
        """Triangular score: 1.0 at the midpoint, 0.0 at either bound and outside."""
        if not self.contains(amount) or self.max == self.min:
            return 0.0
        midpoint = (self.min + self.max) / 2
        half_width = (self.max - self.min) / 2
        return max(0.0, float(1 - abs(amount - midpoint) / half_width))


class SmallAmountRule(BaseModel):
    max_amount: Decimal
    categories: list[str]
    confidence: float = Field(ge=0.0, le=1.0)


class LargeAmountRule(BaseModel):
    min_amount: Decimal
    categories: list[str]
    confidence: float = Field(ge=0.0, le=1.0)


class AmountValidation(BaseModel):
    small: SmallAmountRule
    large: LargeAmountRule


class PatternEntry(BaseModel):
    pattern: str
    category_id: str
    is_regex: bool = False
    specificity: int | None = None
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    total_matches: int = 0
    accepted_matches: int = 0

    @field_validator("pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("pattern must not be empty")
        return value.strip()

    @model_validator(mode="after")
    def _check_regex(self) -> "PatternEntry":
        if self.is_regex:
            try:
                re.compile(self.pattern)
            except re.error as exc:
                raise ValueError(f"invalid regex {self.pattern!r}: {exc}") from exc
        return self

    def to_pattern(self) -> CategoryPattern:
        specificity = self.specificity
        if specificity is None:
            specificity = pattern_specificity(self.pattern, self.is_regex)
        return CategoryPattern(
            pattern=self.pattern,
            category_id=self.category_id,
            is_regex=self.is_regex,
            specificity=specificity,
            confidence=self.confidence,
            total_matches=self.total_matches,
            accepted_matches=self.accepted_matches,
        )


class PatternTable(BaseModel):
    version: str
    categories: list[Category]
    category_aliases: dict[str, str] = Field(default_factory=dict)
    global_patterns: list[PatternEntry] = Field(default_factory=list)
    amount_ranges: dict[str, tuple[Decimal, Decimal]] = Field(default_factory=dict)
    amount_validation: AmountValidation | None = None

    @model_validator(mode="after")
    def _check_references(self) -> "PatternTable":
        known = {category.id for category in self.categories}
        referenced = {
            *(entry.category_id for entry in self.global_patterns),
            *self.category_aliases.values(),
            *self.amount_ranges.keys(),
        }
        if self.amount_validation:
            referenced.update(self.amount_validation.small.categories)
            referenced.update(self.amount_validation.large.categories)
        unknown = sorted(referenced - known)
        if unknown:
            raise ValueError(f"unknown category ids: {', '.join(unknown)}")
        for category_id, (low, high) in self.amount_ranges.items():
            if low > high:
                raise ValueError(f"amount range for {category_id} has min > max")
        return self

    def patterns(self) -> list[CategoryPattern]:
        return [entry.to_pattern() for entry in self.global_patterns]

    def ranges(self) -> list[AmountRange]:
        return [
            AmountRange(category_id=category_id, min=low, max=high)
            for category_id, (low, high) in self.amount_ranges.items()
        ]


def load_pattern_table(path: str | Path | None = None) -> PatternTable:
    table_path = Path(path) if path else DEFAULT_TABLE_PATH
    try:
        raw = json.loads(table_path.read_text(encoding="utf-8"))
        table = PatternTable.model_validate(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        raise PatternTableError(f"Cannot load pattern table {table_path}: {exc}") from exc

    logger.info(
        "[PATTERNS] Loaded table v%s: %s categories, %s global patterns, %s aliases.",
        table.version,
        len(table.categories),
        len(table.global_patterns),
        len(table.category_aliases),
    )
    return table
