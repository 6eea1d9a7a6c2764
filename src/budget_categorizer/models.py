from datetime import date as Date
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import assert_never
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator


def _new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Direction(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class AssignmentStatus(str, Enum):
    UNASSIGNED = "UNASSIGNED"
    AUTO_ASSIGNED = "AUTO_ASSIGNED"
    MANUALLY_ASSIGNED = "MANUALLY_ASSIGNED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    RECENTLY_ASSIGNED = "RECENTLY_ASSIGNED"


ASSIGNED_STATUSES = frozenset(
    {
        AssignmentStatus.AUTO_ASSIGNED,
        AssignmentStatus.MANUALLY_ASSIGNED,
        AssignmentStatus.RECENTLY_ASSIGNED,
    }
)


class CategoryGroup(str, Enum):
    INCOME = "INCOME"
    ESSENTIAL = "ESSENTIAL"
    LIFESTYLE = "LIFESTYLE"
    SAVINGS = "SAVINGS"
    OTHER = "OTHER"

    def accepts(self, direction: Direction) -> bool:
        match self:
            case CategoryGroup.INCOME:
                return direction is Direction.INCOME
            case CategoryGroup.ESSENTIAL | CategoryGroup.LIFESTYLE | CategoryGroup.OTHER:
                return direction is Direction.EXPENSE
            case CategoryGroup.SAVINGS:
                return True
            case _:
                assert_never(self)


class PatternSource(str, Enum):
    CONFIRMED = "CONFIRMED"
    LEARNED = "LEARNED"


class Strategy(str, Enum):
    EXISTING_CATEGORY = "EXISTING_CATEGORY"
    PERSONAL_PATTERN = "PERSONAL_PATTERN"
    GLOBAL_PATTERN = "GLOBAL_PATTERN"
    HISTORICAL = "HISTORICAL"
    AMOUNT = "AMOUNT"
    SIMILARITY = "SIMILARITY"
    NO_PATTERN_MATCH = "NO_PATTERN_MATCH"


class Resolution(str, Enum):
    SINGLE_MATCH = "SINGLE_MATCH"
    SPECIFICITY_WEIGHTED = "SPECIFICITY_WEIGHTED"
    USER_FEEDBACK_HISTORY = "USER_FEEDBACK_HISTORY"
    ACCURACY_HISTORY = "ACCURACY_HISTORY"
    AMOUNT_VALIDATION = "AMOUNT_VALIDATION"
    FALLBACK_SPECIFICITY = "FALLBACK_SPECIFICITY"
    NO_PATTERN_MATCH = "NO_PATTERN_MATCH"


class Category(BaseModel):
    id: str
    name: str
    group: CategoryGroup


class Transaction(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    account_id: str | None = None
    date: Date
    amount: Decimal  # currency-agnostic; the sign gives the direction unless one is set
    description: str = ""
    merchant_name: str | None = None
    direction: Direction | None = None
    source_category: str | None = None  # coarse label carried over from import
    status: AssignmentStatus = AssignmentStatus.UNASSIGNED
    category_id: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _derive_direction(self) -> "Transaction":
        if self.direction is None:
            self.direction = Direction.INCOME if self.amount >= 0 else Direction.EXPENSE
        return self

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)


class CategoryPattern(BaseModel):
    """Global keyword or regex pattern shared by every user."""

    pattern: str
    category_id: str
    is_regex: bool = False
    specificity: int = 0
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    total_matches: int = 0
    accepted_matches: int = 0

    @property
    def id(self) -> str:
        return f"{self.category_id}|{self.pattern}"

    @property
    def accuracy(self) -> float:
        if self.total_matches == 0:
            return 0.0
        return self.accepted_matches / self.total_matches


class UserMerchantPattern(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    pattern: str
    category_id: str
    source: PatternSource = PatternSource.CONFIRMED
    usage_count: int = 1
    success_count: int = 1
    confidence: float = Field(default=0.90, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime = Field(default_factory=utcnow)

    @field_validator("pattern")
    @classmethod
    def _normalize_pattern(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def accuracy(self) -> float:
        if self.usage_count == 0:
            return 0.0
        return self.success_count / self.usage_count


class AssignmentFeedback(BaseModel):
    user_id: str
    transaction_id: str
    suggested_category_id: str | None
    chosen_category_id: str
    accepted: bool
    pattern_used: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class ClassificationResult(BaseModel):
    transaction_id: str
    category_id: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    strategy: Strategy = Strategy.NO_PATTERN_MATCH
    resolution: Resolution = Resolution.NO_PATTERN_MATCH
    pattern: str | None = None
    pattern_id: str | None = None
    alternatives: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def needs_review(self) -> bool:
        return self.category_id is None or self.resolution is Resolution.FALLBACK_SPECIFICITY


class BulkClassificationResult(BaseModel):
    assigned: list[ClassificationResult] = Field(default_factory=list)
    needs_review: list[ClassificationResult] = Field(default_factory=list)
    strategy_breakdown: dict[str, int] = Field(default_factory=dict)
    stopped_early: bool = False


class PatternImprovementReport(BaseModel):
    improved: int = 0
    removed: int = 0


class MappingTemplate(BaseModel):
    """Column names a user's bank export uses, saved so the next import maps itself."""

    user_id: str
    bank_name: str
    date_column: str
    description_column: str
    amount_column: str | None = None
    debit_column: str | None = None
    credit_column: str | None = None
    category_column: str | None = None
    merchant_column: str | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("bank_name")
    @classmethod
    def _normalize_bank_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("bank_name must not be empty")
        return value
