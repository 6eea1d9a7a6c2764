from pydantic import BaseModel, Field

from budget_categorizer.models import Transaction


class ClassifyRequest(BaseModel):
    transaction: Transaction


class BulkClassifyRequest(BaseModel):
    user_id: str
    transaction_ids: list[str] = Field(min_length=1)


class PeriodRequest(BaseModel):
    user_id: str
    year: int = Field(ge=1970, le=9999)
    month: int = Field(ge=1, le=12)


class UserRequest(BaseModel):
    user_id: str


class AssignRequest(BaseModel):
    user_id: str
    category_id: str


class FeedbackRequest(BaseModel):
    user_id: str
    transaction_id: str
    suggested_category_id: str | None = None
    chosen_category_id: str
    accepted: bool
    pattern_used: str | None = None


class ApplyTemplateRequest(BaseModel):
    bank_name: str
    account_id: str
