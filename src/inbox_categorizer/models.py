from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

UNCATEGORISED = "Uncategorised"
TRANSFER_CATEGORY = "Transfer"
TRANSFER_CATEGORY_TYPE = "transfer"


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class InboxState(str, Enum):
    UNCLASSIFIED = "unclassified"
    NEEDS_REVIEW = "needs_review"
    AUTO_CLASSIFIED = "auto_classified"
    CLEARED = "cleared"


class ClassificationSource(str, Enum):
    RULE = "rule"
    MODEL = "model"
    USER = "user"
    NONE = "none"


class Transaction(BaseModel):
    id: str
    user_id: str
    date: datetime
    amount: float  # negative = outflow
    description_raw: str = ""
    merchant_name: str = ""
    account_name: str = ""
    category: str = UNCATEGORISED
    category_type: str = ""
    is_transfer: bool = False
    classification_source: ClassificationSource = ClassificationSource.NONE
    inbox_state: InboxState = InboxState.UNCLASSIFIED
    suggested_category_id: str | None = None
    confidence: float | None = None
    category_confirmed: bool = False
    confirmed_at: datetime | None = None

    @field_validator("date", "confirmed_at")
    @classmethod
    def _normalise_timezone(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class CategoryRule(BaseModel):
    id: str | None = None
    priority: float = 1000
    pattern: str
    field: str = "merchant_normalised"  # or "description_raw"
    category: str = UNCATEGORISED
    category_type: str = ""
    amount_condition: str | None = None
    is_disabled: bool = False


class RuleMatch(BaseModel):
    category: str
    category_type: str = ""
    rule_id: str | None = None


class ModelPrediction(BaseModel):
    category: str
    category_type: str = ""
    confidence: float


class Prediction(BaseModel):
    category: str
    confidence: float
    probabilities: dict[str, float]


class CategorizationResult(BaseModel):
    category: str
    category_type: str = ""
    confidence: float  # 0.0 to 1.0
    source: ClassificationSource
    probabilities: dict[str, float] = Field(default_factory=dict)
    rule_id: str | None = None


class InboxStateResult(BaseModel):
    inbox_state: InboxState
    category: str
    category_type: str
    classification_source: ClassificationSource
    suggested_category_id: str | None = None
    confidence: float | None = None


class TransactionUpdate(BaseModel):
    """
    Write instruction produced by a classification pass.

    ``classification`` is None for confirmed transactions, whose category
    fields belong to the user; only ``is_transfer`` is written for them.
    """
    id: str
    is_transfer: bool
    classification: InboxStateResult | None = None
