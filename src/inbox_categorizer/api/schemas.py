from datetime import datetime

from pydantic import BaseModel

from inbox_categorizer.models import CategoryRule, Transaction


class ClassifyRequest(BaseModel):
    transaction: Transaction
    # None means "use the rules stored for the transaction's user".
    rules: list[CategoryRule] | None = None
    threshold: float | None = None


class DetectTransfersRequest(BaseModel):
    transactions: list[Transaction]


class DetectTransfersResponse(BaseModel):
    transfer_ids: list[str]


class ReplaceRulesRequest(BaseModel):
    rules: list[CategoryRule]


class IngestRequest(BaseModel):
    transactions: list[Transaction]
    threshold: float | None = None


class ConfirmRequest(BaseModel):
    category: str
    category_type: str = ""


class ReprocessRequest(BaseModel):
    start_date: datetime | None = None
    end_date: datetime | None = None
    threshold: float | None = None


class TrainResponse(BaseModel):
    retrained: bool
    model_version: int | None = None
    training_label_count: int | None = None
