import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from inbox_categorizer.api.dependencies import (
    get_reclassifier,
    get_rule_repository,
    get_service,
)
from inbox_categorizer.api.schemas import (
    ClassifyRequest,
    DetectTransfersRequest,
    DetectTransfersResponse,
    ReplaceRulesRequest,
)
from inbox_categorizer.logger import get_logger
from inbox_categorizer.manager import CategorizerService
from inbox_categorizer.ml.transfers import detect_transfer_ids
from inbox_categorizer.models import InboxStateResult
from inbox_categorizer.services.reclassification import ReclassificationService
from inbox_categorizer.storage.base import RuleRepository

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


@router.post("/classify", response_model=InboxStateResult)
async def classify_transaction(
    req: ClassifyRequest,
    service: Annotated[CategorizerService, Depends(get_service)],
    reclassifier: Annotated[ReclassificationService, Depends(get_reclassifier)],
    rules: Annotated[RuleRepository, Depends(get_rule_repository)],
) -> InboxStateResult:
    user_id = req.transaction.user_id
    rule_list = req.rules if req.rules is not None else await rules.list_rules(user_id)
    context = await reclassifier.load_prediction_context(user_id)
    try:
        return await asyncio.to_thread(
            service.classify,
            req.transaction,
            rule_list,
            context,
            threshold=req.threshold,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post("/transfers/detect", response_model=DetectTransfersResponse)
async def detect_transfers(req: DetectTransfersRequest) -> DetectTransfersResponse:
    transfer_ids = await asyncio.to_thread(detect_transfer_ids, req.transactions)
    return DetectTransfersResponse(transfer_ids=sorted(transfer_ids))


@router.put("/users/{user_id}/rules")
async def replace_rules(
    user_id: str,
    req: ReplaceRulesRequest,
    rules: Annotated[RuleRepository, Depends(get_rule_repository)],
) -> dict[str, int | str]:
    count = await rules.replace_rules(user_id, req.rules)
    logger.info("[RULES] Stored %s rules for user %s", count, user_id)
    return {"status": "success", "count": count}
