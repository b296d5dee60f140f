from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from inbox_categorizer.api.dependencies import get_inbox, get_reclassifier
from inbox_categorizer.api.schemas import ConfirmRequest, IngestRequest, ReprocessRequest
from inbox_categorizer.domain.dates import DateRange
from inbox_categorizer.services.inbox import ConfirmOutcome, InboxPage, InboxService, InboxStats
from inbox_categorizer.services.reclassification import ReclassificationService

router = APIRouter(prefix="/api/users/{user_id}")


@router.post("/transactions")
async def ingest_transactions(
    user_id: str,
    req: IngestRequest,
    inbox: Annotated[InboxService, Depends(get_inbox)],
) -> dict[str, int | str]:
    try:
        stored = await inbox.ingest(user_id, req.transactions, threshold=req.threshold)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"status": "success", "stored": stored}


@router.get("/inbox", response_model=InboxPage)
async def list_inbox(
    user_id: str,
    inbox: Annotated[InboxService, Depends(get_inbox)],
    page: int = 1,
    per_page: int = 50,
) -> InboxPage:
    return await inbox.list_inbox(user_id, page=page, per_page=per_page)


@router.get("/inbox/stats", response_model=InboxStats)
async def inbox_stats(
    user_id: str,
    inbox: Annotated[InboxService, Depends(get_inbox)],
) -> InboxStats:
    return await inbox.stats(user_id)


@router.post("/inbox/{transaction_id}/confirm", response_model=ConfirmOutcome)
async def confirm_transaction(
    user_id: str,
    transaction_id: str,
    req: ConfirmRequest,
    inbox: Annotated[InboxService, Depends(get_inbox)],
) -> ConfirmOutcome:
    try:
        outcome = await inbox.confirm(user_id, transaction_id, req.category, req.category_type)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if outcome is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return outcome


@router.post("/inbox/reprocess")
async def reprocess_inbox(
    user_id: str,
    req: ReprocessRequest,
    inbox: Annotated[InboxService, Depends(get_inbox)],
    reclassifier: Annotated[ReclassificationService, Depends(get_reclassifier)],
) -> dict[str, int | str]:
    threshold = req.threshold if req.threshold is not None else inbox.service.threshold
    try:
        date_range = None
        if req.start_date or req.end_date:
            date_range = DateRange(start=req.start_date, end=req.end_date)
        reprocessed = await reclassifier.reclassify_all(user_id, threshold, date_range)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"status": "success", "reprocessed": reprocessed}
