from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from inbox_categorizer.api.dependencies import get_reclassifier
from inbox_categorizer.api.schemas import TrainResponse
from inbox_categorizer.logger import get_logger
from inbox_categorizer.services.reclassification import (
    InsufficientLabelsError,
    ReclassificationService,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


@router.post("/users/{user_id}/train", response_model=TrainResponse)
async def train_model(
    user_id: str,
    reclassifier: Annotated[ReclassificationService, Depends(get_reclassifier)],
    force: bool = False,
) -> TrainResponse:
    if force:
        try:
            record = await reclassifier.train_model_for_user(user_id)
        except InsufficientLabelsError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return TrainResponse(
            retrained=True,
            model_version=record.version,
            training_label_count=record.training_label_count,
        )

    retrained = await reclassifier.retrain_if_needed(user_id)
    if not retrained:
        logger.info("[TRAIN] Model for user %s is up to date.", user_id)
        return TrainResponse(retrained=False)
    record = await reclassifier.models.latest(user_id)
    return TrainResponse(
        retrained=True,
        model_version=record.version if record else None,
        training_label_count=record.training_label_count if record else None,
    )
