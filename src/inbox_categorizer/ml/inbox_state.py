"""
Inbox state for a transaction that the user has not confirmed yet.

Precedence, first applicable wins:
1. Rule match -> auto_classified (source=rule, confidence 1.0)
2. Model prediction >= threshold -> auto_classified (source=model)
3. Model prediction < threshold -> needs_review, category stays
   Uncategorised and the prediction is only stored as a suggestion
4. Nothing -> unclassified (source=none)

Confirmed transactions are ``cleared`` and never pass through here.
"""
from inbox_categorizer.models import (
    TRANSFER_CATEGORY,
    TRANSFER_CATEGORY_TYPE,
    UNCATEGORISED,
    ClassificationSource,
    InboxState,
    InboxStateResult,
    ModelPrediction,
    RuleMatch,
)


def compute_inbox_state(
    *,
    rule_match: RuleMatch | None,
    model_prediction: ModelPrediction | None,
    threshold: float,
) -> InboxStateResult:
    if rule_match is not None:
        return InboxStateResult(
            inbox_state=InboxState.AUTO_CLASSIFIED,
            category=rule_match.category,
            category_type=rule_match.category_type,
            classification_source=ClassificationSource.RULE,
            suggested_category_id=None,
            confidence=1.0,
        )

    if model_prediction is not None:
        if model_prediction.confidence >= threshold:
            return InboxStateResult(
                inbox_state=InboxState.AUTO_CLASSIFIED,
                category=model_prediction.category,
                category_type=model_prediction.category_type,
                classification_source=ClassificationSource.MODEL,
                suggested_category_id=None,
                confidence=model_prediction.confidence,
            )
        return InboxStateResult(
            inbox_state=InboxState.NEEDS_REVIEW,
            category=UNCATEGORISED,
            category_type="",
            classification_source=ClassificationSource.MODEL,
            suggested_category_id=model_prediction.category,
            confidence=model_prediction.confidence,
        )

    return InboxStateResult(
        inbox_state=InboxState.UNCLASSIFIED,
        category=UNCATEGORISED,
        category_type="",
        classification_source=ClassificationSource.NONE,
        suggested_category_id=None,
        confidence=None,
    )


def transfer_state() -> InboxStateResult:
    """Result for an unconfirmed transaction flagged as a transfer."""
    return InboxStateResult(
        inbox_state=InboxState.AUTO_CLASSIFIED,
        category=TRANSFER_CATEGORY,
        category_type=TRANSFER_CATEGORY_TYPE,
        classification_source=ClassificationSource.RULE,
        suggested_category_id=None,
        confidence=1.0,
    )
