from collections.abc import Sequence
from dataclasses import dataclass, field

from inbox_categorizer.classifiers.base import Classifier
from inbox_categorizer.classifiers.fallback import FallbackClassifier
from inbox_categorizer.classifiers.rules import RuleClassifier
from inbox_categorizer.classifiers.softmax import SoftmaxClassifier
from inbox_categorizer.logger import get_logger
from inbox_categorizer.ml.features import FeatureExtractor
from inbox_categorizer.ml.inbox_state import compute_inbox_state, transfer_state
from inbox_categorizer.ml.model import ModelWeights
from inbox_categorizer.models import (
    UNCATEGORISED,
    CategorizationResult,
    CategoryRule,
    ClassificationSource,
    InboxStateResult,
    ModelPrediction,
    RuleMatch,
    Transaction,
)
from inbox_categorizer.rules.categoriser import DEFAULT_MAX_PATTERN_LENGTH, Categoriser

logger = get_logger(__name__)

DEFAULT_AUTO_APPROVE_THRESHOLD = 0.85


@dataclass(frozen=True)
class PredictionContext:
    """Everything a classification pass needs to know about the user's model."""
    model: ModelWeights | None = None
    fallback_category: str | None = None
    category_types: dict[str, str] = field(default_factory=dict)


def validate_threshold(threshold: float) -> float:
    if not 0.0 < threshold <= 1.0:
        raise ValueError(f"Auto-apply threshold must be in (0, 1], got {threshold}")
    return threshold


class CategorizerService:
    def __init__(
        self,
        extractor: FeatureExtractor | None = None,
        threshold: float = DEFAULT_AUTO_APPROVE_THRESHOLD,
        max_pattern_length: int = DEFAULT_MAX_PATTERN_LENGTH,
    ):
        self.extractor = extractor or FeatureExtractor()
        self.threshold = validate_threshold(threshold)
        self.max_pattern_length = max_pattern_length

    def build_categoriser(self, rules: Sequence[CategoryRule]) -> Categoriser:
        categoriser = Categoriser.build(rules, max_pattern_length=self.max_pattern_length)
        logger.debug("[RULES] Compiled %s of %s rules", len(categoriser.rules), len(rules))
        return categoriser

    def classifiers_for(self, categoriser: Categoriser, context: PredictionContext) -> list[Classifier]:
        # 1. User rules (highest priority)
        classifiers: list[Classifier] = [RuleClassifier(categoriser)]

        # 2. Trained model, or 3. the frequency fallback when there is none
        if context.model is not None:
            classifiers.append(SoftmaxClassifier(context.model, self.extractor, context.category_types))
        elif context.fallback_category and context.fallback_category != UNCATEGORISED:
            classifiers.append(FallbackClassifier(
                context.fallback_category,
                context.category_types.get(context.fallback_category, ""),
            ))
        return classifiers

    def categorize(
        self, transaction: Transaction, classifiers: Sequence[Classifier]
    ) -> CategorizationResult | None:
        for classifier in classifiers:
            classifier_name = classifier.__class__.__name__
            result = classifier.classify(transaction)

            if result:
                logger.debug(
                    f"{classifier_name} returned: '{result.category}' "
                    f"(confidence: {result.confidence:.2f}) for {transaction.id}"
                )
                return result

        logger.debug(f"No classifier matched for: '{transaction.description_raw[:50]}'")
        return None

    def classify(
        self,
        transaction: Transaction,
        rules: Categoriser | Sequence[CategoryRule],
        context: PredictionContext,
        *,
        threshold: float | None = None,
        is_transfer: bool = False,
    ) -> InboxStateResult:
        """
        Categorization decision for one unconfirmed transaction.

        A transfer verdict overrides everything else.
        """
        if is_transfer:
            return transfer_state()

        threshold_value = self.threshold if threshold is None else validate_threshold(threshold)
        categoriser = rules if isinstance(rules, Categoriser) else self.build_categoriser(rules)
        result = self.categorize(transaction, self.classifiers_for(categoriser, context))

        rule_match: RuleMatch | None = None
        model_prediction: ModelPrediction | None = None
        if result is not None and result.source == ClassificationSource.RULE:
            rule_match = RuleMatch(
                category=result.category,
                category_type=result.category_type,
                rule_id=result.rule_id,
            )
        elif result is not None:
            model_prediction = ModelPrediction(
                category=result.category,
                category_type=result.category_type,
                confidence=result.confidence,
            )

        return compute_inbox_state(
            rule_match=rule_match,
            model_prediction=model_prediction,
            threshold=threshold_value,
        )

    def suggest(
        self, transaction: Transaction, context: PredictionContext
    ) -> CategorizationResult | None:
        """Model (or fallback) opinion only, ignoring rules."""
        return self.categorize(transaction, self.classifiers_for(Categoriser([]), context))
