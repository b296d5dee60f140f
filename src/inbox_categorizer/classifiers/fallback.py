from inbox_categorizer.models import CategorizationResult, ClassificationSource, Transaction

from .base import Classifier


class FallbackClassifier(Classifier):
    """
    Suggests the user's most frequent category when no model is available.

    Confidence is always 0.0, so the suggestion is never auto-applied.
    """
    source = ClassificationSource.MODEL

    def __init__(self, category: str, category_type: str = ""):
        self.category = category
        self.category_type = category_type

    def classify(self, transaction: Transaction) -> CategorizationResult | None:
        return CategorizationResult(
            category=self.category,
            category_type=self.category_type,
            confidence=0.0,
            source=self.source,
        )
