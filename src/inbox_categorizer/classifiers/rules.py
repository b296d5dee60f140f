from inbox_categorizer.models import CategorizationResult, ClassificationSource, Transaction
from inbox_categorizer.rules.categoriser import Categoriser

from .base import Classifier


class RuleClassifier(Classifier):
    source = ClassificationSource.RULE

    def __init__(self, categoriser: Categoriser):
        self.categoriser = categoriser

    def classify(self, transaction: Transaction) -> CategorizationResult | None:
        match = self.categoriser.match(transaction)
        if match is None:
            return None
        return CategorizationResult(
            category=match.category,
            category_type=match.category_type,
            confidence=1.0,
            source=self.source,
            rule_id=match.rule_id,
        )
