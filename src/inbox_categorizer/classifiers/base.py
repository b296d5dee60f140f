from abc import ABC, abstractmethod

from inbox_categorizer.models import CategorizationResult, ClassificationSource, Transaction


class Classifier(ABC):
    source: ClassificationSource

    @abstractmethod
    def classify(self, transaction: Transaction) -> CategorizationResult | None:
        """Attempt to categorize the transaction."""
        pass
