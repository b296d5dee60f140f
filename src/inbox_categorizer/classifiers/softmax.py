from inbox_categorizer.ml.features import FeatureExtractor
from inbox_categorizer.ml.model import ModelWeights, predict
from inbox_categorizer.models import CategorizationResult, ClassificationSource, Transaction

from .base import Classifier


class SoftmaxClassifier(Classifier):
    source = ClassificationSource.MODEL

    def __init__(
        self,
        model: ModelWeights,
        extractor: FeatureExtractor,
        category_types: dict[str, str] | None = None,
    ):
        self.model = model
        self.extractor = extractor
        self.category_types = category_types or {}

    def classify(self, transaction: Transaction) -> CategorizationResult | None:
        if not self.model.categories:
            return None
        prediction = predict(self.model, self.extractor.extract(transaction))
        return CategorizationResult(
            category=prediction.category,
            # The model only knows labels; the type comes from the user's confirmations.
            category_type=self.category_types.get(prediction.category, ""),
            confidence=prediction.confidence,
            source=self.source,
            probabilities=prediction.probabilities,
        )
