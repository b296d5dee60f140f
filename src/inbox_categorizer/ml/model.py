"""
Multinomial logistic regression (softmax classifier) over hashed features.

Training is full-batch gradient descent with L2 regularisation, starting
from zero weights, so a given set of examples and options always produces
the same model.
"""
import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from pydantic import BaseModel, ConfigDict, PositiveInt, ValidationError, model_validator

from inbox_categorizer.logger import get_logger
from inbox_categorizer.ml.features import FeatureVector
from inbox_categorizer.models import Prediction

logger = get_logger(__name__)

MODEL_FORMAT_VERSION = 1
LOG_EPSILON = 1e-10


class NoCategoriesError(ValueError):
    pass


class ModelDeserializationError(ValueError):
    pass


@dataclass(frozen=True)
class TrainingOptions:
    learning_rate: float = 0.01
    regularization: float = 0.01
    max_iterations: int = 100
    convergence_threshold: float = 1e-4
    # Off: every example counts once, whatever its recency weight.
    use_sample_weights: bool = False


@dataclass(frozen=True)
class TrainingExample:
    features: FeatureVector
    category: str
    weight: float = 1.0


@dataclass
class ModelWeights:
    feature_dim: int
    categories: list[str]
    weights: np.ndarray  # shape (len(categories), feature_dim)
    version: int = MODEL_FORMAT_VERSION

    def __post_init__(self) -> None:
        self.weights = np.asarray(self.weights, dtype=np.float64)
        if self.feature_dim <= 0:
            raise ValueError("feature_dim must be positive")
        if self.weights.ndim != 2 or self.weights.shape[0] != len(self.categories):
            raise ValueError("weights must have exactly one row per category")
        if self.weights.shape[1] != self.feature_dim:
            raise ValueError("weight rows must have feature_dim columns")


def softmax(logits: np.ndarray, axis: int = 0) -> np.ndarray:
    shifted = logits - np.max(logits, axis=axis, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=axis, keepdims=True)


def _stack_examples(
    examples: Sequence[TrainingExample], feature_dim: int
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Flatten sparse vectors into (row, column, value) arrays, dropping out-of-range indices."""
    rows: list[int] = []
    cols: list[int] = []
    vals: list[float] = []
    for row, example in enumerate(examples):
        for index, value in zip(example.features.indices, example.features.values):
            if 0 <= index < feature_dim:
                rows.append(row)
                cols.append(index)
                vals.append(value)
    return (
        np.asarray(rows, dtype=np.intp),
        np.asarray(cols, dtype=np.intp),
        np.asarray(vals, dtype=np.float64),
    )


def train(
    examples: Sequence[TrainingExample],
    feature_dim: int,
    options: TrainingOptions | None = None,
) -> ModelWeights:
    options = options or TrainingOptions()
    categories = list(dict.fromkeys(example.category for example in examples))
    if not categories:
        raise NoCategoriesError("No categories in training data")
    if len(categories) == 1:
        return ModelWeights(
            feature_dim=feature_dim,
            categories=categories,
            weights=np.zeros((1, feature_dim)),
        )

    num_examples = len(examples)
    num_categories = len(categories)
    category_index = {category: idx for idx, category in enumerate(categories)}
    targets = np.asarray([category_index[example.category] for example in examples], dtype=np.intp)
    rows, cols, vals = _stack_examples(examples, feature_dim)

    if options.use_sample_weights:
        sample_weights = np.asarray([max(0.0, example.weight) for example in examples], dtype=np.float64)
    else:
        sample_weights = np.ones(num_examples)
    total_weight = max(float(sample_weights.sum()), 1e-9)

    indicator = np.zeros((num_categories, num_examples))
    indicator[targets, np.arange(num_examples)] = 1.0
    weights = np.zeros((num_categories, feature_dim))

    prev_loss = math.inf
    iteration = 0
    for iteration in range(1, options.max_iterations + 1):
        active = weights[:, cols] * vals  # (categories, nnz)
        logits = np.vstack([
            np.bincount(rows, weights=active[c], minlength=num_examples)
            for c in range(num_categories)
        ])
        probs = softmax(logits, axis=0)

        target_probs = probs[targets, np.arange(num_examples)]
        loss = float(np.sum(sample_weights * -np.log(target_probs + LOG_EPSILON))) / total_weight
        loss += options.regularization / 2 * float(np.sum(weights * weights))

        if abs(prev_loss - loss) < options.convergence_threshold:
            break
        prev_loss = loss

        error = (probs - indicator) * sample_weights
        contributions = error[:, rows] * vals
        gradient = np.vstack([
            np.bincount(cols, weights=contributions[c], minlength=feature_dim)
            for c in range(num_categories)
        ])
        weights -= options.learning_rate * (gradient / total_weight + options.regularization * weights)

    logger.debug(
        "[TRAIN] %s examples, %s categories, stopped after %s iterations (loss %.6f)",
        num_examples,
        num_categories,
        iteration,
        prev_loss,
    )
    return ModelWeights(feature_dim=feature_dim, categories=categories, weights=weights)


def predict(model: ModelWeights, features: FeatureVector) -> Prediction:
    if not model.categories:
        raise NoCategoriesError("Model has no categories")
    if len(model.categories) == 1:
        category = model.categories[0]
        return Prediction(category=category, confidence=1.0, probabilities={category: 1.0})

    indices = np.asarray(features.indices, dtype=np.intp)
    values = np.asarray(features.values, dtype=np.float64)
    in_range = (indices >= 0) & (indices < model.feature_dim)
    logits = model.weights[:, indices[in_range]] @ values[in_range]
    probs = softmax(logits)

    # argmax keeps the first maximum, so ties go to the earlier category.
    best = int(np.argmax(probs))
    return Prediction(
        category=model.categories[best],
        confidence=float(probs[best]),
        probabilities={category: float(prob) for category, prob in zip(model.categories, probs)},
    )


class _SerializedModel(BaseModel):
    model_config = ConfigDict(strict=True)

    version: int = MODEL_FORMAT_VERSION
    feature_dim: PositiveInt
    categories: list[str]
    weights: list[list[float]]

    @model_validator(mode="after")
    def _check_shape(self) -> "_SerializedModel":
        if len(self.weights) != len(self.categories):
            raise ValueError("weights and categories must have the same length")
        for row in self.weights:
            if len(row) != self.feature_dim:
                raise ValueError("every weight row must have feature_dim entries")
        return self


def serialize_model(model: ModelWeights) -> bytes:
    payload = _SerializedModel(
        version=model.version,
        feature_dim=model.feature_dim,
        categories=list(model.categories),
        weights=model.weights.tolist(),
    )
    return payload.model_dump_json().encode("utf-8")


def deserialize_model(payload: bytes | str) -> ModelWeights:
    try:
        parsed = _SerializedModel.model_validate_json(payload)
    except ValidationError as exc:
        raise ModelDeserializationError(f"Invalid model payload: {exc}") from exc
    return ModelWeights(
        feature_dim=parsed.feature_dim,
        categories=parsed.categories,
        weights=np.asarray(parsed.weights, dtype=np.float64).reshape(len(parsed.categories), parsed.feature_dim),
        version=parsed.version,
    )
