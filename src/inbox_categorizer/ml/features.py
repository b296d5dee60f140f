"""
Hashed sparse features for transaction categorisation.

Every feature is a string name (``merchant:countdown``, ``weekday:fri``...)
hashed into a fixed dimension. Colliding names add their weights together.
"""
import math
from dataclasses import dataclass

from inbox_categorizer.domain.text import (
    account_key,
    canonical_merchant_key,
    reference_tokens,
    tokenize,
)
from inbox_categorizer.models import Transaction

FEATURE_DIM = 8192
HASH_SEED = 0x9747B28C
_HASH_MULTIPLIER = 2654435761
_MASK_32 = 0xFFFFFFFF

MAX_MERCHANT_TOKENS = 8
MAX_DESCRIPTION_TOKENS = 16
MAX_BIGRAMS = 10
MAX_CHAR_NGRAMS = 28
CHAR_NGRAM_SIZES = (3, 4, 5)
SIGNATURE_TOKENS = 4

WEIGHT_MERCHANT = 2.2
WEIGHT_ACCOUNT = 1.1
WEIGHT_MERCHANT_TOKEN = 1.3
WEIGHT_DESCRIPTION_TOKEN = 0.8
WEIGHT_BIGRAM = 0.55
WEIGHT_REFERENCE = 0.9
WEIGHT_CHAR_NGRAM = 0.35
WEIGHT_AMOUNT_BUCKET = 0.9
WEIGHT_DIRECTION_AMOUNT = 1.1
WEIGHT_ROUNDED_AMOUNT = 0.75
WEIGHT_DIRECTION = 0.6
WEIGHT_WEEKDAY = 0.35
WEIGHT_MONTH = 0.2
WEIGHT_SIGNATURE = 0.5
WEIGHT_DAY_BAND = 0.2
WEIGHT_LOG_AMOUNT = 0.45
WEIGHT_CENTS = 0.15

_AMOUNT_BANDS = (
    (5.0, "micro"),
    (20.0, "small"),
    (50.0, "moderate"),
    (100.0, "medium"),
    (250.0, "large"),
    (1000.0, "major"),
)
_WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


@dataclass(frozen=True)
class FeatureVector:
    indices: tuple[int, ...]  # sorted ascending, unique
    values: tuple[float, ...]


@dataclass(frozen=True)
class PredictionSignals:
    merchant_key: str
    merchant_tokens: tuple[str, ...]
    description_tokens: tuple[str, ...]
    account_key: str
    amount_bucket: str
    direction: str
    weekday: str
    month: str
    text_signature: str
    reference_tokens: tuple[str, ...]


def hash_string(value: str, seed: int = HASH_SEED) -> int:
    h = seed & _MASK_32
    for char in value:
        h = ((h ^ ord(char)) * _HASH_MULTIPLIER) & _MASK_32
    return (h ^ (h >> 16)) & _MASK_32


def hash_feature(name: str, dimension: int = FEATURE_DIM) -> int:
    return hash_string(name) % dimension


def amount_bucket(amount: float) -> str:
    value = abs(amount)
    for upper, name in _AMOUNT_BANDS:
        if value < upper:
            return name
    return "huge"


def rounded_amount_bucket(amount: float) -> str:
    value = abs(amount)
    if value < 20:
        step = 1
    elif value < 100:
        step = 5
    elif value < 1000:
        step = 10
    else:
        step = 50
    return f"{step}:{int(round(value / step)) * step}"


def log_amount_bucket(amount: float) -> str:
    magnitude = math.log10(max(abs(amount), 0.01))
    return f"{round(magnitude * 2) / 2:.1f}"


def cents_bucket(amount: float) -> str:
    return f"{int(round(abs(amount) * 100)) % 100:02d}"


def day_of_month_band(day: int) -> str:
    if day <= 10:
        return "start"
    if day <= 20:
        return "mid"
    return "end"


def direction(amount: float) -> str:
    return "out" if amount < 0 else "in"


def char_ngrams(text: str, limit: int = MAX_CHAR_NGRAMS) -> list[str]:
    grams: list[str] = []
    for size in CHAR_NGRAM_SIZES:
        for start in range(len(text) - size + 1):
            gram = text[start:start + size]
            if gram not in grams:
                grams.append(gram)
            if len(grams) >= limit:
                return grams
    return grams


def text_signature(tokens: list[str]) -> str:
    unique: list[str] = []
    for token in tokens:
        if token not in unique:
            unique.append(token)
        if len(unique) >= SIGNATURE_TOKENS:
            break
    if not unique:
        return "unknown"
    return "|".join(sorted(unique))


class FeatureExtractor:
    def __init__(self, dimension: int = FEATURE_DIM):
        if dimension <= 0:
            raise ValueError("Feature dimension must be positive")
        self.dimension = dimension

    def feature_dimension(self) -> int:
        return self.dimension

    def extract_signals(self, transaction: Transaction) -> PredictionSignals:
        merchant_source = transaction.merchant_name or transaction.description_raw
        merchant_tokens = tokenize(merchant_source)
        description_tokens = tokenize(transaction.description_raw)
        combined_text = f"{transaction.description_raw} {transaction.merchant_name}"

        return PredictionSignals(
            merchant_key=canonical_merchant_key(merchant_source),
            merchant_tokens=tuple(merchant_tokens),
            description_tokens=tuple(description_tokens),
            account_key=account_key(transaction.account_name),
            amount_bucket=amount_bucket(transaction.amount),
            direction=direction(transaction.amount),
            weekday=_WEEKDAYS[transaction.date.weekday()],
            month=f"{transaction.date.month:02d}",
            text_signature=text_signature(merchant_tokens + description_tokens),
            reference_tokens=tuple(reference_tokens(combined_text)),
        )

    def extract(self, transaction: Transaction) -> FeatureVector:
        signals = self.extract_signals(transaction)
        accumulated: dict[int, float] = {}

        def add(name: str, weight: float) -> None:
            index = hash_feature(name, self.dimension)
            accumulated[index] = accumulated.get(index, 0.0) + weight

        if signals.merchant_key:
            add(f"merchant:{signals.merchant_key}", WEIGHT_MERCHANT)
            for gram in char_ngrams(signals.merchant_key):
                add(f"ngram:{gram}", WEIGHT_CHAR_NGRAM)
        if signals.account_key:
            add(f"account:{signals.account_key}", WEIGHT_ACCOUNT)

        for token in signals.merchant_tokens[:MAX_MERCHANT_TOKENS]:
            add(f"merchant_token:{token}", WEIGHT_MERCHANT_TOKEN)

        description_tokens = signals.description_tokens
        for token in description_tokens[:MAX_DESCRIPTION_TOKENS]:
            add(f"token:{token}", WEIGHT_DESCRIPTION_TOKEN)
        bigrams = list(zip(description_tokens, description_tokens[1:]))[:MAX_BIGRAMS]
        for first, second in bigrams:
            add(f"bigram:{first}_{second}", WEIGHT_BIGRAM)

        for ref in signals.reference_tokens:
            add(f"ref:{ref}", WEIGHT_REFERENCE)

        amount = transaction.amount
        add(f"amount:{signals.amount_bucket}", WEIGHT_AMOUNT_BUCKET)
        add(f"direction_amount:{signals.direction}:{signals.amount_bucket}", WEIGHT_DIRECTION_AMOUNT)
        add(f"rounded:{rounded_amount_bucket(amount)}", WEIGHT_ROUNDED_AMOUNT)
        add(f"direction:{signals.direction}", WEIGHT_DIRECTION)
        add(f"weekday:{signals.weekday}", WEIGHT_WEEKDAY)
        add(f"month:{signals.month}", WEIGHT_MONTH)
        add(f"signature:{signals.text_signature}", WEIGHT_SIGNATURE)
        add(f"day_band:{day_of_month_band(transaction.date.day)}", WEIGHT_DAY_BAND)
        add(f"log_amount:{log_amount_bucket(amount)}", WEIGHT_LOG_AMOUNT)
        add(f"cents:{cents_bucket(amount)}", WEIGHT_CENTS)

        ordered = sorted(accumulated.items())
        return FeatureVector(
            indices=tuple(index for index, _ in ordered),
            values=tuple(value for _, value in ordered),
        )
