import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from time import perf_counter

from inbox_categorizer.domain.dates import DateRange, format_duration, utcnow
from inbox_categorizer.domain.labels import (
    category_types,
    is_eligible_history,
    is_training_label,
    most_frequent_category,
    recency_weight,
)
from inbox_categorizer.logger import get_logger
from inbox_categorizer.manager import CategorizerService, PredictionContext, validate_threshold
from inbox_categorizer.ml.model import (
    ModelWeights,
    TrainingExample,
    TrainingOptions,
    deserialize_model,
    serialize_model,
    train,
)
from inbox_categorizer.ml.transfers import MAX_PAIR_DAYS, detect_transfer_ids
from inbox_categorizer.models import (
    UNCATEGORISED,
    InboxStateResult,
    Transaction,
    TransactionUpdate,
)
from inbox_categorizer.rules.categoriser import Categoriser
from inbox_categorizer.storage.base import ModelRecord, ModelRepository, RuleRepository, TransactionRepository

logger = get_logger(__name__)

MIN_LABELS_TO_TRAIN = 1
CONFIDENCE_TOLERANCE = 1e-6
DEFAULT_CHUNK_SIZE = 100
DEFAULT_PAGE_SIZE = 500
DEFAULT_STALE_AFTER = timedelta(hours=24)


class InsufficientLabelsError(ValueError):
    pass


@dataclass(frozen=True)
class ReclassifyOutcome:
    retrained: bool
    reclassified: int


def _confidence_changed(current: float | None, new: float | None) -> bool:
    if current is None or new is None:
        return current is not new
    return abs(current - new) > CONFIDENCE_TOLERANCE


def classification_changed(transaction: Transaction, result: InboxStateResult) -> bool:
    return (
        transaction.inbox_state != result.inbox_state
        or transaction.category != result.category
        or transaction.category_type != result.category_type
        or transaction.classification_source != result.classification_source
        or transaction.suggested_category_id != result.suggested_category_id
        or _confidence_changed(transaction.confidence, result.confidence)
    )


def _chunks(items: Sequence[TransactionUpdate], size: int) -> list[Sequence[TransactionUpdate]]:
    return [items[start:start + size] for start in range(0, len(items), size)]


class ReclassificationService:
    """
    Decides when a user's model is retrained and re-scores stored
    transactions against the latest rules, model and transfer pairs.

    Writes for one user are serialised; each chunk of updates commits on
    its own, so an interrupted pass leaves earlier chunks in place and the
    next pass picks up the rest.
    """

    def __init__(
        self,
        service: CategorizerService,
        transactions: TransactionRepository,
        rules: RuleRepository,
        models: ModelRepository,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        page_size: int = DEFAULT_PAGE_SIZE,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        training_options: TrainingOptions | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if chunk_size < 1 or page_size < 1:
            raise ValueError("chunk_size and page_size must be at least 1")
        self.service = service
        self.transactions = transactions
        self.rules = rules
        self.models = models
        self.chunk_size = chunk_size
        self.page_size = page_size
        self.stale_after = stale_after
        self.training_options = training_options or TrainingOptions()
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def should_retrain(self, user_id: str) -> bool:
        latest = await self.models.latest(user_id)
        now = self.clock()
        eligible = 0
        async for page in self.transactions.iter_transactions(
            user_id, confirmed=True, page_size=self.page_size
        ):
            for tx in page:
                if not is_training_label(tx):
                    continue
                eligible += 1
                if latest is None:
                    return True
                if tx.confirmed_at is not None and tx.confirmed_at > latest.updated_at:
                    return True

        if eligible < MIN_LABELS_TO_TRAIN or latest is None:
            return False
        return now - latest.updated_at > self.stale_after

    async def _collect_examples(self, user_id: str, now: datetime) -> list[TrainingExample]:
        extractor = self.service.extractor
        examples: list[TrainingExample] = []
        async for page in self.transactions.iter_transactions(
            user_id, confirmed=True, page_size=self.page_size
        ):
            for tx in page:
                if not is_training_label(tx):
                    continue
                examples.append(TrainingExample(
                    features=extractor.extract(tx),
                    category=tx.category,
                    weight=recency_weight(tx.confirmed_at, now),
                ))
        return examples

    async def _train_unlocked(self, user_id: str) -> ModelRecord:
        # Stamped with the start time so labels confirmed mid-training trigger the next run.
        started_at = self.clock()
        examples = await self._collect_examples(user_id, started_at)
        if len(examples) < MIN_LABELS_TO_TRAIN:
            raise InsufficientLabelsError(
                f"Not enough labeled transactions. Need at least {MIN_LABELS_TO_TRAIN}, have {len(examples)}"
            )

        logger.info("[TRAIN] Training model for user %s on %s labels...", user_id, len(examples))
        start = perf_counter()
        model = await asyncio.to_thread(
            train,
            examples,
            self.service.extractor.feature_dimension(),
            self.training_options,
        )
        record = await self.models.save(
            user_id,
            serialize_model(model),
            training_label_count=len(examples),
            updated_at=started_at,
        )
        logger.info(
            "[TRAIN] Model v%s for user %s: %s categories, took %s",
            record.version,
            user_id,
            len(model.categories),
            format_duration(perf_counter() - start),
        )
        return record

    async def train_model_for_user(self, user_id: str) -> ModelRecord:
        async with self._lock(user_id):
            return await self._train_unlocked(user_id)

    async def retrain_if_needed(self, user_id: str) -> bool:
        async with self._lock(user_id):
            if not await self.should_retrain(user_id):
                return False
            await self._train_unlocked(user_id)
            return True

    async def load_model(self, user_id: str) -> ModelWeights | None:
        record = await self.models.latest(user_id)
        if record is None:
            try:
                if await self.retrain_if_needed(user_id):
                    record = await self.models.latest(user_id)
            except Exception:
                # Read path: fall back to frequency suggestions.
                logger.warning(
                    "[TRAIN] Training failed for user %s; using fallback suggestions.",
                    user_id,
                    exc_info=True,
                )
        if record is None:
            return None
        return deserialize_model(record.payload)

    async def load_prediction_context(self, user_id: str) -> PredictionContext:
        model = await self.load_model(user_id)

        labels: list[Transaction] = []
        history: list[str] = []
        async for page in self.transactions.iter_transactions(user_id, page_size=self.page_size):
            for tx in page:
                if is_training_label(tx):
                    labels.append(tx)
                if is_eligible_history(tx):
                    history.append(tx.category)

        fallback = None
        if model is None:
            fallback = (
                most_frequent_category(tx.category for tx in labels)
                or most_frequent_category(history)
                or UNCATEGORISED
            )
        return PredictionContext(
            model=model,
            fallback_category=fallback,
            category_types=category_types(labels),
        )

    def plan_updates(
        self,
        transactions: Sequence[Transaction],
        transfer_ids: set[str],
        categoriser: Categoriser,
        context: PredictionContext,
        threshold: float,
    ) -> list[TransactionUpdate]:
        updates: list[TransactionUpdate] = []
        for tx in transactions:
            is_transfer = tx.id in transfer_ids
            if tx.category_confirmed:
                # Category fields belong to the user now.
                if tx.is_transfer != is_transfer:
                    updates.append(TransactionUpdate(id=tx.id, is_transfer=is_transfer))
                continue

            result = self.service.classify(
                tx,
                categoriser,
                context,
                threshold=threshold,
                is_transfer=is_transfer,
            )
            if tx.is_transfer != is_transfer or classification_changed(tx, result):
                updates.append(TransactionUpdate(id=tx.id, is_transfer=is_transfer, classification=result))
        return updates

    async def reclassify_all(
        self,
        user_id: str,
        threshold: float,
        date_range: DateRange | None = None,
    ) -> int:
        threshold = validate_threshold(threshold)
        categoriser = self.service.build_categoriser(await self.rules.list_rules(user_id))
        context = await self.load_prediction_context(user_id)

        # Widen the scan so pairs straddling the range boundary are still found.
        scan_range = None
        if date_range is not None:
            margin = timedelta(days=MAX_PAIR_DAYS)
            scan_range = DateRange(
                start=date_range.start - margin if date_range.start else None,
                end=date_range.end + margin if date_range.end else None,
            )

        async with self._lock(user_id):
            start = perf_counter()
            scanned = await self.transactions.list_transactions(
                user_id, date_range=scan_range, page_size=self.page_size
            )
            transfer_ids = detect_transfer_ids(scanned)
            in_range = [tx for tx in scanned if date_range is None or date_range.contains(tx.date)]

            updates = await asyncio.to_thread(
                self.plan_updates, in_range, transfer_ids, categoriser, context, threshold
            )
            written = 0
            for chunk in _chunks(updates, self.chunk_size):
                written += await self.transactions.apply_updates(user_id, chunk)

        logger.info(
            "[RECLASSIFY] User %s: %s transactions checked, %s transfers, %s updated in %s",
            user_id,
            len(in_range),
            len(transfer_ids),
            written,
            format_duration(perf_counter() - start),
        )
        return written

    async def retrain_and_reclassify_if_needed(self, user_id: str, threshold: float) -> ReclassifyOutcome:
        retrained = await self.retrain_if_needed(user_id)
        if not retrained:
            return ReclassifyOutcome(retrained=False, reclassified=0)
        reclassified = await self.reclassify_all(user_id, threshold)
        return ReclassifyOutcome(retrained=True, reclassified=reclassified)
