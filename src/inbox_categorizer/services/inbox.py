import asyncio
import math
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from pydantic import BaseModel

from inbox_categorizer.domain.dates import DateRange, utcnow
from inbox_categorizer.logger import get_logger
from inbox_categorizer.manager import CategorizerService, PredictionContext
from inbox_categorizer.models import UNCATEGORISED, InboxState, Transaction
from inbox_categorizer.rules.categoriser import Categoriser
from inbox_categorizer.services.reclassification import ReclassificationService
from inbox_categorizer.storage.base import RuleRepository, TransactionRepository

logger = get_logger(__name__)

INBOX_STATES = (InboxState.NEEDS_REVIEW, InboxState.UNCLASSIFIED)
MAX_PER_PAGE = 100
STREAK_WINDOW_DAYS = 30
AUTO_CLASSIFIED_WINDOW_DAYS = 7

_USER_FIELDS = (
    "category",
    "category_type",
    "category_confirmed",
    "confirmed_at",
    "classification_source",
    "inbox_state",
    "suggested_category_id",
    "confidence",
)


class InboxPage(BaseModel):
    transactions: list[Transaction]
    page: int
    per_page: int
    total: int
    total_pages: int


class InboxStats(BaseModel):
    to_clear_count: int
    streak: int
    auto_classified_percent: int


class ConfirmOutcome(BaseModel):
    transaction: Transaction
    model_retrained: bool = False
    reclassified: int = 0
    warning: str | None = None


def confirmation_streak(confirmed_at: Sequence[datetime], now: datetime) -> int:
    """Consecutive UTC days, ending today, with at least one confirmation."""
    days = {moment.date() for moment in confirmed_at}
    streak = 0
    expected = now.date()
    while expected in days:
        streak += 1
        expected -= timedelta(days=1)
    return streak


class InboxService:
    def __init__(
        self,
        service: CategorizerService,
        reclassifier: ReclassificationService,
        transactions: TransactionRepository,
        rules: RuleRepository,
        *,
        chunk_size: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.service = service
        self.reclassifier = reclassifier
        self.transactions = transactions
        self.rules = rules
        self.chunk_size = chunk_size
        self.clock = clock

    async def _prepare(
        self,
        user_id: str,
        incoming: Sequence[Transaction],
        categoriser: Categoriser,
        context: PredictionContext,
        threshold: float | None,
    ) -> list[Transaction]:
        prepared: list[Transaction] = []
        for tx in incoming:
            if tx.user_id != user_id:
                raise ValueError(f"Transaction {tx.id} belongs to another user")
            is_transfer = categoriser.detect_transfer(tx)
            existing = await self.transactions.get(user_id, tx.id)
            if existing is not None and existing.category_confirmed:
                kept = {field: getattr(existing, field) for field in _USER_FIELDS}
                prepared.append(tx.model_copy(update={**kept, "is_transfer": is_transfer}))
                continue
            if tx.category_confirmed:
                prepared.append(tx.model_copy(update={"is_transfer": is_transfer}))
                continue

            result = self.service.classify(
                tx, categoriser, context, threshold=threshold, is_transfer=is_transfer
            )
            prepared.append(tx.model_copy(update={**result.model_dump(), "is_transfer": is_transfer}))
        return prepared

    async def ingest(
        self,
        user_id: str,
        incoming: Sequence[Transaction],
        threshold: float | None = None,
    ) -> int:
        """Classify freshly fetched transactions and store them."""
        if not incoming:
            return 0
        categoriser = self.service.build_categoriser(await self.rules.list_rules(user_id))
        context = await self.reclassifier.load_prediction_context(user_id)
        prepared = await self._prepare(user_id, incoming, categoriser, context, threshold)

        stored = 0
        for start in range(0, len(prepared), self.chunk_size):
            stored += await self.transactions.upsert_many(user_id, prepared[start:start + self.chunk_size])

        in_inbox = sum(1 for tx in prepared if tx.inbox_state in INBOX_STATES)
        logger.info("[INBOX] Ingested %s transactions for user %s (%s need attention)", stored, user_id, in_inbox)
        return stored

    async def list_inbox(self, user_id: str, page: int = 1, per_page: int = 50) -> InboxPage:
        page = max(1, page)
        per_page = min(max(1, per_page), MAX_PER_PAGE)
        rows, total = await asyncio.gather(
            self.transactions.list_by_states(
                user_id, INBOX_STATES, offset=(page - 1) * per_page, limit=per_page
            ),
            self.transactions.count_by_states(user_id, INBOX_STATES),
        )

        context: PredictionContext | None = None
        suggested: list[Transaction] = []
        for tx in rows:
            if tx.suggested_category_id:
                suggested.append(tx)
                continue
            if context is None:
                context = await self.reclassifier.load_prediction_context(user_id)
            suggestion = self.service.suggest(tx, context)
            if suggestion is not None:
                update = {"suggested_category_id": suggestion.category, "confidence": suggestion.confidence}
            else:
                update = {"suggested_category_id": UNCATEGORISED, "confidence": tx.confidence or 0.0}
            suggested.append(tx.model_copy(update=update))

        return InboxPage(
            transactions=suggested,
            page=page,
            per_page=per_page,
            total=total,
            total_pages=math.ceil(total / per_page),
        )

    async def confirm(
        self,
        user_id: str,
        transaction_id: str,
        category: str,
        category_type: str = "",
        threshold: float | None = None,
    ) -> ConfirmOutcome | None:
        if not category.strip():
            raise ValueError("category must not be empty")
        confirmed = await self.transactions.confirm(
            user_id,
            transaction_id,
            category=category.strip(),
            category_type=category_type,
            confirmed_at=self.clock(),
        )
        if confirmed is None:
            return None
        logger.info("[INBOX] Transaction %s confirmed as '%s'", transaction_id, confirmed.category)

        outcome = ConfirmOutcome(transaction=confirmed)
        try:
            result = await self.reclassifier.retrain_and_reclassify_if_needed(
                user_id, threshold if threshold is not None else self.service.threshold
            )
        except Exception:
            # The confirmation is already stored.
            logger.warning("[INBOX] Retrain after confirming %s failed.", transaction_id, exc_info=True)
            outcome.warning = "model_retrain_failed"
        else:
            outcome.model_retrained = result.retrained
            outcome.reclassified = result.reclassified
        return outcome

    async def stats(self, user_id: str) -> InboxStats:
        now = self.clock()
        to_clear = await self.transactions.count_by_states(user_id, INBOX_STATES)

        window_start = now - timedelta(days=STREAK_WINDOW_DAYS)
        confirmations: list[datetime] = []
        async for page in self.transactions.iter_transactions(user_id, confirmed=True):
            confirmations.extend(
                tx.confirmed_at for tx in page
                if tx.confirmed_at is not None and tx.confirmed_at >= window_start
            )

        recent = await self.transactions.list_transactions(
            user_id, date_range=DateRange(start=now - timedelta(days=AUTO_CLASSIFIED_WINDOW_DAYS))
        )
        auto = sum(1 for tx in recent if tx.inbox_state == InboxState.AUTO_CLASSIFIED)
        percent = round(auto / len(recent) * 100) if recent else 0

        return InboxStats(
            to_clear_count=to_clear,
            streak=confirmation_streak(confirmations, now),
            auto_classified_percent=percent,
        )
