import asyncio
from collections.abc import AsyncIterator, Iterable, Sequence
from datetime import datetime

from inbox_categorizer.domain.dates import DateRange
from inbox_categorizer.models import (
    ClassificationSource,
    CategoryRule,
    InboxState,
    Transaction,
    TransactionUpdate,
)

from .base import ModelRecord, ModelRepository, RuleRepository, TransactionRepository


class _UserLocks:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def __call__(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock


class InMemoryTransactionRepository(TransactionRepository):
    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Transaction]] = {}
        self._lock = _UserLocks()

    def _user_rows(self, user_id: str) -> dict[str, Transaction]:
        return self._rows.setdefault(user_id, {})

    async def iter_transactions(
        self,
        user_id: str,
        *,
        date_range: DateRange | None = None,
        confirmed: bool | None = None,
        page_size: int = 100,
    ) -> AsyncIterator[list[Transaction]]:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        selected = [
            tx for tx in self._user_rows(user_id).values()
            if (date_range is None or date_range.contains(tx.date))
            and (confirmed is None or tx.category_confirmed == confirmed)
        ]
        selected.sort(key=lambda tx: tx.date)
        for start in range(0, len(selected), page_size):
            yield [tx.model_copy() for tx in selected[start:start + page_size]]

    async def get(self, user_id: str, transaction_id: str) -> Transaction | None:
        row = self._user_rows(user_id).get(transaction_id)
        return row.model_copy() if row else None

    def _by_states(self, user_id: str, states: Iterable[InboxState]) -> list[Transaction]:
        wanted = set(states)
        return [tx for tx in self._user_rows(user_id).values() if tx.inbox_state in wanted]

    async def list_by_states(
        self, user_id: str, states: Iterable[InboxState], *, offset: int = 0, limit: int = 50
    ) -> list[Transaction]:
        rows = sorted(self._by_states(user_id, states), key=lambda tx: tx.date, reverse=True)
        return [tx.model_copy() for tx in rows[offset:offset + limit]]

    async def count_by_states(self, user_id: str, states: Iterable[InboxState]) -> int:
        return len(self._by_states(user_id, states))

    async def upsert_many(self, user_id: str, transactions: Sequence[Transaction]) -> int:
        async with self._lock(user_id):
            rows = self._user_rows(user_id)
            for tx in transactions:
                if tx.user_id != user_id:
                    raise ValueError(f"Transaction {tx.id} belongs to another user")
                rows[tx.id] = tx.model_copy()
            return len(transactions)

    async def apply_updates(self, user_id: str, updates: Sequence[TransactionUpdate]) -> int:
        async with self._lock(user_id):
            rows = self._user_rows(user_id)
            staged: dict[str, Transaction] = {}
            for update in updates:
                current = staged.get(update.id) or rows.get(update.id)
                if current is None:
                    continue
                changes: dict = {"is_transfer": update.is_transfer}
                if update.classification is not None and not current.category_confirmed:
                    changes.update(update.classification.model_dump())
                staged[update.id] = current.model_copy(update=changes)
            # Commit the whole chunk at once.
            rows.update(staged)
            return len(staged)

    async def confirm(
        self,
        user_id: str,
        transaction_id: str,
        category: str,
        category_type: str,
        confirmed_at: datetime,
    ) -> Transaction | None:
        async with self._lock(user_id):
            rows = self._user_rows(user_id)
            current = rows.get(transaction_id)
            if current is None:
                return None
            confirmed = current.model_copy(update={
                "category": category,
                "category_type": category_type,
                "category_confirmed": True,
                "confirmed_at": confirmed_at,
                "classification_source": ClassificationSource.USER,
                "inbox_state": InboxState.CLEARED,
                "suggested_category_id": None,
                "confidence": None,
            })
            rows[transaction_id] = confirmed
            return confirmed.model_copy()


class InMemoryRuleRepository(RuleRepository):
    def __init__(self) -> None:
        self._rules: dict[str, list[CategoryRule]] = {}

    async def list_rules(self, user_id: str) -> list[CategoryRule]:
        rules = self._rules.get(user_id, [])
        return sorted((rule.model_copy() for rule in rules), key=lambda rule: rule.priority)

    async def replace_rules(self, user_id: str, rules: Sequence[CategoryRule]) -> int:
        self._rules[user_id] = [rule.model_copy() for rule in rules]
        return len(rules)


class InMemoryModelRepository(ModelRepository):
    def __init__(self) -> None:
        self._records: dict[str, list[ModelRecord]] = {}

    async def latest(self, user_id: str) -> ModelRecord | None:
        records = self._records.get(user_id)
        if not records:
            return None
        return max(records, key=lambda record: record.updated_at)

    async def save(
        self,
        user_id: str,
        payload: bytes,
        training_label_count: int,
        updated_at: datetime,
    ) -> ModelRecord:
        records = self._records.setdefault(user_id, [])
        record = ModelRecord(
            user_id=user_id,
            payload=payload,
            training_label_count=training_label_count,
            updated_at=updated_at,
            version=len(records) + 1,
        )
        records.append(record)
        return record
