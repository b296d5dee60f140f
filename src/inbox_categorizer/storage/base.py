"""
Persistence collaborators consumed by the classification core.

Implementations own storage and transactions; the core only reads records
and hands back update instructions.
"""
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from inbox_categorizer.domain.dates import DateRange
from inbox_categorizer.models import CategoryRule, InboxState, Transaction, TransactionUpdate


@dataclass(frozen=True)
class ModelRecord:
    user_id: str
    payload: bytes
    training_label_count: int
    updated_at: datetime
    version: int = 1


class TransactionRepository(ABC):
    @abstractmethod
    def iter_transactions(
        self,
        user_id: str,
        *,
        date_range: DateRange | None = None,
        confirmed: bool | None = None,
        page_size: int = 100,
    ) -> AsyncIterator[list[Transaction]]:
        """Yield the user's transactions in pages, ordered by date."""

    async def list_transactions(
        self,
        user_id: str,
        *,
        date_range: DateRange | None = None,
        confirmed: bool | None = None,
        page_size: int = 100,
    ) -> list[Transaction]:
        rows: list[Transaction] = []
        async for page in self.iter_transactions(
            user_id, date_range=date_range, confirmed=confirmed, page_size=page_size
        ):
            rows.extend(page)
        return rows

    @abstractmethod
    async def get(self, user_id: str, transaction_id: str) -> Transaction | None:
        pass

    @abstractmethod
    async def list_by_states(
        self, user_id: str, states: Iterable[InboxState], *, offset: int = 0, limit: int = 50
    ) -> list[Transaction]:
        """Newest first."""

    @abstractmethod
    async def count_by_states(self, user_id: str, states: Iterable[InboxState]) -> int:
        pass

    @abstractmethod
    async def upsert_many(self, user_id: str, transactions: Sequence[Transaction]) -> int:
        """Insert or replace rows in a single storage transaction."""

    @abstractmethod
    async def apply_updates(self, user_id: str, updates: Sequence[TransactionUpdate]) -> int:
        """
        Apply one chunk of updates in a single storage transaction.

        The classification part of an update is dropped for rows that are
        confirmed at write time; the transfer flag is always written.
        """

    @abstractmethod
    async def confirm(
        self,
        user_id: str,
        transaction_id: str,
        category: str,
        category_type: str,
        confirmed_at: datetime,
    ) -> Transaction | None:
        pass


class RuleRepository(ABC):
    @abstractmethod
    async def list_rules(self, user_id: str) -> list[CategoryRule]:
        """Ordered by priority, ascending."""

    @abstractmethod
    async def replace_rules(self, user_id: str, rules: Sequence[CategoryRule]) -> int:
        pass


class ModelRepository(ABC):
    @abstractmethod
    async def latest(self, user_id: str) -> ModelRecord | None:
        """Most recently updated model for the user."""

    @abstractmethod
    async def save(
        self,
        user_id: str,
        payload: bytes,
        training_label_count: int,
        updated_at: datetime,
    ) -> ModelRecord:
        pass
