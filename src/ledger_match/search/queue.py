"""Persistent queue of precision search jobs."""

from collections import deque
from datetime import datetime
from typing import Callable, Optional
import logging

from ..config import SearchConfig
from ..models.base import utcnow
from ..models.search import (
    QueueStatus,
    SearchQueueItem,
    SearchScope,
    SearchStrategyName,
    TriggeredBy,
)
from ..store import repository
from ..store.base import SEARCH_QUEUE, TRANSACTIONS, DocumentStore
from ..utils.exceptions import SearchQueueError, ValidationError

logger = logging.getLogger(__name__)


class SearchQueue:
    """
    Queue items stored in the document store.

    Claiming flips an item to ``processing`` before any work starts, so a
    second worker never picks up the same item. Items that are not driven
    by the scheduler are also pushed onto an in-process ready list when
    created or requeued, which lets a worker continue them right away.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[SearchConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or SearchConfig()
        self._clock = clock
        self._ready: deque[str] = deque()

    def enqueue(
        self,
        user_id: str,
        scope: SearchScope,
        transaction_id: Optional[str] = None,
        triggered_by: TriggeredBy = TriggeredBy.MANUAL,
        strategies: Optional[list[SearchStrategyName]] = None,
    ) -> SearchQueueItem:
        """
        Create a pending queue item.

        Args:
            user_id: Owner of the transactions
            scope: One transaction or all incomplete ones
            transaction_id: Required for single-transaction scope
            triggered_by: What requested the search
            strategies: Strategies to run; defaults to the configured list

        Returns:
            The stored queue item

        Raises:
            ValidationError: If a single-transaction item has no transaction id
        """
        scope = SearchScope(scope)
        if scope == SearchScope.SINGLE_TRANSACTION:
            if not transaction_id:
                raise ValidationError("transaction_id is required for single_transaction scope")
            to_process = 1
        else:
            to_process = len(
                self.store.query(
                    TRANSACTIONS, [("user_id", "==", user_id), ("is_complete", "==", False)]
                )
            )

        names = strategies if strategies is not None else self.config.strategies
        item = SearchQueueItem(
            user_id=user_id,
            scope=scope,
            transaction_id=transaction_id,
            triggered_by=triggered_by,
            strategies=[SearchStrategyName(n) for n in names],
            transactions_to_process=to_process,
            max_retries=self.config.max_retries,
            created_at=self._clock(),
        )
        repository.save(self.store, SEARCH_QUEUE, item)
        logger.info(
            f"Queued search {item.id} ({scope.value}, {to_process} transactions) for user {user_id}"
        )

        if item.triggered_by != TriggeredBy.SCHEDULED:
            self._ready.append(item.id)
        return item

    def get(self, item_id: str) -> SearchQueueItem:
        item = repository.load(self.store, SEARCH_QUEUE, SearchQueueItem, item_id)
        if item is None:
            raise SearchQueueError(f"Queue item not found: {item_id}")
        return item

    def claim(self, item_id: str) -> Optional[SearchQueueItem]:
        """Mark a pending item as processing; None if it is not pending."""
        item = repository.load(self.store, SEARCH_QUEUE, SearchQueueItem, item_id)
        if item is None or item.status != QueueStatus.PENDING:
            return None

        now = self._clock()
        item.status = QueueStatus.PROCESSING
        item.started_at = item.started_at or now
        item.updated_at = now
        self.store.update(
            SEARCH_QUEUE, item.id, repository.dump_fields(item, "status", "started_at", "updated_at")
        )
        return item

    def claim_next(self) -> Optional[SearchQueueItem]:
        """Claim the oldest pending item."""
        pending = self.store.query(
            SEARCH_QUEUE, [("status", "==", QueueStatus.PENDING.value)], order_by="created_at", limit=1
        )
        if not pending:
            return None
        return self.claim(pending[0]["id"])

    def pop_ready(self) -> Optional[str]:
        return self._ready.popleft() if self._ready else None

    def pending_count(self) -> int:
        return len(self.store.query(SEARCH_QUEUE, [("status", "==", QueueStatus.PENDING.value)]))

    def save_progress(self, item: SearchQueueItem) -> None:
        item.updated_at = self._clock()
        repository.save(self.store, SEARCH_QUEUE, item)

    def requeue(
        self, item: SearchQueueItem, error: Optional[str] = None, is_retry: bool = False
    ) -> SearchQueueItem:
        """
        Put an item back to pending, keeping its progress and id.

        Args:
            item: Item with up-to-date progress
            error: Error that caused a retry
            is_retry: Whether this consumes one retry

        Returns:
            The requeued item
        """
        item.status = QueueStatus.PENDING
        if is_retry:
            item.retry_count += 1
            item.last_error = error
        self.save_progress(item)

        if item.triggered_by != TriggeredBy.SCHEDULED:
            self._ready.append(item.id)
        logger.info(
            f"Requeued search {item.id} at {item.transactions_processed}/"
            f"{item.transactions_to_process}" + (f" (retry {item.retry_count})" if is_retry else "")
        )
        return item

    def complete(self, item: SearchQueueItem) -> SearchQueueItem:
        item.status = QueueStatus.COMPLETED
        item.completed_at = self._clock()
        self.save_progress(item)
        logger.info(
            f"Completed search {item.id}: {item.transactions_processed} processed, "
            f"{item.transactions_with_matches} with matches, {item.total_files_connected} files"
        )
        return item

    def fail(self, item: SearchQueueItem, error: str) -> SearchQueueItem:
        item.status = QueueStatus.FAILED
        item.last_error = error
        item.completed_at = self._clock()
        self.save_progress(item)
        logger.error(f"Search {item.id} failed after {item.retry_count} retries: {error}")
        return item
