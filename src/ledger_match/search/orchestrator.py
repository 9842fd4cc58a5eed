"""
Processing of precision search queue items.

A queue item is worked through in batches of incomplete transactions,
newest first. Each invocation stops before the time budget runs out and
requeues the item with its cursor, so large searches resume across
invocations; unexpected errors are retried a limited number of times.
"""

from datetime import datetime
from typing import Callable, Optional
import logging
import time

from ..config import MatchConfig
from ..integrations.pool import ClientFactory, MailboxPool, gmail_client_factory
from ..matching.attachment_scorer import AttachmentScorer
from ..models.base import utcnow
from ..models.partner import Partner
from ..models.search import (
    SearchAttempt,
    SearchEntry,
    SearchEntryStatus,
    SearchQueueItem,
    SearchScope,
)
from ..models.transaction import Transaction
from ..store import repository
from ..store.base import PARTNERS, TRANSACTION_SEARCHES, TRANSACTIONS, DocumentStore
from ..store.blobs import BlobStore, MemoryBlobStore
from ..utils.exceptions import DocumentNotFoundError, SearchQueueError
from .collaborators import (
    HtmlRenderer,
    HtmlSnapshotRenderer,
    InvoiceAnalyzer,
    KeywordInvoiceAnalyzer,
)
from .files import FileRegistry
from .queries import QueryGenerator
from .queue import SearchQueue
from .strategies import (
    MAILBOX_STRATEGIES,
    SearchContext,
    SearchServices,
    StrategyDescriptor,
    build_pipeline,
)

logger = logging.getLogger(__name__)


class SearchQueueProcessor:
    """Runs queued searches through the strategy pipeline."""

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[MatchConfig] = None,
        queue: Optional[SearchQueue] = None,
        blobs: Optional[BlobStore] = None,
        client_factory: Optional[ClientFactory] = None,
        query_generator: Optional[QueryGenerator] = None,
        analyzer: Optional[InvoiceAnalyzer] = None,
        renderer: Optional[HtmlRenderer] = None,
        timer: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the processor.

        Args:
            store: Document store
            config: Matching and search configuration
            queue: Queue to work on; created over ``store`` if omitted
            blobs: Storage for downloaded files
            client_factory: Builds mailbox clients from stored credentials;
                defaults to Gmail clients using the mailbox settings
            query_generator: Search query generator
            analyzer: Mail-body invoice analyzer
            renderer: Mail-body renderer
            timer: Monotonic seconds, used for the time budget
            clock: Wall clock for timestamps
        """
        self.store = store
        self.config = config or MatchConfig()
        self.queue = queue or SearchQueue(store, self.config.search, clock)
        self.client_factory = client_factory or gmail_client_factory(self.config.mailbox)
        self._timer = timer
        self._clock = clock

        self.services = SearchServices(
            store=store,
            files=FileRegistry(store, blobs or MemoryBlobStore(), clock),
            scorer=AttachmentScorer(self.config.attachments),
            queries=query_generator or QueryGenerator(self.config.search.max_generated_queries),
            analyzer=analyzer or KeywordInvoiceAnalyzer(),
            renderer=renderer or HtmlSnapshotRenderer(),
            config=self.config,
            clock=clock,
        )

    def run_scheduled(self) -> Optional[SearchQueueItem]:
        """Process the oldest pending item, if any."""
        item = self.queue.claim_next()
        if item is None:
            logger.debug("No pending search queue items")
            return None
        return self.process(item)

    def run_ready(self) -> list[SearchQueueItem]:
        """Process items pushed onto the ready list until it is empty."""
        processed = []
        while True:
            item_id = self.queue.pop_ready()
            if item_id is None:
                return processed
            item = self.queue.claim(item_id)
            if item is not None:
                processed.append(self.process(item))

    def drain(self, max_jobs: Optional[int] = None) -> list[SearchQueueItem]:
        """
        Process queue items until none are pending.

        Args:
            max_jobs: Stop after this many invocations

        Returns:
            Each processed item, in processing order
        """
        processed: list[SearchQueueItem] = []
        while max_jobs is None or len(processed) < max_jobs:
            item_id = self.queue.pop_ready()
            item = self.queue.claim(item_id) if item_id else self.queue.claim_next()
            if item is None:
                if item_id:
                    continue
                break
            processed.append(self.process(item))
        return processed

    def process(self, item: SearchQueueItem) -> SearchQueueItem:
        """
        Run one invocation of a claimed queue item.

        Returns:
            The item in its new state: pending (checkpointed or retrying),
            completed or failed
        """
        started = self._timer()
        logger.info(
            f"Processing search {item.id} ({item.scope.value}), "
            f"{item.transactions_processed}/{item.transactions_to_process} done"
        )

        try:
            with MailboxPool(
                self.store,
                self.client_factory,
                self.config.search.max_mailbox_accounts,
                self._clock,
            ) as pool:
                pipeline = build_pipeline(self.services, item.strategies)
                if item.scope == SearchScope.SINGLE_TRANSACTION:
                    return self._process_single(item, pipeline, pool)
                return self._process_batch(item, pipeline, pool, started)
        except Exception as e:
            logger.error(f"Search {item.id} failed: {e}")
            if item.retry_count < item.max_retries:
                return self.queue.requeue(item, str(e), is_retry=True)
            return self.queue.fail(item, str(e))

    def _process_single(
        self, item: SearchQueueItem, pipeline: list[StrategyDescriptor], pool: MailboxPool
    ) -> SearchQueueItem:
        transaction = repository.load(self.store, TRANSACTIONS, Transaction, item.transaction_id)
        if transaction is None:
            raise SearchQueueError(f"Transaction not found: {item.transaction_id}")

        if not transaction.is_complete:
            self._search_transaction(item, transaction, pipeline, pool)
        return self.queue.complete(item)

    def _process_batch(
        self,
        item: SearchQueueItem,
        pipeline: list[StrategyDescriptor],
        pool: MailboxPool,
        started: float,
    ) -> SearchQueueItem:
        batch_size = self.config.search.transactions_per_batch
        transactions = self._next_batch(item, batch_size)
        if not transactions:
            return self.queue.complete(item)

        for transaction in transactions:
            if self._timer() - started >= self.config.search.processing_timeout_seconds:
                logger.info(f"Time budget reached for search {item.id}, checkpointing")
                return self.queue.requeue(item)
            self._search_transaction(item, transaction, pipeline, pool)
            self.queue.save_progress(item)

        if len(transactions) < batch_size or item.remaining == 0:
            return self.queue.complete(item)
        return self.queue.requeue(item)

    def _next_batch(self, item: SearchQueueItem, batch_size: int) -> list[Transaction]:
        filters = [("user_id", "==", item.user_id), ("is_complete", "==", False)]
        try:
            return repository.query_models(
                self.store,
                TRANSACTIONS,
                Transaction,
                filters,
                order_by="date",
                descending=True,
                limit=batch_size,
                start_after=item.last_processed_transaction_id,
            )
        except DocumentNotFoundError:
            logger.warning(
                f"Cursor transaction {item.last_processed_transaction_id} is gone, "
                f"restarting search {item.id} from the newest transaction"
            )
            return repository.query_models(
                self.store,
                TRANSACTIONS,
                Transaction,
                filters,
                order_by="date",
                descending=True,
                limit=batch_size,
            )

    def _search_transaction(
        self,
        item: SearchQueueItem,
        transaction: Transaction,
        pipeline: list[StrategyDescriptor],
        pool: MailboxPool,
    ) -> None:
        context: Optional[SearchContext] = None
        entry: Optional[SearchEntry] = None

        try:
            context = SearchContext(
                transaction=transaction,
                partner=self._load_partner(transaction),
                queue_item=item,
                mailboxes=pool,
                great_match_count=self._prior_great_matches(transaction),
                great_match_limit=self.config.attachments.great_match_count,
            )
            entry = self._entry_for(item, transaction)

            for descriptor in pipeline:
                attempt = descriptor.strategy.execute(context)
                self._log_attempt(entry, attempt)
                if attempt.error:
                    item.errors.append(f"{transaction.id}/{descriptor.name.value}: {attempt.error}")
                if descriptor.stop_when(attempt, context):
                    logger.info(
                        f"Strong match for {transaction.id} from {descriptor.name.value}, "
                        "skipping remaining strategies"
                    )
                    break
        except Exception as e:
            logger.error(f"Search for transaction {transaction.id} failed: {e}")
            item.errors.append(f"{transaction.id}: {e}")

        if entry is not None:
            entry.status = SearchEntryStatus.COMPLETED
            entry.completed_at = self._clock()
            repository.save(self.store, TRANSACTION_SEARCHES, entry)

        connected = len(context.file_ids_connected) if context is not None else 0
        item.transactions_processed += 1
        item.total_files_connected += connected
        if connected:
            item.transactions_with_matches += 1
        item.last_processed_transaction_id = transaction.id

    def _load_partner(self, transaction: Transaction) -> Optional[Partner]:
        return repository.load(self.store, PARTNERS, Partner, transaction.partner_id)

    def _prior_great_matches(self, transaction: Transaction) -> int:
        entries = repository.query_models(
            self.store,
            TRANSACTION_SEARCHES,
            SearchEntry,
            [("user_id", "==", transaction.user_id), ("transaction_id", "==", transaction.id)],
        )
        return sum(
            attempt.great_match_count
            for entry in entries
            for attempt in entry.attempts
            if attempt.strategy in MAILBOX_STRATEGIES
        )

    def _entry_for(self, item: SearchQueueItem, transaction: Transaction) -> SearchEntry:
        existing = repository.query_models(
            self.store,
            TRANSACTION_SEARCHES,
            SearchEntry,
            [("search_queue_id", "==", item.id), ("transaction_id", "==", transaction.id)],
            limit=1,
        )
        if existing:
            entry = existing[0]
            entry.status = SearchEntryStatus.PROCESSING
            return entry
        return SearchEntry(
            user_id=item.user_id,
            transaction_id=transaction.id,
            search_queue_id=item.id,
            triggered_by=item.triggered_by,
            created_at=self._clock(),
        )

    def _log_attempt(self, entry: SearchEntry, attempt: SearchAttempt) -> None:
        """Append an attempt to the transaction's search history."""
        entry.attempts.append(attempt)
        if attempt.strategy not in entry.strategies_attempted:
            entry.strategies_attempted.append(attempt.strategy)
        entry.total_files_connected += len(attempt.file_ids_connected)
        entry.total_ai_calls += attempt.ai_calls
        if attempt.file_ids_connected:
            entry.automation_source = attempt.strategy.value
        repository.save(self.store, TRANSACTION_SEARCHES, entry)
