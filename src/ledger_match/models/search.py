"""Search queue, search history and mailbox integration records."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .base import Document, utcnow


class SearchScope(str, Enum):
    """Which transactions a queue item covers."""

    SINGLE_TRANSACTION = "single_transaction"
    ALL_INCOMPLETE = "all_incomplete"


class TriggeredBy(str, Enum):
    """What created a queue item."""

    GMAIL_SYNC = "gmail_sync"
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class QueueStatus(str, Enum):
    """Queue item lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SearchStrategyName(str, Enum):
    """Search techniques the queue processor can run."""

    PARTNER_FILES = "partner_files"
    AMOUNT_FILES = "amount_files"
    EMAIL_ATTACHMENT = "email_attachment"
    EMAIL_INVOICE = "email_invoice"


class SearchQueueItem(Document):
    """One resumable search run."""

    user_id: str
    scope: SearchScope
    transaction_id: Optional[str] = None
    triggered_by: TriggeredBy = TriggeredBy.MANUAL
    status: QueueStatus = QueueStatus.PENDING
    strategies: list[SearchStrategyName] = Field(default_factory=list)

    # Progress
    transactions_to_process: int = 0
    transactions_processed: int = 0
    transactions_with_matches: int = 0
    total_files_connected: int = 0
    last_processed_transaction_id: Optional[str] = None
    errors: list[str] = Field(default_factory=list)

    # Retry state
    retry_count: int = 0
    max_retries: int = 3
    last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def remaining(self) -> int:
        return max(0, self.transactions_to_process - self.transactions_processed)


class SearchAttempt(BaseModel):
    """Record of one strategy execution against one transaction."""

    strategy: SearchStrategyName
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    search_params: dict[str, Any] = Field(default_factory=dict)
    candidates_found: int = 0
    candidates_evaluated: int = 0
    matches_found: int = 0
    file_ids_connected: list[str] = Field(default_factory=list)
    best_match_score: Optional[int] = None
    great_match_count: int = 0
    queries_issued: int = 0
    invoice_links_found: int = 0
    ai_calls: int = 0
    error: Optional[str] = None

    def record_score(self, score: int) -> None:
        """Track the best score seen during the attempt."""
        if self.best_match_score is None or score > self.best_match_score:
            self.best_match_score = score

    def add_error(self, message: str) -> None:
        self.error = f"{self.error}; {message}" if self.error else message


class SearchEntryStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"


class SearchEntry(Document):
    """Search history for one transaction within one queue item."""

    user_id: str
    transaction_id: str
    search_queue_id: str
    triggered_by: TriggeredBy = TriggeredBy.MANUAL
    status: SearchEntryStatus = SearchEntryStatus.PROCESSING
    strategies_attempted: list[SearchStrategyName] = Field(default_factory=list)
    attempts: list[SearchAttempt] = Field(default_factory=list)
    total_files_connected: int = 0
    total_ai_calls: int = 0
    automation_source: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class EmailIntegration(Document):
    """A connected mailbox account."""

    user_id: str
    email: str
    provider: str = "gmail"
    is_active: bool = True
    needs_reauth: bool = False
    last_error: Optional[str] = None
    reauth_requested_at: Optional[datetime] = None


class EmailToken(Document):
    """OAuth access token for an integration; keyed by integration id."""

    user_id: str
    access_token: str
    expires_at: Optional[datetime] = None
