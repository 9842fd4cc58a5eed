"""Data models for matching and search."""

from .base import Document, utcnow
from .transaction import (
    Transaction,
    TaxFile,
    PartnerType,
    MatchedBy,
    FileSourceType,
    PartnerSuggestion,
    CategorySuggestionRecord,
    TransactionSuggestion,
    PrecisionSearchHint,
)
from .partner import Partner, Category, LearnedPattern, FileSourcePattern, InvoiceLink
from .search import (
    SearchQueueItem,
    SearchAttempt,
    SearchEntry,
    SearchEntryStatus,
    SearchScope,
    TriggeredBy,
    QueueStatus,
    SearchStrategyName,
    EmailIntegration,
    EmailToken,
)
from .results import (
    PartnerMatch,
    FileScoreBreakdown,
    FileMatchScore,
    AutoConnect,
    Suggestion,
    FileMatchOutcome,
    CategorySuggestion,
    AttachmentScore,
    QueryType,
    TypedQuery,
    EmailClassification,
    MatchingSummary,
)

__all__ = [
    "Document",
    "utcnow",
    "Transaction",
    "TaxFile",
    "PartnerType",
    "MatchedBy",
    "FileSourceType",
    "PartnerSuggestion",
    "CategorySuggestionRecord",
    "TransactionSuggestion",
    "PrecisionSearchHint",
    "Partner",
    "Category",
    "LearnedPattern",
    "FileSourcePattern",
    "InvoiceLink",
    "SearchQueueItem",
    "SearchAttempt",
    "SearchEntry",
    "SearchEntryStatus",
    "SearchScope",
    "TriggeredBy",
    "QueueStatus",
    "SearchStrategyName",
    "EmailIntegration",
    "EmailToken",
    "PartnerMatch",
    "FileScoreBreakdown",
    "FileMatchScore",
    "AutoConnect",
    "Suggestion",
    "FileMatchOutcome",
    "CategorySuggestion",
    "AttachmentScore",
    "QueryType",
    "TypedQuery",
    "EmailClassification",
    "MatchingSummary",
]
