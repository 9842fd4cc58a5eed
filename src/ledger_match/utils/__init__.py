"""Utility modules."""

from .exceptions import (
    LedgerMatchError,
    ConfigurationError,
    ValidationError,
    StoreError,
    DocumentNotFoundError,
    SearchQueueError,
    MailboxError,
    MailboxAuthError,
    ReportGenerationError,
)
from .logging_config import setup_logging

__all__ = [
    "LedgerMatchError",
    "ConfigurationError",
    "ValidationError",
    "StoreError",
    "DocumentNotFoundError",
    "SearchQueueError",
    "MailboxError",
    "MailboxAuthError",
    "ReportGenerationError",
    "setup_logging",
]
