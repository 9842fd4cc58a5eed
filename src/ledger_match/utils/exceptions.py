"""Custom exceptions for the matching application."""


class LedgerMatchError(Exception):
    """Base exception for matching errors."""

    pass


class ConfigurationError(LedgerMatchError):
    """Error in configuration."""

    pass


class ValidationError(LedgerMatchError):
    """Data validation error."""

    pass


class StoreError(LedgerMatchError):
    """Error reading or writing the document store."""

    pass


class DocumentNotFoundError(StoreError):
    """Requested document does not exist."""

    pass


class SearchQueueError(LedgerMatchError):
    """Error processing a search queue item."""

    pass


class MailboxError(LedgerMatchError):
    """Error talking to a mailbox provider."""

    pass


class MailboxAuthError(MailboxError):
    """Mailbox credentials are expired or revoked."""

    pass


class ReportGenerationError(LedgerMatchError):
    """Error generating Excel report."""

    pass
