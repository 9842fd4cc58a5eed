"""External mailbox integrations."""

from .mailbox import (
    GmailClient,
    MailAttachment,
    MailboxClient,
    MailMessage,
    RateLimiter,
    parse_gmail_message,
)
from .pool import MailboxPool, gmail_client_factory

__all__ = [
    "GmailClient",
    "MailAttachment",
    "MailboxClient",
    "MailMessage",
    "RateLimiter",
    "parse_gmail_message",
    "MailboxPool",
    "gmail_client_factory",
]
