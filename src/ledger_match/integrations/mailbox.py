"""
Mailbox search clients.

Clients expose message search, message fetch and attachment download.
Every outbound call goes through a per-account ``RateLimiter``; expired or
revoked credentials raise ``MailboxAuthError`` instead of being retried.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional
import base64
import logging
import random
import time

import requests

from ..config import MailboxConfig
from ..utils.exceptions import MailboxAuthError, MailboxError

logger = logging.getLogger(__name__)


@dataclass
class MailAttachment:
    """Attachment metadata from a message."""

    attachment_id: str
    filename: str
    mime_type: str
    size: int = 0

    @property
    def is_pdf(self) -> bool:
        mime = self.mime_type.lower()
        return mime == "application/pdf" or (
            mime == "application/octet-stream" and self.filename.lower().endswith(".pdf")
        )

    @property
    def is_likely_receipt(self) -> bool:
        mime = self.mime_type.lower()
        return self.is_pdf or mime in ("image/jpeg", "image/png", "image/webp", "image/gif")


@dataclass
class MailMessage:
    """A provider-neutral view of an email."""

    message_id: str
    thread_id: Optional[str] = None
    subject: str = ""
    sender: str = ""
    snippet: str = ""
    date: Optional[datetime] = None
    text_body: Optional[str] = None
    html_body: Optional[str] = None
    attachments: list[MailAttachment] = field(default_factory=list)


class MailboxClient(ABC):
    """Search access to one mailbox account."""

    integration_id: str
    email: str

    @abstractmethod
    def search(self, query: str, max_results: int = 20) -> list[str]:
        """Return ids of messages matching a provider search query."""
        pass

    @abstractmethod
    def get_message(self, message_id: str) -> MailMessage:
        """Fetch headers, bodies and attachment metadata of a message."""
        pass

    @abstractmethod
    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        """Download attachment bytes."""
        pass

    def close(self) -> None:
        """Release network resources."""
        pass


class RateLimiter:
    """Enforces a minimum spacing between calls for one account."""

    def __init__(
        self,
        min_interval: float,
        jitter: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval
        self.jitter = jitter
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None

    def wait(self) -> None:
        """Block until the next call is allowed."""
        if self._last_call is not None:
            interval = self.min_interval + (random.uniform(0, self.jitter) if self.jitter else 0)
            remaining = interval - (self._clock() - self._last_call)
            if remaining > 0:
                logger.debug(f"Throttling mailbox call for {remaining:.3f}s")
                self._sleep(remaining)
        self._last_call = self._clock()


def _decode_base64url(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def parse_gmail_message(payload: dict[str, Any]) -> MailMessage:
    """
    Convert a Gmail API message resource (format=full) to a MailMessage.

    Args:
        payload: Decoded JSON of ``users.messages.get``

    Returns:
        MailMessage with bodies decoded and attachments listed
    """
    root = payload.get("payload") or {}
    headers = {h.get("name", "").lower(): h.get("value", "") for h in root.get("headers", [])}

    message = MailMessage(
        message_id=payload.get("id", ""),
        thread_id=payload.get("threadId"),
        subject=headers.get("subject", ""),
        sender=headers.get("from", ""),
        snippet=payload.get("snippet", ""),
    )

    internal_date = payload.get("internalDate")
    if internal_date:
        message.date = datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)

    stack = [root]
    while stack:
        part = stack.pop(0)
        stack.extend(part.get("parts") or [])

        mime_type = (part.get("mimeType") or "").lower()
        body = part.get("body") or {}
        filename = part.get("filename") or ""

        if body.get("attachmentId") and filename:
            message.attachments.append(
                MailAttachment(
                    attachment_id=body["attachmentId"],
                    filename=filename,
                    mime_type=mime_type,
                    size=int(body.get("size") or 0),
                )
            )
        elif body.get("data") and not filename:
            text = _decode_base64url(body["data"]).decode("utf-8", errors="replace")
            if mime_type == "text/html" and message.html_body is None:
                message.html_body = text
            elif mime_type == "text/plain" and message.text_body is None:
                message.text_body = text

    return message


class GmailClient(MailboxClient):
    """Gmail REST client authenticated with an OAuth bearer token."""

    def __init__(
        self,
        integration_id: str,
        email: str,
        access_token: str,
        config: Optional[MailboxConfig] = None,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.integration_id = integration_id
        self.email = email
        self.config = config or MailboxConfig()
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {access_token}"})
        self.rate_limiter = rate_limiter or RateLimiter(
            self.config.request_delay_seconds, self.config.request_jitter_seconds
        )

    def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        self.rate_limiter.wait()
        url = f"{self.config.api_base_url}/{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.config.timeout_seconds)
        except requests.RequestException as e:
            raise MailboxError(f"Mailbox request failed for {self.email}: {e}") from e

        if response.status_code == 401:
            raise MailboxAuthError(f"Access token rejected for {self.email}")
        if response.status_code >= 400:
            raise MailboxError(
                f"Mailbox API error {response.status_code} for {self.email}: {response.text[:200]}"
            )
        return response.json()

    def search(self, query: str, max_results: int = 20) -> list[str]:
        data = self._get("messages", {"q": query, "maxResults": max_results})
        return [m["id"] for m in data.get("messages", []) if m.get("id")]

    def get_message(self, message_id: str) -> MailMessage:
        return parse_gmail_message(self._get(f"messages/{message_id}", {"format": "full"}))

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        data = self._get(f"messages/{message_id}/attachments/{attachment_id}")
        if not data.get("data"):
            raise MailboxError(f"Attachment {attachment_id} of {message_id} has no data")
        return _decode_base64url(data["data"])

    def close(self) -> None:
        self.session.close()
