"""Email classification and mailbox query helpers."""

from datetime import date, datetime, timezone
from html.parser import HTMLParser
from typing import Optional, Union
import re

from ..integrations.mailbox import MailAttachment
from ..models.results import EmailClassification

MAIL_INVOICE_KEYWORDS = [
    # English
    "order confirmation",
    "payment received",
    "payment confirmation",
    "your purchase",
    "order summary",
    "receipt for your",
    "thank you for your order",
    "your order has been",
    "purchase confirmation",
    # German
    "bestellbestätigung",
    "zahlungsbestätigung",
    "zahlungseingang",
    "ihre bestellung",
    "kaufbestätigung",
    "vielen dank für ihre bestellung",
    "ihre zahlung",
    "buchungsbestätigung",
]

INVOICE_LINK_KEYWORDS = [
    # English
    "download your invoice",
    "view your invoice",
    "download invoice",
    "view invoice",
    "click here to download",
    "access your invoice",
    "get your receipt",
    "download pdf",
    "download receipt",
    # German
    "rechnung herunterladen",
    "rechnung anzeigen",
    "rechnung abrufen",
    "hier klicken",
    "pdf herunterladen",
    "beleg herunterladen",
    "rechnung ansehen",
    "zum download",
]


def classify_email(
    subject: Optional[str], snippet: Optional[str], attachments: list[MailAttachment]
) -> EmailClassification:
    """
    Classify an email by attachments and keywords.

    ``possible_mail_invoice`` is only reported for emails without a PDF,
    since a PDF attachment is the better evidence when present.

    Args:
        subject: Email subject
        snippet: Short body preview
        attachments: Attachment metadata

    Returns:
        EmailClassification with a 0-100 confidence
    """
    combined = f"{subject or ''} {snippet or ''}".lower()
    matched: list[str] = []

    has_pdf = any(a.is_pdf for a in attachments)

    mail_invoice = next((k for k in MAIL_INVOICE_KEYWORDS if k in combined), None)
    if mail_invoice:
        matched.append(mail_invoice)

    invoice_link = next((k for k in INVOICE_LINK_KEYWORDS if k in combined), None)
    if invoice_link:
        matched.append(invoice_link)

    confidence = 0
    if has_pdf:
        confidence += 40
    if mail_invoice:
        confidence += 30
    if invoice_link:
        confidence += 25
    confidence = min(confidence, 100)
    if has_pdf and confidence < 50:
        confidence = 50

    return EmailClassification(
        has_pdf_attachment=has_pdf,
        possible_mail_invoice=bool(mail_invoice) and not has_pdf,
        possible_invoice_link=bool(invoice_link),
        confidence=confidence,
        matched_keywords=matched,
    )


def build_search_query(query: str, has_attachment: bool) -> str:
    """Add the attachment operator to a mailbox search term."""
    query = query.strip()
    if has_attachment and "has:attachment" not in query:
        return f"{query} has:attachment"
    return query


def is_within_days(
    email_date: Optional[datetime], transaction_date: Union[date, datetime], days: int
) -> bool:
    """Whether an email falls within +/- ``days`` of the transaction date."""
    if email_date is None:
        return False
    if not isinstance(transaction_date, datetime):
        transaction_date = datetime(
            transaction_date.year, transaction_date.month, transaction_date.day, tzinfo=timezone.utc
        )
    if email_date.tzinfo is None:
        email_date = email_date.replace(tzinfo=timezone.utc)
    return abs((email_date - transaction_date).total_seconds()) <= days * 86400


def sender_address(sender: Optional[str]) -> Optional[str]:
    """Bare address from a From header like 'Shop <billing@shop.de>'."""
    if not sender:
        return None
    match = re.search(r"<([^>]+)>", sender)
    address = match.group(1) if match else sender
    address = address.strip().lower()
    return address if "@" in address else None


def safe_filename(text: str, default: str = "document") -> str:
    """Filesystem-safe file name stem from an email subject."""
    cleaned = re.sub(r"[^\w\-. ]+", "", text, flags=re.UNICODE).strip()
    cleaned = re.sub(r"\s+", "_", cleaned)
    return cleaned[:80] or default


class _LinkCollector(HTMLParser):
    def __init__(self):
        super().__init__()
        self.links: list[tuple[str, str]] = []
        self._href: Optional[str] = None
        self._text: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag == "a":
            self._href = dict(attrs).get("href")
            self._text = []

    def handle_data(self, data):
        if self._href is not None:
            self._text.append(data)

    def handle_endtag(self, tag):
        if tag == "a" and self._href:
            self.links.append((self._href, " ".join("".join(self._text).split())))
            self._href = None


def extract_invoice_links(html: Optional[str]) -> list[tuple[str, str]]:
    """
    Links in an email body that look like invoice downloads.

    Returns:
        (url, anchor text) pairs whose anchor text or URL mentions an
        invoice download
    """
    if not html:
        return []

    collector = _LinkCollector()
    collector.feed(html)
    collector.close()

    url_keywords = ("invoice", "rechnung", "receipt", "beleg")
    results = []
    seen = set()
    for url, text in collector.links:
        if not url.lower().startswith(("http://", "https://")) or url in seen:
            continue
        lowered = text.lower()
        if any(k in lowered for k in INVOICE_LINK_KEYWORDS) or any(
            k in url.lower() for k in url_keywords
        ):
            seen.add(url)
            results.append((url, text))
    return results


def html_to_text(html: Optional[str]) -> str:
    """Rough plain text of an HTML body for keyword scoring."""
    if not html:
        return ""
    text = re.sub(r"(?is)<(script|style).*?</\1>", " ", html)
    text = re.sub(r"<[^>]+>", " ", text)
    return " ".join(text.split())
