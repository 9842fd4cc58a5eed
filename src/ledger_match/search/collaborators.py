"""Pluggable collaborators for mail-body invoice handling."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import html
import logging

from ..integrations.mailbox import MailMessage
from ..matching.attachment_scorer import build_amount_variants
from ..models.transaction import Transaction
from .email_utils import classify_email, extract_invoice_links, html_to_text

logger = logging.getLogger(__name__)


@dataclass
class InvoiceAnalysis:
    """Verdict on whether an email body is itself an invoice."""

    is_mail_invoice: bool = False
    # 0.0 - 1.0
    confidence: float = 0.0
    invoice_links: list[tuple[str, str]] = field(default_factory=list)
    ai_calls: int = 0


class InvoiceAnalyzer(ABC):
    """Decides whether a mail body is an invoice and finds invoice links."""

    @abstractmethod
    def analyze(self, message: MailMessage, transaction: Transaction) -> InvoiceAnalysis:
        pass


class KeywordInvoiceAnalyzer(InvoiceAnalyzer):
    """
    Keyword heuristics: order/payment confirmation phrases mark a mail
    invoice, and seeing the transaction amount in the body raises the
    confidence.
    """

    def analyze(self, message: MailMessage, transaction: Transaction) -> InvoiceAnalysis:
        body_text = message.text_body or html_to_text(message.html_body)
        classification = classify_email(
            message.subject, f"{message.snippet} {body_text}", message.attachments
        )
        links = extract_invoice_links(message.html_body)

        if not classification.possible_mail_invoice:
            return InvoiceAnalysis(invoice_links=links)

        confidence = 0.7
        lowered = body_text.lower()
        if any(v in lowered for v in build_amount_variants(transaction.amount)):
            confidence += 0.2
        return InvoiceAnalysis(
            is_mail_invoice=True, confidence=min(confidence, 1.0), invoice_links=links
        )


@dataclass
class RenderedDocument:
    data: bytes
    mime_type: str
    extension: str


class HtmlRenderer(ABC):
    """Turns a mail body into a storable document."""

    @abstractmethod
    def render(self, body_html: str, title: str) -> RenderedDocument:
        pass


class HtmlSnapshotRenderer(HtmlRenderer):
    """Stores the mail body as a standalone HTML document."""

    def render(self, body_html: str, title: str) -> RenderedDocument:
        document = (
            "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\">"
            f"<title>{html.escape(title)}</title></head>\n<body>\n{body_html}\n</body></html>\n"
        )
        return RenderedDocument(document.encode("utf-8"), "text/html", ".html")
