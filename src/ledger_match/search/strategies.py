"""
Search strategies run by the search queue for one transaction.

Each strategy turns a transaction into candidate files, scores them and
leaves a precision-search hint on the good ones; file matching then makes
the final link. Strategies never raise: failures are recorded on the
returned ``SearchAttempt`` so the next strategy can still run.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
import logging

from ..config import MatchConfig
from ..integrations.mailbox import MailAttachment, MailboxClient, MailMessage
from ..integrations.pool import MailboxPool
from ..matching.attachment_scorer import AttachmentEvidence, AttachmentScorer
from ..models.base import utcnow
from ..models.partner import InvoiceLink, Partner
from ..models.search import SearchAttempt, SearchQueueItem, SearchStrategyName
from ..models.transaction import PartnerType, TaxFile, Transaction
from ..store import repository
from ..store.base import FILES, PARTNERS, DocumentStore
from ..utils.exceptions import MailboxAuthError, MailboxError, SearchQueueError
from .collaborators import HtmlRenderer, InvoiceAnalyzer
from .email_utils import build_search_query, html_to_text, is_within_days, safe_filename
from .files import FileRegistry, content_hash
from .queries import QueryGenerator

logger = logging.getLogger(__name__)

MAILBOX_STRATEGIES = (SearchStrategyName.EMAIL_ATTACHMENT, SearchStrategyName.EMAIL_INVOICE)


@dataclass
class SearchServices:
    """Collaborators shared by all strategies of a processor."""

    store: DocumentStore
    files: FileRegistry
    scorer: AttachmentScorer
    queries: QueryGenerator
    analyzer: InvoiceAnalyzer
    renderer: HtmlRenderer
    config: MatchConfig
    clock: Callable[[], datetime] = utcnow


@dataclass
class SearchContext:
    """
    State for searching one transaction across strategies.

    ``great_match_count`` is shared by the mailbox strategies and starts
    from the great matches already recorded for the transaction, so once
    the limit is reached no more mailbox queries are issued.
    """

    transaction: Transaction
    partner: Optional[Partner]
    queue_item: SearchQueueItem
    mailboxes: MailboxPool
    great_match_count: int = 0
    great_match_limit: int = 2
    file_ids_connected: list[str] = field(default_factory=list)

    @property
    def user_id(self) -> str:
        return self.transaction.user_id

    @property
    def mailbox_exhausted(self) -> bool:
        return self.great_match_count >= self.great_match_limit


class SearchStrategy(ABC):
    """Base class for search strategies."""

    name: SearchStrategyName
    uses_mailbox = False

    def __init__(self, services: SearchServices):
        self.services = services
        self.config = services.config.search

    def execute(self, context: SearchContext) -> SearchAttempt:
        """
        Run the strategy for one transaction.

        Args:
            context: Transaction, partner and shared search state

        Returns:
            SearchAttempt describing what was searched and found
        """
        attempt = SearchAttempt(strategy=self.name, started_at=self.services.clock())
        try:
            self.run(context, attempt)
        except Exception as e:
            logger.error(f"Strategy {self.name.value} failed for {context.transaction.id}: {e}")
            attempt.add_error(str(e))
        attempt.completed_at = self.services.clock()

        logger.debug(
            f"{self.name.value} for {context.transaction.id}: "
            f"{attempt.candidates_evaluated} evaluated, {attempt.matches_found} matched, "
            f"best {attempt.best_match_score}"
        )
        return attempt

    @abstractmethod
    def run(self, context: SearchContext, attempt: SearchAttempt) -> None:
        pass

    def _evidence(
        self, context: SearchContext, filename: str, mime_type: str, **email_fields
    ) -> AttachmentEvidence:
        tx = context.transaction
        partner = context.partner
        return AttachmentEvidence(
            filename=filename,
            mime_type=mime_type,
            transaction_amount=tx.amount,
            transaction_date=tx.date,
            transaction_name=tx.name,
            transaction_reference=tx.reference,
            transaction_partner=tx.partner,
            partner_name=partner.name if partner else None,
            partner_email_domains=list(partner.email_domains) if partner else [],
            partner_file_source_patterns=list(partner.file_source_patterns) if partner else [],
            **email_fields,
        )

    def _file_evidence(self, context: SearchContext, file: TaxFile) -> AttachmentEvidence:
        return self._evidence(
            context,
            file.file_name,
            file.file_type,
            email_subject=file.gmail_subject,
            email_from=file.gmail_sender_email,
            email_date=file.gmail_email_date or file.extracted_date,
            integration_id=file.gmail_integration_id,
            file_extracted_amount=file.extracted_amount,
            file_extracted_date=file.extracted_date,
            file_extracted_partner=file.extracted_partner,
        )

    def _score_file(self, context: SearchContext, file: TaxFile) -> int:
        return self.services.scorer.score(self._file_evidence(context, file)).score

    def _can_offer(self, context: SearchContext, file: TaxFile) -> bool:
        tx = context.transaction
        return file.id not in tx.rejected_file_ids and tx.id not in file.transaction_ids

    def _offer_file(
        self, context: SearchContext, attempt: SearchAttempt, file: TaxFile, score: int
    ) -> bool:
        """Hint an existing file at the transaction if it scores as a match."""
        attempt.record_score(score)
        if not self.services.scorer.is_match(score) or not self._can_offer(context, file):
            return False

        hint = self.services.files.make_hint(context.transaction, self.name.value, score)
        if file.is_deleted:
            self.services.files.revive(file, hint)
        else:
            self.services.files.set_hint(file, hint)
        self._record_match(context, attempt, file, score)
        return True

    def _record_match(
        self, context: SearchContext, attempt: SearchAttempt, file: TaxFile, score: int
    ) -> None:
        attempt.matches_found += 1
        if file.id not in attempt.file_ids_connected:
            attempt.file_ids_connected.append(file.id)
        if file.id not in context.file_ids_connected:
            context.file_ids_connected.append(file.id)

        if self.services.scorer.is_great(score):
            attempt.great_match_count += 1
            if self.uses_mailbox:
                context.great_match_count += 1
        logger.info(
            f"{self.name.value}: file {file.id} matches transaction "
            f"{context.transaction.id} ({score}%)"
        )


class PartnerFilesStrategy(SearchStrategy):
    """Re-scores unlinked, extracted files of the transaction's partner."""

    name = SearchStrategyName.PARTNER_FILES

    def run(self, context: SearchContext, attempt: SearchAttempt) -> None:
        tx = context.transaction
        if not tx.partner_id:
            attempt.search_params = {"skipped": "no partner assigned"}
            return

        attempt.search_params = {"partner_id": tx.partner_id}
        files = repository.query_models(
            self.services.store,
            FILES,
            TaxFile,
            [
                ("user_id", "==", tx.user_id),
                ("partner_id", "==", tx.partner_id),
                ("extraction_complete", "==", True),
            ],
            limit=self.config.partner_files_limit,
        )
        candidates = [f for f in files if not f.is_deleted and not f.transaction_ids]
        attempt.candidates_found = len(candidates)

        for file in candidates:
            attempt.candidates_evaluated += 1
            self._offer_file(context, attempt, file, self._score_file(context, file))


class AmountFilesStrategy(SearchStrategy):
    """Scores unlinked files dated near the transaction, keeping the best few."""

    name = SearchStrategyName.AMOUNT_FILES

    def run(self, context: SearchContext, attempt: SearchAttempt) -> None:
        tx = context.transaction
        window = timedelta(days=self.config.amount_files_window_days)
        start, end = tx.date - window, tx.date + window
        attempt.search_params = {
            "amount": tx.amount,
            "date_from": start.isoformat(),
            "date_to": end.isoformat(),
        }

        files = repository.query_models(
            self.services.store,
            FILES,
            TaxFile,
            [
                ("user_id", "==", tx.user_id),
                ("extraction_complete", "==", True),
                ("extracted_date", ">=", start.isoformat()),
                ("extracted_date", "<=", end.isoformat()),
            ],
            limit=self.config.amount_files_limit,
        )
        candidates = [
            f
            for f in files
            if not f.is_deleted and not f.transaction_ids and f.id not in tx.rejected_file_ids
        ]
        attempt.candidates_found = len(candidates)

        scored = []
        for file in candidates:
            attempt.candidates_evaluated += 1
            score = self._score_file(context, file)
            attempt.record_score(score)
            if self.services.scorer.is_match(score):
                scored.append((score, file))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        for score, file in scored[: self.config.amount_files_top_candidates]:
            self._offer_file(context, attempt, file, score)


class MailboxSearchStrategy(SearchStrategy):
    """
    Shared query loop of the mailbox strategies.

    Runs the top generated queries against every usable mailbox account,
    stopping early once the transaction has enough great matches. Auth
    failures flag the integration for reauth and skip the account; other
    mailbox errors are recorded and the loop moves on.
    """

    uses_mailbox = True
    has_attachment = False

    def run(self, context: SearchContext, attempt: SearchAttempt) -> None:
        if context.mailbox_exhausted:
            attempt.search_params = {"skipped": "great match limit reached"}
            return

        clients = context.mailboxes.clients_for(context.user_id)
        if not clients:
            attempt.search_params = {"skipped": "no mailbox connected"}
            return

        generated = self.services.queries.generate(
            context.transaction, context.partner, self.config.max_generated_queries
        )
        queries = [q.query for q in generated[: self.config.queries_per_transaction]]
        attempt.search_params = {"queries": queries, "accounts": [c.email for c in clients]}
        if not queries:
            return

        seen: set[tuple[str, str]] = set()
        for client in clients:
            if context.mailbox_exhausted:
                break
            try:
                self._search_account(context, attempt, client, queries, seen)
            except MailboxAuthError as e:
                context.mailboxes.mark_needs_reauth(client.integration_id, str(e))
                attempt.add_error(f"{client.email}: {e}")

    def _search_account(
        self,
        context: SearchContext,
        attempt: SearchAttempt,
        client: MailboxClient,
        queries: list[str],
        seen: set[tuple[str, str]],
    ) -> None:
        for query in queries:
            if context.mailbox_exhausted:
                return
            try:
                message_ids = client.search(
                    build_search_query(query, self.has_attachment), self.config.messages_per_query
                )
            except MailboxAuthError:
                raise
            except MailboxError as e:
                attempt.add_error(f"{client.email}: {e}")
                continue
            attempt.queries_issued += 1

            for message_id in message_ids:
                key = (client.integration_id, message_id)
                if key in seen:
                    continue
                seen.add(key)
                attempt.candidates_found += 1
                if context.mailbox_exhausted:
                    return
                try:
                    self.process_message(context, attempt, client, message_id)
                except MailboxAuthError:
                    raise
                except MailboxError as e:
                    attempt.add_error(f"{client.email}/{message_id}: {e}")

    @abstractmethod
    def process_message(
        self,
        context: SearchContext,
        attempt: SearchAttempt,
        client: MailboxClient,
        message_id: str,
    ) -> None:
        pass

    def _message_evidence(
        self,
        context: SearchContext,
        client: MailboxClient,
        message: MailMessage,
        filename: str,
        mime_type: str,
        body_text: Optional[str] = None,
    ) -> AttachmentEvidence:
        return self._evidence(
            context,
            filename,
            mime_type,
            email_subject=message.subject,
            email_from=message.sender,
            email_snippet=message.snippet,
            email_body_text=body_text,
            email_date=message.date,
            integration_id=client.integration_id,
        )


class EmailAttachmentStrategy(MailboxSearchStrategy):
    """
    Finds receipt attachments in the user's mailboxes.

    Attachments are scored on metadata first and only downloaded when the
    score reaches the match threshold. Downloaded bytes are deduplicated by
    content hash; a soft-deleted duplicate is revived instead of creating
    a new file.
    """

    name = SearchStrategyName.EMAIL_ATTACHMENT
    has_attachment = True

    def process_message(
        self,
        context: SearchContext,
        attempt: SearchAttempt,
        client: MailboxClient,
        message_id: str,
    ) -> None:
        tx = context.transaction
        files = self.services.files

        message = client.get_message(message_id)
        if not is_within_days(message.date, tx.date, self.config.email_date_range_days):
            return

        receipts = sorted(
            (a for a in message.attachments if a.is_likely_receipt), key=lambda a: not a.is_pdf
        )
        pdf_matched = False
        for attachment in receipts:
            if context.mailbox_exhausted:
                return
            # One PDF per message is enough; images are only a fallback
            if pdf_matched and not attachment.is_pdf:
                continue
            attempt.candidates_evaluated += 1

            existing = files.find_by_message(
                context.user_id, message.message_id, attachment.attachment_id
            )
            if existing is not None:
                if existing.extraction_complete:
                    score = self._score_file(context, existing)
                else:
                    score = self._attachment_score(context, client, message, attachment)
                if self._offer_file(context, attempt, existing, score) and attachment.is_pdf:
                    pdf_matched = True
                continue

            score = self._attachment_score(context, client, message, attachment)
            attempt.record_score(score)
            if not self.services.scorer.is_match(score):
                continue

            data = client.get_attachment(message.message_id, attachment.attachment_id)
            digest = content_hash(data)
            duplicate = files.find_by_hash(context.user_id, digest)
            if duplicate is not None:
                matched = self._offer_file(context, attempt, duplicate, score)
            else:
                file = files.create_from_attachment(
                    context.user_id,
                    message,
                    attachment,
                    data,
                    digest,
                    client.integration_id,
                    files.make_hint(tx, self.name.value, score),
                )
                self._record_match(context, attempt, file, score)
                matched = True

            if matched and attachment.is_pdf:
                pdf_matched = True

    def _attachment_score(
        self,
        context: SearchContext,
        client: MailboxClient,
        message: MailMessage,
        attachment: MailAttachment,
    ) -> int:
        evidence = self._message_evidence(
            context, client, message, attachment.filename, attachment.mime_type
        )
        return self.services.scorer.score(evidence).score


class EmailInvoiceStrategy(MailboxSearchStrategy):
    """
    Finds invoices that are the email body itself (order confirmations,
    payment receipts) and renders them to a stored document.

    Invoice download links seen along the way are remembered on the
    partner.
    """

    name = SearchStrategyName.EMAIL_INVOICE

    def process_message(
        self,
        context: SearchContext,
        attempt: SearchAttempt,
        client: MailboxClient,
        message_id: str,
    ) -> None:
        tx = context.transaction
        files = self.services.files

        message = client.get_message(message_id)
        # Emails with a PDF are covered by the attachment search
        if any(a.is_pdf for a in message.attachments):
            return
        if not is_within_days(message.date, tx.date, self.config.email_date_range_days):
            return
        attempt.candidates_evaluated += 1

        analysis = self.services.analyzer.analyze(message, tx)
        attempt.ai_calls += analysis.ai_calls
        if analysis.invoice_links:
            attempt.invoice_links_found += len(analysis.invoice_links)
            self._remember_invoice_links(context, message, analysis.invoice_links)

        if not analysis.is_mail_invoice or not message.html_body:
            return
        if analysis.confidence < self.config.mail_invoice_min_confidence:
            return

        body_text = message.text_body or html_to_text(message.html_body)
        stem = safe_filename(message.subject, default="invoice")
        evidence = self._message_evidence(
            context, client, message, f"{stem}.pdf", "application/pdf", body_text
        )
        score = self.services.scorer.score(evidence).score
        attempt.record_score(score)
        if not self.services.scorer.is_match(score):
            return

        existing = files.find_html_invoice(context.user_id, message.message_id)
        if existing is not None:
            self._offer_file(context, attempt, existing, score)
            return

        rendered = self.services.renderer.render(message.html_body, message.subject)
        file = files.create_from_rendered(
            context.user_id,
            message,
            f"{stem}{rendered.extension}",
            rendered.data,
            rendered.mime_type,
            client.integration_id,
            files.make_hint(tx, self.name.value, score),
        )
        self._record_match(context, attempt, file, score)

    def _remember_invoice_links(
        self, context: SearchContext, message: MailMessage, links: list[tuple[str, str]]
    ) -> None:
        partner = context.partner
        # Global partners are shared; only user partners learn links
        if partner is None or partner.partner_type != PartnerType.USER or not partner.id:
            return

        known = {link.url for link in partner.invoice_links}
        added = [
            InvoiceLink(
                url=url,
                anchor_text=text or None,
                message_id=message.message_id,
                discovered_at=self.services.clock(),
            )
            for url, text in links
            if url not in known
        ]
        if not added:
            return

        partner.invoice_links.extend(added)
        self.services.store.update(
            PARTNERS, partner.id, repository.dump_fields(partner, "invoice_links")
        )
        logger.info(f"Saved {len(added)} invoice links for partner {partner.id}")


StopRule = Callable[[SearchAttempt, SearchContext], bool]


def strong_match_reached(threshold: int) -> StopRule:
    """Stop once a strategy connected files with a strong best score."""

    def rule(attempt: SearchAttempt, context: SearchContext) -> bool:
        return bool(attempt.file_ids_connected) and (attempt.best_match_score or 0) >= threshold

    return rule


@dataclass
class StrategyDescriptor:
    """A strategy with its place in the pipeline and its stop rule."""

    name: SearchStrategyName
    priority: int
    strategy: SearchStrategy
    stop_when: StopRule


STRATEGY_CLASSES: dict[SearchStrategyName, type[SearchStrategy]] = {
    SearchStrategyName.PARTNER_FILES: PartnerFilesStrategy,
    SearchStrategyName.AMOUNT_FILES: AmountFilesStrategy,
    SearchStrategyName.EMAIL_ATTACHMENT: EmailAttachmentStrategy,
    SearchStrategyName.EMAIL_INVOICE: EmailInvoiceStrategy,
}

# Cheap local lookups run before mailbox searches
DEFAULT_PRIORITY = {
    SearchStrategyName.PARTNER_FILES: 10,
    SearchStrategyName.AMOUNT_FILES: 20,
    SearchStrategyName.EMAIL_ATTACHMENT: 30,
    SearchStrategyName.EMAIL_INVOICE: 40,
}


def build_pipeline(
    services: SearchServices, names: list[SearchStrategyName]
) -> list[StrategyDescriptor]:
    """
    Build the ordered strategy pipeline for a queue item.

    Args:
        services: Shared collaborators
        names: Strategies enabled for the item

    Returns:
        Descriptors sorted by priority

    Raises:
        SearchQueueError: If a strategy name is unknown
    """
    stop_rule = strong_match_reached(services.config.search.strong_match_threshold)
    pipeline = []
    for name in dict.fromkeys(names):
        try:
            name = SearchStrategyName(name)
            strategy_cls = STRATEGY_CLASSES[name]
        except (ValueError, KeyError) as e:
            raise SearchQueueError(f"Unknown search strategy: {name}") from e
        pipeline.append(
            StrategyDescriptor(name, DEFAULT_PRIORITY[name], strategy_cls(services), stop_rule)
        )

    pipeline.sort(key=lambda d: d.priority)
    return pipeline
