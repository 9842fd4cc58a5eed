from datetime import date

import pytest

from ledger_match.config import MatchConfig
from ledger_match.integrations.mailbox import GmailClient, MailAttachment, MailMessage
from ledger_match.integrations.pool import MailboxPool
from ledger_match.models.partner import Partner
from ledger_match.models.search import (
    EmailIntegration,
    EmailToken,
    QueueStatus,
    SearchAttempt,
    SearchEntry,
    SearchEntryStatus,
    SearchScope,
    SearchStrategyName,
)
from ledger_match.models.transaction import FileSourceType, TaxFile
from ledger_match.search.files import content_hash
from ledger_match.search.orchestrator import SearchQueueProcessor
from ledger_match.store import repository
from ledger_match.store.base import (
    EMAIL_INTEGRATIONS,
    EMAIL_TOKENS,
    FILES,
    PARTNERS,
    TRANSACTION_SEARCHES,
    TRANSACTIONS,
)
from ledger_match.utils.exceptions import MailboxAuthError, MailboxError

from factories import USER_ID, FakeMailbox, make_file, make_partner, make_transaction, utc

PDF_BYTES = b"%PDF-1.4 acme invoice"


class FakeTimer:
    """Returns the given readings, then zero."""

    def __init__(self, *readings):
        self.readings = list(readings)

    def __call__(self):
        return self.readings.pop(0) if self.readings else 0.0


def _save_transaction(store, tx_id, **overrides):
    return repository.save(store, TRANSACTIONS, make_transaction(id=tx_id, **overrides))


def _connect_mailbox(store, mailbox):
    repository.save(
        store,
        EMAIL_INTEGRATIONS,
        EmailIntegration(id=mailbox.integration_id, user_id=USER_ID, email=mailbox.email),
    )
    repository.save(
        store,
        EMAIL_TOKENS,
        EmailToken(id=mailbox.integration_id, user_id=USER_ID, access_token="tok"),
    )


def _invoice_mailbox():
    message = MailMessage(
        message_id="m1",
        subject="Ihre Rechnung",
        sender="Acme Billing <billing@acme.de>",
        snippet="Anbei Ihre Rechnung",
        date=utc(2024, 3, 8, 9, 0),
        attachments=[MailAttachment("a1", "Rechnung_49,99.pdf", "application/pdf", 1000)],
    )
    return FakeMailbox(messages=[message], attachments={("m1", "a1"): PDF_BYTES})


def _processor(store, mailbox=None, **kwargs):
    return SearchQueueProcessor(
        store,
        client_factory=(lambda integration, token: mailbox) if mailbox else None,
        **kwargs,
    )


def _entries(store, tx_id):
    return repository.query_models(
        store, TRANSACTION_SEARCHES, SearchEntry, [("transaction_id", "==", tx_id)]
    )


def test_batch_checkpoints_and_resumes(store):
    for tx_id, day in (("t1", 1), ("t2", 2), ("t3", 3)):
        _save_transaction(store, tx_id, date=date(2024, 3, day))
    processor = _processor(store, timer=FakeTimer(0, 0, 250))
    item = processor.queue.enqueue(
        USER_ID, SearchScope.ALL_INCOMPLETE, strategies=[SearchStrategyName.AMOUNT_FILES]
    )
    assert item.transactions_to_process == 3

    first = processor.drain(max_jobs=1)[0]
    assert first.status == QueueStatus.PENDING
    assert first.transactions_processed == 1
    assert first.last_processed_transaction_id == "t3"
    assert processor.queue.get(item.id).transactions_processed == 1

    last = processor.drain()[-1]
    assert last.id == item.id
    assert last.status == QueueStatus.COMPLETED
    assert last.transactions_processed == 3
    assert last.retry_count == 0
    for tx_id in ("t1", "t2", "t3"):
        [entry] = _entries(store, tx_id)
        assert entry.status == SearchEntryStatus.COMPLETED


def test_cursor_document_removed_restarts_batch(store):
    for tx_id, day in (("t1", 1), ("t2", 2)):
        _save_transaction(store, tx_id, date=date(2024, 3, day))
    processor = _processor(store)
    item = processor.queue.enqueue(
        USER_ID, SearchScope.ALL_INCOMPLETE, strategies=[SearchStrategyName.AMOUNT_FILES]
    )
    item.last_processed_transaction_id = "deleted"
    processor.queue.save_progress(item)

    result = processor.drain()[-1]
    assert result.status == QueueStatus.COMPLETED
    assert result.transactions_processed == 2


def test_missing_transaction_retries_then_fails(store):
    processor = _processor(store)
    item = processor.queue.enqueue(USER_ID, SearchScope.SINGLE_TRANSACTION, transaction_id="missing")

    runs = processor.drain()

    assert len(runs) == 4
    assert all(run.id == item.id for run in runs)
    failed = processor.queue.get(item.id)
    assert failed.status == QueueStatus.FAILED
    assert failed.retry_count == 3
    assert "missing" in failed.last_error


def test_complete_transaction_is_not_searched(store):
    _save_transaction(store, "t1", is_complete=True)
    mailbox = _invoice_mailbox()
    _connect_mailbox(store, mailbox)
    processor = _processor(store, mailbox)
    processor.queue.enqueue(USER_ID, SearchScope.SINGLE_TRANSACTION, transaction_id="t1")

    [result] = processor.drain()

    assert result.status == QueueStatus.COMPLETED
    assert result.transactions_processed == 0
    assert mailbox.searches == []


def test_prior_great_matches_skip_mailbox_search(store):
    _save_transaction(store, "t1")
    repository.save(
        store,
        TRANSACTION_SEARCHES,
        SearchEntry(
            user_id=USER_ID,
            transaction_id="t1",
            search_queue_id="earlier",
            attempts=[SearchAttempt(strategy=SearchStrategyName.EMAIL_ATTACHMENT, great_match_count=2)],
        ),
    )
    mailbox = _invoice_mailbox()
    _connect_mailbox(store, mailbox)
    processor = _processor(store, mailbox)
    item = processor.queue.enqueue(USER_ID, SearchScope.SINGLE_TRANSACTION, transaction_id="t1")

    processor.drain()

    assert mailbox.searches == []
    entry = next(e for e in _entries(store, "t1") if e.search_queue_id == item.id)
    skipped = [a for a in entry.attempts if a.strategy.value.startswith("email_")]
    assert len(skipped) == 2
    assert all(a.search_params == {"skipped": "great match limit reached"} for a in skipped)


def test_attachment_search_creates_hinted_file_and_stops(store, blobs):
    repository.save(store, PARTNERS, make_partner(id="p1", email_domains=["acme.de"]))
    _save_transaction(store, "t1", partner_id="p1")
    mailbox = _invoice_mailbox()
    _connect_mailbox(store, mailbox)
    processor = _processor(store, mailbox, blobs=blobs)
    item = processor.queue.enqueue(USER_ID, SearchScope.SINGLE_TRANSACTION, transaction_id="t1")

    [result] = processor.drain()

    assert result.status == QueueStatus.COMPLETED
    assert result.transactions_with_matches == 1
    assert result.total_files_connected == 1
    assert mailbox.downloads == [("m1", "a1")]
    assert all(q.endswith("has:attachment") for q in mailbox.searches)

    [file] = repository.query_models(store, FILES, TaxFile)
    assert file.source_type == FileSourceType.GMAIL
    assert file.gmail_sender_domain == "acme.de"
    assert file.content_hash == content_hash(PDF_BYTES)
    assert blobs.get(file.storage_path) == PDF_BYTES
    assert file.precision_search_hint.transaction_id == "t1"
    assert file.precision_search_hint.strategy == "email_attachment"
    assert file.precision_search_hint.match_confidence >= 85

    [entry] = _entries(store, "t1")
    assert entry.search_queue_id == item.id
    assert entry.automation_source == "email_attachment"
    assert SearchStrategyName.EMAIL_INVOICE not in entry.strategies_attempted
    assert entry.attempts[-1].file_ids_connected == [file.id]


def test_duplicate_download_revives_deleted_file(store, blobs):
    repository.save(store, PARTNERS, make_partner(id="p1", email_domains=["acme.de"]))
    _save_transaction(store, "t1", partner_id="p1")
    repository.save(
        store,
        FILES,
        make_file(
            id="f-old",
            content_hash=content_hash(PDF_BYTES),
            deleted_at=utc(2024, 2, 1),
            extracted_text="old text",
        ),
    )
    mailbox = _invoice_mailbox()
    _connect_mailbox(store, mailbox)
    processor = _processor(store, mailbox, blobs=blobs)
    processor.queue.enqueue(
        USER_ID,
        SearchScope.SINGLE_TRANSACTION,
        transaction_id="t1",
        strategies=[SearchStrategyName.EMAIL_ATTACHMENT],
    )

    processor.drain()

    [file] = repository.query_models(store, FILES, TaxFile)
    assert file.id == "f-old"
    assert file.deleted_at is None
    assert not file.extraction_complete
    assert file.extracted_text is None
    assert file.precision_search_hint.transaction_id == "t1"


def test_mail_body_invoice_is_rendered_and_links_saved(store, blobs):
    repository.save(store, PARTNERS, make_partner(id="p1", email_domains=["acme.de"]))
    _save_transaction(store, "t1", partner_id="p1")
    message = MailMessage(
        message_id="m2",
        subject="Your order confirmation from Acme",
        sender="Acme <billing@acme.de>",
        date=utc(2024, 3, 9, 12, 0),
        html_body=(
            "<p>Thanks for your order. Total: 49,99 EUR</p>"
            '<a href="https://acme.de/invoice/123">Download invoice</a>'
        ),
    )
    mailbox = FakeMailbox(messages=[message])
    _connect_mailbox(store, mailbox)
    processor = _processor(store, mailbox, blobs=blobs)
    processor.queue.enqueue(
        USER_ID,
        SearchScope.SINGLE_TRANSACTION,
        transaction_id="t1",
        strategies=[SearchStrategyName.EMAIL_INVOICE],
    )

    processor.drain()

    [file] = repository.query_models(store, FILES, TaxFile)
    assert file.source_type == FileSourceType.GMAIL_HTML_INVOICE
    assert file.file_name == "Your_order_confirmation_from_Acme.html"
    assert file.file_type == "text/html"
    assert b"Download invoice" in blobs.get(file.storage_path)
    assert not any(q.endswith("has:attachment") for q in mailbox.searches)

    partner = repository.load(store, PARTNERS, Partner, "p1")
    assert [link.url for link in partner.invoice_links] == ["https://acme.de/invoice/123"]
    [entry] = _entries(store, "t1")
    assert entry.attempts[0].invoice_links_found == 1


def test_revoked_token_flags_integration(store):
    _save_transaction(store, "t1")
    mailbox = _invoice_mailbox()
    mailbox.search_error = MailboxAuthError("token revoked")
    _connect_mailbox(store, mailbox)
    processor = _processor(store, mailbox)
    processor.queue.enqueue(
        USER_ID,
        SearchScope.SINGLE_TRANSACTION,
        transaction_id="t1",
        strategies=[SearchStrategyName.EMAIL_ATTACHMENT, SearchStrategyName.EMAIL_INVOICE],
    )

    [result] = processor.drain()

    assert result.status == QueueStatus.COMPLETED
    assert len(mailbox.searches) == 1
    assert any("token revoked" in e for e in result.errors)
    integration = repository.load(store, EMAIL_INTEGRATIONS, EmailIntegration, "int-1")
    assert integration.needs_reauth
    [entry] = _entries(store, "t1")
    assert entry.attempts[1].search_params == {"skipped": "no mailbox connected"}


@pytest.mark.parametrize("scope", [SearchScope.SINGLE_TRANSACTION, SearchScope.ALL_INCOMPLETE])
def test_mailboxes_are_closed_after_each_run(store, scope):
    _save_transaction(store, "t1")
    mailbox = _invoice_mailbox()
    _connect_mailbox(store, mailbox)
    processor = _processor(store, mailbox)
    processor.queue.enqueue(USER_ID, scope, transaction_id="t1")

    processor.drain()

    assert mailbox.closed


def test_configured_mailbox_settings_reach_clients(store):
    config = MatchConfig()
    config.mailbox.request_delay_seconds = 5.0
    config.mailbox.api_base_url = "https://mail.example.invalid/api"
    _connect_mailbox(store, FakeMailbox())
    processor = SearchQueueProcessor(store, config)

    with MailboxPool(store, processor.client_factory) as pool:
        [client] = pool.clients_for(USER_ID)
        assert isinstance(client, GmailClient)
        assert client.rate_limiter.min_interval == 5.0
        assert client.config.api_base_url == "https://mail.example.invalid/api"


def test_mailbox_errors_are_recorded_per_transaction(store):
    _save_transaction(store, "t1", date=date(2024, 3, 1))
    _save_transaction(store, "t2", date=date(2024, 3, 2))
    mailbox = _invoice_mailbox()
    mailbox.search_error = MailboxError("quota exceeded")
    _connect_mailbox(store, mailbox)
    processor = _processor(store, mailbox)
    processor.queue.enqueue(
        USER_ID, SearchScope.ALL_INCOMPLETE, strategies=[SearchStrategyName.EMAIL_ATTACHMENT]
    )

    [result] = processor.drain()

    assert result.status == QueueStatus.COMPLETED
    assert result.transactions_processed == 2
    assert result.retry_count == 0
    assert len(result.errors) == 2
    assert all("quota exceeded" in e for e in result.errors)
    integration = repository.load(store, EMAIL_INTEGRATIONS, EmailIntegration, "int-1")
    assert not integration.needs_reauth


def test_broken_partner_does_not_block_other_transactions(store):
    store.set(PARTNERS, "broken", {"id": "broken", "user_id": USER_ID})
    _save_transaction(store, "t1", date=date(2024, 3, 1), partner_id="broken")
    _save_transaction(store, "t2", date=date(2024, 3, 2))
    processor = _processor(store)
    processor.queue.enqueue(
        USER_ID, SearchScope.ALL_INCOMPLETE, strategies=[SearchStrategyName.AMOUNT_FILES]
    )

    [result] = processor.drain()

    assert result.status == QueueStatus.COMPLETED
    assert result.transactions_processed == 2
    assert result.retry_count == 0
    assert len(result.errors) == 1
    assert result.errors[0].startswith("t1: ")
    assert _entries(store, "t1") == []
    [entry] = _entries(store, "t2")
    assert entry.status == SearchEntryStatus.COMPLETED
