from datetime import date

from ledger_match.integrations.mailbox import MailAttachment
from ledger_match.integrations.pool import MailboxPool
from ledger_match.models.base import utcnow
from ledger_match.models.search import SearchQueueItem, SearchScope, SearchStrategyName
from ledger_match.models.transaction import PartnerType, TaxFile
from ledger_match.search.email_utils import (
    build_search_query,
    classify_email,
    extract_invoice_links,
    is_within_days,
    safe_filename,
    sender_address,
)
from ledger_match.search.orchestrator import SearchQueueProcessor
from ledger_match.search.strategies import SearchContext, build_pipeline
from ledger_match.store import repository
from ledger_match.store.base import FILES

from factories import USER_ID, make_file, make_partner, make_transaction, utc


def _strategy(store, name):
    services = SearchQueueProcessor(store).services
    [descriptor] = build_pipeline(services, [name])
    return descriptor.strategy


def _context(store, transaction, partner=None):
    return SearchContext(
        transaction=transaction,
        partner=partner,
        queue_item=SearchQueueItem(user_id=USER_ID, scope=SearchScope.SINGLE_TRANSACTION),
        mailboxes=MailboxPool(store),
    )


def test_partner_files_hints_unlinked_files(store):
    tx = make_transaction(id="t1", partner_id="p1")
    repository.save(store, FILES, make_file(id="f1", partner_id="p1"))
    repository.save(store, FILES, make_file(id="f2", partner_id="p1", transaction_ids=["t0"]))
    repository.save(store, FILES, make_file(id="f3", partner_id="p1", deleted_at=utcnow()))
    context = _context(store, tx, make_partner(id="p1"))

    attempt = _strategy(store, SearchStrategyName.PARTNER_FILES).execute(context)

    assert attempt.error is None
    assert attempt.candidates_found == 1
    assert attempt.file_ids_connected == ["f1"]
    assert attempt.best_match_score == 95
    assert attempt.great_match_count == 1
    # only mailbox strategies count towards the mailbox limit
    assert context.great_match_count == 0

    file = repository.load(store, FILES, TaxFile, "f1")
    assert file.precision_search_hint.strategy == "partner_files"
    assert not file.transaction_match_complete


def test_partner_files_without_partner(store):
    attempt = _strategy(store, SearchStrategyName.PARTNER_FILES).execute(
        _context(store, make_transaction(id="t1"))
    )
    assert attempt.search_params == {"skipped": "no partner assigned"}


def test_amount_files_offers_top_candidates(store):
    tx = make_transaction(id="t1", rejected_file_ids=["rejected"])
    for i in range(5):
        repository.save(store, FILES, make_file(id=f"f{i}"))
    repository.save(store, FILES, make_file(id="rejected"))
    repository.save(store, FILES, make_file(id="old", extracted_date=date(2023, 1, 1)))

    attempt = _strategy(store, SearchStrategyName.AMOUNT_FILES).execute(_context(store, tx))

    assert attempt.candidates_evaluated == 5
    assert attempt.matches_found == 3
    assert "rejected" not in attempt.file_ids_connected
    assert attempt.search_params["date_from"] == "2023-12-11"


def test_classify_email():
    pdf = MailAttachment("a1", "invoice.pdf", "application/pdf")

    with_pdf = classify_email("Your order confirmation", "", [pdf])
    assert with_pdf.has_pdf_attachment
    assert not with_pdf.possible_mail_invoice
    assert with_pdf.confidence == 70

    body_only = classify_email("Ihre Bestellung", "Rechnung herunterladen", [])
    assert body_only.possible_mail_invoice
    assert body_only.possible_invoice_link
    assert body_only.confidence == 55

    assert classify_email("Hello", "", [pdf]).confidence == 50


def test_extract_invoice_links():
    html = (
        '<a href="https://shop.de/account/invoice/1">Rechnung herunterladen</a>'
        '<a href="https://shop.de/docs/2">Download PDF</a>'
        '<a href="https://shop.de/help">Help</a>'
        '<a href="mailto:billing@shop.de">invoice</a>'
    )
    assert extract_invoice_links(html) == [
        ("https://shop.de/account/invoice/1", "Rechnung herunterladen"),
        ("https://shop.de/docs/2", "Download PDF"),
    ]
    assert extract_invoice_links(None) == []


def test_email_helpers():
    assert sender_address("Shop <Billing@Shop.de>") == "billing@shop.de"
    assert sender_address("Shop Team") is None
    assert build_search_query("acme", True) == "acme has:attachment"
    assert build_search_query("acme has:attachment", True) == "acme has:attachment"
    assert build_search_query("acme", False) == "acme"
    assert is_within_days(utc(2024, 3, 1), date(2024, 3, 10), 10)
    assert not is_within_days(utc(2024, 1, 1), date(2024, 3, 10), 10)
    assert not is_within_days(None, date(2024, 3, 10), 10)
    assert safe_filename("Ihre Rechnung: März/2024") == "Ihre_Rechnung_März2024"
    assert safe_filename("???", default="invoice") == "invoice"


def test_global_partner_does_not_learn_links(store):
    partner = make_partner(id="g1", user_id=None, partner_type=PartnerType.GLOBAL)
    strategy = _strategy(store, SearchStrategyName.EMAIL_INVOICE)
    context = _context(store, make_transaction(id="t1"), partner)

    strategy._remember_invoice_links(context, None, [("https://shop.de/invoice/1", "")])

    assert partner.invoice_links == []
