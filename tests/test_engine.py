from datetime import date

import pytest

from ledger_match.matching.engine import MatchingEngine
from ledger_match.models.base import utcnow
from ledger_match.models.transaction import (
    MatchedBy,
    PrecisionSearchHint,
    TaxFile,
    Transaction,
)
from ledger_match.store import repository
from ledger_match.store.base import CATEGORIES, FILES, PARTNERS, TRANSACTIONS
from ledger_match.utils.exceptions import DocumentNotFoundError

from factories import USER_ID, make_category, make_file, make_partner, make_transaction


def _save(store, collection, model):
    return repository.save(store, collection, model)


def _tx(store, tx_id):
    return repository.load(store, TRANSACTIONS, Transaction, tx_id)


def _file(store, file_id):
    return repository.load(store, FILES, TaxFile, file_id)


def _hint(tx_id, tx_date=date(2024, 3, 10)):
    return PrecisionSearchHint(
        transaction_id=tx_id,
        transaction_amount=-4999,
        transaction_date=tx_date,
        strategy="email_attachment",
        match_confidence=95,
    )


def test_match_partners_auto_applies_and_respects_manual(store):
    _save(store, PARTNERS, make_partner(id="p1", ibans=["DE89 3704 0044 0532 0130 00"]))
    _save(store, TRANSACTIONS, make_transaction(id="t1", partner_iban="DE89370400440532013000"))
    _save(
        store,
        TRANSACTIONS,
        make_transaction(
            id="t2",
            partner_iban="DE89370400440532013000",
            partner_id="other",
            partner_matched_by=MatchedBy.MANUAL,
        ),
    )
    _save(store, TRANSACTIONS, make_transaction(id="t3", name="Zeta Services", partner="Zeta"))

    summary = MatchingEngine(store).match_partners(USER_ID)

    assert summary.processed == 2
    assert summary.skipped == 1
    assert summary.auto_applied == 1
    assert summary.unmatched == 1

    t1 = _tx(store, "t1")
    assert t1.partner_id == "p1"
    assert t1.partner_match_confidence == 100
    assert t1.partner_matched_by == MatchedBy.AUTO
    assert t1.partner_suggestions[0].source == "iban"

    t2 = _tx(store, "t2")
    assert t2.partner_id == "other"
    assert t2.partner_suggestions == []


def test_match_partners_unknown_transaction(store):
    with pytest.raises(DocumentNotFoundError):
        MatchingEngine(store).match_partners(USER_ID, ["missing"])


def test_match_file_connects_and_suggests(store):
    _save(store, TRANSACTIONS, make_transaction(id="t1", partner_id="p1", partner_matched_by=MatchedBy.AUTO))
    _save(store, TRANSACTIONS, make_transaction(id="t2", date=date(2024, 3, 15)))
    _save(store, TRANSACTIONS, make_transaction(id="t3", rejected_file_ids=["f1"]))
    _save(store, FILES, make_file(id="f1", precision_search_hint=_hint("t1")))

    outcomes = MatchingEngine(store).match_file("f1")

    assert [o.transaction_id for o in outcomes] == ["t1", "t2"]
    t1 = _tx(store, "t1")
    assert t1.file_ids == ["f1"]
    assert t1.is_complete
    assert _tx(store, "t3").file_ids == []

    file = _file(store, "f1")
    assert file.transaction_ids == ["t1"]
    assert file.transaction_match_complete
    assert file.precision_search_hint is None
    assert [s.transaction_id for s in file.transaction_suggestions] == ["t2"]
    assert file.partner_id == "p1"
    assert file.partner_matched_by == MatchedBy.AUTO


def test_hinted_transaction_outside_window_is_scored(store):
    _save(store, TRANSACTIONS, make_transaction(id="t9", date=date(2024, 6, 1)))
    _save(store, FILES, make_file(id="f1", precision_search_hint=_hint("t9", date(2024, 6, 1))))

    outcomes = MatchingEngine(store).match_file("f1")

    assert [o.transaction_id for o in outcomes] == ["t9"]
    assert outcomes[0].score.breakdown.hint == 40


def test_file_not_ready(store):
    _save(store, FILES, make_file(id="f1", extraction_complete=False))
    engine = MatchingEngine(store)
    assert engine.match_file("f1") == []
    with pytest.raises(DocumentNotFoundError):
        engine.match_file("missing")


def test_manual_file_partner_wins_conflict(store):
    _save(store, TRANSACTIONS, make_transaction(id="t1", partner_id="p1", partner_matched_by=MatchedBy.AUTO))
    _save(
        store,
        FILES,
        make_file(
            id="f1",
            partner_id="p2",
            partner_matched_by=MatchedBy.MANUAL,
            precision_search_hint=_hint("t1"),
        ),
    )

    MatchingEngine(store).match_file("f1")

    t1 = _tx(store, "t1")
    assert t1.file_ids == ["f1"]
    assert t1.partner_id == "p2"
    assert t1.partner_matched_by == MatchedBy.MANUAL


def test_manual_transaction_partner_wins_conflict(store):
    _save(store, TRANSACTIONS, make_transaction(id="t1", partner_id="p1", partner_matched_by=MatchedBy.MANUAL))
    _save(
        store,
        FILES,
        make_file(
            id="f1",
            partner_id="p2",
            partner_matched_by=MatchedBy.AUTO,
            precision_search_hint=_hint("t1"),
        ),
    )

    MatchingEngine(store).match_file("f1")

    assert _tx(store, "t1").partner_id == "p1"
    assert _file(store, "f1").partner_id == "p1"


def test_match_pending_files_skips_deleted(store):
    _save(store, TRANSACTIONS, make_transaction(id="t1", partner_id="p1"))
    _save(store, FILES, make_file(id="f1", partner_id="p1"))
    _save(store, FILES, make_file(id="f2", deleted_at=utcnow()))

    summary = MatchingEngine(store).match_pending_files(USER_ID)

    assert summary.processed == 1
    assert summary.skipped == 1
    assert summary.auto_applied == 1
    assert _file(store, "f2").transaction_ids == []


def test_match_categories_auto_apply_completes_transaction(store):
    _save(store, PARTNERS, make_partner(id="p1"))
    _save(store, CATEGORIES, make_category(id="c1", matched_partner_ids=["p1"]))
    _save(store, TRANSACTIONS, make_transaction(id="t1", partner_id="p1"))
    _save(store, TRANSACTIONS, make_transaction(id="t2", partner_id="p1", file_ids=["f1"]))

    summary = MatchingEngine(store).match_categories(USER_ID)

    assert summary.processed == 1
    assert summary.skipped == 1
    t1 = _tx(store, "t1")
    assert t1.no_receipt_category_id == "c1"
    assert t1.category_matched_by == MatchedBy.AUTO
    assert t1.is_complete
    # partner without known file sources gets the no-receipt boost
    assert t1.no_receipt_category_confidence == 97
    assert _tx(store, "t2").no_receipt_category_id is None


def test_generate_summary(store):
    _save(store, TRANSACTIONS, make_transaction(id="t1", is_complete=True, file_ids=["f1"]))
    _save(store, TRANSACTIONS, make_transaction(id="t2", partner_id="p1", partner_matched_by=MatchedBy.MANUAL))
    _save(store, TRANSACTIONS, make_transaction(id="t3"))

    summary = MatchingEngine(store).generate_summary(USER_ID)

    assert summary["transactions"] == 3
    assert summary["complete"] == 1
    assert summary["incomplete"] == 2
    assert summary["with_files"] == 1
    assert summary["partner_manual"] == 1
