import logging

import pytest
from click.testing import CliRunner

from ledger_match.cli import main
from ledger_match.models.search import SearchQueueItem
from ledger_match.store import repository
from ledger_match.store.base import PARTNERS, SEARCH_QUEUE, TRANSACTIONS
from ledger_match.store.json_store import JsonFileStore

from factories import USER_ID, make_partner, make_transaction


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logging.getLogger("ledger_match").handlers = []


def _seed(path):
    store = JsonFileStore(path)
    repository.save(store, PARTNERS, make_partner(id="p1", ibans=["DE89370400440532013000"]))
    repository.save(
        store,
        TRANSACTIONS,
        make_transaction(id="t1", partner_iban="DE89370400440532013000", reference="RE-2024.014"),
    )
    return store


def test_init_config(tmp_path):
    output = tmp_path / "config.yaml"
    result = CliRunner().invoke(main, ["init-config", "-o", str(output)])
    assert result.exit_code == 0
    assert output.exists()


def test_match_partners(tmp_path):
    data = tmp_path / "store.json"
    _seed(data)

    result = CliRunner().invoke(main, ["match-partners", USER_ID, "-d", str(data)])

    assert result.exit_code == 0, result.output
    assert "Partner Matching" in result.output
    assert JsonFileStore(data).get(TRANSACTIONS, "t1")["partner_id"] == "p1"


def test_search_queue_round_trip(tmp_path):
    data = tmp_path / "store.json"
    _seed(data)
    runner = CliRunner()

    queued = runner.invoke(
        main, ["enqueue-search", USER_ID, "-d", str(data), "-t", "t1", "-s", "amount_files"]
    )
    assert queued.exit_code == 0, queued.output
    assert "Queued search" in queued.output

    processed = runner.invoke(main, ["process-queue", "-d", str(data)])
    assert processed.exit_code == 0, processed.output
    assert "Search Jobs" in processed.output

    [item] = repository.query_models(JsonFileStore(data), SEARCH_QUEUE, SearchQueueItem)
    assert item.status.value == "completed"

    empty = runner.invoke(main, ["process-queue", "-d", str(data), "--once"])
    assert "No pending search jobs" in empty.output

    report = tmp_path / "history.xlsx"
    exported = runner.invoke(main, ["export-history", "-d", str(data), "-o", str(report)])
    assert exported.exit_code == 0, exported.output
    assert report.exists()


def test_suggest_queries(tmp_path):
    data = tmp_path / "store.json"
    _seed(data)

    result = CliRunner().invoke(main, ["suggest-queries", "t1", "-d", str(data), "-n", "3"])

    assert result.exit_code == 0, result.output
    assert "invoice_number" in result.output


def test_errors_exit_nonzero(tmp_path):
    data = tmp_path / "store.json"
    _seed(data)

    result = CliRunner().invoke(main, ["match-files", USER_ID, "-d", str(data), "-f", "missing"])

    assert result.exit_code == 1
    assert "Error" in result.output
