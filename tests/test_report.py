from openpyxl import load_workbook

from ledger_match.models.search import (
    QueueStatus,
    SearchAttempt,
    SearchEntry,
    SearchQueueItem,
    SearchScope,
    SearchStrategyName,
)
from ledger_match.reports.search_history import SearchHistoryReport

from factories import USER_ID, utc


def test_workbook_has_job_attempt_and_failure_sheets(tmp_path):
    done = SearchQueueItem(
        id="q1",
        user_id=USER_ID,
        scope=SearchScope.ALL_INCOMPLETE,
        status=QueueStatus.COMPLETED,
        transactions_to_process=2,
        transactions_processed=2,
        created_at=utc(2024, 3, 10, 8, 0),
        completed_at=utc(2024, 3, 10, 8, 5),
    )
    failed = SearchQueueItem(
        id="q2",
        user_id=USER_ID,
        scope=SearchScope.SINGLE_TRANSACTION,
        transaction_id="t9",
        status=QueueStatus.FAILED,
        retry_count=3,
        last_error="Transaction not found: t9",
        created_at=utc(2024, 3, 10, 9, 0),
    )
    entry = SearchEntry(
        user_id=USER_ID,
        transaction_id="t1",
        search_queue_id="q1",
        attempts=[
            SearchAttempt(strategy=SearchStrategyName.PARTNER_FILES),
            SearchAttempt(
                strategy=SearchStrategyName.EMAIL_ATTACHMENT,
                file_ids_connected=["f1"],
                best_match_score=95,
            ),
        ],
    )
    output = tmp_path / "reports" / "history.xlsx"

    path = SearchHistoryReport().generate([failed, done], [entry], output)

    wb = load_workbook(path)
    assert wb.sheetnames == ["Search Jobs", "Attempt Log", "Failed Jobs"]

    jobs = wb["Search Jobs"]
    assert jobs.max_row == 3
    assert jobs["A2"].value == "q1"
    assert jobs["A1"].font.bold

    attempts = wb["Attempt Log"]
    assert attempts.max_row == 3
    assert attempts["C3"].value == "email_attachment"
    assert attempts["I3"].value == 95

    failures = wb["Failed Jobs"]
    assert failures.max_row == 2
    assert failures["D2"].value == "3/3"
    assert failures["F2"].value == "Transaction not found: t9"
