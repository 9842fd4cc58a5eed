"""
Excel export of precision search history.
Creates a workbook with job, attempt and failure sheets for operators.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Optional
import logging

from openpyxl import Workbook
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.worksheet.worksheet import Worksheet

from ..config import MatchConfig
from ..models.search import QueueStatus, SearchEntry, SearchQueueItem
from ..utils.exceptions import ReportGenerationError

logger = logging.getLogger(__name__)

# Style definitions
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
MATCH_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
PENDING_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
FAILED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

STATUS_FILLS = {
    QueueStatus.COMPLETED: MATCH_FILL,
    QueueStatus.PENDING: PENDING_FILL,
    QueueStatus.PROCESSING: PENDING_FILL,
    QueueStatus.FAILED: FAILED_FILL,
}


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


class SearchHistoryReport:
    """Generates the search history workbook."""

    def __init__(self, config: Optional[MatchConfig] = None):
        """
        Initialize the report generator.

        Args:
            config: Application configuration
        """
        self.config = config or MatchConfig()
        self.report_config = self.config.report

    def generate(
        self,
        queue_items: list[SearchQueueItem],
        entries: list[SearchEntry],
        output_path: Path,
    ) -> Path:
        """
        Generate the search history workbook.

        Args:
            queue_items: Search jobs to summarize
            entries: Per-transaction search history
            output_path: Path for output file

        Returns:
            Path to generated report

        Raises:
            ReportGenerationError: If the workbook cannot be written
        """
        logger.info(f"Generating search history report: {output_path}")

        wb = Workbook()

        # Remove default sheet
        if wb.active:
            wb.remove(wb.active)

        self._create_jobs_sheet(wb, queue_items)
        self._create_attempts_sheet(wb, entries)
        self._create_failures_sheet(wb, [i for i in queue_items if i.status == QueueStatus.FAILED])

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            wb.save(output_path)
        except OSError as e:
            raise ReportGenerationError(f"Cannot write report {output_path}: {e}") from e

        logger.info(f"Report saved: {output_path}")
        return output_path

    def _write_headers(self, ws: Worksheet, headers: list[str]) -> None:
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.border = THIN_BORDER

    def _write_row(
        self, ws: Worksheet, row_num: int, values: list[Any], fill: Optional[PatternFill] = None
    ) -> None:
        for col, value in enumerate(values, start=1):
            cell = ws.cell(row=row_num, column=col, value=value)
            cell.border = THIN_BORDER
            if fill is not None:
                cell.fill = fill

    def _create_jobs_sheet(self, wb: Workbook, queue_items: list[SearchQueueItem]) -> None:
        """Create the job summary sheet, one row per queue item."""
        ws = wb.create_sheet(self.report_config.summary_sheet)

        headers = [
            "Job ID",
            "User",
            "Scope",
            "Transaction",
            "Triggered By",
            "Status",
            "Processed",
            "To Process",
            "With Matches",
            "Files Connected",
            "Retries",
            "Errors",
            "Created",
            "Completed",
        ]
        self._write_headers(ws, headers)

        ordered = sorted(queue_items, key=lambda i: i.created_at)
        for row_num, item in enumerate(ordered, start=2):
            row_data = [
                item.id,
                item.user_id,
                item.scope.value,
                item.transaction_id or "",
                item.triggered_by.value,
                item.status.value,
                item.transactions_processed,
                item.transactions_to_process,
                item.transactions_with_matches,
                item.total_files_connected,
                item.retry_count,
                len(item.errors),
                _format_time(item.created_at),
                _format_time(item.completed_at),
            ]
            self._write_row(ws, row_num, row_data, STATUS_FILLS.get(item.status))

        ws.freeze_panes = "A2"
        self._auto_fit_columns(ws)

    def _create_attempts_sheet(self, wb: Workbook, entries: list[SearchEntry]) -> None:
        """Create the attempt log sheet, one row per strategy attempt."""
        ws = wb.create_sheet(self.report_config.attempts_sheet)

        headers = [
            "Job ID",
            "Transaction",
            "Strategy",
            "Started",
            "Candidates Found",
            "Evaluated",
            "Matches",
            "Files",
            "Best Score",
            "Great Matches",
            "Queries",
            "Invoice Links",
            "AI Calls",
            "Error",
        ]
        self._write_headers(ws, headers)

        row_num = 2
        for entry in entries:
            for attempt in entry.attempts:
                row_data = [
                    entry.search_queue_id,
                    entry.transaction_id,
                    attempt.strategy.value,
                    _format_time(attempt.started_at),
                    attempt.candidates_found,
                    attempt.candidates_evaluated,
                    attempt.matches_found,
                    ", ".join(attempt.file_ids_connected),
                    attempt.best_match_score if attempt.best_match_score is not None else "",
                    attempt.great_match_count,
                    attempt.queries_issued,
                    attempt.invoice_links_found,
                    attempt.ai_calls,
                    attempt.error or "",
                ]
                fill = MATCH_FILL if attempt.file_ids_connected else None
                if attempt.error:
                    fill = FAILED_FILL
                self._write_row(ws, row_num, row_data, fill)
                row_num += 1

        ws.freeze_panes = "A2"
        self._auto_fit_columns(ws)

    def _create_failures_sheet(self, wb: Workbook, failed: list[SearchQueueItem]) -> None:
        """Create the failed jobs sheet with the errors kept for inspection."""
        ws = wb.create_sheet(self.report_config.failures_sheet)

        headers = ["Job ID", "User", "Scope", "Retries", "Failed At", "Last Error", "Job Errors"]
        self._write_headers(ws, headers)

        for row_num, item in enumerate(failed, start=2):
            row_data = [
                item.id,
                item.user_id,
                item.scope.value,
                f"{item.retry_count}/{item.max_retries}",
                _format_time(item.completed_at),
                item.last_error or "",
                "\n".join(item.errors),
            ]
            self._write_row(ws, row_num, row_data, FAILED_FILL)

        self._auto_fit_columns(ws)

    def _auto_fit_columns(self, ws: Worksheet) -> None:
        """Auto-fit column widths based on content."""
        for column_cells in ws.columns:
            max_length = 0
            column = column_cells[0].column_letter

            for cell in column_cells:
                if cell.value is not None:
                    max_length = max(max_length, len(str(cell.value)))

            ws.column_dimensions[column].width = min(max_length + 2, 50)
