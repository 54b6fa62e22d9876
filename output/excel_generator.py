"""
Excel output generator for the zap activity feed.

Creates a formatted Excel workbook with multiple sheets:
1. Activity Feed
2. Sender Summary
3. Monthly Summary
4. Statistics
"""
import logging
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from ledger.models import TransferEvent, User
from normalizer.amount_parser import msat_to_sats
from normalizer.time_parser import to_datetime
from output.zap_stats import compute_zap_stats, monthly_totals, sender_leaderboard

logger = logging.getLogger(__name__)

# Style definitions
HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
UNKNOWN_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
ALT_ROW_FILL = PatternFill(start_color="F2F2F2", end_color="F2F2F2", fill_type="solid")
SATS_FORMAT = '#,##0'
DATETIME_FORMAT = 'DD-MMM-YYYY HH:MM'
UNKNOWN_USER = 'Unknown'


def generate_feed_excel(
    events: List[TransferEvent],
    users: List[User],
    output_path: str,
    now: float,
    stats: Optional[Dict[str, Any]] = None
) -> str:
    """
    Generate an Excel workbook with the activity feed.

    Args:
        events: Reconciled transfers, in display order
        users: The user roster
        output_path: Path to save the Excel file
        now: Current epoch seconds (for day-based statistics)
        stats: Precomputed statistics (computed if omitted)

    Returns:
        Path to the generated file
    """
    logger.info(f"Generating Excel output: {output_path}")

    wb = Workbook()

    # Remove default sheet
    if 'Sheet' in wb.sheetnames:
        del wb['Sheet']

    _create_feed_sheet(wb, events)
    _create_sender_summary_sheet(wb, events)
    _create_monthly_summary_sheet(wb, events)
    _create_statistics_sheet(wb, stats or compute_zap_stats(events, users, now))

    wb.save(output_path)
    logger.info(f"Excel file saved: {output_path}")

    return output_path


def _write_header(ws, headers: List[str]) -> None:
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal='center')


def _create_feed_sheet(wb: Workbook, events: List[TransferEvent]) -> None:
    """Create the Activity Feed sheet."""
    ws = wb.create_sheet("Activity Feed")

    headers = ["Time (UTC)", "From", "To", "Amount (Sats)", "Memo", "Checking ID"]
    _write_header(ws, headers)

    for row_idx, event in enumerate(events, 2):
        cell = ws.cell(row=row_idx, column=1, value=to_datetime(event.payment.time))
        cell.number_format = DATETIME_FORMAT

        ws.cell(row=row_idx, column=2, value=event.sender.display_name if event.sender else UNKNOWN_USER)
        ws.cell(row=row_idx, column=3, value=event.recipient.display_name if event.recipient else UNKNOWN_USER)

        cell = ws.cell(row=row_idx, column=4, value=msat_to_sats(event.amount))
        cell.number_format = SATS_FORMAT

        ws.cell(row=row_idx, column=5, value=event.memo)
        ws.cell(row=row_idx, column=6, value=event.checking_id)

        # Highlight transfers with an unknown recipient
        if event.is_ambiguous:
            for col in range(1, len(headers) + 1):
                ws.cell(row=row_idx, column=col).fill = UNKNOWN_FILL
        elif row_idx % 2 == 0:
            for col in range(1, len(headers) + 1):
                ws.cell(row=row_idx, column=col).fill = ALT_ROW_FILL

    for col, width in enumerate([20, 25, 25, 15, 50, 40], 1):
        ws.column_dimensions[_get_column_letter(col)].width = width

    ws.auto_filter.ref = f"A1:{_get_column_letter(len(headers))}{len(events) + 1}"
    ws.freeze_panes = "A2"


def _create_sender_summary_sheet(wb: Workbook, events: List[TransferEvent]) -> None:
    """Create the Sender Summary sheet."""
    ws = wb.create_sheet("Sender Summary")

    headers = ["Sender", "Transfers", "Total (Sats)", "Biggest (Sats)"]
    _write_header(ws, headers)

    leaderboard = sender_leaderboard(events, limit=len(events) or 1)
    row_idx = 2
    for row in leaderboard.itertuples(index=False):
        ws.cell(row=row_idx, column=1, value=row.sender)
        ws.cell(row=row_idx, column=2, value=int(row.transfers))
        cell = ws.cell(row=row_idx, column=3, value=int(row.total_sats))
        cell.number_format = SATS_FORMAT
        cell = ws.cell(row=row_idx, column=4, value=int(row.biggest_sats))
        cell.number_format = SATS_FORMAT
        row_idx += 1

    # Grand total
    row_idx += 1
    ws.cell(row=row_idx, column=1, value="GRAND TOTAL").font = Font(bold=True)
    ws.cell(row=row_idx, column=2, value=len(events)).font = Font(bold=True)
    cell = ws.cell(row=row_idx, column=3, value=sum(msat_to_sats(e.amount) for e in events))
    cell.number_format = SATS_FORMAT
    cell.font = Font(bold=True)

    for col, width in enumerate([25, 12, 18, 18], 1):
        ws.column_dimensions[_get_column_letter(col)].width = width

    ws.freeze_panes = "A2"


def _create_monthly_summary_sheet(wb: Workbook, events: List[TransferEvent]) -> None:
    """Create the Monthly Summary sheet."""
    ws = wb.create_sheet("Monthly Summary")

    headers = ["Month", "Transfers", "Total (Sats)"]
    _write_header(ws, headers)

    monthly = monthly_totals(events)
    for row_idx, row in enumerate(monthly.itertuples(index=False), 2):
        ws.cell(row=row_idx, column=1, value=row.month)
        ws.cell(row=row_idx, column=2, value=int(row.transfers))
        cell = ws.cell(row=row_idx, column=3, value=int(row.total_sats))
        cell.number_format = SATS_FORMAT

        if row_idx % 2 == 0:
            for col in range(1, 4):
                ws.cell(row=row_idx, column=col).fill = ALT_ROW_FILL

    for col, width in enumerate([15, 12, 18], 1):
        ws.column_dimensions[_get_column_letter(col)].width = width

    ws.freeze_panes = "A2"


def _create_statistics_sheet(wb: Workbook, stats: Dict[str, Any]) -> None:
    """Create the Statistics sheet."""
    ws = wb.create_sheet("Statistics")

    rows = [
        ("Summary Statistics", ""),
        ("", ""),
        ("Total Zaps Sent (Sats)", stats['total_sats']),
        ("Transfers", stats['transfer_count']),
        ("Number of Users", stats['number_of_users']),
        ("Number of Days", stats['number_of_days']),
        ("Average per User (Sats)", stats['average_per_user']),
        ("Average per Day (Sats)", stats['average_per_day']),
        ("Biggest Zap (Sats)", stats['biggest_zap']),
    ]

    for row_idx, (label, value) in enumerate(rows, 1):
        cell = ws.cell(row=row_idx, column=1, value=label)
        if label and value == "":
            cell.font = Font(bold=True, size=12)
        cell = ws.cell(row=row_idx, column=2, value=value)
        if isinstance(value, int):
            cell.number_format = SATS_FORMAT

    ws.column_dimensions['A'].width = 30
    ws.column_dimensions['B'].width = 20


def _get_column_letter(col_num: int) -> str:
    """Convert column number to letter (1 = A, 27 = AA, etc.)."""
    result = ""
    while col_num > 0:
        col_num, remainder = divmod(col_num - 1, 26)
        result = chr(65 + remainder) + result
    return result
