import csv
import io
from datetime import date

from openpyxl import load_workbook

from app.core.export_service import CSV_HEADERS, ExportService, export_filename, journals_to_csv
from app.models.journal import JournalSearchCriteria, LifecycleStatus


def _rows(text: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(text)))


def test_empty_export_is_header_only():
    assert _rows(journals_to_csv([])) == [list(CSV_HEADERS)]


def test_csv_row_layout(make_record, now):
    record = make_record(
        title='Yield, "quoted" title',
        authors=["Alice", "Bob"],
        abstract="x" * 150,
        keywords=["soil", "water"],
        submitted_by="alice@example.com",
        publication_date=now,
    )
    header, row = _rows(journals_to_csv([record]))

    assert header == list(CSV_HEADERS)
    assert row[0] == 'Yield, "quoted" title'
    assert row[1] == "Alice, Bob"
    assert row[2] == "x" * 100 + "..."
    assert row[3] == "soil, water"
    assert row[4:8] == [str(now.year), "2", "published", "alice@example.com"]
    assert row[9] == now.date().isoformat()


def test_export_filename_uses_date():
    assert export_filename(date(2026, 1, 2)) == "journals-export-2026-01-02.csv"


def test_export_by_ids_ignores_other_filters(query_service, stats_service, make_record):
    wanted = make_record(status=LifecycleStatus.SUBMITTED, title="Picked")
    make_record(title="Not picked")

    service = ExportService(query_service, stats_service)
    text = service.export_csv(JournalSearchCriteria(journal_ids=[wanted.id], status=LifecycleStatus.PUBLISHED))

    rows = _rows(text)
    assert len(rows) == 2
    assert rows[1][0] == "Picked"


def test_stats_workbook_has_one_sheet_per_section(query_service, stats_service, make_record):
    make_record(download_count=3)
    output = ExportService(query_service, stats_service).export_stats_xlsx()

    wb = load_workbook(output)
    assert wb.sheetnames == ["Overview", "Quarterly", "Yearly", "Top Journals", "Status", "Monthly"]
    assert wb["Quarterly"].max_row == 5
    assert wb["Top Journals"]["D2"].value == 3
