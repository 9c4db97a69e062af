"""
Export Service - 导出服务
功能: 期刊列表 CSV 导出 + 统计报告 XLSX 导出（不依赖 pandas）

中文注释:
- CSV: 每条记录一行，结果为空时只输出表头
- XLSX: 统计数据按板块拆成多个 Sheet
"""

import csv
import io
from datetime import date, datetime
from typing import TYPE_CHECKING, Iterable, Optional

from openpyxl import Workbook

from app.models.journal import JournalRecord, JournalSearchCriteria
from app.models.journal_stats import JournalStats

if TYPE_CHECKING:
    from app.services.journal_query_service import JournalQueryService
    from app.services.journal_stats_service import JournalStatsService

CSV_HEADERS = (
    "Title",
    "Authors",
    "Abstract",
    "Keywords",
    "Volume Year",
    "Volume Quarter",
    "Status",
    "Submitted By",
    "Created Date",
    "Published Date",
)

ABSTRACT_PREVIEW_CHARS = 100


def _fmt_date(value: Optional[datetime]) -> str:
    return value.date().isoformat() if value else ""


def _abstract_preview(text: str | None) -> str:
    return f"{(text or '')[:ABSTRACT_PREVIEW_CHARS]}..."


def journal_csv_row(record: JournalRecord) -> list[str | int]:
    return [
        record.title or "",
        ", ".join(record.authors),
        _abstract_preview(record.abstract),
        ", ".join(record.keywords),
        record.volume_year,
        record.volume_quarter,
        record.status.value,
        record.submitted_by or "",
        _fmt_date(record.created_at),
        _fmt_date(record.publication_date),
    ]


def journals_to_csv(records: Iterable[JournalRecord]) -> str:
    text = io.StringIO()
    writer = csv.writer(text)
    writer.writerow(CSV_HEADERS)
    for record in records:
        writer.writerow(journal_csv_row(record))
    return text.getvalue()


def export_filename(today: date | None = None) -> str:
    return f"journals-export-{(today or date.today()).isoformat()}.csv"


def stats_to_xlsx(stats: JournalStats) -> io.BytesIO:
    """
    统计报告 -> XLSX

    中文注释:
    - 多 Sheet 结构: Overview, Quarterly, Yearly, Top Journals, Status, Monthly
    - 直接使用 openpyxl（避免 pandas/numpy 依赖，显著加快部署构建）
    """
    output = io.BytesIO()
    wb = Workbook()

    def _write_table(ws, headers, rows):
        ws.append(list(headers))
        wrote = False
        for r in rows:
            ws.append(list(r))
            wrote = True
        if not wrote:
            ws.append(["no data"])

    ov = stats.overview
    ws_overview = wb.active
    ws_overview.title = "Overview"
    _write_table(
        ws_overview,
        headers=("Metric", "Value"),
        rows=(
            ("Year", ov.current_year),
            ("Published journals", ov.total_journals),
            ("Published this year", ov.current_year_journals),
            ("Total submissions", ov.total_submissions),
            ("Pending reviews", ov.pending_reviews),
            ("Total downloads", ov.total_downloads),
            ("Average downloads", ov.avg_downloads),
            ("Unique authors", ov.total_authors),
            ("Generated at", stats.generated_at.isoformat()),
        ),
    )

    _write_table(
        wb.create_sheet("Quarterly"),
        headers=("Quarter", "Count", "Downloads", "Average downloads"),
        rows=((f"Q{q.quarter}", q.count, q.downloads, q.avg_downloads) for q in stats.quarterly_stats),
    )
    _write_table(
        wb.create_sheet("Yearly"),
        headers=("Year", "Count", "Downloads", "Average downloads", "Unique authors"),
        rows=((y.year, y.count, y.downloads, y.avg_downloads, y.unique_authors) for y in stats.yearly_stats),
    )
    _write_table(
        wb.create_sheet("Top Journals"),
        headers=("Title", "Authors", "Volume", "Downloads"),
        rows=(
            (t.title, ", ".join(t.authors), f"{t.volume_year} - Quarter {t.volume_quarter}", t.download_count)
            for t in stats.top_journals
        ),
    )
    _write_table(
        wb.create_sheet("Status"),
        headers=("Status", "Count"),
        rows=stats.status_distribution.items(),
    )
    _write_table(
        wb.create_sheet("Monthly"),
        headers=("Month", "Count", "Downloads"),
        rows=((m.month, m.count, m.downloads) for m in stats.monthly_trends),
    )

    wb.save(output)
    output.seek(0)
    return output


class ExportService:
    """
    导出服务（组合查询服务与统计服务）
    """

    def __init__(self, query_service: "JournalQueryService", stats_service: "JournalStatsService"):
        self.query_service = query_service
        self.stats_service = stats_service

    def export_csv(self, criteria: JournalSearchCriteria) -> str:
        # 指定 id 列表时忽略其它过滤条件
        if criteria.journal_ids:
            criteria = JournalSearchCriteria(journal_ids=criteria.journal_ids)
        export_criteria = criteria.model_copy(update={"search_keywords": False, "search_authors": True})
        return journals_to_csv(self.query_service.select(export_criteria))

    def export_stats_xlsx(self, year: Optional[int] = None) -> io.BytesIO:
        return stats_to_xlsx(self.stats_service.get_stats(year))
