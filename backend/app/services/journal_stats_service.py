"""
Published journal 统计服务

中文注释:
- 一次取出全部记录，在应用层聚合（与 analytics 的 scoped 路径一致：Python 侧 group-by）。
- 缺失的 download_count 一律按 0 处理；记录集为空时返回全 0 / 空结构，不抛异常。
- 平均值按四舍五入（half-up）取整。
"""

from __future__ import annotations

import logging
import math
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from app.models.journal import JournalRecord, LifecycleStatus
from app.models.journal_stats import (
    JournalStats,
    MonthlyTrend,
    QuarterStat,
    StatsOverview,
    TopJournal,
    YearStat,
)
from app.services.journal_repository import JournalRepository

logger = logging.getLogger("agricjournal.journals.stats")

YEARLY_WINDOW = 5
TOP_JOURNALS_LIMIT = 10
RECENT_ACTIVITY_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def average(total: int, count: int) -> int:
    return round_half_up(total / count) if count else 0


def normalize_author(name: str | None) -> str:
    return (name or "").strip().lower()


def unique_author_count(records: Iterable[JournalRecord]) -> int:
    seen: set[str] = set()
    for r in records:
        for author in r.authors:
            key = normalize_author(author)
            if key:
                seen.add(key)
    return len(seen)


def _downloads(records: Iterable[JournalRecord]) -> int:
    return sum(int(r.download_count or 0) for r in records)


class JournalStatsService:
    def __init__(self, *, repository: JournalRepository | None = None, clock: Callable[[], datetime] = _utcnow):
        self.repository = repository or JournalRepository()
        self.clock = clock

    def get_stats(self, year: Optional[int] = None) -> JournalStats:
        now = self.clock()
        target_year = int(year) if year is not None else now.year

        records = self.repository.list()
        published = [r for r in records if r.status == LifecycleStatus.PUBLISHED]
        published_in_year = [r for r in published if r.volume_year == target_year]

        stats = JournalStats(
            overview=self._overview(records, published, published_in_year, target_year),
            quarterly_stats=self._quarterly(published_in_year),
            yearly_stats=self._yearly(published),
            top_journals=self._top_journals(published),
            recent_activity=self._recent_activity(records, now),
            status_distribution=self._status_distribution(records),
            available_years=sorted({r.volume_year for r in published}, reverse=True),
            monthly_trends=self._monthly(published_in_year),
            generated_at=now,
            requested_year=target_year,
        )
        logger.info(
            "journal stats computed year=%s total=%s downloads=%s authors=%s",
            target_year,
            stats.overview.total_journals,
            stats.overview.total_downloads,
            stats.overview.total_authors,
        )
        return stats

    @staticmethod
    def _overview(
        records: list[JournalRecord],
        published: list[JournalRecord],
        published_in_year: list[JournalRecord],
        target_year: int,
    ) -> StatsOverview:
        pending = set(LifecycleStatus.pending())
        total_downloads = _downloads(published)
        return StatsOverview(
            total_journals=len(published),
            current_year_journals=len(published_in_year),
            total_submissions=len(records),
            pending_reviews=sum(1 for r in records if r.status in pending),
            total_downloads=total_downloads,
            avg_downloads=average(total_downloads, len(published)),
            total_authors=unique_author_count(published),
            current_year=target_year,
        )

    @staticmethod
    def _quarterly(published_in_year: list[JournalRecord]) -> list[QuarterStat]:
        by_quarter: dict[int, list[JournalRecord]] = defaultdict(list)
        for r in published_in_year:
            by_quarter[r.volume_quarter].append(r)

        out: list[QuarterStat] = []
        for quarter in (1, 2, 3, 4):
            rows = by_quarter.get(quarter, [])
            downloads = _downloads(rows)
            out.append(
                QuarterStat(
                    quarter=quarter,
                    count=len(rows),
                    downloads=downloads,
                    avg_downloads=average(downloads, len(rows)),
                )
            )
        return out

    @staticmethod
    def _yearly(published: list[JournalRecord]) -> list[YearStat]:
        by_year: dict[int, list[JournalRecord]] = defaultdict(list)
        for r in published:
            by_year[r.volume_year].append(r)

        out: list[YearStat] = []
        for y in sorted(by_year, reverse=True)[:YEARLY_WINDOW]:
            rows = by_year[y]
            downloads = _downloads(rows)
            out.append(
                YearStat(
                    year=y,
                    count=len(rows),
                    downloads=downloads,
                    avg_downloads=average(downloads, len(rows)),
                    unique_authors=unique_author_count(rows),
                )
            )
        return out

    @staticmethod
    def _top_journals(published: list[JournalRecord]) -> list[TopJournal]:
        # sorted 是稳定排序：下载量相同的记录保持原有顺序
        ranked = sorted(
            (r for r in published if (r.download_count or 0) > 0),
            key=lambda r: r.download_count or 0,
            reverse=True,
        )
        return [
            TopJournal(
                id=r.id,
                title=r.title,
                authors=r.authors,
                volume_year=r.volume_year,
                volume_quarter=r.volume_quarter,
                download_count=r.download_count or 0,
                created_at=r.created_at,
            )
            for r in ranked[:TOP_JOURNALS_LIMIT]
        ]

    @staticmethod
    def _recent_activity(records: list[JournalRecord], now: datetime) -> dict[str, int]:
        since = now - timedelta(days=RECENT_ACTIVITY_DAYS)
        counter = Counter(r.status.value for r in records if r.created_at >= since)
        return dict(counter)

    @staticmethod
    def _status_distribution(records: list[JournalRecord]) -> dict[str, int]:
        # Counter.most_common 对相同计数保持首次出现顺序
        return dict(Counter(r.status.value for r in records).most_common())

    @staticmethod
    def _monthly(published_in_year: list[JournalRecord]) -> list[MonthlyTrend]:
        counts: Counter[int] = Counter()
        downloads: Counter[int] = Counter()
        for r in published_in_year:
            counts[r.created_at.month] += 1
            downloads[r.created_at.month] += int(r.download_count or 0)
        return [
            MonthlyTrend(month=m, count=counts[m], downloads=downloads[m])
            for m in sorted(counts)
        ]


_stats_service: JournalStatsService | None = None


def get_stats_service() -> JournalStatsService:
    global _stats_service
    if _stats_service is None:
        _stats_service = JournalStatsService()
    return _stats_service
