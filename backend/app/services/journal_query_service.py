from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

from app.core.exceptions import InvalidArgument, NotFound
from app.core.identifiers import require_journal_id
from app.models.journal import (
    JournalRecord,
    JournalSearchCriteria,
    LifecycleStatus,
    Page,
    PendingReviewPage,
)
from app.services.journal_repository import JournalRepository

MIN_ARCHIVE_YEAR = 2000
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10
ADMIN_PAGE_SIZE = 20

_DATETIME_MIN = datetime.min.replace(tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_paging(page: Any, limit: Any, *, default_limit: int = DEFAULT_PAGE_SIZE) -> tuple[int, int]:
    """
    page 从 1 开始；limit 夹在 [1, 100]。非法值回退默认值。
    """
    try:
        page_num = int(page) if page is not None else 1
    except (TypeError, ValueError):
        page_num = 1
    try:
        size = int(limit) if limit is not None else default_limit
    except (TypeError, ValueError):
        size = default_limit
    return max(page_num, 1), min(max(size, 1), MAX_PAGE_SIZE)


def paginate(items: Sequence[JournalRecord], page: int, page_size: int) -> Page[JournalRecord]:
    total = len(items)
    start = (page - 1) * page_size
    return Page[JournalRecord](
        items=list(items[start : start + page_size]),
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if page_size else 0,
    )


def text_matches(query: str | None, fields: Iterable[str | None]) -> bool:
    """
    不区分大小写的子串匹配；整句不命中时退化为“所有词都出现”。
    """
    needle = (query or "").strip().lower()
    if not needle:
        return True
    haystack = " ".join(str(f or "") for f in fields).lower()
    if needle in haystack:
        return True
    tokens = needle.split()
    return len(tokens) > 1 and all(token in haystack for token in tokens)


def _search_fields(record: JournalRecord, criteria: JournalSearchCriteria) -> list[str]:
    fields = [record.title, record.abstract]
    if criteria.search_keywords:
        fields.extend(record.keywords)
    if criteria.search_authors:
        fields.extend(record.authors)
    return fields


def matches_criteria(record: JournalRecord, criteria: JournalSearchCriteria) -> bool:
    if criteria.search and not text_matches(criteria.search, _search_fields(record, criteria)):
        return False
    if criteria.author:
        needle = criteria.author.strip().lower()
        if needle and not any(needle in (a or "").lower() for a in record.authors):
            return False
    if criteria.keywords:
        wanted = [k.strip().lower() for k in criteria.keywords if k and k.strip()]
        have = [(k or "").lower() for k in record.keywords]
        if wanted and not any(w in k for w in wanted for k in have):
            return False
    return True


def _sort_key_desc(value: Optional[datetime]) -> datetime:
    return value or _DATETIME_MIN


def sort_by_quarter_then_published(records: list[JournalRecord]) -> list[JournalRecord]:
    # 两次稳定排序：先按 publication_date 倒序，再按季度正序
    ordered = sorted(records, key=lambda r: _sort_key_desc(r.publication_date), reverse=True)
    return sorted(ordered, key=lambda r: r.volume_quarter)


def sort_newest_first(records: list[JournalRecord]) -> list[JournalRecord]:
    return sorted(records, key=lambda r: _sort_key_desc(r.created_at), reverse=True)


class JournalQueryService:
    """
    读侧查询。

    中文注释:
    - 仓储层只做标量等值过滤（status / volume_year / volume_quarter / is_archived / id）。
    - 文本检索、作者子串、关键词 any-match、排序与分页都在这里完成。
    """

    def __init__(self, *, repository: JournalRepository | None = None, clock: Callable[[], datetime] = _utcnow):
        self.repository = repository or JournalRepository()
        self.clock = clock

    def current_year(self) -> int:
        return self.clock().year

    @staticmethod
    def _validate_quarter(quarter: Optional[int]) -> Optional[int]:
        if quarter is None:
            return None
        if int(quarter) not in (1, 2, 3, 4):
            raise InvalidArgument("Invalid quarter. Must be between 1 and 4", detail={"quarter": quarter})
        return int(quarter)

    def get_by_id(self, journal_id: str) -> JournalRecord:
        record = self.repository.get(require_journal_id(journal_id))
        if record is None:
            raise NotFound()
        return record

    def list_current_year(
        self,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        search: str | None = None,
        quarter: int | None = None,
    ) -> Page[JournalRecord]:
        page, limit = normalize_paging(page, limit)
        quarter = self._validate_quarter(quarter)
        rows = self.repository.list(
            filters={
                "volume_year": self.current_year(),
                "status": LifecycleStatus.PUBLISHED.value,
                "is_archived": False,
                "volume_quarter": quarter,
            }
        )
        criteria = JournalSearchCriteria(search=search)
        rows = [r for r in rows if matches_criteria(r, criteria)]
        return paginate(sort_by_quarter_then_published(rows), page, limit)

    def list_archived_by_year(
        self,
        year: int,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        quarter: int | None = None,
    ) -> Page[JournalRecord]:
        current = self.current_year()
        if not isinstance(year, int) or year < MIN_ARCHIVE_YEAR or year > current:
            raise InvalidArgument(
                f"Invalid year. Must be between {MIN_ARCHIVE_YEAR} and {current}",
                detail={"year": year},
            )
        page, limit = normalize_paging(page, limit)
        quarter = self._validate_quarter(quarter)
        rows = self.repository.list(
            filters={
                "volume_year": year,
                "status": LifecycleStatus.PUBLISHED.value,
                "is_archived": True,
                "volume_quarter": quarter,
            }
        )
        return paginate(sort_by_quarter_then_published(rows), page, limit)

    def list_by_volume(
        self,
        year: int,
        quarter: int,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[JournalRecord]:
        quarter = self._validate_quarter(quarter)  # type: ignore[assignment]
        page, limit = normalize_paging(page, limit)
        rows = self.repository.list(
            filters={
                "volume_year": int(year),
                "volume_quarter": quarter,
                "status": LifecycleStatus.PUBLISHED.value,
            }
        )
        rows = sorted(rows, key=lambda r: _sort_key_desc(r.publication_date), reverse=True)
        return paginate(rows, page, limit)

    def list_pending_review(
        self,
        *,
        status: LifecycleStatus | None = None,
        page: int = 1,
        limit: int = ADMIN_PAGE_SIZE,
    ) -> PendingReviewPage:
        """
        审稿队列（FIFO：submission_date 正序）。

        中文注释: status_counts 始终包含 submitted / under_review / accepted / rejected 四个键。
        """
        page, limit = normalize_paging(page, limit, default_limit=ADMIN_PAGE_SIZE)
        counted = (
            LifecycleStatus.SUBMITTED,
            LifecycleStatus.UNDER_REVIEW,
            LifecycleStatus.ACCEPTED,
            LifecycleStatus.REJECTED,
        )
        rows = self.repository.list(statuses=counted)
        counts = {s.value: 0 for s in counted}
        for r in rows:
            counts[r.status.value] = counts.get(r.status.value, 0) + 1

        wanted = (status,) if status is not None else LifecycleStatus.review_queue()
        if status is not None and status not in counted:
            queue = self.repository.list(filters={"status": status.value})
        else:
            queue = [r for r in rows if r.status in wanted]
        queue = sorted(queue, key=lambda r: r.submission_date)

        base = paginate(queue, page, limit)
        return PendingReviewPage(**base.model_dump(exclude={"items"}), items=base.items, status_counts=counts)

    def select(self, criteria: JournalSearchCriteria) -> list[JournalRecord]:
        """按条件取全部匹配记录（created_at 倒序）；导出与分页查询共用。"""
        quarter = self._validate_quarter(criteria.quarter)
        filters: dict[str, Any] = {"volume_year": criteria.year, "volume_quarter": quarter}
        if criteria.status is not None:
            filters["status"] = criteria.status.value
        ids = [require_journal_id(jid) for jid in criteria.journal_ids] if criteria.journal_ids else None
        rows = self.repository.list(filters=filters, ids=ids)
        rows = [r for r in rows if matches_criteria(r, criteria)]
        return sort_newest_first(rows)

    def advanced_search(
        self,
        criteria: JournalSearchCriteria,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[JournalRecord]:
        page, limit = normalize_paging(page, limit)
        return paginate(self.select(criteria), page, limit)

    def admin_list(
        self,
        criteria: JournalSearchCriteria,
        *,
        page: int = 1,
        limit: int = ADMIN_PAGE_SIZE,
    ) -> Page[JournalRecord]:
        page, limit = normalize_paging(page, limit, default_limit=ADMIN_PAGE_SIZE)
        admin_criteria = criteria.model_copy(update={"search_keywords": False, "search_authors": True})
        return paginate(self.select(admin_criteria), page, limit)


_query_service: JournalQueryService | None = None


def get_query_service() -> JournalQueryService:
    global _query_service
    if _query_service is None:
        _query_service = JournalQueryService()
    return _query_service
