from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from app.core.config import JournalConfig
from app.core.doi_generator import generate_doi
from app.core.exceptions import InvalidTransition
from app.models.journal import LifecycleStatus, JournalRecord, normalize_status

logger = logging.getLogger("agricjournal.journals.lifecycle")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleEngine:
    """
    投稿状态机。

    中文注释:
    - 唯一的硬性门控是 publish：只有 accepted 才能发布，其它状态写入一律信任调用方。
    - 状态变化时统一补齐副作用：review_date / publication_date / doi。
    - 归档是独立标记（is_archived + archived_date），不改变 status。
    - 所有方法只计算 changes（dict），不直接落库；持久化交给 repository。
    """

    def __init__(
        self,
        config: JournalConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config or JournalConfig.from_env()
        self.clock = clock

    def new_doi(self, record: JournalRecord, *, suffix: str | None = None) -> str:
        return generate_doi(
            prefix=self.config.doi_prefix,
            volume_year=record.volume_year,
            volume_quarter=record.volume_quarter,
            suffix=suffix,
        )

    def ensure_publishable(self, record: JournalRecord) -> None:
        if record.status != LifecycleStatus.ACCEPTED:
            raise InvalidTransition(
                f"Only accepted journals can be published (current status: {record.status.value})",
                from_status=record.status.value,
                to_status=LifecycleStatus.PUBLISHED.value,
            )

    def status_side_effects(
        self,
        record: JournalRecord,
        new_status: LifecycleStatus | str | None,
        *,
        now: Optional[datetime] = None,
        doi_suffix: str | None = None,
    ) -> dict[str, Any]:
        """
        计算一次状态写入附带的字段变化（不含 status 本身以外的调用方字段）。

        中文注释:
        1) 新状态与旧状态不同：review_date = now。
        2) 新状态为 published：publication_date / doi 只在缺失时补写（只赋值一次）。
        3) 离开 submitted 之前必须至少有一个可用的文件引用。
        """
        target = normalize_status(new_status)
        if target is None:
            return {}

        now = now or self.clock()
        changes: dict[str, Any] = {"status": target.value}

        if target != record.status:
            if record.status == LifecycleStatus.SUBMITTED and not record.has_document():
                raise InvalidTransition(
                    "Journal has no uploaded document; upload a PDF or DOCX before review",
                    from_status=record.status.value,
                    to_status=target.value,
                )
            changes["review_date"] = now

        if target == LifecycleStatus.PUBLISHED:
            if record.publication_date is None:
                changes["publication_date"] = now
            if not record.doi:
                changes["doi"] = self.new_doi(record, suffix=doi_suffix)

        return changes

    def publish_changes(
        self,
        record: JournalRecord,
        *,
        page_numbers: str | None = None,
        reviewed_by: str | None = None,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        self.ensure_publishable(record)
        changes = self.status_side_effects(record, LifecycleStatus.PUBLISHED, now=now)
        if page_numbers:
            changes["page_numbers"] = page_numbers
        if reviewed_by:
            changes["reviewed_by"] = reviewed_by
        return changes

    def archive_changes(self, record: JournalRecord, *, now: Optional[datetime] = None) -> dict[str, Any]:
        if record.is_archived:
            return {}
        return {"is_archived": True, "archived_date": now or self.clock()}
