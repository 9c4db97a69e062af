from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Iterable

from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import InvalidTransition, ValidationError
from app.core.identifiers import is_valid_journal_id
from app.models.journal import (
    BulkResult,
    JournalBulkPatch,
    JournalRecord,
    LifecycleStatus,
    is_legacy_archived,
    normalize_status,
)
from app.services.journal_service import JournalService, get_journal_service

logger = logging.getLogger("agricjournal.journals.bulk")


def normalize_ids(journal_ids: Iterable[Any] | None) -> list[str]:
    """
    校验并去重 id 列表；空列表或包含非法 id 时抛 ValidationError。
    """
    raw = list(journal_ids or [])
    if not raw:
        raise ValidationError("Journal IDs are required")
    invalid = [str(v) for v in raw if not is_valid_journal_id(v)]
    if invalid:
        raise ValidationError("Invalid journal ID(s)", detail={"invalid_ids": invalid})
    out: list[str] = []
    seen: set[str] = set()
    for v in raw:
        jid = str(v).strip().lower()
        if jid not in seen:
            seen.add(jid)
            out.append(jid)
    return out


class BulkOperationService:
    """
    批量操作（删除 / 归档 / 发布 / 通用字段更新）。

    中文注释:
    - 部分 id 不存在属于正常结果，通过 matched/modified 计数体现，不回滚。
    - 跨记录不保证原子性；单条记录的写入由数据库保证原子性。
    - 批量发布绕过“必须 accepted”前置条件，被绕过的记录 id 会写日志并返回给调用方复核。
    """

    def __init__(self, journal_service: JournalService | None = None):
        self.journals = journal_service or JournalService()

    @property
    def repository(self):
        return self.journals.repository

    @property
    def lifecycle(self):
        return self.journals.lifecycle

    def _now(self) -> datetime:
        return self.journals.clock()

    def _load(self, ids: list[str]) -> list[JournalRecord]:
        return self.repository.list(ids=ids)

    def bulk_delete(self, journal_ids: Iterable[Any]) -> BulkResult:
        ids = normalize_ids(journal_ids)
        records = self._load(ids)
        deleted = set(self.repository.delete_many([r.id for r in records]))
        for record in records:
            if record.id in deleted:
                self.journals.cleanup_files(record)
        logger.info("bulk delete requested=%s deleted=%s", len(ids), len(deleted))
        return BulkResult(matched_count=len(records), deleted_count=len(deleted))

    def bulk_archive(self, journal_ids: Iterable[Any]) -> BulkResult:
        ids = normalize_ids(journal_ids)
        records = self._load(ids)
        targets = [r.id for r in records if not r.is_archived]
        updated = self.repository.update_many(targets, {"is_archived": True, "archived_date": self._now()})
        logger.info("bulk archive requested=%s matched=%s archived=%s", len(ids), len(records), len(updated))
        return BulkResult(matched_count=len(records), modified_count=len(updated))

    def bulk_publish(self, journal_ids: Iterable[Any]) -> BulkResult:
        ids = normalize_ids(journal_ids)
        records = self._load(ids)
        now = self._now()
        base_suffix = time.time_ns() // 1_000_000

        modified = 0
        bypassed: list[str] = []
        for index, record in enumerate(records):
            if record.status == LifecycleStatus.PUBLISHED and record.doi and record.publication_date:
                continue
            changes = self._status_changes(
                record,
                LifecycleStatus.PUBLISHED,
                now=now,
                doi_suffix=str(base_suffix + index),
            )
            if changes is None:
                continue
            if self.repository.update(record.id, changes) is None:
                continue
            modified += 1
            if record.status not in (LifecycleStatus.ACCEPTED, LifecycleStatus.PUBLISHED):
                bypassed.append(record.id)

        if bypassed:
            logger.warning(
                "bulk publish bypassed the accepted-only guard for %s journal(s): %s",
                len(bypassed),
                ", ".join(bypassed),
            )
        logger.info("bulk publish requested=%s matched=%s published=%s", len(ids), len(records), modified)
        return BulkResult(matched_count=len(records), modified_count=modified, bypassed_guard_ids=bypassed)

    def bulk_update(self, journal_ids: Iterable[Any], update_data: dict[str, Any] | None) -> BulkResult:
        ids = normalize_ids(journal_ids)
        patch = self._parse_patch(update_data)
        records = self._load(ids)
        if not records:
            return BulkResult()

        now = self._now()
        raw_status = patch.pop("status", None)
        if is_legacy_archived(raw_status):
            # 旧调用方把 archived 当状态写：转换为归档标记，status 保持不变
            patch.setdefault("is_archived", True)
            raw_status = None
        if patch.get("is_archived") is True:
            patch["archived_date"] = now
        elif patch.get("is_archived") is False:
            patch["archived_date"] = None

        if raw_status is None:
            if not patch:
                return BulkResult(matched_count=len(records))
            updated = self.repository.update_many([r.id for r in records], patch)
            return BulkResult(matched_count=len(records), modified_count=len(updated))

        target = normalize_status(raw_status)
        if target is None:
            raise ValidationError(f"Invalid status: {raw_status}")

        base_suffix = time.time_ns() // 1_000_000
        modified = 0
        for index, record in enumerate(records):
            changes = self._status_changes(record, target, now=now, doi_suffix=str(base_suffix + index))
            if changes is None:
                continue
            changes["review_date"] = now
            if self.repository.update(record.id, {**patch, **changes}) is not None:
                modified += 1
        logger.info(
            "bulk update requested=%s matched=%s modified=%s status=%s",
            len(ids),
            len(records),
            modified,
            target.value,
        )
        return BulkResult(matched_count=len(records), modified_count=modified)

    def _status_changes(
        self,
        record: JournalRecord,
        target: LifecycleStatus,
        *,
        now: datetime,
        doi_suffix: str,
    ) -> dict[str, Any] | None:
        try:
            return self.lifecycle.status_side_effects(record, target, now=now, doi_suffix=doi_suffix)
        except InvalidTransition as e:
            logger.warning("bulk status write skipped journal=%s: %s", record.id, e.message)
            return None

    @staticmethod
    def _parse_patch(update_data: dict[str, Any] | None) -> dict[str, Any]:
        if not update_data:
            raise ValidationError("Update data is required")
        try:
            patch = JournalBulkPatch.model_validate(update_data)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid update data",
                detail=e.errors(include_url=False, include_context=False, include_input=False),
            ) from e
        fields = patch.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("Update data is required")
        return fields


_bulk_service: BulkOperationService | None = None


def get_bulk_service() -> BulkOperationService:
    global _bulk_service
    if _bulk_service is None:
        _bulk_service = BulkOperationService(get_journal_service())
    return _bulk_service
