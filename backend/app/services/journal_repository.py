from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic_core import to_jsonable_python

from app.core.exceptions import DuplicateDOI
from app.lib.api_client import supabase_admin
from app.models.journal import LEGACY_ARCHIVED_STATUS, JournalRecord, LifecycleStatus

logger = logging.getLogger("agricjournal.journals.store")

TABLE = "published_journals"
INCREMENT_DOWNLOADS_RPC = "increment_journal_downloads"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _looks_like_unique_violation(error_text: str) -> bool:
    lowered = (error_text or "").lower()
    return "23505" in lowered or "duplicate key" in lowered or "unique constraint" in lowered


def _is_missing_rpc_error(error: Exception | str) -> bool:
    text = str(error or "").lower()
    return ("function" in text and "does not exist" in text) or "pgrst202" in text


class JournalRepository:
    """
    published_journals 表的持久化访问（PostgREST）。

    中文注释:
    - 只提供按 id / 标量等值过滤的窄接口；文本检索、排序、分页由查询服务在应用层完成。
    - 单条记录的更新由数据库保证原子性；不存在跨记录事务。
    """

    def __init__(self, client: Any | None = None):
        self.client = client or supabase_admin

    @staticmethod
    def _rows(resp: Any) -> list[dict[str, Any]]:
        return list(getattr(resp, "data", None) or [])

    @staticmethod
    def _to_records(rows: Iterable[dict[str, Any]]) -> list[JournalRecord]:
        return [JournalRecord.model_validate(row) for row in rows]

    def get(self, journal_id: str) -> Optional[JournalRecord]:
        resp = self.client.table(TABLE).select("*").eq("id", journal_id).execute()
        rows = self._rows(resp)
        return JournalRecord.model_validate(rows[0]) if rows else None

    def find_by_doi(self, doi: str) -> Optional[JournalRecord]:
        resp = self.client.table(TABLE).select("*").eq("doi", doi).execute()
        rows = self._rows(resp)
        return JournalRecord.model_validate(rows[0]) if rows else None

    def list(
        self,
        *,
        filters: dict[str, Any] | None = None,
        statuses: Iterable[str] | None = None,
        ids: Iterable[str] | None = None,
    ) -> list[JournalRecord]:
        """
        按标量等值条件取记录。

        中文注释:
        - 旧数据可能把归档写成 status="archived"：按 published 过滤时一并取出，
          is_archived 条件在模型校验（还原归档标记）之后于应用层过滤。
        """
        conditions = {k: v for k, v in (filters or {}).items() if v is not None}
        archived = conditions.pop("is_archived", None)
        if "status" in conditions:
            statuses = [conditions.pop("status")]

        query = self.client.table(TABLE).select("*")
        for column, value in conditions.items():
            query = query.eq(column, to_jsonable_python(value))
        if statuses is not None:
            stored = [str(getattr(s, "value", s)) for s in statuses]
            if LifecycleStatus.PUBLISHED.value in stored:
                stored.append(LEGACY_ARCHIVED_STATUS)
            query = query.in_("status", stored)
        if ids is not None:
            query = query.in_("id", list(ids))
        records = self._to_records(self._rows(query.execute()))
        if archived is not None:
            records = [r for r in records if r.is_archived is bool(archived)]
        return records

    def insert(self, record: JournalRecord) -> JournalRecord:
        if record.doi and self.find_by_doi(record.doi) is not None:
            raise DuplicateDOI(record.doi)
        try:
            resp = self.client.table(TABLE).insert(record.to_row()).execute()
        except Exception as e:
            if record.doi and _looks_like_unique_violation(str(e)):
                raise DuplicateDOI(record.doi) from e
            raise
        rows = self._rows(resp)
        return JournalRecord.model_validate(rows[0]) if rows else record

    def update(self, journal_id: str, changes: dict[str, Any]) -> Optional[JournalRecord]:
        payload = to_jsonable_python({**changes, "updated_at": _now_iso()})
        try:
            resp = self.client.table(TABLE).update(payload).eq("id", journal_id).execute()
        except Exception as e:
            doi = changes.get("doi")
            if doi and _looks_like_unique_violation(str(e)):
                raise DuplicateDOI(str(doi)) from e
            raise
        rows = self._rows(resp)
        return JournalRecord.model_validate(rows[0]) if rows else None

    def update_many(self, journal_ids: list[str], changes: dict[str, Any]) -> list[JournalRecord]:
        if not journal_ids:
            return []
        payload = to_jsonable_python({**changes, "updated_at": _now_iso()})
        resp = self.client.table(TABLE).update(payload).in_("id", journal_ids).execute()
        return self._to_records(self._rows(resp))

    def delete(self, journal_id: str) -> bool:
        resp = self.client.table(TABLE).delete().eq("id", journal_id).execute()
        return bool(self._rows(resp))

    def delete_many(self, journal_ids: list[str]) -> list[str]:
        """返回实际删除的 id（并发删除时可能少于传入的 id）。"""
        if not journal_ids:
            return []
        resp = self.client.table(TABLE).delete().in_("id", journal_ids).execute()
        return [str(row.get("id")) for row in self._rows(resp) if row.get("id")]

    def increment_download_count(self, journal_id: str) -> None:
        """
        下载计数 +1。

        中文注释:
        - 优先走数据库 RPC（单语句自增，避免并发丢失更新）。
        - 云端未部署该函数时降级为 read-modify-write。
        """
        try:
            self.client.rpc(INCREMENT_DOWNLOADS_RPC, {"journal_id": journal_id}).execute()
            return
        except Exception as e:
            if not _is_missing_rpc_error(e):
                raise
            logger.debug("download counter rpc missing, falling back to read-modify-write")

        resp = self.client.table(TABLE).select("id,download_count").eq("id", journal_id).execute()
        rows = self._rows(resp)
        if not rows:
            return
        current = int(rows[0].get("download_count") or 0)
        self.client.table(TABLE).update({"download_count": current + 1}).eq("id", journal_id).execute()
