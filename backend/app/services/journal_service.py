from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from app.core.config import JournalConfig
from app.core.exceptions import NotFound, ValidationError
from app.core.identifiers import new_journal_id, require_journal_id
from app.core.volume import calculate_volume
from app.models.journal import (
    JournalCreate,
    JournalRecord,
    JournalUpdate,
    LifecycleStatus,
    PublishRequest,
)
from app.services.journal_repository import JournalRepository
from app.services.lifecycle_service import LifecycleEngine
from app.services.notification_service import SubmissionNotifier
from app.services.storage_service import (
    BlobStore,
    PDF_MIME,
    SupabaseBlobStore,
    is_remote_reference,
)

logger = logging.getLogger("agricjournal.journals")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UploadedDocument:
    """已落盘的上传文件（API 层负责把 UploadFile 写入临时目录）。"""

    local_path: str
    filename: str
    content_type: str
    size: int

    @property
    def is_pdf(self) -> bool:
        return self.content_type == PDF_MIME or self.filename.lower().endswith(".pdf")


def _remove_local_file(path: Optional[str], *, journal_id: str | None = None) -> None:
    if not path or is_remote_reference(path):
        return
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning("local file cleanup failed journal=%s path=%s: %s", journal_id, path, e)


def _validation_message(exc: PydanticValidationError) -> str:
    missing = sorted(
        {str(err["loc"][0]) for err in exc.errors() if err.get("loc") and err.get("type") == "missing"}
    )
    if missing:
        return f"Missing required fields: {', '.join(missing)}"
    return "Invalid journal data"


def parse_create(fields: JournalCreate | dict[str, Any]) -> JournalCreate:
    """把表单 / JSON 字段转换为 JournalCreate；校验失败统一抛 ValidationError (400)。"""
    if isinstance(fields, JournalCreate):
        return fields
    try:
        return JournalCreate.model_validate(fields)
    except PydanticValidationError as e:
        raise ValidationError(
            _validation_message(e),
            detail=e.errors(include_url=False, include_context=False, include_input=False),
        ) from e


class JournalService:
    """
    Published journal 写入侧服务。

    中文注释:
    - 创建时计算卷期（publication_date > submission_date > 当前时间），之后不再重算。
    - 状态相关的副作用统一交给 LifecycleEngine 计算。
    - 文件/邮件属于外部协作方：返回 Result，失败只记录 warning，不回滚记录。
    """

    def __init__(
        self,
        *,
        repository: JournalRepository | None = None,
        blob_store: BlobStore | None = None,
        notifier: SubmissionNotifier | None = None,
        lifecycle: LifecycleEngine | None = None,
        config: JournalConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config or JournalConfig.from_env()
        self.repository = repository or JournalRepository()
        self.blob_store = blob_store or SupabaseBlobStore(config=self.config)
        self.notifier = notifier or SubmissionNotifier(config=self.config)
        self.lifecycle = lifecycle or LifecycleEngine(self.config, clock=clock)
        self.clock = clock

    # ---------------------------------------------------------------- reads

    def get(self, journal_id: str) -> JournalRecord:
        journal_id = require_journal_id(journal_id)
        record = self.repository.get(journal_id)
        if record is None:
            raise NotFound()
        return record

    # --------------------------------------------------------------- create

    def create(self, fields: JournalCreate | dict[str, Any]) -> JournalRecord:
        fields = parse_create(fields)

        now = self.clock()
        submission_date = fields.submission_date or now
        volume_year, volume_quarter = fields.volume_year, fields.volume_quarter
        if volume_year is None or volume_quarter is None:
            computed = calculate_volume(fields.publication_date or submission_date)
            volume_year = volume_year if volume_year is not None else computed.year
            volume_quarter = volume_quarter if volume_quarter is not None else computed.quarter

        record = JournalRecord(
            id=new_journal_id(),
            title=fields.title,
            abstract=fields.abstract,
            authors=fields.authors,
            keywords=fields.keywords,
            pdf_url=fields.pdf_url,
            docx_url=fields.docx_url,
            content_file_path=fields.content_file_path,
            volume_year=volume_year,
            volume_quarter=volume_quarter,
            status=fields.status,
            submission_date=submission_date,
            review_notes=fields.review_notes,
            doi=fields.doi,
            page_numbers=fields.page_numbers,
            file_size=fields.file_size,
            file_type=fields.file_type,
            submitted_by=fields.submitted_by,
            publication_date=fields.publication_date,
            created_at=now,
            updated_at=now,
        )

        if record.status == LifecycleStatus.PUBLISHED:
            # 管理端直接录入已发表记录：与状态写入相同，只补缺失的 doi / publication_date
            updates: dict[str, Any] = {}
            if record.publication_date is None:
                updates["publication_date"] = now
            if not record.doi:
                updates["doi"] = self.lifecycle.new_doi(record)
            record = record.model_copy(update=updates)

        saved = self.repository.insert(record)
        logger.info(
            "journal created id=%s status=%s volume=%s",
            saved.id,
            saved.status.value,
            saved.volume_display,
        )
        return saved

    # --------------------------------------------------------------- update

    def update(self, journal_id: str, patch: JournalUpdate) -> JournalRecord:
        record = self.get(journal_id)
        changes = patch.changes()
        now = self.clock()
        archive = changes.pop("is_archived", None)
        if archive is True:
            changes.update(self.lifecycle.archive_changes(record, now=now))
        elif archive is False and record.is_archived:
            changes.update({"is_archived": False, "archived_date": None})
        if "status" in changes:
            changes.update(self.lifecycle.status_side_effects(record, changes["status"], now=now))
        if not changes:
            return record
        updated = self.repository.update(record.id, changes)
        if updated is None:
            raise NotFound()
        if updated.status != record.status:
            logger.info(
                "journal status changed id=%s %s -> %s",
                record.id,
                record.status.value,
                updated.status.value,
            )
        return updated

    def publish(self, journal_id: str, request: PublishRequest | None = None) -> JournalRecord:
        record = self.get(journal_id)
        request = request or PublishRequest()
        changes = self.lifecycle.publish_changes(
            record,
            page_numbers=request.page_numbers,
            reviewed_by=request.reviewed_by,
            now=self.clock(),
        )
        updated = self.repository.update(record.id, changes)
        if updated is None:
            raise NotFound()
        logger.info("journal published id=%s doi=%s", updated.id, updated.doi)
        return updated

    def archive(self, journal_id: str) -> JournalRecord:
        record = self.get(journal_id)
        changes = self.lifecycle.archive_changes(record, now=self.clock())
        if not changes:
            return record
        updated = self.repository.update(record.id, changes)
        if updated is None:
            raise NotFound()
        logger.info("journal archived id=%s", updated.id)
        return updated

    # --------------------------------------------------------------- delete

    def delete(self, journal_id: str) -> None:
        record = self.get(journal_id)
        if not self.repository.delete(record.id):
            raise NotFound()
        self.cleanup_files(record)
        logger.info("journal deleted id=%s", record.id)

    def cleanup_files(self, record: JournalRecord) -> None:
        for url in (record.pdf_url, record.docx_url):
            if not is_remote_reference(url):
                continue
            result = self.blob_store.delete(str(url))
            if not result.is_ok:
                logger.warning("blob delete failed journal=%s: %s", record.id, result.error)
        _remove_local_file(record.content_file_path, journal_id=record.id)

    # ------------------------------------------------------------- downloads

    def increment_download(self, journal_id: str) -> None:
        """
        下载计数 +1（fire-and-forget）。

        中文注释: 计数失败不影响下载本身，只记录 warning。
        """
        try:
            self.repository.increment_download_count(journal_id)
        except Exception as e:
            logger.warning("download counter update failed journal=%s: %s", journal_id, e)

    # ----------------------------------------------------------- submission

    def submit(self, fields: JournalCreate, document: UploadedDocument) -> JournalRecord:
        """
        前台投稿。

        中文注释:
        1) 卷期按提交时间计算，状态固定为 submitted。
        2) 上传失败不阻断投稿：保留本地路径作为兜底引用。
        3) 上传成功后删除本地临时文件。
        """
        upload = self.blob_store.upload(
            document.local_path,
            destination_hint=document.filename,
            content_type=document.content_type,
        )

        file_fields: dict[str, Any] = {
            "file_size": document.size,
            "file_type": document.content_type,
        }
        if upload.is_ok:
            file_fields["pdf_url" if document.is_pdf else "docx_url"] = upload.value
        else:
            logger.warning("blob upload failed, keeping local file %s: %s", document.local_path, upload.error)
            file_fields["content_file_path"] = document.local_path

        payload = fields.model_copy(
            update={
                **file_fields,
                "status": LifecycleStatus.SUBMITTED,
                "volume_year": None,
                "volume_quarter": None,
                "publication_date": None,
                "submission_date": None,
                "doi": None,
                "submitted_by": fields.submitted_by or "Anonymous",
            }
        )
        try:
            record = self.create(payload)
        except Exception:
            if upload.is_ok:
                self._discard_blob(str(upload.value))
            raise

        if upload.is_ok:
            _remove_local_file(document.local_path, journal_id=record.id)
        return record

    def notify_submission(self, record: JournalRecord) -> None:
        result = self.notifier.notify_submission(record)
        if not result.is_ok:
            logger.warning("submission notification failed journal=%s: %s", record.id, result.error)

    def admin_upload(
        self,
        fields: JournalCreate,
        *,
        pdf: UploadedDocument | None = None,
        docx: UploadedDocument | None = None,
    ) -> JournalRecord:
        """
        管理端直接录入。

        中文注释: 这里还没有记录可以兜底，任一文件上传失败直接抛 UpstreamFailure (502)。
        """
        if pdf is None and docx is None:
            raise ValidationError("Please upload at least one file (PDF or DOCX)")

        uploaded: list[str] = []
        file_fields: dict[str, Any] = {}
        try:
            for field_name, document in (("pdf_url", pdf), ("docx_url", docx)):
                if document is None:
                    continue
                result = self.blob_store.upload(
                    document.local_path,
                    destination_hint=document.filename,
                    content_type=document.content_type,
                )
                if not result.is_ok:
                    raise result.error  # type: ignore[misc]
                uploaded.append(str(result.value))
                file_fields[field_name] = result.value
                file_fields.setdefault("file_size", document.size)
                file_fields.setdefault("file_type", document.content_type)

            record = self.create(fields.model_copy(update=file_fields))
        except Exception:
            for url in uploaded:
                self._discard_blob(url)
            raise

        for document in (pdf, docx):
            if document is not None:
                _remove_local_file(document.local_path, journal_id=record.id)
        return record

    def _discard_blob(self, url: str) -> None:
        result = self.blob_store.delete(url)
        if not result.is_ok:
            logger.warning("orphan blob cleanup failed url=%s: %s", url, result.error)


_journal_service: JournalService | None = None


def get_journal_service() -> JournalService:
    """FastAPI 依赖注入用的单例。"""
    global _journal_service
    if _journal_service is None:
        _journal_service = JournalService()
    return _journal_service
