"""
Published Journals API Router

中文注释:
- 公开端点: 当年列表 / 归档 / 卷期 / 高级检索 / 统计 / 详情 / 下载 / 投稿
- 管理端点 (require_admin): 全量列表 / 审稿队列 / 直接录入 / 更新 / 发布 / 归档 / 删除 / 批量操作 / 导出
- 统一响应: {success, data, message}；错误由 JournalError handler 转换为 {success, message, error}
- 路由顺序: 固定路径必须写在 /{journal_id} 之前
"""

import logging
import os
import shutil
import uuid
from datetime import date
from typing import Any, Optional

import httpx
from fastapi import APIRouter, BackgroundTasks, Body, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse, RedirectResponse, Response, StreamingResponse

from app.core.auth import get_optional_user, require_admin
from app.core.config import JournalConfig
from app.core.exceptions import InvalidArgument, NotFound, UpstreamFailure, ValidationError
from app.core.export_service import ExportService, export_filename
from app.core.middleware import success_envelope
from app.models.journal import (
    BulkIdsRequest,
    BulkUpdateRequest,
    JournalRecord,
    JournalSearchCriteria,
    JournalUpdate,
    LifecycleStatus,
    PublishRequest,
    normalize_status,
    parse_name_list,
)
from app.services.bulk_service import BulkOperationService, get_bulk_service
from app.services.journal_query_service import JournalQueryService, get_query_service
from app.services.journal_service import (
    JournalService,
    UploadedDocument,
    get_journal_service,
    parse_create,
)
from app.services.journal_stats_service import JournalStatsService, get_stats_service
from app.services.storage_service import (
    ALLOWED_DOCUMENT_TYPES,
    DOCX_MIME,
    PDF_MIME,
    attachment_disposition,
    clean_object_name,
    force_download_url,
    is_remote_reference,
    stream_remote_file,
)

logger = logging.getLogger("agricjournal.api.journals")

router = APIRouter(prefix="/published-journals", tags=["Published Journals"])

_FILE_FORMATS = {"pdf": PDF_MIME, "docx": DOCX_MIME}
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ----------------------------------------------------------------- helpers


def _status_param(value: Optional[str]) -> Optional[LifecycleStatus]:
    """
    解析 status 查询参数: 空 / "all" -> None（不过滤），非法值 -> InvalidArgument。
    """
    raw = (value or "").strip().lower()
    if not raw or raw == "all":
        return None
    status = normalize_status(raw)
    if status is None:
        raise InvalidArgument(f"Invalid status: {value}", detail={"status": value})
    return status


def _csv_list(value: Optional[str]) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def _journal_payload(record: JournalRecord) -> dict[str, Any]:
    return {"journal": record.model_dump(mode="json")}


def _file_format(value: str) -> str:
    fmt = (value or "").strip().lower()
    if fmt not in _FILE_FORMATS:
        raise InvalidArgument("File format must be pdf or docx", detail={"format": value})
    return fmt


def _file_reference(record: JournalRecord, fmt: str) -> str:
    reference = (record.pdf_url if fmt == "pdf" else record.docx_url) or record.content_file_path
    if not reference:
        raise NotFound(f"No {fmt.upper()} file found for this published journal")
    return reference


def _content_type(record: JournalRecord, fmt: str) -> str:
    expected = _FILE_FORMATS[fmt]
    if record.file_type and record.file_type == expected:
        return record.file_type
    return expected


def _local_file_response(record: JournalRecord, reference: str, fmt: str) -> FileResponse:
    if not os.path.exists(reference):
        raise NotFound(f"No {fmt.upper()} file found for this published journal")
    return FileResponse(
        reference,
        media_type=_content_type(record, fmt),
        headers={"Content-Disposition": attachment_disposition(record.title, fmt)},
    )


def _save_upload(upload: UploadFile, config: JournalConfig) -> UploadedDocument:
    """
    把 UploadFile 写入临时目录，并校验类型与大小。
    """
    content_type = (upload.content_type or "").lower()
    if content_type not in ALLOWED_DOCUMENT_TYPES:
        raise ValidationError("Only PDF, DOC, and DOCX files are allowed", detail={"content_type": content_type})

    os.makedirs(config.upload_dir, exist_ok=True)
    filename = upload.filename or "manuscript"
    local_path = os.path.join(config.upload_dir, f"{uuid.uuid4().hex}-{clean_object_name(filename)}")
    with open(local_path, "wb") as out:
        shutil.copyfileobj(upload.file, out)

    size = os.path.getsize(local_path)
    if size > config.max_upload_bytes:
        os.remove(local_path)
        raise ValidationError(
            f"File too large. Maximum size is {config.max_upload_bytes // (1024 * 1024)}MB",
            detail={"size": size},
        )
    return UploadedDocument(local_path=local_path, filename=filename, content_type=content_type, size=size)


# ----------------------------------------------------------- public reads


@router.get("/")
def list_current_year(
    page: int = Query(1, ge=1),
    limit: int = Query(10),
    search: Optional[str] = None,
    quarter: Optional[int] = None,
    query_service: JournalQueryService = Depends(get_query_service),
):
    result = query_service.list_current_year(page=page, limit=limit, search=search, quarter=quarter)
    return success_envelope(result.model_dump(mode="json"))


@router.get("/archive/{year}")
def list_archived(
    year: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10),
    quarter: Optional[int] = None,
    query_service: JournalQueryService = Depends(get_query_service),
):
    result = query_service.list_archived_by_year(year, page=page, limit=limit, quarter=quarter)
    return success_envelope(result.model_dump(mode="json"))


@router.get("/volume/{year}/{quarter}")
def list_by_volume(
    year: int,
    quarter: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10),
    query_service: JournalQueryService = Depends(get_query_service),
):
    result = query_service.list_by_volume(year, quarter, page=page, limit=limit)
    return success_envelope(result.model_dump(mode="json"))


@router.get("/search/advanced")
def advanced_search(
    search: Optional[str] = None,
    year: Optional[int] = None,
    quarter: Optional[int] = None,
    author: Optional[str] = None,
    keywords: Optional[str] = None,
    status: Optional[str] = Query("published"),
    page: int = Query(1, ge=1),
    limit: int = Query(10),
    query_service: JournalQueryService = Depends(get_query_service),
):
    criteria = JournalSearchCriteria(
        search=search,
        year=year,
        quarter=quarter,
        author=author,
        keywords=_csv_list(keywords),
        status=_status_param(status),
    )
    result = query_service.advanced_search(criteria, page=page, limit=limit)
    return success_envelope(result.model_dump(mode="json"))


@router.get("/stats/overview")
def stats_overview(
    year: Optional[int] = None,
    stats_service: JournalStatsService = Depends(get_stats_service),
):
    stats = stats_service.get_stats(year)
    return success_envelope(stats.model_dump(mode="json"))


# ----------------------------------------------------------- admin reads


@router.get("/admin/all")
def admin_list(
    search: Optional[str] = None,
    year: Optional[int] = None,
    quarter: Optional[int] = None,
    status: Optional[str] = Query("all"),
    page: int = Query(1, ge=1),
    limit: int = Query(20),
    _admin: dict = Depends(require_admin),
    query_service: JournalQueryService = Depends(get_query_service),
):
    criteria = JournalSearchCriteria(search=search, year=year, quarter=quarter, status=_status_param(status))
    result = query_service.admin_list(criteria, page=page, limit=limit)
    return success_envelope(result.model_dump(mode="json"))


@router.get("/admin/pending")
def pending_review(
    status: Optional[str] = Query("all"),
    page: int = Query(1, ge=1),
    limit: int = Query(20),
    _admin: dict = Depends(require_admin),
    query_service: JournalQueryService = Depends(get_query_service),
):
    result = query_service.list_pending_review(status=_status_param(status), page=page, limit=limit)
    return success_envelope(result.model_dump(mode="json"))


@router.get("/admin/export")
def export_csv(
    journal_ids: Optional[str] = Query(None, alias="journalIds"),
    search: Optional[str] = None,
    year: Optional[int] = None,
    quarter: Optional[int] = None,
    status: Optional[str] = Query("all"),
    admin: dict = Depends(require_admin),
    query_service: JournalQueryService = Depends(get_query_service),
    stats_service: JournalStatsService = Depends(get_stats_service),
):
    criteria = JournalSearchCriteria(
        search=search,
        year=year,
        quarter=quarter,
        status=_status_param(status),
        journal_ids=_csv_list(journal_ids) or None,
    )
    content = ExportService(query_service, stats_service).export_csv(criteria)
    logger.info("journal CSV export by user=%s", admin.get("id"))
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(date.today())}"'},
    )


@router.get("/admin/stats/export")
def export_stats(
    year: Optional[int] = None,
    admin: dict = Depends(require_admin),
    query_service: JournalQueryService = Depends(get_query_service),
    stats_service: JournalStatsService = Depends(get_stats_service),
):
    output = ExportService(query_service, stats_service).export_stats_xlsx(year)
    filename = f"journal-stats-{year or date.today().year}.xlsx"
    logger.info("journal stats export year=%s by user=%s", year, admin.get("id"))
    return StreamingResponse(
        output,
        media_type=XLSX_MIME,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ------------------------------------------------------ single record reads


@router.get("/{journal_id}")
def get_journal(
    journal_id: str,
    query_service: JournalQueryService = Depends(get_query_service),
):
    return success_envelope(_journal_payload(query_service.get_by_id(journal_id)))


@router.get("/{journal_id}/download/{file_format}")
def download_journal(
    journal_id: str,
    file_format: str,
    background_tasks: BackgroundTasks,
    journal_service: JournalService = Depends(get_journal_service),
):
    """
    重定向到带强制下载标记的存储 URL；下载计数在响应后异步 +1。
    """
    fmt = _file_format(file_format)
    record = journal_service.get(journal_id)
    reference = _file_reference(record, fmt)

    if is_remote_reference(reference):
        target = force_download_url(reference, journal_service.config.force_download_marker)
        response: Response = RedirectResponse(target, status_code=307)
    else:
        response = _local_file_response(record, reference, fmt)

    background_tasks.add_task(journal_service.increment_download, record.id)
    return response


@router.get("/{journal_id}/direct-download/{file_format}")
async def direct_download_journal(
    journal_id: str,
    file_format: str,
    background_tasks: BackgroundTasks,
    journal_service: JournalService = Depends(get_journal_service),
):
    """
    经服务端代理下载（httpx 流式转发，默认 30s 超时）。
    """
    fmt = _file_format(file_format)
    record = journal_service.get(journal_id)
    reference = _file_reference(record, fmt)
    headers = {
        "Content-Disposition": attachment_disposition(record.title, fmt),
        "Cache-Control": "no-cache",
    }

    if not is_remote_reference(reference):
        response: Response = _local_file_response(record, reference, fmt)
        response.headers["Cache-Control"] = "no-cache"
        background_tasks.add_task(journal_service.increment_download, record.id)
        return response

    timeout = float(journal_service.config.download_timeout_sec)
    stream = stream_remote_file(reference, timeout=timeout)
    try:
        # 先拉第一块数据：上游错误在返回 200 之前暴露为 502
        first_chunk = await stream.__anext__()
    except StopAsyncIteration:
        first_chunk = b""
    except (httpx.HTTPError, OSError) as e:
        raise UpstreamFailure("blob_store", "Error downloading file from storage", cause=e) from e

    async def _body():
        if first_chunk:
            yield first_chunk
        async for chunk in stream:
            yield chunk

    background_tasks.add_task(journal_service.increment_download, record.id)
    return StreamingResponse(
        _body(),
        media_type=_content_type(record, fmt),
        headers=headers,
    )


# -------------------------------------------------------------- submission


@router.post("/submit", status_code=201)
def submit_journal(
    background_tasks: BackgroundTasks,
    title: str = Form(...),
    abstract: str = Form(...),
    authors: str = Form(...),
    keywords: Optional[str] = Form(None),
    submitted_by: Optional[str] = Form(None),
    manuscript: UploadFile = File(...),
    user: Optional[dict] = Depends(get_optional_user),
    journal_service: JournalService = Depends(get_journal_service),
):
    """
    前台投稿（匿名可用）。

    中文注释:
    - 文件上传失败不阻断投稿（保留本地路径兜底）
    - 审稿提醒邮件在后台发送，失败只记录日志
    """
    document = _save_upload(manuscript, journal_service.config)
    submitter = submitted_by or (user or {}).get("email") or (user or {}).get("name")
    try:
        fields = parse_create(
            {
                "title": title,
                "abstract": abstract,
                "authors": authors,
                "keywords": keywords,
                "submitted_by": submitter,
            }
        )
        record = journal_service.submit(fields, document)
    except Exception:
        if os.path.exists(document.local_path):
            os.remove(document.local_path)
        raise

    background_tasks.add_task(journal_service.notify_submission, record)
    return success_envelope(_journal_payload(record), "Journal submitted for publication successfully")


# ------------------------------------------------------------ admin writes


@router.post("/admin/upload", status_code=201)
def admin_upload(
    title: str = Form(...),
    abstract: str = Form(...),
    authors: str = Form(...),
    keywords: Optional[str] = Form(None),
    volume_year: Optional[int] = Form(None),
    volume_quarter: Optional[int] = Form(None),
    status: str = Form("published"),
    doi: Optional[str] = Form(None),
    page_numbers: Optional[str] = Form(None),
    submitted_by: Optional[str] = Form(None),
    pdf_file: Optional[UploadFile] = File(None),
    docx_file: Optional[UploadFile] = File(None),
    admin: dict = Depends(require_admin),
    journal_service: JournalService = Depends(get_journal_service),
):
    if pdf_file is None and docx_file is None:
        raise ValidationError("Please upload at least one file (PDF or DOCX)")

    initial_status = normalize_status(status)
    if initial_status is None:
        raise ValidationError(f"Invalid status: {status}")

    documents: list[UploadedDocument] = []
    try:
        pdf = _save_upload(pdf_file, journal_service.config) if pdf_file is not None else None
        if pdf:
            documents.append(pdf)
        docx = _save_upload(docx_file, journal_service.config) if docx_file is not None else None
        if docx:
            documents.append(docx)

        fields = parse_create(
            {
                "title": title,
                "abstract": abstract,
                "authors": parse_name_list(authors),
                "keywords": parse_name_list(keywords),
                "volume_year": volume_year,
                "volume_quarter": volume_quarter,
                "status": initial_status,
                "doi": doi,
                "page_numbers": page_numbers,
                "submitted_by": submitted_by or admin.get("email"),
            }
        )
        record = journal_service.admin_upload(fields, pdf=pdf, docx=docx)
    except Exception:
        for document in documents:
            if os.path.exists(document.local_path):
                os.remove(document.local_path)
        raise

    logger.info("admin upload journal=%s by user=%s", record.id, admin.get("id"))
    return success_envelope(_journal_payload(record), "Journal uploaded successfully")


@router.put("/{journal_id}")
def update_journal(
    journal_id: str,
    patch: JournalUpdate = Body(...),
    _admin: dict = Depends(require_admin),
    journal_service: JournalService = Depends(get_journal_service),
):
    record = journal_service.update(journal_id, patch)
    return success_envelope(_journal_payload(record), "Journal updated successfully")


@router.post("/publish/{journal_id}")
def publish_journal(
    journal_id: str,
    request: Optional[PublishRequest] = Body(None),
    _admin: dict = Depends(require_admin),
    journal_service: JournalService = Depends(get_journal_service),
):
    record = journal_service.publish(journal_id, request)
    return success_envelope(_journal_payload(record), "Journal published successfully")


@router.post("/archive/{journal_id}")
def archive_journal(
    journal_id: str,
    _admin: dict = Depends(require_admin),
    journal_service: JournalService = Depends(get_journal_service),
):
    record = journal_service.archive(journal_id)
    return success_envelope(_journal_payload(record), "Journal archived successfully")


@router.delete("/{journal_id}")
def delete_journal(
    journal_id: str,
    _admin: dict = Depends(require_admin),
    journal_service: JournalService = Depends(get_journal_service),
):
    journal_service.delete(journal_id)
    return success_envelope(message="Journal deleted successfully")


# ------------------------------------------------------------- bulk writes


@router.post("/bulk/delete")
def bulk_delete(
    body: BulkIdsRequest,
    _admin: dict = Depends(require_admin),
    bulk_service: BulkOperationService = Depends(get_bulk_service),
):
    result = bulk_service.bulk_delete(body.journal_ids)
    return success_envelope(
        result.model_dump(),
        f"Successfully deleted {result.deleted_count} journal(s)",
    )


@router.post("/bulk/archive")
def bulk_archive(
    body: BulkIdsRequest,
    _admin: dict = Depends(require_admin),
    bulk_service: BulkOperationService = Depends(get_bulk_service),
):
    result = bulk_service.bulk_archive(body.journal_ids)
    return success_envelope(
        result.model_dump(),
        f"Successfully archived {result.modified_count} journal(s)",
    )


@router.post("/bulk/publish")
def bulk_publish(
    body: BulkIdsRequest,
    _admin: dict = Depends(require_admin),
    bulk_service: BulkOperationService = Depends(get_bulk_service),
):
    result = bulk_service.bulk_publish(body.journal_ids)
    message = f"Successfully published {result.modified_count} journal(s)"
    if result.bypassed_guard_ids:
        message += f"; {len(result.bypassed_guard_ids)} were not in accepted status and need review"
    return success_envelope(result.model_dump(), message)


@router.post("/bulk-update")
def bulk_update(
    body: BulkUpdateRequest,
    _admin: dict = Depends(require_admin),
    bulk_service: BulkOperationService = Depends(get_bulk_service),
):
    result = bulk_service.bulk_update(body.journal_ids, body.update_data)
    return success_envelope(
        result.model_dump(),
        f"Successfully updated {result.modified_count} journal(s)",
    )
