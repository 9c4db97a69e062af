from __future__ import annotations

import logging
import mimetypes
import os
import re
import time
from typing import Any, AsyncIterator, Optional, Protocol
from urllib.parse import urlsplit

import httpx

from app.core.config import JournalConfig
from app.core.exceptions import UpstreamFailure
from app.core.result import Result
from app.lib.api_client import supabase_admin

logger = logging.getLogger("agricjournal.storage")

UPLOAD_SEGMENT = "/upload/"
_VERSION_SEGMENT_RE = re.compile(r"^v\d+$")

PDF_MIME = "application/pdf"
DOC_MIME = "application/msword"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
ALLOWED_DOCUMENT_TYPES = {PDF_MIME, DOC_MIME, DOCX_MIME}


class BlobStore(Protocol):
    """
    外部文件存储（只定义接口，具体实现可替换）。

    - upload: 本地文件 -> 可公开访问的 URL
    - delete: 按 URL 反推对象标识并删除（尽力而为）
    """

    def upload(self, local_path: str, *, destination_hint: str, content_type: str | None = None) -> Result[str]:
        ...

    def delete(self, url: str) -> Result[bool]:
        ...


def clean_object_name(filename: str) -> str:
    base = os.path.basename(filename or "") or "file"
    base = re.sub(r"[^a-zA-Z0-9._-]", "_", base)
    return re.sub(r"\s+", "_", base).lower()


def force_download_url(url: str, marker: str = "fl_attachment") -> str:
    """
    在 `/upload/` 之后插入强制下载标记；已包含标记或没有 `/upload/` 段的 URL 原样返回。
    """
    if not url or marker in url:
        return url
    parts = url.split(UPLOAD_SEGMENT)
    if len(parts) != 2:
        return url
    return f"{parts[0]}{UPLOAD_SEGMENT}{marker}/{parts[1]}"


def object_ref_from_url(url: str, marker: str = "fl_attachment") -> Optional[str]:
    """
    从 blob URL 提取对象标识（`/upload/` 之后的部分，含扩展名）。

    中文注释:
    - 跳过强制下载标记与版本段（v123）。
    - 无法推导时返回 None，由调用方记录 warning。
    """
    if not url:
        return None
    path = urlsplit(url).path
    if UPLOAD_SEGMENT not in path:
        return None
    tail = path.split(UPLOAD_SEGMENT, 1)[1]
    segments = [s for s in tail.split("/") if s]
    while segments and (segments[0] == marker or _VERSION_SEGMENT_RE.match(segments[0])):
        segments.pop(0)
    if not segments:
        return None
    return "/".join(segments)


def public_id_from_url(url: str, marker: str = "fl_attachment") -> Optional[str]:
    ref = object_ref_from_url(url, marker)
    if not ref:
        return None
    root, _ext = os.path.splitext(ref)
    return root or None


def sanitize_attachment_title(title: str | None) -> str:
    if not title:
        return "journal"
    cleaned = re.sub(r"[^\w\s-]", "", title)
    cleaned = re.sub(r"\s+", "_", cleaned)[:100]
    return cleaned or "journal"


def attachment_disposition(title: str | None, ext: str) -> str:
    return f'attachment; filename="{sanitize_attachment_title(title)}.{ext.lstrip(".")}"'


def is_remote_reference(reference: str | None) -> bool:
    return bool(reference) and str(reference).startswith(("http://", "https://"))


def guess_content_type(filename: str, default: str = "application/octet-stream") -> str:
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or default


class SupabaseBlobStore:
    """
    Supabase Storage 实现。

    中文注释:
    - 对象路径固定为 `upload/<public-id>.<ext>`，公开 URL 因此满足 `.../upload/<public-id>.<ext>` 约定，
      删除时可以从 URL 反推对象路径。
    - 所有异常都转换为 Result.fail(UpstreamFailure)，不向上抛。
    """

    def __init__(self, *, client: Any | None = None, config: JournalConfig | None = None):
        self.client = client or supabase_admin
        self.config = config or JournalConfig.from_env()

    def _bucket(self):
        return self.client.storage.from_(self.config.storage_bucket)

    def ensure_bucket_exists(self, *, public: bool = True) -> None:
        """
        确保 Storage bucket 存在（开发/演示环境兜底）。
        正式环境建议用 migration / Dashboard 创建 bucket。
        """
        storage = getattr(self.client, "storage", None)
        if storage is None or not hasattr(storage, "get_bucket") or not hasattr(storage, "create_bucket"):
            return

        try:
            storage.get_bucket(self.config.storage_bucket)
            return
        except Exception:
            pass

        try:
            storage.create_bucket(self.config.storage_bucket, options={"public": bool(public)})
        except Exception as e:
            text = str(e).lower()
            if "already" in text or "exists" in text or "duplicate" in text:
                return
            raise

    def upload(self, local_path: str, *, destination_hint: str, content_type: str | None = None) -> Result[str]:
        name = clean_object_name(destination_hint or local_path)
        object_path = f"upload/{int(time.time() * 1000)}-{name}"
        mime = content_type or guess_content_type(name)
        try:
            self.ensure_bucket_exists(public=True)
            with open(local_path, "rb") as fh:
                content = fh.read()
            # storage3 期望 header value 为字符串；传 bool 会触发 httpx "Header value must be str or bytes"。
            opts = {"content-type": mime, "upsert": "true"}
            self._bucket().upload(object_path, content, opts)
            public_url = self._bucket().get_public_url(object_path)
        except Exception as e:
            return Result.fail(UpstreamFailure("blob_store", f"upload failed for {name}", cause=e))

        url = str(public_url or "").rstrip("?")
        if not url:
            return Result.fail(UpstreamFailure("blob_store", f"no public url returned for {name}"))
        return Result.ok(url)

    def delete(self, url: str) -> Result[bool]:
        ref = object_ref_from_url(url, self.config.force_download_marker)
        if not ref:
            return Result.fail(UpstreamFailure("blob_store", f"cannot derive object id from url: {url}"))
        try:
            self._bucket().remove([f"upload/{ref}"])
        except Exception as e:
            return Result.fail(UpstreamFailure("blob_store", f"delete failed for {ref}", cause=e))
        return Result.ok(True)


async def stream_remote_file(url: str, *, timeout: float = 30.0) -> AsyncIterator[bytes]:
    """
    以流的方式代理远端文件（direct-download）。

    中文注释: 超时默认 30s；上游非 2xx 直接抛 httpx.HTTPStatusError，由路由层转换为 502。
    """
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                yield chunk
