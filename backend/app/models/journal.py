"""
Published journal 数据模型 (Pydantic v2)

中文注释:
- LifecycleStatus: 投稿生命周期状态（submitted -> under_review -> accepted -> published / rejected）
- 归档 (is_archived) 是与状态正交的标记，不是一个状态值
- JournalRecord: published_journals 表的一行
- JournalCreate / JournalUpdate / JournalBulkPatch: 写入侧的输入模型
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

T = TypeVar("T")

TITLE_MAX = 500
ABSTRACT_MAX = 5000
REVIEW_NOTES_MAX = 2000

# 历史调用方会把 "archived" 当作状态写入；读写两侧都统一转换为 published + is_archived 标记。
LEGACY_ARCHIVED_STATUS = "archived"


def is_legacy_archived(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() == LEGACY_ARCHIVED_STATUS


class LifecycleStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ACCEPTED = "accepted"
    PUBLISHED = "published"
    REJECTED = "rejected"

    @classmethod
    def review_queue(cls) -> tuple["LifecycleStatus", ...]:
        return (cls.SUBMITTED, cls.UNDER_REVIEW, cls.ACCEPTED)

    @classmethod
    def pending(cls) -> tuple["LifecycleStatus", ...]:
        return (cls.SUBMITTED, cls.UNDER_REVIEW)


def normalize_status(value: str | LifecycleStatus | None) -> LifecycleStatus | None:
    if value is None:
        return None
    if isinstance(value, LifecycleStatus):
        return value
    v = str(value).strip().lower()
    if not v:
        return None
    try:
        return LifecycleStatus(v)
    except ValueError:
        return None


def parse_name_list(value: Any) -> list[str]:
    """
    解析作者/关键词列表。

    支持：
    - list[str]
    - JSON 数组字符串（管理端上传）
    - 逗号分隔字符串（前台投稿表单）
    """
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                decoded = json.loads(text)
            except ValueError:
                decoded = None
            if isinstance(decoded, list):
                return parse_name_list(decoded)
        return [part.strip() for part in text.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return [str(value).strip()] if str(value).strip() else []


class JournalRecord(BaseModel):
    """
    published_journals 表的一行（持久化表示）
    """

    model_config = ConfigDict(from_attributes=True, use_enum_values=False)

    id: str
    title: str
    abstract: str
    authors: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)

    # blob store 返回的 URL；上传完成前以本地路径兜底
    pdf_url: Optional[str] = None
    docx_url: Optional[str] = None
    content_file_path: Optional[str] = None

    volume_year: int
    volume_quarter: int = Field(..., ge=1, le=4)
    status: LifecycleStatus = LifecycleStatus.SUBMITTED
    submission_date: datetime
    review_notes: Optional[str] = None
    doi: Optional[str] = None
    page_numbers: Optional[str] = None
    is_archived: bool = False
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    submitted_by: Optional[str] = None
    reviewed_by: Optional[str] = None
    review_date: Optional[datetime] = None
    publication_date: Optional[datetime] = None
    archived_date: Optional[datetime] = None
    download_count: int = 0
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="before")
    @classmethod
    def _legacy_archived_row(cls, data: Any) -> Any:
        # 旧数据 status="archived"：还原为已发表且已归档
        if isinstance(data, dict) and is_legacy_archived(data.get("status")):
            data = {**data, "status": LifecycleStatus.PUBLISHED.value, "is_archived": True}
        return data

    @field_validator("download_count", mode="before")
    @classmethod
    def _null_download_count(cls, v: Any) -> int:
        return int(v or 0)

    @field_validator("authors", "keywords", mode="before")
    @classmethod
    def _null_lists(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("is_archived", mode="before")
    @classmethod
    def _null_flag(cls, v: Any) -> bool:
        return bool(v)

    @field_validator(
        "submission_date",
        "review_date",
        "publication_date",
        "archived_date",
        "created_at",
        "updated_at",
    )
    @classmethod
    def _assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # 不带时区的时间按 UTC 处理，保证排序比较不会混用 naive/aware
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def volume_display(self) -> str:
        return f"{self.volume_year} - Quarter {self.volume_quarter}"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def authors_display(self) -> str:
        return ", ".join(self.authors or [])

    def has_document(self) -> bool:
        return bool(self.pdf_url or self.docx_url or self.content_file_path)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"volume_display", "authors_display"})


class JournalCreate(BaseModel):
    """
    新建记录（前台投稿 / 管理端直接录入）
    """

    model_config = ConfigDict(extra="ignore")

    title: str = Field(..., min_length=1, max_length=TITLE_MAX)
    abstract: str = Field(..., min_length=1, max_length=ABSTRACT_MAX)
    authors: list[str] = Field(..., min_length=1)
    keywords: list[str] = Field(default_factory=list)
    status: LifecycleStatus = LifecycleStatus.SUBMITTED

    volume_year: Optional[int] = Field(None, ge=1900, le=9999)
    volume_quarter: Optional[int] = Field(None, ge=1, le=4)
    submission_date: Optional[datetime] = None
    publication_date: Optional[datetime] = None
    doi: Optional[str] = None
    page_numbers: Optional[str] = None
    review_notes: Optional[str] = Field(None, max_length=REVIEW_NOTES_MAX)

    pdf_url: Optional[str] = None
    docx_url: Optional[str] = None
    content_file_path: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    file_type: Optional[str] = None
    submitted_by: Optional[str] = None

    @field_validator("title", "abstract", mode="before")
    @classmethod
    def _strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("authors", "keywords", mode="before")
    @classmethod
    def _parse_lists(cls, v: Any) -> list[str]:
        return parse_name_list(v)

    @field_validator("doi", "submitted_by", "page_numbers", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip() or None
        return v


class JournalUpdate(BaseModel):
    """
    单条记录更新（审稿动作 / 元数据修改）。未提供或为空的字段保持原值。
    """

    model_config = ConfigDict(extra="ignore")

    status: Optional[LifecycleStatus] = None
    review_notes: Optional[str] = Field(None, max_length=REVIEW_NOTES_MAX)
    reviewed_by: Optional[str] = None
    page_numbers: Optional[str] = None
    title: Optional[str] = Field(None, max_length=TITLE_MAX)
    abstract: Optional[str] = Field(None, max_length=ABSTRACT_MAX)
    authors: Optional[list[str]] = None
    keywords: Optional[list[str]] = None
    is_archived: Optional[bool] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_archived_status(cls, data: Any) -> Any:
        # {"status": "archived"} 等价于 {"is_archived": true}，不改动 status
        if isinstance(data, dict) and is_legacy_archived(data.get("status")):
            data = {k: v for k, v in data.items() if k != "status"}
            data.setdefault("is_archived", True)
        return data

    @field_validator("authors", "keywords", mode="before")
    @classmethod
    def _parse_lists(cls, v: Any) -> Optional[list[str]]:
        if v is None:
            return None
        return parse_name_list(v)

    def changes(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key, value in self.model_dump(exclude_none=True).items():
            if isinstance(value, str) and not value.strip():
                continue
            if isinstance(value, list) and not value:
                continue
            out[key] = value
        return out


class PublishRequest(BaseModel):
    page_numbers: Optional[str] = None
    reviewed_by: Optional[str] = None


class JournalBulkPatch(BaseModel):
    """
    批量更新允许写入的字段白名单。
    """

    model_config = ConfigDict(extra="forbid")

    status: Optional[str] = None
    review_notes: Optional[str] = Field(None, max_length=REVIEW_NOTES_MAX)
    reviewed_by: Optional[str] = None
    page_numbers: Optional[str] = None
    is_archived: Optional[bool] = None


class BulkIdsRequest(BaseModel):
    journal_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("journal_ids", "journalIds"),
    )


class BulkUpdateRequest(BulkIdsRequest):
    update_data: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("update_data", "updateData"),
    )


class JournalSearchCriteria(BaseModel):
    """
    查询条件（advanced search / 管理端列表 / CSV 导出共用）

    中文注释:
    - status=None 表示不过滤状态；"all" 在 API 层被转换为 None。
    - search_authors=True 时，自由文本也匹配作者（管理端列表/导出的历史行为）。
    """

    search: Optional[str] = None
    year: Optional[int] = None
    quarter: Optional[int] = None
    author: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)
    status: Optional[LifecycleStatus] = None
    journal_ids: Optional[list[str]] = None
    search_keywords: bool = True
    search_authors: bool = False


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int


class PendingReviewPage(Page[JournalRecord]):
    status_counts: dict[str, int] = Field(default_factory=dict)


class BulkResult(BaseModel):
    matched_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    # 批量发布绕过了 accepted 前置条件的记录，供人工复核
    bypassed_guard_ids: list[str] = Field(default_factory=list)
