"""
联系我们留言 (contact_messages) 数据模型

中文注释:
- 前台提交只需要 name / email / subject / message，其余字段由服务端补齐。
- 管理端只允许修改处理状态、优先级和备注。
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

NAME_MAX = 100
SUBJECT_MAX = 200
MESSAGE_MAX = 5000


class ContactStatus(str, Enum):
    NEW = "new"
    READ = "read"
    REPLIED = "replied"
    ARCHIVED = "archived"


class ContactPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ContactCategory(str, Enum):
    GENERAL = "general"
    SUBMISSION = "submission"
    PUBLICATION = "publication"
    TECHNICAL = "technical"
    OTHER = "other"


class ContactMessage(BaseModel):
    """contact_messages 表的一行"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    subject: str
    message: str
    status: ContactStatus = ContactStatus.NEW
    priority: ContactPriority = ContactPriority.MEDIUM
    category: ContactCategory = ContactCategory.GENERAL
    admin_notes: str = ""
    ip_address: str = ""
    user_agent: str = ""
    created_at: datetime
    updated_at: datetime

    @field_validator("admin_notes", "ip_address", "user_agent", mode="before")
    @classmethod
    def _null_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ContactCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=NAME_MAX)
    email: EmailStr
    subject: str = Field(..., min_length=1, max_length=SUBJECT_MAX)
    message: str = Field(..., min_length=1, max_length=MESSAGE_MAX)
    category: ContactCategory = ContactCategory.GENERAL

    @field_validator("name", "subject", "message", "email", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return str(v).lower()


class ContactUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    status: Optional[ContactStatus] = None
    priority: Optional[ContactPriority] = None
    admin_notes: Optional[str] = Field(
        None,
        max_length=MESSAGE_MAX,
        validation_alias=AliasChoices("admin_notes", "adminNotes"),
    )

    def changes(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
