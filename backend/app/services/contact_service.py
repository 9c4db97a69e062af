from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic_core import to_jsonable_python

from app.core.config import ContactConfig
from app.core.exceptions import NotFound
from app.core.identifiers import new_record_id, require_record_id
from app.core.mail import EmailService, email_service
from app.core.result import Result
from app.lib.api_client import supabase_admin
from app.models.contact import (
    ContactCategory,
    ContactCreate,
    ContactMessage,
    ContactStatus,
    ContactUpdate,
)
from app.models.journal import Page
from app.services.journal_query_service import normalize_paging

logger = logging.getLogger("agricjournal.contact")

CONTACT_TABLE = "contact_messages"
CONFIRMATION_TEMPLATE = "contact_received.html"
EDITOR_TEMPLATE = "contact_notification.html"
DEFAULT_PAGE_SIZE = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContactRepository:
    """contact_messages 表的 PostgREST 访问"""

    def __init__(self, client: Any | None = None):
        self.client = client or supabase_admin

    @staticmethod
    def _records(resp: Any) -> list[ContactMessage]:
        return [ContactMessage.model_validate(row) for row in (getattr(resp, "data", None) or [])]

    def get(self, message_id: str) -> Optional[ContactMessage]:
        rows = self._records(self.client.table(CONTACT_TABLE).select("*").eq("id", message_id).execute())
        return rows[0] if rows else None

    def list(self, *, status: str | None = None, category: str | None = None) -> list[ContactMessage]:
        query = self.client.table(CONTACT_TABLE).select("*")
        if status:
            query = query.eq("status", status)
        if category:
            query = query.eq("category", category)
        return self._records(query.execute())

    def insert(self, message: ContactMessage) -> ContactMessage:
        rows = self._records(self.client.table(CONTACT_TABLE).insert(message.to_row()).execute())
        return rows[0] if rows else message

    def update(self, message_id: str, changes: dict[str, Any]) -> Optional[ContactMessage]:
        payload = to_jsonable_python({**changes, "updated_at": _utcnow()})
        rows = self._records(self.client.table(CONTACT_TABLE).update(payload).eq("id", message_id).execute())
        return rows[0] if rows else None

    def delete(self, message_id: str) -> bool:
        resp = self.client.table(CONTACT_TABLE).delete().eq("id", message_id).execute()
        return bool(getattr(resp, "data", None))


class ContactService:
    """
    联系我们留言。

    中文注释:
    - 留言先落库，再给来信人发确认邮件、给编辑部发提醒；邮件失败只记 warning。
    - 管理端查看单条新留言时自动标记为 read。
    """

    def __init__(
        self,
        *,
        repository: ContactRepository | None = None,
        mailer: EmailService | None = None,
        config: ContactConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository or ContactRepository()
        self.mailer = mailer or email_service
        self.config = config or ContactConfig.from_env()
        self.clock = clock

    def send(self, fields: ContactCreate, *, ip_address: str = "", user_agent: str = "") -> ContactMessage:
        now = self.clock()
        message = ContactMessage(
            id=new_record_id(),
            name=fields.name,
            email=fields.email,
            subject=fields.subject,
            message=fields.message,
            category=fields.category or ContactCategory.GENERAL,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
            updated_at=now,
        )
        saved = self.repository.insert(message)
        logger.info("contact message stored id=%s category=%s", saved.id, saved.category.value)
        return saved

    def notify(self, message: ContactMessage) -> None:
        """确认邮件 + 编辑部提醒（后台任务，尽力而为）"""
        context = {
            "journal_name": self.config.journal_name,
            "name": message.name,
            "email": message.email,
            "subject": message.subject,
            "message": message.message,
            "received_at": message.created_at.strftime("%Y-%m-%d %H:%M UTC"),
            "ip_address": message.ip_address,
            "message_id": message.id,
        }
        outcomes: list[tuple[str, Result[bool]]] = [
            (
                "confirmation",
                self.mailer.send_template_email(
                    to_email=message.email,
                    subject=f"Message Received - {self.config.journal_name}",
                    template_name=CONFIRMATION_TEMPLATE,
                    context=context,
                ),
            )
        ]
        if self.config.editor_email:
            outcomes.append(
                (
                    "editor",
                    self.mailer.send_template_email(
                        to_email=self.config.editor_email,
                        subject=f"New Contact Message - {message.subject}",
                        template_name=EDITOR_TEMPLATE,
                        context=context,
                    ),
                )
            )
        for kind, result in outcomes:
            if not result.is_ok:
                logger.warning("contact %s email failed message=%s: %s", kind, message.id, result.error)

    def list_messages(
        self,
        *,
        status: ContactStatus | None = None,
        category: ContactCategory | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[ContactMessage]:
        page, limit = normalize_paging(page, limit, default_limit=DEFAULT_PAGE_SIZE)
        rows = self.repository.list(
            status=status.value if status else None,
            category=category.value if category else None,
        )
        rows.sort(key=lambda m: m.created_at, reverse=True)
        start = (page - 1) * limit
        return Page[ContactMessage](
            items=rows[start:start + limit],
            total=len(rows),
            page=page,
            page_size=limit,
            total_pages=math.ceil(len(rows) / limit) if rows else 0,
        )

    def get(self, message_id: str) -> ContactMessage:
        message = self.repository.get(require_record_id(message_id, kind="message"))
        if message is None:
            raise NotFound("Message not found")
        if message.status == ContactStatus.NEW:
            message = self.repository.update(message.id, {"status": ContactStatus.READ.value}) or message
        return message

    def update(self, message_id: str, patch: ContactUpdate) -> ContactMessage:
        message_id = require_record_id(message_id, kind="message")
        changes = patch.changes()
        if not changes:
            return self.get(message_id)
        updated = self.repository.update(message_id, changes)
        if updated is None:
            raise NotFound("Message not found")
        return updated

    def delete(self, message_id: str) -> None:
        if not self.repository.delete(require_record_id(message_id, kind="message")):
            raise NotFound("Message not found")
        logger.info("contact message deleted id=%s", message_id)


_contact_service: ContactService | None = None


def get_contact_service() -> ContactService:
    global _contact_service
    if _contact_service is None:
        _contact_service = ContactService()
    return _contact_service
