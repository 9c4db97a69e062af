from __future__ import annotations

import logging
import os
from typing import Optional

from app.core.config import JournalConfig
from app.core.mail import EmailService, email_service
from app.core.result import Result
from app.models.journal import JournalRecord

logger = logging.getLogger("agricjournal.notifications")

SUBMISSION_TEMPLATE = "submission_received.html"


class SubmissionNotifier:
    """
    新投稿提醒（发给审稿邮箱）。

    中文注释:
    1) 只做“尽力而为”：未配置收件人或邮件 provider 时直接返回 ok(False)。
    2) 失败以 Result.fail 返回，由调用方记录 warning，不影响已写入的记录。
    """

    def __init__(self, *, mailer: EmailService | None = None, config: JournalConfig | None = None):
        self.mailer = mailer or email_service
        self.config = config or JournalConfig.from_env()

    def _review_url(self) -> Optional[str]:
        base = (os.environ.get("FRONTEND_BASE_URL") or "").strip().rstrip("/")
        return f"{base}/admin/journals/pending" if base else None

    def notify_submission(self, record: JournalRecord) -> Result[bool]:
        recipient = self.config.review_email
        if not recipient:
            logger.debug("no review inbox configured, skip notification for journal=%s", record.id)
            return Result.ok(False)

        abstract = record.abstract
        if len(abstract) > 500:
            abstract = abstract[:500] + "..."

        return self.mailer.send_template_email(
            to_email=recipient,
            subject=f"New Journal Submission: {record.title}",
            template_name=SUBMISSION_TEMPLATE,
            context={
                "title": record.title,
                "authors": record.authors_display,
                "keywords": ", ".join(record.keywords),
                "submitted_by": record.submitted_by or "Anonymous",
                "volume": record.volume_display,
                "abstract": abstract,
                "review_url": self._review_url(),
            },
        )
