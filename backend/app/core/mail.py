import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict

import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape
from tenacity import retry, stop_after_attempt, wait_exponential

from app.core.config import ResendConfig, SMTPConfig
from app.core.exceptions import UpstreamFailure
from app.core.result import Result

logger = logging.getLogger("agricjournal.mail")


class EmailService:
    _SENTINEL = object()

    def __init__(
        self,
        *,
        smtp_config: SMTPConfig | None | object = _SENTINEL,
        resend_config: ResendConfig | None | object = _SENTINEL,
    ):
        # 中文注释:
        # - smtp_config / resend_config 支持依赖注入，方便单测与不同环境切换。
        # - 若调用方显式传 None，则视为禁用该 provider。
        if smtp_config is self._SENTINEL:
            smtp_config = SMTPConfig.from_env()
        if resend_config is self._SENTINEL:
            resend_config = ResendConfig.from_env()

        self.smtp_config: SMTPConfig | None = smtp_config  # type: ignore[assignment]
        self.resend_config: ResendConfig | None = resend_config  # type: ignore[assignment]

        if self.resend_config:
            resend.api_key = self.resend_config.api_key

        templates_dir = Path(__file__).resolve().parent / "templates"
        self._jinja = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def is_configured(self) -> bool:
        return bool(self.smtp_config or self.resend_config)

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        return self._jinja.get_template(template_name).render(**context)

    def send_email(
        self,
        *,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> Result[bool]:
        """
        发送邮件（同步）。

        中文注释:
        - SMTP 优先；SMTP 未配置但 Resend 已配置时改走 Resend。
        - 两者都未配置时返回 Result.ok(False)，调用方只记录日志。
        - provider 的异常统一包成 UpstreamFailure 返回，不向上抛。
        """
        if self.smtp_config:
            provider, send = "smtp", lambda: self._send_smtp(to_email, subject, html_body, text_body)
        elif self.resend_config:
            provider, send = "resend", lambda: self._send_with_retry(to_email, subject, html_body)
        else:
            logger.info("email provider not configured, skipped mail to=%s subject=%s", to_email, subject)
            return Result.ok(False)

        try:
            send()
        except Exception as e:
            logger.warning("[%s] send failed to=%s: %s", provider, to_email, e)
            return Result.fail(UpstreamFailure(provider, f"send to {to_email} failed", cause=e))
        return Result.ok(True)

    def _build_message(self, sender: str, to_email: str, subject: str, html_body: str,
                       text_body: str | None) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = sender
        message["To"] = to_email
        parts = [(text_body, "plain"), (html_body, "html")]
        for body, subtype in parts:
            if body:
                message.attach(MIMEText(body, subtype, "utf-8"))
        return message

    def _send_smtp(self, to_email: str, subject: str, html_body: str, text_body: str | None) -> None:
        # 只在 smtp_config 已配置时由 send_email 调用
        smtp = self.smtp_config
        message = self._build_message(smtp.from_email, to_email, subject, html_body, text_body)
        with smtplib.SMTP(smtp.host, smtp.port) as server:
            if smtp.use_starttls:
                server.starttls()
            if smtp.has_credentials:
                server.login(smtp.user, smtp.password)
            server.sendmail(smtp.from_email, [to_email], message.as_string())

    def send_template_email(
        self,
        *,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
    ) -> Result[bool]:
        if not self.is_configured():
            logger.info("email provider not configured, skipped template=%s to=%s", template_name, to_email)
            return Result.ok(False)
        try:
            html = self.render_template(template_name, context)
        except Exception as e:
            return Result.fail(UpstreamFailure("email_template", f"render {template_name} failed", cause=e))
        return self.send_email(to_email=to_email, subject=subject, html_body=html)

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    def _send_with_retry(self, to_email: str, subject: str, html_body: str):
        # 中文注释: Resend 偶发 5xx，指数退避重试 3 次后抛出最后一次异常
        sender = self.resend_config.sender if self.resend_config else "Agric Journal <no-reply@agricjournal.local>"
        return resend.Emails.send({"from": sender, "to": [to_email], "subject": subject, "html": html_body})


# 进程级单例：路由与通知服务共用
email_service = EmailService()
