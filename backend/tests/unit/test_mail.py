from unittest.mock import MagicMock, patch

from app.core.config import ResendConfig, SMTPConfig
from app.core.mail import EmailService


def _smtp_config() -> SMTPConfig:
    return SMTPConfig(
        host="smtp.example.com",
        port=587,
        user="user@example.com",
        password="secret",
        from_email="no-reply@example.com",
        use_starttls=True,
    )


def test_send_email_success():
    service = EmailService(smtp_config=_smtp_config(), resend_config=None)
    with patch("app.core.mail.smtplib.SMTP") as smtp:
        server = MagicMock()
        smtp.return_value.__enter__.return_value = server

        result = service.send_email(
            to_email="to@example.com",
            subject="Test Subject",
            html_body="<p>Hello</p>",
            text_body="Hello",
        )
        assert result.is_ok and result.value is True
        server.starttls.assert_called_once()
        server.login.assert_called_once()
        server.sendmail.assert_called_once()


def test_send_email_failure_is_returned_not_raised():
    service = EmailService(smtp_config=_smtp_config(), resend_config=None)
    with patch("app.core.mail.smtplib.SMTP") as smtp:
        server = MagicMock()
        server.sendmail.side_effect = RuntimeError("smtp down")
        smtp.return_value.__enter__.return_value = server

        result = service.send_email(to_email="to@example.com", subject="s", html_body="<p>x</p>")
        assert not result.is_ok
        assert result.error.detail["service"] == "smtp"


def test_send_email_skips_when_nothing_configured():
    service = EmailService(smtp_config=None, resend_config=None)
    result = service.send_email(to_email="to@example.com", subject="s", html_body="<p>x</p>")
    assert result.is_ok and result.value is False


def test_send_email_falls_back_to_resend():
    service = EmailService(smtp_config=None, resend_config=ResendConfig(api_key="re_test", sender="J <j@example.com>"))
    with patch("app.core.mail.resend.Emails.send") as send:
        result = service.send_email(to_email="to@example.com", subject="s", html_body="<p>x</p>")
    assert result.is_ok and result.value is True
    params = send.call_args.args[0]
    assert params["to"] == ["to@example.com"]
    assert params["from"] == "J <j@example.com>"


def test_send_template_email_renders_submission_template():
    service = EmailService(smtp_config=_smtp_config(), resend_config=None)
    with patch.object(service, "send_email") as send:
        service.send_template_email(
            to_email="review@example.com",
            subject="New",
            template_name="submission_received.html",
            context={
                "title": "Drip <Irrigation>",
                "authors": "Alice",
                "submitted_by": "Alice",
                "volume": "2026 - Quarter 2",
                "keywords": "water",
                "abstract": "Short abstract",
                "review_url": "https://journal.example.com/admin/journals/pending",
            },
        )
    html = send.call_args.kwargs["html_body"]
    assert "Drip &lt;Irrigation&gt;" in html
    assert "2026 - Quarter 2" in html


def test_send_template_email_handles_render_failure():
    service = EmailService(smtp_config=_smtp_config(), resend_config=None)
    with patch.object(service, "render_template", side_effect=RuntimeError("bad template")):
        result = service.send_template_email(
            to_email="to@example.com",
            subject="s",
            template_name="anything.html",
            context={},
        )
    assert not result.is_ok


def test_smtp_without_credentials_skips_login():
    config = SMTPConfig(
        host="relay.internal",
        port=25,
        user=None,
        password=None,
        from_email="no-reply@example.com",
        use_starttls=False,
    )
    service = EmailService(smtp_config=config, resend_config=None)
    with patch("app.core.mail.smtplib.SMTP") as smtp:
        server = MagicMock()
        smtp.return_value.__enter__.return_value = server

        result = service.send_email(to_email="to@example.com", subject="s", html_body="<p>x</p>")

    assert result.is_ok and result.value is True
    smtp.assert_called_once_with("relay.internal", 25)
    server.starttls.assert_not_called()
    server.login.assert_not_called()
    server.sendmail.assert_called_once()
