from dataclasses import replace
from unittest.mock import MagicMock

from app.core.result import Result
from app.models.journal import LifecycleStatus
from app.services.notification_service import SUBMISSION_TEMPLATE, SubmissionNotifier


def test_notifier_skips_without_review_inbox(journal_config, make_record):
    mailer = MagicMock()
    notifier = SubmissionNotifier(mailer=mailer, config=journal_config)

    result = notifier.notify_submission(make_record(status=LifecycleStatus.SUBMITTED))

    assert result.is_ok and result.value is False
    mailer.send_template_email.assert_not_called()


def test_notifier_sends_truncated_abstract(journal_config, make_record, monkeypatch):
    monkeypatch.setenv("FRONTEND_BASE_URL", "https://journal.example.com/")
    mailer = MagicMock()
    mailer.send_template_email.return_value = Result.ok(True)
    config = replace(journal_config, review_email="review@example.com")
    record = make_record(
        status=LifecycleStatus.SUBMITTED,
        title="Cover Crops",
        abstract="a" * 600,
        authors=["Alice", "Bob"],
        submitted_by=None,
    )

    result = SubmissionNotifier(mailer=mailer, config=config).notify_submission(record)

    assert result.is_ok
    kwargs = mailer.send_template_email.call_args.kwargs
    assert kwargs["to_email"] == "review@example.com"
    assert kwargs["subject"] == "New Journal Submission: Cover Crops"
    assert kwargs["template_name"] == SUBMISSION_TEMPLATE
    context = kwargs["context"]
    assert context["abstract"] == "a" * 500 + "..."
    assert context["authors"] == "Alice, Bob"
    assert context["submitted_by"] == "Anonymous"
    assert context["review_url"] == "https://journal.example.com/admin/journals/pending"
