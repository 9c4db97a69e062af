import os

# 必须在导入 app 之前设置：测试环境自动关闭限流
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from app.core.config import ContactConfig, JournalConfig
from app.core.exceptions import UpstreamFailure
from app.core.identifiers import new_journal_id
from app.core.result import Result
from app.models.journal import JournalRecord, LifecycleStatus
from app.services.bulk_service import BulkOperationService, get_bulk_service
from app.services.contact_service import ContactRepository, ContactService, get_contact_service
from app.services.journal_query_service import JournalQueryService, get_query_service
from app.services.journal_repository import JournalRepository
from app.services.journal_service import JournalService, get_journal_service
from app.services.journal_stats_service import JournalStatsService, get_stats_service
from app.services.lifecycle_service import LifecycleEngine
from app.services.storage_service import clean_object_name
from main import app
from tests.utils.fake_supabase import FakeSupabase

# === 全局测试配置 ===
# 中文注释:
# 1. 所有服务都注入内存版 Supabase 与固定时钟，单测不访问网络。
# 2. API 测试通过 dependency_overrides 替换服务单例，认证走真实 JWT 解码。

FIXED_NOW = datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


class FakeBlobStore:
    def __init__(self):
        self.uploads: list[dict] = []
        self.deleted: list[str] = []
        self.fail_upload = False
        self.fail_delete = False

    def upload(self, local_path: str, *, destination_hint: str, content_type: str | None = None) -> Result[str]:
        if self.fail_upload:
            return Result.fail(UpstreamFailure("blob_store", "upload failed"))
        url = f"https://cdn.example.com/raw/upload/{len(self.uploads) + 1}-{clean_object_name(destination_hint)}"
        self.uploads.append({"local_path": local_path, "url": url, "content_type": content_type})
        return Result.ok(url)

    def delete(self, url: str) -> Result[bool]:
        self.deleted.append(url)
        if self.fail_delete:
            return Result.fail(UpstreamFailure("blob_store", "delete failed"))
        return Result.ok(True)


class FakeNotifier:
    def __init__(self):
        self.notified: list[str] = []

    def notify_submission(self, record: JournalRecord) -> Result[bool]:
        self.notified.append(record.id)
        return Result.ok(True)


class FakeMailer:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    def send_template_email(self, *, to_email: str, subject: str, template_name: str, context: dict) -> Result[bool]:
        self.sent.append({"to": to_email, "subject": subject, "template": template_name, "context": context})
        if self.fail:
            return Result.fail(UpstreamFailure("smtp", "mail down"))
        return Result.ok(True)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def journal_config(tmp_path) -> JournalConfig:
    return JournalConfig(
        doi_prefix="10.1234/agricjournal",
        storage_bucket="published-journals",
        force_download_marker="fl_attachment",
        max_upload_bytes=1024 * 1024,
        download_timeout_sec=30,
        review_email=None,
        upload_dir=str(tmp_path / "uploads"),
    )


@pytest.fixture
def repository(fake_db) -> JournalRepository:
    return JournalRepository(fake_db)


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def lifecycle(journal_config) -> LifecycleEngine:
    return LifecycleEngine(journal_config, clock=fixed_clock)


@pytest.fixture
def journal_service(repository, blob_store, notifier, lifecycle, journal_config) -> JournalService:
    return JournalService(
        repository=repository,
        blob_store=blob_store,
        notifier=notifier,
        lifecycle=lifecycle,
        config=journal_config,
        clock=fixed_clock,
    )


@pytest.fixture
def query_service(repository) -> JournalQueryService:
    return JournalQueryService(repository=repository, clock=fixed_clock)


@pytest.fixture
def stats_service(repository) -> JournalStatsService:
    return JournalStatsService(repository=repository, clock=fixed_clock)


@pytest.fixture
def bulk_service(journal_service) -> BulkOperationService:
    return BulkOperationService(journal_service)


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def contact_service(fake_db, mailer) -> ContactService:
    return ContactService(
        repository=ContactRepository(fake_db),
        mailer=mailer,
        config=ContactConfig(editor_email="editor@example.com", journal_name="Agric Journal"),
        clock=fixed_clock,
    )


@pytest.fixture
def make_record(fake_db) -> Callable[..., JournalRecord]:
    """
    直接往内存表写一行，返回对应的 JournalRecord。
    """

    def _make(**overrides) -> JournalRecord:
        created = overrides.pop("created_at", FIXED_NOW - timedelta(days=60))
        fields = {
            "id": new_journal_id(),
            "title": "Soil Moisture Dynamics in Rainfed Maize",
            "abstract": "We measure soil moisture across three growing seasons.",
            "authors": ["Alice Smith"],
            "keywords": ["soil", "maize"],
            "pdf_url": "https://cdn.example.com/raw/upload/paper.pdf",
            "volume_year": FIXED_NOW.year,
            "volume_quarter": 2,
            "status": LifecycleStatus.PUBLISHED,
            "submission_date": created,
            "created_at": created,
            "updated_at": created,
        }
        fields.update(overrides)
        record = JournalRecord(**fields)
        fake_db.rows().append(record.to_row())
        return record

    return _make


def make_token(*, sub: str = "user-1", email: str = "reader@example.com", roles: list[str] | None = None,
               expires_in: timedelta = timedelta(hours=1)) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "email": email,
        "roles": roles or [],
        "aud": "authenticated",
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, os.environ["JWT_SECRET"], algorithm="HS256")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(sub='admin-1', email='editor@example.com', roles=['admin'])}"}


@pytest.fixture
def reader_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest_asyncio.fixture
async def client(journal_service, query_service, stats_service, bulk_service, contact_service) -> AsyncGenerator:
    """
    提供注入了内存服务的异步测试客户端
    """
    app.dependency_overrides[get_journal_service] = lambda: journal_service
    app.dependency_overrides[get_query_service] = lambda: query_service
    app.dependency_overrides[get_stats_service] = lambda: stats_service
    app.dependency_overrides[get_bulk_service] = lambda: bulk_service
    app.dependency_overrides[get_contact_service] = lambda: contact_service
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_token
