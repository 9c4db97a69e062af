import os
import tempfile
from dataclasses import dataclass
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


def _env_int(key: str, default: int, *, minimum: int = 1) -> int:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(value, minimum)


def _env_str(key: str, default: str = "") -> str:
    return (os.environ.get(key) or default).strip()


@dataclass(frozen=True)
class AppConfig:
    """
    进程级运行环境

    中文注释:
    - env: development / staging / production / test
    - supabase_service_key 只在后端使用（published_journals 读写与 Storage 上传）
    """

    env: str
    supabase_url: str
    supabase_service_key: str
    supabase_anon_key: str

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @staticmethod
    def from_env() -> "AppConfig":
        # 预发环境在部署平台层面替换 SUPABASE_URL，这里只读同一组变量
        return AppConfig(
            env=_env_str("APP_ENV", "development").lower(),
            supabase_url=_env_str("SUPABASE_URL"),
            supabase_service_key=_env_str("SUPABASE_SERVICE_ROLE_KEY"),
            supabase_anon_key=_env_str("SUPABASE_ANON_KEY") or _env_str("SUPABASE_KEY"),
        )


# Global Config Instance
app_config = AppConfig.from_env()


def expose_error_detail() -> bool:
    """
    错误响应是否携带底层 error 字段。

    中文注释:
    - 生产环境只返回 message，避免泄露内部实现细节。
    - 每次调用都重新读取 APP_ENV，方便测试 monkeypatch。
    """
    return not AppConfig.from_env().is_production


@dataclass(frozen=True)
class JournalConfig:
    """
    Published journal 模块配置

    中文注释:
    1) DOI 前缀、存储 bucket、强制下载标记都可以通过环境变量覆盖，避免硬编码。
    2) 下载代理的超时时间默认 30s（外部存储调用的上限）。
    """

    doi_prefix: str
    storage_bucket: str
    force_download_marker: str
    max_upload_bytes: int
    download_timeout_sec: int
    review_email: Optional[str]
    upload_dir: str

    @staticmethod
    def from_env() -> "JournalConfig":
        doi_prefix = (os.environ.get("DOI_PREFIX") or "10.1234/agricjournal").strip().rstrip(".")
        storage_bucket = (
            os.environ.get("JOURNAL_STORAGE_BUCKET") or "published-journals"
        ).strip()
        marker = (
            os.environ.get("JOURNAL_FORCE_DOWNLOAD_MARKER") or "fl_attachment"
        ).strip().strip("/")
        max_upload_mb = _env_int("JOURNAL_MAX_UPLOAD_MB", 50)
        timeout = _env_int("JOURNAL_DOWNLOAD_TIMEOUT_SEC", 30)
        review_email = (os.environ.get("JOURNAL_REVIEW_EMAIL") or "").strip() or None
        upload_dir = (
            os.environ.get("JOURNAL_UPLOAD_DIR")
            or os.path.join(tempfile.gettempdir(), "agricjournal-uploads")
        ).strip()

        return JournalConfig(
            doi_prefix=doi_prefix,
            storage_bucket=storage_bucket,
            force_download_marker=marker or "fl_attachment",
            max_upload_bytes=max_upload_mb * 1024 * 1024,
            download_timeout_sec=timeout,
            review_email=review_email,
            upload_dir=upload_dir,
        )


@dataclass(frozen=True)
class ContactConfig:
    """
    联系我们（contact messages）配置

    中文注释: 编辑部收件箱未单独配置时沿用投稿审稿邮箱；都为空则只给来信人发确认邮件。
    """

    editor_email: Optional[str]
    journal_name: str

    @staticmethod
    def from_env() -> "ContactConfig":
        return ContactConfig(
            editor_email=_env_str("CONTACT_EDITOR_EMAIL") or _env_str("JOURNAL_REVIEW_EMAIL") or None,
            journal_name=_env_str("JOURNAL_NAME", "Agric Journal"),
        )


@dataclass(frozen=True)
class SMTPConfig:
    """
    SMTP 发信配置

    中文注释: 未设置 SMTP_HOST 时返回 None，投稿提醒降级为只写日志。
    """

    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    from_email: str
    use_starttls: bool

    @property
    def has_credentials(self) -> bool:
        return bool(self.user and self.password)

    @staticmethod
    def from_env() -> Optional["SMTPConfig"]:
        host = _env_str("SMTP_HOST")
        if not host:
            return None
        user = _env_str("SMTP_USER") or None
        return SMTPConfig(
            host=host,
            port=_env_int("SMTP_PORT", 587),
            user=user,
            password=_env_str("SMTP_PASSWORD") or None,
            from_email=_env_str("SMTP_FROM_EMAIL") or user or "no-reply@agricjournal.local",
            use_starttls=_env_bool("SMTP_USE_STARTTLS", True),
        )


@dataclass(frozen=True)
class ResendConfig:
    """Resend HTTP 发信（SMTP 不可用的托管环境）"""

    api_key: str
    sender: str

    @staticmethod
    def from_env() -> Optional["ResendConfig"]:
        api_key = _env_str("RESEND_API_KEY")
        if not api_key:
            return None
        return ResendConfig(
            api_key=api_key,
            sender=_env_str("EMAIL_SENDER", "Agric Journal <no-reply@agricjournal.local>"),
        )


@dataclass(frozen=True)
class SentryConfig:
    enabled: bool
    dsn: Optional[str]
    environment: str
    traces_sample_rate: float

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip() or None
        enabled = _env_bool("SENTRY_ENABLED", bool(dsn))
        environment = (
            os.environ.get("SENTRY_ENVIRONMENT") or os.environ.get("APP_ENV") or "development"
        ).strip()

        rate_raw = (os.environ.get("SENTRY_TRACES_SAMPLE_RATE") or "0").strip()
        try:
            rate = float(rate_raw)
        except ValueError:
            rate = 0.0
        rate = min(max(rate, 0.0), 1.0)

        return SentryConfig(
            enabled=enabled,
            dsn=dsn,
            environment=environment,
            traces_sample_rate=rate,
        )


def get_jwt_secret() -> str:
    return (os.environ.get("JWT_SECRET") or "mock-secret-replace-later").strip()
