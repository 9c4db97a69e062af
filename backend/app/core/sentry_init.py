import logging
from typing import Any

from app.core.config import SentryConfig

logger = logging.getLogger("agricjournal.sentry")

_SENSITIVE_KEYS = {
    "password",
    "token",
    "access_token",
    "refresh_token",
    "authorization",
    "cookie",
    "set-cookie",
    "jwt_secret",
    "service_role_key",
    "resend_api_key",
    "smtp_password",
}

# 投稿正文与上传文件不上报
_CONTENT_KEYS = {"abstract", "manuscript", "pdf_file", "docx_file", "file"}

_MAX_TEXT = 2000
_FILTERED = "[Filtered]"


def _is_hidden(key: Any) -> bool:
    name = str(key).strip().lower()
    return name in _SENSITIVE_KEYS or name in _CONTENT_KEYS


def _scrub(value: Any) -> Any:
    """
    递归清洗上报数据：凭据字段、稿件内容、二进制与超长文本一律替换为 [Filtered]。
    """
    if isinstance(value, dict):
        return {str(k): _FILTERED if _is_hidden(k) else _scrub(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return list(map(_scrub, value))
    if isinstance(value, (bytes, bytearray)):
        return _FILTERED
    if isinstance(value, str) and len(value) > _MAX_TEXT:
        return _FILTERED
    return value


def _scrub_request(request: dict[str, Any]) -> None:
    # 请求头直接丢弃敏感项；请求体/cookie 整体屏蔽
    headers = request.get("headers")
    if isinstance(headers, dict):
        request["headers"] = {name: v for name, v in headers.items() if str(name).strip().lower() not in _SENSITIVE_KEYS}
    request.update({key: _FILTERED for key in ("cookies", "data", "body") if key in request})


def _before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    if isinstance(event.get("request"), dict):
        _scrub_request(event["request"])
    event.update({name: _scrub(event[name]) for name in ("extra", "contexts") if isinstance(event.get(name), dict)})
    return event


def init_sentry() -> bool:
    """
    初始化 Sentry。

    中文注释:
    - 未配置 DSN 或显式禁用时直接返回 False。
    - 调用方负责 try/except，初始化失败不得阻塞启动。
    """
    cfg = SentryConfig.from_env()
    if not cfg.enabled or not cfg.dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=cfg.dsn,
        environment=cfg.environment,
        traces_sample_rate=cfg.traces_sample_rate,
        integrations=[FastApiIntegration()],
        send_default_pii=False,
        max_request_body_size="never",
        before_send=_before_send,
    )
    sentry_sdk.set_tag("service", "agricjournal-backend")
    logger.info("Sentry initialised environment=%s", cfg.environment)
    return True
