from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional, Protocol

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import _env_bool, _env_int

logger = logging.getLogger("agricjournal.rate_limit")

API_PREFIX = "/api/v1/published-journals"
CONTACT_SEND_PATH = "/api/v1/contact/send"


def _is_test_env() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return True
    mode = (os.environ.get("APP_ENV") or os.environ.get("ENVIRONMENT") or "").strip().lower()
    return mode in {"test", "testing"}


def is_rate_limit_enabled() -> bool:
    if _is_test_env():
        return False
    return _env_bool("RATE_LIMIT_ENABLED", True)


def client_ip(request: Request) -> str:
    """取请求方 IP（优先 X-Forwarded-For 第一个地址）。"""
    forwarded = (request.headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        return forwarded.split(",")[0].strip() or "unknown"
    if request.client and request.client.host:
        return str(request.client.host)
    return "unknown"


@dataclass(frozen=True)
class RateLimitPolicy:
    key: str
    max_requests: int
    window_sec: int


class CounterStore(Protocol):
    """
    计数存储接口（可替换为共享缓存实现，例如 Redis）。

    - get: 当前计数与剩余 TTL（秒）；不存在返回 (0, 0)
    - increment: 计数 +1 并返回新值；key 不存在时创建
    - expire: 设置 key 的过期时间（秒）
    """

    def get(self, key: str) -> tuple[int, int]:
        ...

    def increment(self, key: str) -> int:
        ...

    def expire(self, key: str, ttl_sec: int) -> None:
        ...


class InMemoryCounterStore:
    """
    进程内计数存储。

    中文注释:
    - 多实例部署时为“实例内限流”，不等价于全局分布式限流。
    - 每 60 秒清理一次过期 key，避免字典无限增长。
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, tuple[int, Optional[float]]] = {}
        self._lock = Lock()
        self._clock = clock
        self._last_gc_at = clock()

    def _live(self, key: str, now: float) -> tuple[int, Optional[float]]:
        count, expires_at = self._entries.get(key, (0, None))
        if expires_at is not None and expires_at <= now:
            self._entries.pop(key, None)
            return 0, None
        return count, expires_at

    def _gc_if_needed(self, now: float) -> None:
        if now - self._last_gc_at < 60:
            return
        self._last_gc_at = now
        expired = [k for k, (_c, exp) in self._entries.items() if exp is not None and exp <= now]
        for k in expired:
            self._entries.pop(k, None)

    def get(self, key: str) -> tuple[int, int]:
        now = self._clock()
        with self._lock:
            count, expires_at = self._live(key, now)
            ttl = max(int(expires_at - now), 0) if expires_at is not None else 0
            return count, ttl

    def increment(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            self._gc_if_needed(now)
            count, expires_at = self._live(key, now)
            count += 1
            self._entries[key] = (count, expires_at)
            return count

    def expire(self, key: str, ttl_sec: int) -> None:
        now = self._clock()
        with self._lock:
            count, _ = self._live(key, now)
            self._entries[key] = (count, now + ttl_sec)


class RateLimiter:
    def __init__(self, store: CounterStore):
        self.store = store

    def hit(self, *, bucket: str, policy: RateLimitPolicy) -> tuple[bool, int, int]:
        count = self.store.increment(bucket)
        if count == 1:
            self.store.expire(bucket, policy.window_sec)
        _count, ttl = self.store.get(bucket)
        allowed = count <= policy.max_requests
        remaining = max(policy.max_requests - count, 0)
        retry_after = ttl or policy.window_sec
        return allowed, remaining, retry_after


def default_policies() -> tuple[RateLimitPolicy, list[tuple[str, str, RateLimitPolicy]]]:
    global_policy = RateLimitPolicy(
        key="global",
        max_requests=_env_int("RATE_LIMIT_MAX_REQUESTS", 600),
        window_sec=_env_int("RATE_LIMIT_WINDOW_SEC", 60),
    )
    # (method, 路径前缀或片段, policy)：以 "/" 开头按前缀匹配，否则在 API 路径内按片段匹配
    path_policies = [
        (
            "POST",
            f"{API_PREFIX}/submit",
            RateLimitPolicy(
                key="journal_submit",
                max_requests=_env_int("RATE_LIMIT_SUBMIT_MAX", 10),
                window_sec=_env_int("RATE_LIMIT_SUBMIT_WINDOW_SEC", 3600),
            ),
        ),
        (
            "GET",
            "download/",
            RateLimitPolicy(
                key="journal_download",
                max_requests=_env_int("RATE_LIMIT_DOWNLOAD_MAX", 60),
                window_sec=_env_int("RATE_LIMIT_DOWNLOAD_WINDOW_SEC", 60),
            ),
        ),
        (
            "POST",
            CONTACT_SEND_PATH,
            RateLimitPolicy(
                key="contact_send",
                max_requests=_env_int("RATE_LIMIT_CONTACT_MAX", 5),
                window_sec=_env_int("RATE_LIMIT_CONTACT_WINDOW_SEC", 3600),
            ),
        ),
    ]
    return global_policy, path_policies


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    限流中间件（按 IP + endpoint bucket）。

    中文注释:
    - 计数存储通过构造参数注入；默认进程内存储，生产可换成共享缓存。
    - 默认在非测试环境开启，可用环境变量关闭。
    """

    def __init__(self, app, store: CounterStore | None = None) -> None:  # type: ignore[override]
        super().__init__(app)
        self._limiter = RateLimiter(store or InMemoryCounterStore())
        self._global_policy, self._path_policies = default_policies()

    def _policy_for(self, method: str, path: str) -> RateLimitPolicy:
        for policy_method, fragment, policy in self._path_policies:
            if method != policy_method:
                continue
            if fragment.startswith("/"):
                if path.startswith(fragment):
                    return policy
            elif path.startswith(API_PREFIX) and fragment in path:
                return policy
        return self._global_policy

    @staticmethod
    def _limit_headers(policy: RateLimitPolicy, remaining: int) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(policy.max_requests),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Window": str(policy.window_sec),
        }

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        method = request.method.upper()
        if method == "OPTIONS":
            return await call_next(request)

        policy = self._policy_for(method, request.url.path)
        ip = client_ip(request)
        allowed, remaining, retry_after = self._limiter.hit(bucket=f"{policy.key}:{ip}", policy=policy)

        if allowed:
            response = await call_next(request)
            response.headers.update(self._limit_headers(policy, remaining))
            return response

        logger.warning(
            "[rate_limit] %s %s blocked ip=%s policy=%s retry_after=%ss",
            method,
            request.url.path,
            ip,
            policy.key,
            retry_after,
        )
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "message": "Too many requests, please try again later",
                "retry_after": retry_after,
            },
            headers={"Retry-After": str(retry_after), **self._limit_headers(policy, 0)},
        )
