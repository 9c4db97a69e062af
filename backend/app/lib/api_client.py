from threading import Lock
from typing import Any, Callable, Optional

from supabase import Client, create_client

from app.core.config import AppConfig, app_config


class _LazySupabaseClient:
    """
    第一次访问属性时才创建 Supabase Client。

    中文注释:
    - 模块导入阶段不要求 SUPABASE_URL / KEY 存在（单测注入内存 client）。
    - 真正访问数据库时才校验配置，缺失则抛出明确的 RuntimeError。
    """

    def __init__(self, factory: Callable[[], Client]):
        self._factory = factory
        self._client: Optional[Client] = None
        self._lock = Lock()

    def _get(self) -> Client:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = self._factory()
        return self._client

    def __getattr__(self, item: str) -> Any:
        return getattr(self._get(), item)


def _admin_client_factory(config: AppConfig) -> Callable[[], Client]:
    def _create() -> Client:
        if not config.supabase_url:
            raise RuntimeError("SUPABASE_URL is required")
        # 本地开发允许只配置匿名 key（此时受 RLS 约束）
        key = config.supabase_service_key or config.supabase_anon_key
        if not key:
            raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_ANON_KEY) is required")
        return create_client(config.supabase_url, key)

    return _create


# service role 客户端：published_journals 读写与 Storage 上传都走这里
supabase_admin: Client = _LazySupabaseClient(_admin_client_factory(app_config))  # type: ignore[assignment]
