import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# 在应用启动前加载环境变量
load_dotenv()

logger = logging.getLogger("agricjournal")

_SENTRY_ENABLED = False
try:
    from app.core.sentry_init import init_sentry

    _SENTRY_ENABLED = init_sentry()
except Exception as e:
    # 中文注释: Sentry 任何异常不得阻塞启动
    logger.warning("[sentry] init failed (ignored): %s", e)

from app.api.v1 import contact, published_journals
from app.api.v1.endpoints import system
from app.core.middleware import ExceptionHandlerMiddleware, register_exception_handlers
from app.core.rate_limit import RateLimitMiddleware, is_rate_limit_enabled

API_PREFIX = "/api/v1"

app = FastAPI(
    title="AgricJournal API",
    description="Published journal management backend",
    version="1.0.0",
)


def _parse_frontend_origins() -> list[str]:
    """
    解析允许跨域的前端 Origins。

    中文注释:
    - 本地默认: http://localhost:3000
    - 生产/预发: 通过 FRONTEND_ORIGIN 或 FRONTEND_ORIGINS 注入（逗号分隔）
    """
    raw = [os.environ.get("FRONTEND_ORIGIN") or ""]
    raw.extend((os.environ.get("FRONTEND_ORIGINS") or "").split(","))

    origins: list[str] = []
    for part in raw:
        origin = part.strip().rstrip("/")
        if origin and origin not in origins:
            origins.append(origin)
    return origins or ["http://localhost:3000"]


# === 中间件配置 ===
# 注意: add_middleware 后加入的在外层
app.add_middleware(ExceptionHandlerMiddleware)

if is_rate_limit_enabled():
    app.add_middleware(RateLimitMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_frontend_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# === 路由注册 ===
app.include_router(published_journals.router, prefix=API_PREFIX)
app.include_router(contact.router, prefix=API_PREFIX)
app.include_router(system.router, prefix=API_PREFIX)


@app.get("/")
async def root():
    return {
        "message": "AgricJournal API is running",
        "docs": "/docs",
        "sentry": _SENTRY_ENABLED,
    }
