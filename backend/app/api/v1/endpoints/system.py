from fastapi import APIRouter

from app.core.config import JournalConfig, app_config
from app.core.mail import email_service
from app.core.rate_limit import is_rate_limit_enabled
from app.core.middleware import success_envelope

router = APIRouter()


@router.get("/system/health")
async def health():
    """
    运行状态探针（部署平台 / 前端状态页使用）。

    中文注释: 不访问数据库，只报告本进程的配置状态。
    """
    journal_cfg = JournalConfig.from_env()
    return success_envelope(
        {
            "status": "ok",
            "environment": app_config.env,
            "storage_bucket": journal_cfg.storage_bucket,
            "email_configured": email_service.is_configured(),
            "rate_limit_enabled": is_rate_limit_enabled(),
        }
    )
