"""
认证与授权模块
功能: JWT 认证 + 管理端权限检查

中文注释:
- get_current_user: 验证 HS256 JWT 并返回用户信息
- get_optional_user: 匿名可访问的接口（投稿）使用，token 缺失时返回 None
- require_admin: 管理端接口依赖（roles 含 admin/editor，或邮箱在 ADMIN_EMAILS 白名单）
"""

import logging
import os
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.core.config import get_jwt_secret

logger = logging.getLogger("agricjournal.auth")

ALGORITHM = "HS256"
ADMIN_ROLES = {"admin", "editor"}

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def _admin_emails() -> set[str]:
    raw = os.environ.get("ADMIN_EMAILS") or ""
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def _normalize_roles(raw: object) -> list[str]:
    if isinstance(raw, str):
        return [raw.strip().lower()] if raw.strip() else []
    if isinstance(raw, (list, tuple, set)):
        return [str(r).strip().lower() for r in raw if str(r).strip()]
    return []


def decode_token(token: str) -> dict:
    """
    解码 JWT 并返回用户字典 {id, email, roles}。

    中文注释: 不校验 audience（兼容自签 token 与 Supabase token）。
    """
    try:
        payload = jwt.decode(
            token,
            get_jwt_secret(),
            algorithms=[ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is invalid or expired",
        ) from e

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    roles = _normalize_roles(payload.get("roles") or payload.get("role"))
    return {
        "id": str(user_id),
        "email": payload.get("email"),
        "name": payload.get("name"),
        "roles": roles,
    }


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    return decode_token(credentials.credentials)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> Optional[dict]:
    if credentials is None or not credentials.credentials:
        return None
    try:
        return decode_token(credentials.credentials)
    except HTTPException:
        # 匿名投稿允许携带失效 token，按匿名处理
        logger.info("ignoring invalid bearer token on anonymous endpoint")
        return None


def is_admin(user: dict) -> bool:
    roles = set(user.get("roles") or [])
    if roles & ADMIN_ROLES:
        return True
    email = str(user.get("email") or "").strip().lower()
    return bool(email) and email in _admin_emails()


async def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    if not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user
