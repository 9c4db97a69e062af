from __future__ import annotations

import re
import secrets
import time

from app.core.exceptions import InvalidArgument

_RECORD_ID_RE = re.compile(r"^[0-9a-f]{24}$")


def new_record_id() -> str:
    """
    生成 24 位 hex 记录 ID（published_journals / contact_messages 共用）。

    中文注释:
    - 前 8 位为创建时间（秒级 epoch），后 16 位随机；按 ID 排序大致等价于按创建时间排序。
    """
    return f"{int(time.time()) & 0xFFFFFFFF:08x}{secrets.token_hex(8)}"


def is_valid_record_id(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return _RECORD_ID_RE.match(value.strip().lower()) is not None


def require_record_id(value: object, *, kind: str = "journal") -> str:
    """Normalise an id or raise ``InvalidArgument`` before any store access happens."""
    if not is_valid_record_id(value):
        raise InvalidArgument(f"Invalid {kind} ID", detail={"id": str(value)})
    return str(value).strip().lower()


new_journal_id = new_record_id
is_valid_journal_id = is_valid_record_id


def require_journal_id(value: object) -> str:
    return require_record_id(value, kind="journal")
