from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from app.core.exceptions import UpstreamFailure

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    外部协作方（blob store / email）调用结果。

    中文注释:
    - 协作方失败不抛异常，而是返回 Result.fail(...)，由调用方决定记录日志还是中止。
    - 避免异常跨越持久化边界（记录已经写入时，不能因为文件/邮件失败而回滚）。
    """

    value: Optional[T] = None
    error: Optional[UpstreamFailure] = None

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value, error=None)

    @classmethod
    def fail(cls, error: UpstreamFailure) -> "Result[T]":
        return cls(value=None, error=error)
