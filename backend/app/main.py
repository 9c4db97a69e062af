"""
ASGI 入口别名：`uvicorn app.main:app`。

中文注释: 应用对象只在 backend/main.py 中创建一次，这里直接复用。
"""

from main import app

__all__ = ["app"]
