from __future__ import annotations

import re
import time

DOI_PATTERN = re.compile(r"^10\.\d{4,9}/[-._;()/:A-Za-z0-9]+\.(\d{4})\.([1-4])\.([A-Za-z0-9]+)$")


def generate_doi(*, prefix: str, volume_year: int, volume_quarter: int, suffix: str | None = None) -> str:
    """
    DOI 生成

    规则:
    - 格式: {prefix}.{volume_year}.{volume_quarter}.{suffix}
    - suffix 默认取当前毫秒时间戳（与历史数据保持一致）
    """
    if suffix is None:
        suffix = str(time.time_ns() // 1_000_000)
    return f"{prefix.rstrip('.')}.{int(volume_year)}.{int(volume_quarter)}.{suffix}"


def is_well_formed_doi(value: str | None) -> bool:
    return bool(value) and DOI_PATTERN.match(str(value)) is not None
