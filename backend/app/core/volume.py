from __future__ import annotations

from datetime import date, datetime
from typing import NamedTuple


class Volume(NamedTuple):
    year: int
    quarter: int

    @property
    def display(self) -> str:
        return f"{self.year} - Quarter {self.quarter}"


def calculate_volume(value: date | datetime) -> Volume:
    """
    日期 -> (年份, 季度)

    规则: 1-3 月 -> Q1，4-6 月 -> Q2，7-9 月 -> Q3，10-12 月 -> Q4。
    只看日期本身的年/月（不做时区换算），同一月份内结果恒定。
    """
    quarter = (value.month - 1) // 3 + 1
    return Volume(year=value.year, quarter=quarter)
