"""
Published journal 统计数据模型 (Pydantic v2)

中文注释:
- StatsOverview: 顶部概览卡片
- QuarterStat: 目标年份 Q1-Q4（始终 4 条，无数据时补 0）
- YearStat: 最近 5 个年份趋势
- TopJournal: 下载量 Top 10
- MonthlyTrend: 目标年份按 created_at 月份聚合
"""

from datetime import datetime

from pydantic import BaseModel, Field


class StatsOverview(BaseModel):
    total_journals: int = Field(..., ge=0, description="已发表总数")
    current_year_journals: int = Field(..., ge=0, description="目标年份已发表数")
    total_submissions: int = Field(..., ge=0, description="全部投稿（不限状态）")
    pending_reviews: int = Field(..., ge=0, description="submitted + under_review")
    total_downloads: int = Field(..., ge=0)
    avg_downloads: int = Field(..., ge=0, description="已发表记录平均下载量（四舍五入）")
    total_authors: int = Field(..., ge=0, description="去重后的作者数")
    current_year: int


class QuarterStat(BaseModel):
    quarter: int = Field(..., ge=1, le=4)
    count: int = Field(..., ge=0)
    downloads: int = Field(..., ge=0)
    avg_downloads: int = Field(..., ge=0)


class YearStat(BaseModel):
    year: int
    count: int = Field(..., ge=0)
    downloads: int = Field(..., ge=0)
    avg_downloads: int = Field(..., ge=0)
    unique_authors: int = Field(..., ge=0)


class TopJournal(BaseModel):
    id: str
    title: str
    authors: list[str]
    volume_year: int
    volume_quarter: int
    download_count: int
    created_at: datetime


class MonthlyTrend(BaseModel):
    month: int = Field(..., ge=1, le=12)
    count: int = Field(..., ge=0)
    downloads: int = Field(..., ge=0)


class JournalStats(BaseModel):
    overview: StatsOverview
    quarterly_stats: list[QuarterStat]
    yearly_stats: list[YearStat]
    top_journals: list[TopJournal]
    recent_activity: dict[str, int]
    status_distribution: dict[str, int]
    available_years: list[int]
    monthly_trends: list[MonthlyTrend]
    generated_at: datetime
    requested_year: int
