from datetime import timedelta

from app.models.journal import LifecycleStatus
from app.services.journal_stats_service import average, round_half_up, unique_author_count


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2
    assert average(5, 2) == 3
    assert average(10, 0) == 0


def test_empty_store_returns_zeroed_stats(stats_service, now):
    stats = stats_service.get_stats()

    assert stats.overview.total_journals == 0
    assert stats.overview.avg_downloads == 0
    assert stats.overview.current_year == now.year
    assert [q.quarter for q in stats.quarterly_stats] == [1, 2, 3, 4]
    assert all(q.count == 0 and q.avg_downloads == 0 for q in stats.quarterly_stats)
    assert stats.yearly_stats == []
    assert stats.top_journals == []
    assert stats.status_distribution == {}
    assert stats.monthly_trends == []
    assert stats.generated_at == now
    assert stats.requested_year == now.year


def test_unique_authors_are_deduplicated_case_insensitively(make_record):
    records = [
        make_record(authors=["Alice Smith", "Bob"]),
        make_record(authors=[" alice smith ", "BOB"]),
    ]
    assert unique_author_count(records) == 2


def test_overview_and_quarterly_figures(stats_service, make_record, now):
    make_record(volume_quarter=1, download_count=3, authors=["A"])
    make_record(volume_quarter=1, download_count=2, authors=["a", "B"])
    make_record(volume_quarter=2, download_count=None)
    make_record(volume_year=now.year - 1, volume_quarter=4, download_count=10)
    make_record(status=LifecycleStatus.SUBMITTED)
    make_record(status=LifecycleStatus.UNDER_REVIEW)
    make_record(status=LifecycleStatus.REJECTED)

    stats = stats_service.get_stats()
    ov = stats.overview

    assert ov.total_journals == 4
    assert ov.current_year_journals == 3
    assert ov.total_submissions == 7
    assert ov.pending_reviews == 2
    assert ov.total_downloads == 15
    assert ov.avg_downloads == 4
    q1, q2, q3, q4 = stats.quarterly_stats
    assert (q1.count, q1.downloads, q1.avg_downloads) == (2, 5, 3)
    assert (q2.count, q2.downloads) == (1, 0)
    assert q3.count == q4.count == 0
    assert stats.available_years == [now.year, now.year - 1]


def test_requested_year_scopes_quarterly_figures(stats_service, make_record, now):
    make_record(volume_year=2024, volume_quarter=3, download_count=7)
    stats = stats_service.get_stats(2024)
    assert stats.overview.current_year == 2024
    assert stats.overview.current_year_journals == 1
    assert stats.quarterly_stats[2].downloads == 7


def test_yearly_stats_keep_five_most_recent_years(stats_service, make_record):
    for year in range(2018, 2025):
        make_record(volume_year=year, authors=[f"Author {year}"], download_count=1)
    stats = stats_service.get_stats()
    assert [y.year for y in stats.yearly_stats] == [2024, 2023, 2022, 2021, 2020]
    assert all(y.unique_authors == 1 for y in stats.yearly_stats)


def test_top_journals_exclude_zero_downloads_and_keep_order(stats_service, make_record):
    first = make_record(title="First", download_count=5)
    second = make_record(title="Second", download_count=5)
    best = make_record(title="Best", download_count=9)
    make_record(title="Unread", download_count=0)

    top = stats_service.get_stats().top_journals
    assert [t.id for t in top] == [best.id, first.id, second.id]


def test_recent_activity_and_monthly_trends(stats_service, make_record, now):
    make_record(status=LifecycleStatus.SUBMITTED, created_at=now - timedelta(days=3))
    make_record(status=LifecycleStatus.SUBMITTED, created_at=now - timedelta(days=40))
    make_record(created_at=now - timedelta(days=10), download_count=4)
    make_record(created_at=now - timedelta(days=100), download_count=1)

    stats = stats_service.get_stats()

    assert stats.recent_activity == {"submitted": 1, "published": 1}
    assert stats.status_distribution == {"submitted": 2, "published": 2}
    months = {m.month: (m.count, m.downloads) for m in stats.monthly_trends}
    assert months[(now - timedelta(days=10)).month] == (1, 4)
    assert months[(now - timedelta(days=100)).month] == (1, 1)


def test_stats_tolerate_legacy_archived_rows(stats_service, fake_db, make_record):
    make_record(download_count=3)
    fake_db.rows()[-1]["status"] = "archived"
    make_record(download_count=1)

    stats = stats_service.get_stats()

    assert stats.overview.total_journals == 2
    assert stats.overview.total_downloads == 4
    assert stats.status_distribution == {"published": 2}
