import pytest

from app.core.exceptions import ValidationError
from app.models.journal import LifecycleStatus
from app.services.bulk_service import normalize_ids

MISSING_ID = "f" * 24


def test_normalize_ids_rejects_empty_and_malformed():
    with pytest.raises(ValidationError):
        normalize_ids([])
    with pytest.raises(ValidationError) as exc:
        normalize_ids(["abc", "0" * 24])
    assert exc.value.detail == {"invalid_ids": ["abc"]}


def test_normalize_ids_deduplicates_preserving_order():
    a, b = "a" * 24, "b" * 24
    assert normalize_ids([b, a, b.upper()]) == [b, a]


def test_bulk_delete_counts_only_existing_records(bulk_service, blob_store, repository, make_record):
    record = make_record()
    result = bulk_service.bulk_delete([record.id, MISSING_ID])

    assert result.matched_count == 1
    assert result.deleted_count == 1
    assert blob_store.deleted == [record.pdf_url]
    assert repository.list() == []


def test_bulk_archive_skips_already_archived(bulk_service, repository, make_record, now):
    live = make_record()
    already = make_record(is_archived=True)

    result = bulk_service.bulk_archive([live.id, already.id, MISSING_ID])

    assert result.matched_count == 2
    assert result.modified_count == 1
    archived = repository.get(live.id)
    assert archived.is_archived is True
    assert archived.archived_date == now
    assert archived.status == LifecycleStatus.PUBLISHED


def test_bulk_publish_assigns_unique_dois_and_reports_bypassed_guard(bulk_service, repository, make_record, now):
    accepted = make_record(status=LifecycleStatus.ACCEPTED, doi=None)
    under_review = make_record(status=LifecycleStatus.UNDER_REVIEW, doi=None)
    done = make_record(status=LifecycleStatus.PUBLISHED, doi="10.1234/agricjournal.2026.2.1", publication_date=now)

    result = bulk_service.bulk_publish([accepted.id, under_review.id, done.id])

    assert result.matched_count == 3
    assert result.modified_count == 2
    assert result.bypassed_guard_ids == [under_review.id]

    a, b = repository.get(accepted.id), repository.get(under_review.id)
    assert a.status == b.status == LifecycleStatus.PUBLISHED
    assert a.doi != b.doi
    assert a.publication_date == now
    assert repository.get(done.id).doi == "10.1234/agricjournal.2026.2.1"


def test_bulk_publish_skips_submissions_without_document(bulk_service, repository, make_record):
    bare = make_record(status=LifecycleStatus.SUBMITTED, pdf_url=None, doi=None)
    result = bulk_service.bulk_publish([bare.id])
    assert result.modified_count == 0
    assert repository.get(bare.id).status == LifecycleStatus.SUBMITTED


def test_bulk_update_with_status_stamps_review_date(bulk_service, repository, make_record, now):
    one = make_record(status=LifecycleStatus.SUBMITTED)
    two = make_record(status=LifecycleStatus.UNDER_REVIEW)

    result = bulk_service.bulk_update(
        [one.id, two.id], {"status": "under_review", "reviewed_by": "Editor"}
    )

    assert result.modified_count == 2
    for jid in (one.id, two.id):
        record = repository.get(jid)
        assert record.status == LifecycleStatus.UNDER_REVIEW
        assert record.review_date == now
        assert record.reviewed_by == "Editor"


def test_bulk_update_legacy_archived_status_sets_flag(bulk_service, repository, make_record, now):
    record = make_record(status=LifecycleStatus.PUBLISHED)
    result = bulk_service.bulk_update([record.id], {"status": "archived"})

    assert result.modified_count == 1
    stored = repository.get(record.id)
    assert stored.is_archived is True
    assert stored.archived_date == now
    assert stored.status == LifecycleStatus.PUBLISHED


def test_bulk_update_without_status_uses_single_write(bulk_service, repository, fake_db, make_record):
    ids = [make_record().id for _ in range(2)]
    result = bulk_service.bulk_update(ids, {"page_numbers": "1-2"})
    assert result.modified_count == 2
    assert fake_db.calls.count(("published_journals", "update")) == 1


@pytest.mark.parametrize("payload", [None, {}, {"unknown_field": 1}, {"status": "bogus"}])
def test_bulk_update_rejects_bad_payloads(bulk_service, make_record, payload):
    record = make_record()
    with pytest.raises(ValidationError):
        bulk_service.bulk_update([record.id], payload)


def test_bulk_delete_cleans_files_only_for_rows_actually_deleted(
    bulk_service, blob_store, repository, make_record, monkeypatch
):
    first = make_record(pdf_url="https://cdn.example.com/raw/upload/first.pdf")
    second = make_record(pdf_url="https://cdn.example.com/raw/upload/second.pdf")
    # 另一个请求抢先删掉了 second：本次 delete 只返回 first
    monkeypatch.setattr(repository, "delete_many", lambda ids: [first.id])

    result = bulk_service.bulk_delete([first.id, second.id])

    assert result.matched_count == 2
    assert result.deleted_count == 1
    assert blob_store.deleted == [first.pdf_url]
