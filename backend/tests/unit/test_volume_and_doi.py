from datetime import date, datetime, timezone

import pytest

from app.core.doi_generator import DOI_PATTERN, generate_doi, is_well_formed_doi
from app.core.exceptions import InvalidArgument
from app.core.identifiers import is_valid_journal_id, new_journal_id, require_journal_id
from app.core.volume import Volume, calculate_volume


@pytest.mark.parametrize(
    "month,quarter",
    [(1, 1), (3, 1), (4, 2), (6, 2), (7, 3), (9, 3), (10, 4), (12, 4)],
)
def test_calculate_volume_quarter_boundaries(month, quarter):
    assert calculate_volume(date(2025, month, 15)) == Volume(2025, quarter)


def test_calculate_volume_accepts_datetimes_and_formats_display():
    vol = calculate_volume(datetime(2024, 11, 30, 23, 59, tzinfo=timezone.utc))
    assert vol.year == 2024
    assert vol.quarter == 4
    assert vol.display == "2024 - Quarter 4"


def test_generate_doi_uses_volume_and_suffix():
    doi = generate_doi(prefix="10.1234/agricjournal", volume_year=2025, volume_quarter=3, suffix="1700000000000")
    assert doi == "10.1234/agricjournal.2025.3.1700000000000"
    assert is_well_formed_doi(doi)


def test_generate_doi_defaults_to_millisecond_suffix():
    doi = generate_doi(prefix="10.1234/agricjournal.", volume_year=2026, volume_quarter=1)
    match = DOI_PATTERN.match(doi)
    assert match is not None
    assert match.group(1) == "2026"
    assert match.group(2) == "1"
    assert len(match.group(3)) >= 13
    assert ".." not in doi


@pytest.mark.parametrize("value", [None, "", "not-a-doi", "10.1234/agricjournal.2025.5.1"])
def test_is_well_formed_doi_rejects_bad_values(value):
    assert is_well_formed_doi(value) is False


def test_new_journal_id_is_24_hex_and_unique():
    ids = {new_journal_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(is_valid_journal_id(i) for i in ids)


@pytest.mark.parametrize("value", ["", "xyz", "123", 12345, None, "g" * 24])
def test_require_journal_id_rejects_malformed_ids(value):
    with pytest.raises(InvalidArgument) as exc:
        require_journal_id(value)
    assert exc.value.message == "Invalid journal ID"
    assert exc.value.status_code == 400


def test_require_journal_id_normalises_case():
    assert require_journal_id(" 65A1B2C3D4E5F60718293A4B ") == "65a1b2c3d4e5f60718293a4b"
