from datetime import date, datetime, timezone

import pytest

from presearch_core.utils.date_utils import is_recent, safe_parse_date

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_parses_iso_with_z_suffix():
    assert safe_parse_date("2024-05-20T08:30:00Z") == datetime(2024, 5, 20, 8, 30, tzinfo=timezone.utc)


def test_naive_values_become_utc():
    assert safe_parse_date("2024-05-20").tzinfo == timezone.utc
    assert safe_parse_date(datetime(2024, 1, 1)).tzinfo == timezone.utc
    assert safe_parse_date(date(2024, 1, 2)) == datetime(2024, 1, 2, tzinfo=timezone.utc)


def test_partial_dates():
    assert safe_parse_date("2023") == datetime(2023, 1, 1, tzinfo=timezone.utc)
    assert safe_parse_date("2023-7") == datetime(2023, 7, 1, tzinfo=timezone.utc)
    assert safe_parse_date("2023-13") is None


def test_relative_ages():
    assert safe_parse_date("3 days ago", now=NOW) == datetime(2024, 5, 29, 12, 0, tzinfo=timezone.utc)
    assert safe_parse_date("1 week ago", now=NOW) == datetime(2024, 5, 25, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("raw", [None, "", "   ", "yesterday-ish", 12345])
def test_unparseable_values(raw):
    assert safe_parse_date(raw) is None


def test_is_recent():
    assert is_recent("2024-05-20", now=NOW)
    assert not is_recent("2024-04-01", now=NOW)
    assert is_recent("2024-04-01", days=90, now=NOW)
    assert not is_recent(None, now=NOW)
    assert is_recent("2 hours ago", now=NOW)
