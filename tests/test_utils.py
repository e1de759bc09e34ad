import pytest

from app.utils import chunked, coerce_int, parse_duration, unique_in_order


def test_parse_duration_with_hours():
    assert parse_duration("PT1H2M3S") == "1:02:03"


def test_parse_duration_minutes_only():
    assert parse_duration("PT18M4S") == "18:04"
    assert parse_duration("PT45S") == "00:45"
    assert parse_duration("PT2H") == "2:00:00"


def test_parse_duration_defaults_when_missing_or_invalid():
    assert parse_duration(None) == "0:00"
    assert parse_duration("") == "0:00"
    assert parse_duration("P1D") == "0:00"
    assert parse_duration("not-a-duration") == "0:00"


def test_chunked_splits_into_bounded_batches():
    batches = list(chunked([str(index) for index in range(120)], 50))

    assert [len(batch) for batch in batches] == [50, 50, 20]
    assert batches[1][0] == "50"


def test_chunked_rejects_non_positive_size():
    with pytest.raises(ValueError):
        list(chunked(["a"], 0))


def test_unique_in_order_keeps_first_occurrence():
    assert unique_in_order(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


def test_coerce_int_falls_back():
    assert coerce_int("12") == 12
    assert coerce_int(None) == 0
    assert coerce_int("n/a", default=-1) == -1
