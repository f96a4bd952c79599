from __future__ import annotations

import pytest

from run_when.duration import format_duration, parse_duration


@pytest.mark.parametrize(
    "text,expected",
    [
        ("600ms", 0.6),
        ("2s", 2.0),
        ("1.5s", 1.5),
        ("1.5 s", 1.5),
        (" 250 ms ", 0.25),
        ("1m30s", 90.0),
        ("1m 30s", 90.0),
        ("2 minutes", 120.0),
        ("1h", 3600.0),
        ("1d", 86400.0),
        ("500us", 0.0005),
        ("0ms", 0.0),
        ("3", 3.0),
        ("0.5", 0.5),
        ("2S", 2.0),
    ],
)
def test_parse_duration(text: str, expected: float) -> None:
    assert parse_duration(text) == pytest.approx(expected)


@pytest.mark.parametrize(
    "text",
    [
        "abc", "", "   ", "ms", "10 parsecs", "-1s", "5ms extra", "1s,2s", "nan", "inf", "1..5s",
        "1e3", "1_000", "-0", "+5", "0x10",
    ],
)
def test_parse_duration_rejects(text: str) -> None:
    with pytest.raises(ValueError, match="Invalid duration"):
        parse_duration(text)


def test_parse_duration_rejects_non_string() -> None:
    with pytest.raises(ValueError):
        parse_duration(None)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "seconds,expected",
    [(0.6, "600ms"), (0.0, "0ms"), (2.0, "2s"), (1.5, "1.5s")],
)
def test_format_duration(seconds: float, expected: str) -> None:
    assert format_duration(seconds) == expected
