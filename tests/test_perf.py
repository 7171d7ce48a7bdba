from unittest import mock

import pytest

from jobaio import PerfTimer


def test_format_without_laps() -> None:
    with mock.patch("time.perf_counter_ns", side_effect=[0, 2_500_000]):
        timer = PerfTimer("build")
        assert timer.time() == 2.5  # noqa: PLR2004

    assert timer.format_result() == f"{'build:':<24} 2.50ms"


def test_format_with_laps() -> None:
    ticks = [0, 1_000_000, 3_000_000, 4_000_000]
    with mock.patch("time.perf_counter_ns", side_effect=ticks):
        timer = PerfTimer()
        _ = timer.lap()
        _ = timer.lap()
        _ = timer.time()

    assert timer.laps == [1.0, 3.0]
    assert timer.format_result().splitlines() == [
        "LAPS:",
        f"{1:<16} 1.00ms",
        f"{2:<16} 3.00ms",
        f"{'FINAL TIME:':<16} 4.00ms",
    ]


def test_difference() -> None:
    with mock.patch("time.perf_counter_ns", side_effect=[0, 10_000_000]):
        a = PerfTimer()
        _ = a.time()
    with mock.patch("time.perf_counter_ns", side_effect=[0, 15_000_000]):
        b = PerfTimer()
        _ = b.time()

    assert PerfTimer.difference(a, b) == "+50.00%"
    assert PerfTimer.difference(b, a) == "-33.33%"


def test_difference_requires_stopped_timers() -> None:
    with pytest.raises(ValueError, match="must be stopped"):
        _ = PerfTimer.difference(PerfTimer(), PerfTimer())
