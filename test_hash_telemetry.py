"""
Tests for hash-rate aggregation
"""

import queue
import time

import pytest

from hash_telemetry import HashRateAggregator, format_hashrate


def test_tick_reports_sum_over_interval_and_resets():
    aggregator = HashRateAggregator(queue.Queue(), interval=2.0)
    for count in (3, 4, 5):
        aggregator.consume(count)
    assert aggregator.pending == 12

    report = aggregator.tick()
    assert report.hashes == 12
    assert report.rate == pytest.approx(6.0)
    assert aggregator.pending == 0
    assert report.total == 12


def test_empty_interval_reports_zero():
    aggregator = HashRateAggregator(queue.Queue(), interval=1.0)
    report = aggregator.tick()
    assert report.hashes == 0
    assert report.rate == 0.0


def test_average_and_total_across_intervals():
    reports = []
    aggregator = HashRateAggregator(queue.Queue(), interval=2.0, on_report=reports.append)
    aggregator.consume(10)
    aggregator.tick()
    aggregator.consume(20)
    aggregator.tick()
    assert [r.rate for r in reports] == [5.0, 10.0]
    assert reports[-1].average == pytest.approx(7.5)
    assert reports[-1].total == 30
    assert list(aggregator.hashrate_history) == [5.0, 10.0]


def test_history_is_bounded():
    aggregator = HashRateAggregator(queue.Queue(), interval=1.0, history=3)
    for count in range(5):
        aggregator.consume(count)
        aggregator.tick()
    assert list(aggregator.hashrate_history) == [2.0, 3.0, 4.0]


def test_failing_callback_does_not_break_telemetry():
    def explode(report):
        raise RuntimeError("display gone")

    aggregator = HashRateAggregator(queue.Queue(), interval=1.0, on_report=explode)
    aggregator.consume(1)
    assert aggregator.tick().hashes == 1
    assert aggregator.pending == 0


def test_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        HashRateAggregator(queue.Queue(), interval=0)


def test_background_thread_drains_intake():
    intake = queue.Queue()
    reports = []
    aggregator = HashRateAggregator(intake, interval=0.05, on_report=reports.append)
    aggregator.start()
    try:
        for _ in range(10):
            intake.put(100)
        deadline = time.monotonic() + 5
        while sum(r.hashes for r in reports) < 1000 and time.monotonic() < deadline:
            time.sleep(0.02)
    finally:
        aggregator.stop()

    assert sum(r.hashes for r in reports) == 1000
    assert aggregator.total == 1000
    assert intake.empty()


def test_stop_is_idempotent():
    aggregator = HashRateAggregator(queue.Queue(), interval=0.05)
    aggregator.stop()
    aggregator.start()
    aggregator.stop()
    aggregator.stop()


@pytest.mark.parametrize("rate, expected", [
    (0, "0.00 H/s"),
    (512, "512.00 H/s"),
    (12_340, "12.34 K/s"),
    (2_500_000, "2.50 M/s"),
    (3_000_000_000, "3.00 G/s"),
])
def test_format_hashrate(rate, expected):
    assert format_hashrate(rate) == expected
