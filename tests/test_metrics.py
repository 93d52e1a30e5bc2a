"""MetricsAggregator のユニットテスト"""

import asyncio
import threading

from k1s0_toggle_client import InMemoryTransport, MetricsAggregator, MetricsSendError
from k1s0_toggle_client.models import MetricsReport


class SlowSender:
    async def send_metrics(self, report: MetricsReport) -> None:
        await asyncio.sleep(1)


def make_aggregator(
    transport: InMemoryTransport | None = None, **kwargs: float
) -> tuple[MetricsAggregator, InMemoryTransport]:
    transport = transport or InMemoryTransport()
    return MetricsAggregator(transport, app_name="app", instance_id="inst-1", **kwargs), transport


def test_record_counts_yes_and_no() -> None:
    """yes/no を個別に集計すること。"""
    aggregator, _ = make_aggregator()
    aggregator.record("f", True)
    aggregator.record("f", True)
    aggregator.record("f", False)
    aggregator.record_variant("f", "blue")

    counts = aggregator.current_window.toggles["f"]
    assert counts.yes == 2
    assert counts.no == 1
    assert counts.variants == {"blue": 1}


def test_swap_resets_window() -> None:
    """swap は蓄積済みウィンドウを返し、新しい空ウィンドウに差し替えること。"""
    aggregator, _ = make_aggregator()
    aggregator.record("f", True)
    window = aggregator.swap()
    assert window.total() == 1
    assert aggregator.current_window.is_empty()


def test_concurrent_records_are_conserved_across_swaps() -> None:
    """並行記録中の差し替えでも記録が失われず重複もしないこと。"""
    aggregator, _ = make_aggregator()
    per_thread = 2_000
    done = threading.Event()
    swapped_total = 0

    def recorder() -> None:
        for i in range(per_thread):
            aggregator.record("f", i % 2 == 0)

    def swapper() -> None:
        nonlocal swapped_total
        while not done.is_set():
            swapped_total += aggregator.swap().total()

    threads = [threading.Thread(target=recorder) for _ in range(4)]
    swap_thread = threading.Thread(target=swapper)
    swap_thread.start()
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    done.set()
    swap_thread.join()
    swapped_total += aggregator.swap().total()

    assert swapped_total == 4 * per_thread


async def test_flush_sends_report() -> None:
    """flush で蓄積分をレポートとして送信すること。"""
    aggregator, transport = make_aggregator()
    aggregator.record("f", True)
    aggregator.record("g", False)

    assert await aggregator.flush() is True
    assert len(transport.reports) == 1
    report = transport.reports[0]
    assert report.app_name == "app"
    assert report.instance_id == "inst-1"
    assert report.toggles["f"].yes == 1
    assert report.toggles["g"].no == 1
    assert report.start <= report.stop
    assert aggregator.current_window.is_empty()


async def test_empty_window_is_not_sent() -> None:
    """空のウィンドウは送信しないこと。"""
    aggregator, transport = make_aggregator()
    assert await aggregator.flush() is False
    assert transport.reports == []


async def test_failed_send_drops_window() -> None:
    """送信失敗時はウィンドウを破棄し、例外を送出しないこと。"""
    aggregator, transport = make_aggregator()
    transport.metrics_error = MetricsSendError("server down")
    aggregator.record("f", True)

    assert await aggregator.flush() is False
    assert aggregator.current_window.is_empty()

    transport.metrics_error = None
    aggregator.record("f", False)
    assert await aggregator.flush() is True
    counts = transport.reports[0].toggles["f"]
    assert counts.yes == 0
    assert counts.no == 1


async def test_send_timeout_drops_window() -> None:
    """送信タイムアウトも失敗として扱うこと。"""
    aggregator = MetricsAggregator(
        SlowSender(), app_name="app", instance_id="inst-1", timeout_seconds=0.05
    )
    aggregator.record("f", True)
    assert await aggregator.flush() is False
    assert aggregator.current_window.is_empty()


async def test_flush_loop_sends_periodically() -> None:
    """フラッシュループが定期的に送信すること。"""
    aggregator, transport = make_aggregator(interval_seconds=0.01)
    await aggregator.start()
    assert aggregator.running
    aggregator.record("f", True)
    await asyncio.sleep(0.1)
    await aggregator.stop(final_flush=False)

    assert not aggregator.running
    assert sum(r.toggles["f"].yes for r in transport.reports) == 1


async def test_stop_performs_final_flush() -> None:
    """stop で残りのウィンドウを送信すること。"""
    aggregator, transport = make_aggregator(interval_seconds=60)
    await aggregator.start()
    aggregator.record("f", True)
    await aggregator.stop()

    assert len(transport.reports) == 1
    assert transport.reports[0].toggles["f"].yes == 1
