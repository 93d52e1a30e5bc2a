"""評価回数の集計と asyncio Task による定期送信"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from typing import Protocol

from .models import MetricsReport, MetricsWindow, ToggleCounts

logger = logging.getLogger(__name__)


class MetricsSender(Protocol):
    """メトリクスレポートを送信するプロトコル。"""

    async def send_metrics(self, report: MetricsReport) -> None: ...


class MetricsAggregator:
    """フィーチャーごとの yes/no 回数を集計し、一定間隔でサーバーへ送信する。

    record() は任意のスレッドから呼べる。集計ウィンドウの差し替えは記録と同じロックで
    行うため、境界で競合した記録は旧ウィンドウか新ウィンドウのどちらか一方にだけ入る。
    送信に失敗したウィンドウは破棄し、再送しない。
    """

    def __init__(
        self,
        sender: MetricsSender,
        app_name: str,
        instance_id: str,
        interval_seconds: float = 60.0,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._sender = sender
        self._app_name = app_name
        self._instance_id = instance_id
        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._lock = threading.Lock()
        self._window = MetricsWindow()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    def _counts(self, feature_name: str) -> ToggleCounts:
        counts = self._window.toggles.get(feature_name)
        if counts is None:
            counts = ToggleCounts()
            self._window.toggles[feature_name] = counts
        return counts

    def record(self, feature_name: str, enabled: bool) -> None:
        """評価結果を 1 件記録する。"""
        with self._lock:
            counts = self._counts(feature_name)
            if enabled:
                counts.yes += 1
            else:
                counts.no += 1

    def record_variant(self, feature_name: str, variant_name: str) -> None:
        """選択されたバリアントを 1 件記録する。"""
        with self._lock:
            variants = self._counts(feature_name).variants
            variants[variant_name] = variants.get(variant_name, 0) + 1

    def swap(self) -> MetricsWindow:
        """現在のウィンドウを空のウィンドウと差し替え、古い方を返す。"""
        with self._lock:
            window = self._window
            self._window = MetricsWindow()
        return window

    @property
    def current_window(self) -> MetricsWindow:
        return self._window

    async def flush(self) -> bool:
        """ウィンドウを差し替えて送信する。送信した場合に True を返す。

        空のウィンドウは送信しない。送信失敗はログに記録し、例外は送出しない。
        """
        window = self.swap()
        if window.is_empty():
            logger.debug("No metrics to flush")
            return False
        report = MetricsReport.from_window(window, self._app_name, self._instance_id)
        try:
            await asyncio.wait_for(self._sender.send_metrics(report), timeout=self._timeout)
        except Exception as e:
            logger.warning(
                "Failed to send metrics, window dropped",
                extra={"error": str(e), "toggles": len(window.toggles)},
            )
            return False
        logger.debug("Metrics flushed", extra={"toggles": len(window.toggles)})
        return True

    async def start(self) -> None:
        """フラッシュタスクを開始する。"""
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._flush_loop())

    async def stop(self, final_flush: bool = True) -> None:
        """フラッシュタスクを停止する。final_flush が True なら残りを 1 回送信する。"""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if final_flush:
            await self.flush()

    @property
    def running(self) -> bool:
        return self._running

    async def _flush_loop(self) -> None:
        """フラッシュループ。"""
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                await self.flush()
            except Exception as e:
                logger.error("Metrics flush error", extra={"error": str(e)})
