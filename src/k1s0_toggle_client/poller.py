"""Poller — asyncio Task ベースのトグル定義ポーリング"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import StrEnum
from typing import Protocol

from .exceptions import ParseError
from .models import ToggleSnapshot
from .store import ToggleStore
from .transport import FetchResult

logger = logging.getLogger(__name__)


class PollOutcome(StrEnum):
    """1 回のポーリングの結果。"""

    INSTALLED = "installed"
    UNCHANGED = "unchanged"
    FETCH_FAILED = "fetch_failed"
    PARSE_FAILED = "parse_failed"


class ToggleFetcher(Protocol):
    """トグル定義を取得するプロトコル。"""

    async def fetch_toggles(self, revision: str | None) -> FetchResult: ...


class Poller:
    """一定間隔でトグル定義を取得し、ストアのスナップショットを差し替える。

    取得・解析に失敗した場合は直前のスナップショットを保持し、次の周期で再試行する。
    """

    def __init__(
        self,
        fetcher: ToggleFetcher,
        store: ToggleStore,
        interval_seconds: float = 15.0,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._task: asyncio.Task[None] | None = None
        self._running = False

    async def poll_once(self) -> PollOutcome:
        """1 回のポーリングを実行する。例外は送出しない。"""
        revision = self._store.revision
        try:
            result = await asyncio.wait_for(
                self._fetcher.fetch_toggles(revision), timeout=self._timeout
            )
        except ParseError as e:
            logger.warning("Failed to parse features response", extra={"error": str(e)})
            return PollOutcome.PARSE_FAILED
        except TimeoutError:
            logger.warning("Fetching features timed out", extra={"timeout": self._timeout})
            return PollOutcome.FETCH_FAILED
        except Exception as e:
            logger.warning("Failed to fetch features", extra={"error": str(e)})
            return PollOutcome.FETCH_FAILED

        if result.unchanged:
            logger.debug("Features unchanged", extra={"revision": revision})
            return PollOutcome.UNCHANGED

        try:
            snapshot = ToggleSnapshot.from_document(result.document, revision=result.revision)
        except Exception as e:
            logger.warning("Discarding invalid features document", extra={"error": str(e)})
            return PollOutcome.PARSE_FAILED

        self._store.install(snapshot)
        logger.info(
            "Installed toggle snapshot",
            extra={"features": len(snapshot), "revision": snapshot.revision},
        )
        return PollOutcome.INSTALLED

    async def start(self) -> None:
        """ポーリングタスクを開始する。"""
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """ポーリングタスクを停止する。実行中の取得は破棄される。"""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    @property
    def running(self) -> bool:
        return self._running

    async def _poll_loop(self) -> None:
        """ポーリングループ。"""
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error("Toggle polling error", extra={"error": str(e)})
