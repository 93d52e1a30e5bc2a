"""ToggleClient: 起動・停止とフラグ評価の入口"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from types import TracebackType

from .config import ToggleClientConfig
from .evaluator import Evaluator
from .exceptions import ClientStateError, RegistrationError
from .metrics import MetricsAggregator
from .models import EvaluationContext, Registration, ToggleSnapshot, VariantResult
from .poller import PollOutcome, Poller
from .store import ToggleStore
from .strategy import Strategy, StrategyFunction, StrategyRegistry
from .transport import HttpTransport, Transport

logger = logging.getLogger(__name__)


class ToggleClient:
    """リモートのフィーチャーフラグサービスのクライアント。

    ストア・レジストリ・ポーラー・メトリクス集計はすべてこのインスタンスが所有する。
    カスタムストラテジーは start() より前に register_strategy() で登録すること。

    使用例::

        async with ToggleClient(ToggleClientConfig.from_env()) as client:
            if client.is_enabled("new-checkout", EvaluationContext(user_id="u1")):
                ...
    """

    def __init__(
        self,
        config: ToggleClientConfig,
        transport: Transport | None = None,
        registry: StrategyRegistry | None = None,
    ) -> None:
        self._config = config
        self._transport = transport if transport is not None else HttpTransport(config)
        self._registry = registry if registry is not None else StrategyRegistry()
        self._store = ToggleStore()
        self._metrics = MetricsAggregator(
            self._transport,
            app_name=config.app_name,
            instance_id=config.instance_id,
            interval_seconds=config.metrics_interval_seconds,
            timeout_seconds=config.request_timeout_seconds,
        )
        self._evaluator = Evaluator(
            self._store,
            self._registry,
            metrics=None if config.disable_metrics else self._metrics,
            default_enabled=config.default_enabled,
        )
        self._poller = Poller(
            self._transport,
            self._store,
            interval_seconds=config.refresh_interval_seconds,
            timeout_seconds=config.request_timeout_seconds,
        )
        self._started = False

    def register_strategy(self, name: str, strategy: Strategy | StrategyFunction) -> None:
        """カスタムストラテジーを登録する。

        Raises:
            DuplicateStrategyError: 同名のストラテジーが登録済みの場合
            RegistryFrozenError: start() 後に呼ばれた場合
        """
        self._registry.register(name, strategy)

    async def start(self) -> None:
        """クライアントを登録し、初回取得の後にバックグラウンドループを開始する。

        初回取得の失敗は致命的ではなく、空のスナップショットのまま起動する。

        Raises:
            RegistrationError: クライアント登録に失敗した場合
            ClientStateError: 既に起動済みの場合
        """
        if self._started:
            raise ClientStateError("Client already started")
        self._registry.freeze()
        registration = Registration(
            app_name=self._config.app_name,
            instance_id=self._config.instance_id,
            strategies=self._registry.names(),
            interval_ms=self._config.refresh_interval_ms,
        )
        try:
            await asyncio.wait_for(
                self._transport.register(registration),
                timeout=self._config.request_timeout_seconds,
            )
        except RegistrationError:
            raise
        except Exception as e:
            raise RegistrationError(f"Failed to register client: {e}", cause=e) from e

        outcome = await self._poller.poll_once()
        if outcome is not PollOutcome.INSTALLED:
            logger.warning(
                "Initial fetch did not install features, starting with empty snapshot",
                extra={"outcome": outcome.value},
            )

        self._started = True
        await self._poller.start()
        if not self._config.disable_metrics:
            await self._metrics.start()
        logger.info(
            "Toggle client started",
            extra={"app_name": self._config.app_name, "instance_id": self._config.instance_id},
        )

    async def stop(self) -> None:
        """バックグラウンドループを停止し、残りのメトリクスを送信する。"""
        if not self._started:
            return
        await self._poller.stop()
        if not self._config.disable_metrics:
            await self._metrics.stop(final_flush=True)
        self._started = False
        logger.info("Toggle client stopped", extra={"app_name": self._config.app_name})

    async def __aenter__(self) -> ToggleClient:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    def is_enabled(
        self,
        name: str | Enum,
        context: EvaluationContext | None = None,
        default: bool | None = None,
    ) -> bool:
        return self._evaluator.is_enabled(name, context, default)

    def get_variant(
        self, name: str | Enum, context: EvaluationContext | None = None
    ) -> VariantResult:
        return self._evaluator.get_variant(name, context)

    def current_snapshot(self) -> ToggleSnapshot:
        return self._store.current_snapshot()

    @property
    def started(self) -> bool:
        return self._started

    @property
    def registry(self) -> StrategyRegistry:
        return self._registry

    @property
    def metrics(self) -> MetricsAggregator:
        return self._metrics
