"""現在のスナップショットに対するフラグ評価"""

from __future__ import annotations

import logging
import threading
import warnings
from collections.abc import Mapping
from enum import Enum
from typing import Protocol

from .constraints import evaluate_constraints
from .exceptions import UnknownStrategyWarning
from .models import ActivationStrategy, EvaluationContext, FeatureToggle, VariantResult
from .store import ToggleStore
from .strategy import GROUP_ID_PARAMETER, StrategyRegistry, rollout_hash_key, select_variant

logger = logging.getLogger(__name__)

_EMPTY_CONTEXT = EvaluationContext()


class MetricsRecorder(Protocol):
    """評価結果を記録するプロトコル。"""

    def record(self, feature_name: str, enabled: bool) -> None: ...

    def record_variant(self, feature_name: str, variant_name: str) -> None: ...


def feature_key(name: str | Enum) -> str:
    """フィーチャー名を文字列に正規化する。Enum メンバーは value を使う。"""
    if isinstance(name, Enum):
        return str(name.value)
    return name


def _strategy_parameters(
    toggle: FeatureToggle, declared: ActivationStrategy
) -> Mapping[str, str]:
    """groupId が無ければフィーチャー名を補ったパラメータを返す。"""
    if GROUP_ID_PARAMETER in declared.parameters:
        return declared.parameters
    return {**declared.parameters, GROUP_ID_PARAMETER: toggle.name}


class Evaluator:
    """フラグ評価器。

    評価はメモリ上のスナップショットだけを読み、例外を送出しない。
    未登録ストラテジーや例外を送出したストラテジーは不一致として扱う。
    """

    def __init__(
        self,
        store: ToggleStore,
        registry: StrategyRegistry,
        metrics: MetricsRecorder | None = None,
        default_enabled: bool = False,
    ) -> None:
        self._store = store
        self._registry = registry
        self._metrics = metrics
        self._default_enabled = default_enabled
        self._warned_strategies: set[str] = set()
        self._warned_lock = threading.Lock()

    def is_enabled(
        self,
        name: str | Enum,
        context: EvaluationContext | None = None,
        default: bool | None = None,
    ) -> bool:
        """フィーチャーが有効かどうかを返す。

        Args:
            name: フィーチャー名（文字列または Enum）
            context: 評価コンテキスト
            default: 未知のフィーチャーに対する戻り値。None なら設定値を使う。
        """
        key = feature_key(name)
        toggle = self._store.current_snapshot().get(key)
        if toggle is None:
            enabled = self._default_enabled if default is None else default
        else:
            enabled, _ = self._resolve(toggle, context or _EMPTY_CONTEXT)
        if self._metrics is not None:
            self._metrics.record(key, enabled)
        return enabled

    def get_variant(
        self, name: str | Enum, context: EvaluationContext | None = None
    ) -> VariantResult:
        """有効なフィーチャーについて重み付きでバリアントを選択する。"""
        key = feature_key(name)
        ctx = context or _EMPTY_CONTEXT
        toggle = self._store.current_snapshot().get(key)
        if toggle is None:
            enabled = self._default_enabled
            result = VariantResult.disabled(enabled)
        else:
            enabled, matched = self._resolve(toggle, ctx)
            if enabled:
                result = self._select(toggle, ctx, matched)
            else:
                result = VariantResult.disabled(False)
        if self._metrics is not None:
            self._metrics.record(key, enabled)
            self._metrics.record_variant(key, result.name)
        return result

    def _select(
        self,
        toggle: FeatureToggle,
        context: EvaluationContext,
        matched: ActivationStrategy | None,
    ) -> VariantResult:
        hash_key = None
        if matched is not None:
            hash_key = rollout_hash_key(matched.name, _strategy_parameters(toggle, matched))
        try:
            variant = select_variant(toggle.name, toggle.variants, context, hash_key)
        except Exception as e:
            logger.warning(
                "Variant selection failed",
                extra={"feature": toggle.name, "error": str(e)},
            )
            variant = None
        if variant is None:
            return VariantResult.disabled(True)
        return VariantResult(
            name=variant.name,
            enabled=True,
            feature_enabled=True,
            payload=variant.payload,
        )

    def _resolve(
        self, toggle: FeatureToggle, context: EvaluationContext
    ) -> tuple[bool, ActivationStrategy | None]:
        """有効かどうかと、一致したストラテジー（無ければ None）を返す。"""
        if not toggle.enabled:
            return False, None
        if not toggle.strategies:
            return True, None
        for declared in toggle.strategies:
            try:
                if self._strategy_matches(toggle, declared, context):
                    return True, declared
            except Exception as e:
                logger.warning(
                    "Strategy evaluation failed",
                    extra={"feature": toggle.name, "strategy": declared.name, "error": str(e)},
                )
        return False, None

    def _strategy_matches(
        self,
        toggle: FeatureToggle,
        declared: ActivationStrategy,
        context: EvaluationContext,
    ) -> bool:
        strategy = self._registry.resolve(declared.name)
        if strategy is None:
            self._warn_unknown_strategy(declared.name, toggle.name)
            return False
        if not evaluate_constraints(declared.constraints, context):
            return False
        return bool(strategy.evaluate(_strategy_parameters(toggle, declared), context))

    def _warn_unknown_strategy(self, strategy_name: str, feature_name: str) -> None:
        with self._warned_lock:
            if strategy_name in self._warned_strategies:
                return
            self._warned_strategies.add(strategy_name)
        logger.warning(
            "Unknown strategy, treating as non-matching",
            extra={"feature": feature_name, "strategy": strategy_name},
        )
        warnings.warn(
            f"Unknown strategy {strategy_name!r} referenced by feature {feature_name!r}",
            UnknownStrategyWarning,
            stacklevel=2,
        )
