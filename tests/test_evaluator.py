"""Evaluator のユニットテスト"""

import threading
from collections.abc import Mapping
from enum import Enum

import pytest
from k1s0_toggle_client import (
    ActivationStrategy,
    Constraint,
    ConstraintOperator,
    EvaluationContext,
    Evaluator,
    FeatureToggle,
    InMemoryTransport,
    MetricsAggregator,
    StrategyRegistry,
    ToggleSnapshot,
    ToggleStore,
    UnknownStrategyWarning,
    Variant,
    VariantPayload,
    normalized_hash,
)


class Features(Enum):
    CHECKOUT = "checkout"


def make_evaluator(
    *toggles: FeatureToggle,
    registry: StrategyRegistry | None = None,
    default_enabled: bool = False,
) -> tuple[Evaluator, MetricsAggregator]:
    store = ToggleStore(ToggleSnapshot.from_toggles(toggles))
    metrics = MetricsAggregator(InMemoryTransport(), app_name="app", instance_id="inst-1")
    evaluator = Evaluator(
        store, registry or StrategyRegistry(), metrics=metrics, default_enabled=default_enabled
    )
    return evaluator, metrics


def test_disabled_feature_is_false() -> None:
    """enabled=false のフィーチャーは常に False。"""
    toggle = FeatureToggle(name="f", enabled=False, strategies=(ActivationStrategy("default"),))
    evaluator, _ = make_evaluator(toggle)
    assert evaluator.is_enabled("f", EvaluationContext(user_id="u")) is False


def test_feature_without_strategies_is_true() -> None:
    """ストラテジーが無い有効なフィーチャーは True。"""
    evaluator, _ = make_evaluator(FeatureToggle(name="f", enabled=True))
    assert evaluator.is_enabled("f") is True


def test_unknown_feature_uses_default() -> None:
    """未知のフィーチャーは既定値を返すこと。"""
    evaluator, _ = make_evaluator()
    assert evaluator.is_enabled("missing") is False
    assert evaluator.is_enabled("missing", default=True) is True

    evaluator_on, _ = make_evaluator(default_enabled=True)
    assert evaluator_on.is_enabled("missing") is True


def test_any_matching_strategy_enables() -> None:
    """いずれかのストラテジーが一致すれば True。"""
    toggle = FeatureToggle(
        name="f",
        enabled=True,
        strategies=(
            ActivationStrategy("userWithId", {"userIds": "alice"}),
            ActivationStrategy("userWithId", {"userIds": "bob"}),
        ),
    )
    evaluator, _ = make_evaluator(toggle)
    assert evaluator.is_enabled("f", EvaluationContext(user_id="bob"))
    assert not evaluator.is_enabled("f", EvaluationContext(user_id="carol"))


def test_constraints_gate_strategy() -> None:
    """制約が満たされない場合はストラテジーを評価しないこと。"""
    calls: list[str] = []

    def spy(parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        calls.append(context.environment or "")
        return True

    registry = StrategyRegistry()
    registry.register("spy", spy)
    constraint = Constraint("environment", ConstraintOperator.IN, ("production",))
    toggle = FeatureToggle(
        name="f", enabled=True, strategies=(ActivationStrategy("spy", {}, (constraint,)),)
    )
    evaluator, _ = make_evaluator(toggle, registry=registry)

    assert not evaluator.is_enabled("f", EvaluationContext(environment="dev"))
    assert calls == []
    assert evaluator.is_enabled("f", EvaluationContext(environment="production"))
    assert calls == ["production"]


def test_unknown_strategy_is_non_matching() -> None:
    """未登録ストラテジーは不一致として扱い、警告を出すこと。"""
    toggle = FeatureToggle(
        name="f",
        enabled=True,
        strategies=(
            ActivationStrategy("doesNotExist"),
            ActivationStrategy("userWithId", {"userIds": "u1"}),
        ),
    )
    evaluator, _ = make_evaluator(toggle)
    with pytest.warns(UnknownStrategyWarning):
        assert evaluator.is_enabled("f", EvaluationContext(user_id="u2")) is False
    assert evaluator.is_enabled("f", EvaluationContext(user_id="u1")) is True


def test_raising_strategy_is_non_matching() -> None:
    """例外を送出したストラテジーは不一致として扱うこと。"""

    def broken(parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        raise RuntimeError("boom")

    registry = StrategyRegistry()
    registry.register("broken", broken)
    toggle = FeatureToggle(name="f", enabled=True, strategies=(ActivationStrategy("broken"),))
    evaluator, _ = make_evaluator(toggle, registry=registry)
    assert evaluator.is_enabled("f") is False


def test_group_id_defaults_to_feature_name() -> None:
    """groupId が無い場合はフィーチャー名でハッシュすること。"""
    toggle = FeatureToggle(
        name="checkout",
        enabled=True,
        strategies=(ActivationStrategy("gradualRolloutUserId", {"percentage": "50"}),),
    )
    evaluator, _ = make_evaluator(toggle)
    for i in range(50):
        user = f"user-{i}"
        expected = normalized_hash("checkout", user) < 50
        assert evaluator.is_enabled("checkout", EvaluationContext(user_id=user)) is expected


def test_enum_feature_name() -> None:
    """Enum メンバーの value をフィーチャー名として使うこと。"""
    evaluator, metrics = make_evaluator(FeatureToggle(name="checkout", enabled=True))
    assert evaluator.is_enabled(Features.CHECKOUT) is True
    assert metrics.current_window.toggles["checkout"].yes == 1


def test_every_evaluation_is_counted_once() -> None:
    """並行評価でも評価回数と記録回数が一致すること。"""
    toggle = FeatureToggle(
        name="f",
        enabled=True,
        strategies=(ActivationStrategy("userWithId", {"userIds": "even"}),),
    )
    evaluator, metrics = make_evaluator(toggle)
    per_thread = 1_000

    def worker(index: int) -> None:
        user = "even" if index % 2 == 0 else "odd"
        for _ in range(per_thread):
            evaluator.is_enabled("f", EvaluationContext(user_id=user))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    counts = metrics.current_window.toggles["f"]
    assert counts.yes == 4 * per_thread
    assert counts.no == 4 * per_thread


def test_get_variant_for_enabled_feature() -> None:
    """有効なフィーチャーではバリアントを選択すること。"""
    toggle = FeatureToggle(
        name="f",
        enabled=True,
        variants=(Variant(name="blue", weight=100, payload=VariantPayload("string", "#00f")),),
    )
    evaluator, metrics = make_evaluator(toggle)
    result = evaluator.get_variant("f", EvaluationContext(user_id="u"))
    assert result.name == "blue"
    assert result.enabled is True
    assert result.feature_enabled is True
    assert result.payload == VariantPayload("string", "#00f")

    counts = metrics.current_window.toggles["f"]
    assert counts.yes == 1
    assert counts.variants == {"blue": 1}


def test_get_variant_for_disabled_feature() -> None:
    """無効なフィーチャーでは disabled バリアント。"""
    toggle = FeatureToggle(name="f", enabled=False, variants=(Variant(name="blue", weight=100),))
    evaluator, metrics = make_evaluator(toggle)
    result = evaluator.get_variant("f")
    assert result.name == "disabled"
    assert result.enabled is False
    assert result.feature_enabled is False
    assert metrics.current_window.toggles["f"].variants == {"disabled": 1}


def test_get_variant_without_variants() -> None:
    """バリアントが無い有効なフィーチャーでは disabled だが feature_enabled は True。"""
    evaluator, _ = make_evaluator(FeatureToggle(name="f", enabled=True))
    result = evaluator.get_variant("f")
    assert result.name == "disabled"
    assert result.enabled is False
    assert result.feature_enabled is True


def test_get_variant_reuses_flexible_rollout_hash() -> None:
    """一致した flexibleRollout の groupId と stickiness でバリアントを選ぶこと。"""
    toggle = FeatureToggle(
        name="f",
        enabled=True,
        strategies=(
            ActivationStrategy(
                "flexibleRollout",
                {"rollout": "100", "groupId": "checkout", "stickiness": "userId"},
            ),
        ),
        variants=(Variant(name="a", weight=50), Variant(name="b", weight=50)),
    )
    evaluator, _ = make_evaluator(toggle)
    for i in range(200):
        user = f"user-{i}"
        expected = "a" if normalized_hash("checkout", user) < 50 else "b"
        assert evaluator.get_variant("f", EvaluationContext(user_id=user)).name == expected


def test_get_variant_rollout_without_group_id_uses_feature_name() -> None:
    """groupId の無い gradualRolloutUserId ではフィーチャー名と userId でバリアントを選ぶこと。"""
    toggle = FeatureToggle(
        name="checkout",
        enabled=True,
        strategies=(ActivationStrategy("gradualRolloutUserId", {"percentage": "100"}),),
        variants=(
            Variant(name="a", weight=50, stickiness="sessionId"),
            Variant(name="b", weight=50),
        ),
    )
    evaluator, _ = make_evaluator(toggle)
    for i in range(200):
        user = f"user-{i}"
        ctx = EvaluationContext(user_id=user, session_id=f"session-{i}")
        expected = "a" if normalized_hash("checkout", user) < 50 else "b"
        assert evaluator.get_variant("checkout", ctx).name == expected


def test_get_variant_without_rollout_uses_variant_stickiness() -> None:
    """ロールアウト系ストラテジーが無い場合はバリアントの stickiness でハッシュすること。"""
    toggle = FeatureToggle(
        name="f",
        enabled=True,
        variants=(
            Variant(name="a", weight=50, stickiness="sessionId"),
            Variant(name="b", weight=50),
        ),
    )
    evaluator, _ = make_evaluator(toggle)
    for i in range(200):
        ctx = EvaluationContext(user_id=f"user-{i}", session_id=f"session-{i}")
        expected = "a" if normalized_hash("f", f"session-{i}") < 50 else "b"
        assert evaluator.get_variant("f", ctx).name == expected


def test_get_variant_unknown_feature() -> None:
    """未知のフィーチャーでは disabled バリアント。"""
    evaluator, _ = make_evaluator()
    result = evaluator.get_variant("missing")
    assert result.name == "disabled"
    assert result.feature_enabled is False


def test_evaluation_without_metrics() -> None:
    """メトリクス無しでも評価できること。"""
    store = ToggleStore(ToggleSnapshot.from_toggles([FeatureToggle(name="f", enabled=True)]))
    evaluator = Evaluator(store, StrategyRegistry())
    assert evaluator.is_enabled("f") is True
    assert evaluator.get_variant("f").feature_enabled is True
