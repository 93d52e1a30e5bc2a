"""アクティベーションストラテジーとストラテジーレジストリ"""

from __future__ import annotations

import ipaddress
import os
import random
import socket
import threading
from collections.abc import Callable, Mapping, Sequence
from typing import Protocol

import mmh3

from .exceptions import DuplicateStrategyError, RegistryFrozenError
from .models import EvaluationContext, Variant

HASH_SEPARATOR = "."
HASH_MODULUS = 100
GROUP_ID_PARAMETER = "groupId"


class Strategy(Protocol):
    """ストラテジーの評価能力。組み込み・カスタムとも同じ形で扱う。"""

    def evaluate(self, parameters: Mapping[str, str], context: EvaluationContext) -> bool: ...


StrategyFunction = Callable[[Mapping[str, str], EvaluationContext], bool]


def normalized_hash(group_id: str, identifier: str, modulus: int = HASH_MODULUS) -> int:
    """group_id と識別子から [0, modulus) の一貫したハッシュ値を計算する。

    MurmurHash3 (x86, 32bit, seed 0) を UTF-8 バイト列に適用し、
    符号なし整数として modulus で割った余りを返す。
    """
    key = f"{group_id}{HASH_SEPARATOR}{identifier}".encode()
    return mmh3.hash(key, 0, signed=False) % modulus


def parse_percentage(raw: str | None) -> int:
    """パーセンテージを 0..100 の整数に変換する。解析できない場合は 0。"""
    if raw is None:
        return 0
    try:
        value = int(float(raw.strip()))
    except ValueError:
        return 0
    return max(0, min(100, value))


def _split_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _random_identifier() -> str:
    return str(random.random())


def resolve_stickiness(stickiness: str, context: EvaluationContext) -> str | None:
    """stickiness 名からハッシュ対象の値を決める。

    default は userId → sessionId → ランダム値の順にフォールバックする。
    """
    if stickiness == "default":
        return context.user_id or context.session_id or _random_identifier()
    if stickiness == "random":
        return _random_identifier()
    return context.get_field(stickiness)


def _rollout(parameters: Mapping[str, str], identifier: str | None, percentage: int) -> bool:
    if identifier is None:
        return False
    group_id = parameters.get(GROUP_ID_PARAMETER, "")
    return normalized_hash(group_id, identifier) < percentage


class DefaultStrategy:
    """常に有効。"""

    def evaluate(self, parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        return True


class UserWithIdStrategy:
    """userIds パラメータに含まれるユーザーのみ有効。"""

    def evaluate(self, parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        if context.user_id is None:
            return False
        return context.user_id in _split_list(parameters.get("userIds"))


class RemoteAddressStrategy:
    """IPs パラメータのアドレス（完全一致または CIDR）に一致する場合に有効。"""

    def evaluate(self, parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        remote = context.remote_address
        if not remote:
            return False
        entries = _split_list(parameters.get("IPs"))
        if remote in entries:
            return True
        try:
            address = ipaddress.ip_address(remote.strip())
        except ValueError:
            return False
        for entry in entries:
            try:
                if address in ipaddress.ip_network(entry, strict=False):
                    return True
            except ValueError:
                continue
        return False


class ApplicationHostnameStrategy:
    """hostNames パラメータに実行ホスト名が含まれる場合に有効。"""

    def __init__(self, hostname: str | None = None) -> None:
        self._hostname = (hostname or os.environ.get("HOSTNAME") or socket.gethostname()).casefold()

    def evaluate(self, parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        hostnames = [h.casefold() for h in _split_list(parameters.get("hostNames"))]
        return self._hostname in hostnames


class GradualRolloutUserIdStrategy:
    def evaluate(self, parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        percentage = parse_percentage(parameters.get("percentage"))
        return _rollout(parameters, context.user_id, percentage)


class GradualRolloutSessionIdStrategy:
    def evaluate(self, parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        percentage = parse_percentage(parameters.get("percentage"))
        return _rollout(parameters, context.session_id, percentage)


class GradualRolloutRandomStrategy:
    def evaluate(self, parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        percentage = parse_percentage(parameters.get("percentage"))
        return _rollout(parameters, _random_identifier(), percentage)


class FlexibleRolloutStrategy:
    """stickiness パラメータでハッシュ対象を選べる段階的ロールアウト。"""

    def evaluate(self, parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        raw = parameters.get("rollout", parameters.get("percentage"))
        percentage = parse_percentage(raw)
        stickiness = parameters.get("stickiness") or "default"
        return _rollout(parameters, resolve_stickiness(stickiness, context), percentage)


class FunctionStrategy:
    """(parameters, context) -> bool の関数を Strategy として扱うラッパー。"""

    def __init__(self, fn: StrategyFunction) -> None:
        self._fn = fn

    def evaluate(self, parameters: Mapping[str, str], context: EvaluationContext) -> bool:
        return bool(self._fn(parameters, context))


def builtin_strategies() -> dict[str, Strategy]:
    return {
        "default": DefaultStrategy(),
        "userWithId": UserWithIdStrategy(),
        "remoteAddress": RemoteAddressStrategy(),
        "applicationHostname": ApplicationHostnameStrategy(),
        "gradualRolloutUserId": GradualRolloutUserIdStrategy(),
        "gradualRolloutSessionId": GradualRolloutSessionIdStrategy(),
        "gradualRolloutRandom": GradualRolloutRandomStrategy(),
        "flexibleRollout": FlexibleRolloutStrategy(),
    }


_ROLLOUT_STICKINESS = {
    "gradualRolloutUserId": "userId",
    "gradualRolloutSessionId": "sessionId",
}


def rollout_hash_key(
    strategy_name: str, parameters: Mapping[str, str]
) -> tuple[str, str] | None:
    """ロールアウト系ストラテジーのハッシュ対象 (groupId, stickiness) を返す。

    ハッシュを使わないストラテジーでは None。
    """
    group_id = parameters.get(GROUP_ID_PARAMETER, "")
    if strategy_name == "flexibleRollout":
        return group_id, parameters.get("stickiness") or "default"
    stickiness = _ROLLOUT_STICKINESS.get(strategy_name)
    if stickiness is None:
        return None
    return group_id, stickiness


def select_variant(
    feature_name: str,
    variants: Sequence[Variant],
    context: EvaluationContext,
    hash_key: tuple[str, str] | None = None,
) -> Variant | None:
    """重みに従ってバリアントを選択する。

    オーバーライドに一致するバリアントを優先する。それ以外はハッシュ空間 [0, 100) を
    宣言順・重み比で半開区間に分割し、ハッシュ値を含む区間のバリアントを返す。
    区間境界ちょうどの値は上側の区間に属する。

    hash_key には一致したロールアウトストラテジーの (groupId, stickiness) を渡す。
    その場合はロールアウト判定と同じハッシュ値で選択する。None ならフィーチャー名と
    先頭バリアントの stickiness でハッシュする。
    """
    for variant in variants:
        for override in variant.overrides:
            value = context.get_field(override.context_name)
            if value is not None and value in override.values:
                return variant

    total = sum(v.weight for v in variants)
    if total <= 0:
        return None
    if hash_key is None:
        hash_key = (feature_name, variants[0].stickiness or "default")
    group_id, stickiness = hash_key
    identifier = resolve_stickiness(stickiness, context) or _random_identifier()
    point = normalized_hash(group_id, identifier)
    cumulative = 0
    for variant in variants:
        cumulative += variant.weight
        if point * total < cumulative * HASH_MODULUS:
            return variant
    return None


class StrategyRegistry:
    """ストラテジー名から評価関数を引くレジストリ。

    組み込みストラテジーを登録済みの状態で生成される。クライアント起動前に
    カスタムストラテジーを登録し、起動時に freeze() で以降の登録を禁止する。
    """

    def __init__(self, include_builtins: bool = True) -> None:
        self._strategies: dict[str, Strategy] = builtin_strategies() if include_builtins else {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, name: str, strategy: Strategy | StrategyFunction) -> None:
        """ストラテジーを登録する。

        Raises:
            DuplicateStrategyError: 同名のストラテジーが既に登録済みの場合
            RegistryFrozenError: freeze() 後に呼ばれた場合
        """
        if not hasattr(strategy, "evaluate"):
            if not callable(strategy):
                raise TypeError(f"Strategy must be callable or define evaluate(): {strategy!r}")
            strategy = FunctionStrategy(strategy)
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(name)
            if name in self._strategies:
                raise DuplicateStrategyError(name)
            self._strategies[name] = strategy

    def resolve(self, name: str) -> Strategy | None:
        return self._strategies.get(name)

    def names(self) -> list[str]:
        return sorted(self._strategies)

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, name: object) -> bool:
        return name in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)
