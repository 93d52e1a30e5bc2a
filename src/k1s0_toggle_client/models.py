"""toggle client データモデル"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from .exceptions import ParseError

SDK_VERSION = "k1s0-toggle-client:0.1.0"
DISABLED_VARIANT_NAME = "disabled"


class ConstraintOperator(StrEnum):
    """制約オペレーター。"""

    IN = "IN"
    NOT_IN = "NOT_IN"
    STR_CONTAINS = "STR_CONTAINS"
    STR_STARTS_WITH = "STR_STARTS_WITH"
    STR_ENDS_WITH = "STR_ENDS_WITH"
    NUM_EQ = "NUM_EQ"
    NUM_GT = "NUM_GT"
    NUM_GTE = "NUM_GTE"
    NUM_LT = "NUM_LT"
    NUM_LTE = "NUM_LTE"
    DATE_AFTER = "DATE_AFTER"
    DATE_BEFORE = "DATE_BEFORE"


def _string_map(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise TypeError(f"expected a mapping, got {type(raw).__name__}")
    return {str(k): str(v) for k, v in raw.items()}


def _list(raw: Any, what: str) -> list[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise TypeError(f"{what} must be a list, got {type(raw).__name__}")
    return raw


@dataclass(frozen=True)
class Constraint:
    """ストラテジーに付随する制約。"""

    context_name: str
    operator: ConstraintOperator
    values: tuple[str, ...] = ()
    value: str | None = None
    inverted: bool = False
    case_insensitive: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Constraint:
        value = data.get("value")
        return cls(
            context_name=str(data["contextName"]),
            operator=ConstraintOperator(data["operator"]),
            values=tuple(str(v) for v in _list(data.get("values"), "values")),
            value=None if value is None else str(value),
            inverted=bool(data.get("inverted", False)),
            case_insensitive=bool(data.get("caseInsensitive", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "contextName": self.context_name,
            "operator": self.operator.value,
            "values": list(self.values),
            "inverted": self.inverted,
            "caseInsensitive": self.case_insensitive,
        }
        if self.value is not None:
            data["value"] = self.value
        return data


@dataclass(frozen=True)
class ActivationStrategy:
    """トグルに宣言されたアクティベーションストラテジー。"""

    name: str
    parameters: Mapping[str, str] = field(default_factory=dict)
    constraints: tuple[Constraint, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ActivationStrategy:
        return cls(
            name=str(data["name"]),
            parameters=_string_map(data.get("parameters")),
            constraints=tuple(
                Constraint.from_dict(c) for c in _list(data.get("constraints"), "constraints")
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "parameters": dict(self.parameters),
            "constraints": [c.to_dict() for c in self.constraints],
        }


@dataclass(frozen=True)
class VariantPayload:
    """バリアントのペイロード。中身は解釈しない。"""

    type: str
    value: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VariantPayload:
        return cls(type=str(data["type"]), value=str(data["value"]))

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "value": self.value}


@dataclass(frozen=True)
class VariantOverride:
    """特定のコンテキスト値をバリアントに固定するルール。"""

    context_name: str
    values: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VariantOverride:
        return cls(
            context_name=str(data["contextName"]),
            values=tuple(str(v) for v in _list(data.get("values"), "values")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"contextName": self.context_name, "values": list(self.values)}


@dataclass(frozen=True)
class Variant:
    """フラグバリアント。"""

    name: str
    weight: int = 0
    payload: VariantPayload | None = None
    stickiness: str | None = None
    overrides: tuple[VariantOverride, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Variant:
        weight = int(data.get("weight", 0))
        if weight < 0:
            raise ValueError(f"variant weight must not be negative: {weight}")
        payload = data.get("payload")
        stickiness = data.get("stickiness")
        return cls(
            name=str(data["name"]),
            weight=weight,
            payload=VariantPayload.from_dict(payload) if payload else None,
            stickiness=None if stickiness is None else str(stickiness),
            overrides=tuple(
                VariantOverride.from_dict(o) for o in _list(data.get("overrides"), "overrides")
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "weight": self.weight}
        if self.payload is not None:
            data["payload"] = self.payload.to_dict()
        if self.stickiness is not None:
            data["stickiness"] = self.stickiness
        if self.overrides:
            data["overrides"] = [o.to_dict() for o in self.overrides]
        return data


@dataclass(frozen=True)
class FeatureToggle:
    """フィーチャートグル定義。スナップショットに入った後は変更しない。"""

    name: str
    enabled: bool
    strategies: tuple[ActivationStrategy, ...] = ()
    variants: tuple[Variant, ...] = ()
    description: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FeatureToggle:
        if not isinstance(data, Mapping):
            raise TypeError(f"feature must be a mapping, got {type(data).__name__}")
        enabled = data["enabled"]
        if not isinstance(enabled, bool):
            raise TypeError(f"enabled must be a boolean, got {enabled!r}")
        return cls(
            name=str(data["name"]),
            enabled=enabled,
            strategies=tuple(
                ActivationStrategy.from_dict(s) for s in _list(data.get("strategies"), "strategies")
            ),
            variants=tuple(Variant.from_dict(v) for v in _list(data.get("variants"), "variants")),
            description=str(data.get("description") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "strategies": [s.to_dict() for s in self.strategies],
            "variants": [v.to_dict() for v in self.variants],
        }


@dataclass(frozen=True)
class ToggleSnapshot:
    """トグル定義の不変スナップショット。

    features は読み取り専用のマッピングで、スナップショットは常に丸ごと差し替える。
    revision はサーバーが返した ETag（無い場合は None）。
    """

    features: Mapping[str, FeatureToggle] = field(
        default_factory=lambda: MappingProxyType({})
    )
    revision: str | None = None
    version: int = 1

    @classmethod
    def empty(cls) -> ToggleSnapshot:
        return cls()

    @classmethod
    def from_toggles(
        cls,
        toggles: Iterable[FeatureToggle],
        revision: str | None = None,
        version: int = 1,
    ) -> ToggleSnapshot:
        features: dict[str, FeatureToggle] = {}
        for toggle in toggles:
            if toggle.name in features:
                raise ParseError(f"Duplicate feature name: {toggle.name}")
            features[toggle.name] = toggle
        return cls(features=MappingProxyType(features), revision=revision, version=version)

    @classmethod
    def from_document(cls, document: Any, revision: str | None = None) -> ToggleSnapshot:
        """サーバーのトグル定義ドキュメントからスナップショットを構築する。

        Raises:
            ParseError: ドキュメントが不正な場合
        """
        if not isinstance(document, Mapping):
            raise ParseError(f"Features document must be an object, got {type(document).__name__}")
        try:
            version = int(document.get("version", 1))
            toggles = [
                FeatureToggle.from_dict(f) for f in _list(document["features"], "features")
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Invalid features document: {e!r}", cause=e) from e
        return cls.from_toggles(toggles, revision=revision, version=version)

    def get(self, name: str) -> FeatureToggle | None:
        return self.features.get(name)

    def names(self) -> list[str]:
        return list(self.features)

    def __contains__(self, name: object) -> bool:
        return name in self.features

    def __len__(self) -> int:
        return len(self.features)

    def to_document(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "features": [t.to_dict() for t in self.features.values()],
        }


@dataclass(frozen=True)
class EvaluationContext:
    """フラグ評価コンテキスト。呼び出しごとに渡され、保持されない。"""

    user_id: str | None = None
    session_id: str | None = None
    remote_address: str | None = None
    current_time: datetime | None = None
    environment: str | None = None
    app_name: str | None = None
    properties: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EvaluationContext:
        current_time = data.get("currentTime")
        return cls(
            user_id=data.get("userId"),
            session_id=data.get("sessionId"),
            remote_address=data.get("remoteAddress"),
            current_time=datetime.fromisoformat(current_time) if current_time else None,
            environment=data.get("environment"),
            app_name=data.get("appName"),
            properties=_string_map(data.get("properties")),
        )

    def get_field(self, name: str) -> str | None:
        """コンテキストフィールドを名前で引く。既知フィールド以外は properties を参照する。"""
        if name == "userId":
            return self.user_id
        if name == "sessionId":
            return self.session_id
        if name == "remoteAddress":
            return self.remote_address
        if name == "currentTime":
            return (self.current_time or datetime.now(timezone.utc)).isoformat()
        if name == "environment":
            return self.environment
        if name == "appName":
            return self.app_name
        return self.properties.get(name)


@dataclass(frozen=True)
class VariantResult:
    """get_variant の評価結果。"""

    name: str
    enabled: bool
    feature_enabled: bool
    payload: VariantPayload | None = None

    @classmethod
    def disabled(cls, feature_enabled: bool = False) -> VariantResult:
        return cls(name=DISABLED_VARIANT_NAME, enabled=False, feature_enabled=feature_enabled)


@dataclass
class ToggleCounts:
    """1 フィーチャー分の評価回数。"""

    yes: int = 0
    no: int = 0
    variants: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"yes": self.yes, "no": self.no, "variants": dict(self.variants)}


@dataclass
class MetricsWindow:
    """前回フラッシュ以降に蓄積された評価回数。"""

    start: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    toggles: dict[str, ToggleCounts] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.toggles

    def total(self) -> int:
        return sum(c.yes + c.no for c in self.toggles.values())


@dataclass
class MetricsReport:
    """サーバーへ送信するメトリクスレポート。"""

    app_name: str
    instance_id: str
    start: datetime
    stop: datetime
    toggles: dict[str, ToggleCounts] = field(default_factory=dict)

    @classmethod
    def from_window(
        cls,
        window: MetricsWindow,
        app_name: str,
        instance_id: str,
        stop: datetime | None = None,
    ) -> MetricsReport:
        return cls(
            app_name=app_name,
            instance_id=instance_id,
            start=window.start,
            stop=stop or datetime.now(timezone.utc),
            toggles=window.toggles,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "appName": self.app_name,
            "instanceId": self.instance_id,
            "bucket": {
                "start": self.start.isoformat(),
                "stop": self.stop.isoformat(),
                "toggles": {name: c.to_dict() for name, c in self.toggles.items()},
            },
        }


@dataclass
class Registration:
    """起動時にサーバーへ送るクライアント登録情報。"""

    app_name: str
    instance_id: str
    strategies: list[str] = field(default_factory=list)
    interval_ms: int = 15_000
    started: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sdk_version: str = SDK_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "appName": self.app_name,
            "instanceId": self.instance_id,
            "sdkVersion": self.sdk_version,
            "strategies": list(self.strategies),
            "started": self.started.isoformat(),
            "interval": self.interval_ms,
        }
