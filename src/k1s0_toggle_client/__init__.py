"""k1s0 toggle client library."""

from .client import ToggleClient
from .config import ToggleClientConfig, load_config
from .evaluator import Evaluator
from .exceptions import (
    ClientStateError,
    ConfigError,
    DuplicateStrategyError,
    FetchError,
    MetricsSendError,
    ParseError,
    RegistrationError,
    RegistryFrozenError,
    ToggleClientError,
    ToggleClientErrorCodes,
    UnknownStrategyWarning,
)
from .metrics import MetricsAggregator
from .models import (
    ActivationStrategy,
    Constraint,
    ConstraintOperator,
    EvaluationContext,
    FeatureToggle,
    MetricsReport,
    MetricsWindow,
    Registration,
    ToggleCounts,
    ToggleSnapshot,
    Variant,
    VariantOverride,
    VariantPayload,
    VariantResult,
)
from .poller import PollOutcome, Poller
from .store import ToggleStore
from .strategy import Strategy, StrategyRegistry, normalized_hash
from .transport import FetchResult, HttpTransport, InMemoryTransport, Transport

__all__ = [
    "ToggleClient",
    "ToggleClientConfig",
    "load_config",
    "Evaluator",
    "ToggleStore",
    "Poller",
    "PollOutcome",
    "MetricsAggregator",
    "Strategy",
    "StrategyRegistry",
    "normalized_hash",
    "Transport",
    "HttpTransport",
    "InMemoryTransport",
    "FetchResult",
    "ActivationStrategy",
    "Constraint",
    "ConstraintOperator",
    "EvaluationContext",
    "FeatureToggle",
    "MetricsReport",
    "MetricsWindow",
    "Registration",
    "ToggleCounts",
    "ToggleSnapshot",
    "Variant",
    "VariantOverride",
    "VariantPayload",
    "VariantResult",
    "ToggleClientError",
    "ToggleClientErrorCodes",
    "RegistrationError",
    "FetchError",
    "ParseError",
    "MetricsSendError",
    "DuplicateStrategyError",
    "RegistryFrozenError",
    "ConfigError",
    "ClientStateError",
    "UnknownStrategyWarning",
]
