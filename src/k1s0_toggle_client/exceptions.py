"""toggle client ライブラリの例外型定義"""

from __future__ import annotations


class ToggleClientError(Exception):
    """toggle client ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class ToggleClientErrorCodes:
    """ToggleClientError のエラーコード定数。"""

    REGISTRATION_FAILED: str = "REGISTRATION_FAILED"
    FETCH_FAILED: str = "FETCH_FAILED"
    PARSE_FAILED: str = "PARSE_FAILED"
    METRICS_SEND_FAILED: str = "METRICS_SEND_FAILED"
    DUPLICATE_STRATEGY: str = "DUPLICATE_STRATEGY"
    REGISTRY_FROZEN: str = "REGISTRY_FROZEN"
    CONFIG_ERROR: str = "CONFIG_ERROR"
    INVALID_STATE: str = "INVALID_STATE"


class RegistrationError(ToggleClientError):
    """起動時のクライアント登録に失敗した。"""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(ToggleClientErrorCodes.REGISTRATION_FAILED, message, cause)


class FetchError(ToggleClientError):
    """トグル定義の取得に失敗した。"""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(ToggleClientErrorCodes.FETCH_FAILED, message, cause)


class ParseError(ToggleClientError):
    """トグル定義ドキュメントの解析に失敗した。"""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(ToggleClientErrorCodes.PARSE_FAILED, message, cause)


class MetricsSendError(ToggleClientError):
    """メトリクスの送信に失敗した。"""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(ToggleClientErrorCodes.METRICS_SEND_FAILED, message, cause)


class DuplicateStrategyError(ToggleClientError):
    """同名のストラテジーが既に登録されている。"""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            ToggleClientErrorCodes.DUPLICATE_STRATEGY,
            f"Strategy already registered: {name}",
        )


class RegistryFrozenError(ToggleClientError):
    """クライアント起動後にストラテジーを登録しようとした。"""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            ToggleClientErrorCodes.REGISTRY_FROZEN,
            f"Strategy registry is frozen, cannot register: {name}",
        )


class ConfigError(ToggleClientError):
    """設定が不足している、または不正。"""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(ToggleClientErrorCodes.CONFIG_ERROR, message, cause)


class ClientStateError(ToggleClientError):
    """ライフサイクルに反する操作。"""

    def __init__(self, message: str) -> None:
        super().__init__(ToggleClientErrorCodes.INVALID_STATE, message)


class UnknownStrategyWarning(UserWarning):
    """トグルが未登録のストラテジーを参照している。"""
