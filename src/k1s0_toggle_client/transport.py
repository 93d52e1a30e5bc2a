"""トグル取得・メトリクス送信・クライアント登録のトランスポート"""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .config import ToggleClientConfig
from .exceptions import (
    FetchError,
    MetricsSendError,
    ParseError,
    RegistrationError,
    ToggleClientError,
)
from .models import MetricsReport, Registration

FEATURES_PATH = "/client/features"
REGISTER_PATH = "/client/register"
METRICS_PATH = "/client/metrics"


@dataclass(frozen=True)
class FetchResult:
    """条件付き取得の結果。unchanged が True なら document は None。"""

    unchanged: bool
    document: dict[str, Any] | None = None
    revision: str | None = None

    @classmethod
    def not_modified(cls, revision: str | None = None) -> FetchResult:
        return cls(unchanged=True, revision=revision)

    @classmethod
    def updated(cls, document: dict[str, Any], revision: str | None = None) -> FetchResult:
        return cls(unchanged=False, document=document, revision=revision)


class Transport(Protocol):
    """リモートのフィーチャーフラグサービスとの通信プロトコル。"""

    async def fetch_toggles(self, revision: str | None) -> FetchResult: ...

    async def send_metrics(self, report: MetricsReport) -> None: ...

    async def register(self, registration: Registration) -> None: ...


def features_query(config: ToggleClientConfig) -> list[tuple[str, str]]:
    """トグル取得時のクエリパラメータを組み立てる。"""
    params: list[tuple[str, str]] = []
    if config.project:
        params.append(("project", config.project))
    if config.name_prefix:
        params.append(("namePrefix", config.name_prefix))
    for i, tag in enumerate(config.tags):
        params.append((f"tag[{i}]", tag))
    return params


class HttpTransport:
    """httpx を使った HTTP トランスポート。"""

    def __init__(self, config: ToggleClientConfig) -> None:
        self._config = config
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "appname": config.app_name,
            "instance_id": config.instance_id,
        }
        if config.client_secret:
            headers["authorization"] = config.client_secret
        self._headers = headers

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.api_url,
            headers=self._headers,
            timeout=self._config.request_timeout_seconds,
        )

    def _handle_error(
        self, resp: httpx.Response, context: str, error_type: Callable[[str], ToggleClientError]
    ) -> None:
        if resp.status_code >= 400:
            raise error_type(f"{context}: HTTP {resp.status_code}: {resp.text}")

    async def fetch_toggles(self, revision: str | None) -> FetchResult:
        """トグル定義を条件付きで取得する。

        Raises:
            FetchError: 通信エラーまたは HTTP エラーの場合
            ParseError: レスポンスが JSON でない場合
        """
        headers = {"If-None-Match": revision} if revision else {}
        try:
            async with self._make_client() as client:
                resp = await client.get(
                    FEATURES_PATH, params=features_query(self._config), headers=headers
                )
            if resp.status_code == 304:
                return FetchResult.not_modified(revision)
            self._handle_error(resp, "fetch_toggles", FetchError)
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(f"Failed to fetch features: {e}", cause=e) from e
        try:
            document: dict[str, Any] = resp.json()
        except ValueError as e:
            raise ParseError(f"Features response is not valid JSON: {e}", cause=e) from e
        return FetchResult.updated(document, resp.headers.get("ETag"))

    async def send_metrics(self, report: MetricsReport) -> None:
        """メトリクスレポートを送信する。"""
        try:
            async with self._make_client() as client:
                resp = await client.post(METRICS_PATH, json=report.to_dict())
            self._handle_error(resp, "send_metrics", MetricsSendError)
        except MetricsSendError:
            raise
        except Exception as e:
            raise MetricsSendError(f"Failed to send metrics: {e}", cause=e) from e

    async def register(self, registration: Registration) -> None:
        """クライアントを登録する。"""
        try:
            async with self._make_client() as client:
                resp = await client.post(REGISTER_PATH, json=registration.to_dict())
            self._handle_error(resp, "register", RegistrationError)
        except RegistrationError:
            raise
        except Exception as e:
            raise RegistrationError(f"Failed to register client: {e}", cause=e) from e


class InMemoryTransport:
    """テスト用インメモリトランスポート。

    set_document() で返すドキュメントを差し替える。*_error に例外を設定すると
    対応する呼び出しでその例外を送出する。
    """

    def __init__(
        self,
        document: dict[str, Any] | None = None,
        revision: str | None = None,
    ) -> None:
        self._document: dict[str, Any] = document or {"version": 1, "features": []}
        self._revision = revision
        self.fetch_error: Exception | None = None
        self.metrics_error: Exception | None = None
        self.register_error: Exception | None = None
        self.fetch_count = 0
        self.registrations: list[Registration] = []
        self.reports: list[MetricsReport] = []

    def set_document(self, document: dict[str, Any], revision: str | None = None) -> None:
        """取得時に返すドキュメントを設定する。"""
        self._document = document
        self._revision = revision

    async def fetch_toggles(self, revision: str | None) -> FetchResult:
        self.fetch_count += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        if revision is not None and revision == self._revision:
            return FetchResult.not_modified(revision)
        return FetchResult.updated(copy.deepcopy(self._document), self._revision)

    async def send_metrics(self, report: MetricsReport) -> None:
        if self.metrics_error is not None:
            raise self.metrics_error
        self.reports.append(report)

    async def register(self, registration: Registration) -> None:
        if self.register_error is not None:
            raise self.register_error
        self.registrations.append(registration)
