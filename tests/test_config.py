"""設定読み込みのユニットテスト"""

from pathlib import Path

import pytest
from k1s0_toggle_client import ConfigError, ToggleClientConfig, load_config

REQUIRED_ENV = {
    "TOGGLE_API_URL": "http://toggle-server:4242/api",
    "TOGGLE_APP_NAME": "checkout",
    "TOGGLE_INSTANCE_ID": "pod-1",
}


def test_defaults() -> None:
    """デフォルト値。"""
    config = ToggleClientConfig(api_url="http://localhost", app_name="app", instance_id="i")
    assert config.refresh_interval_seconds == 15
    assert config.metrics_interval_seconds == 60
    assert config.request_timeout_seconds == 10
    assert config.refresh_interval_ms == 15_000
    assert config.client_secret is None
    assert config.default_enabled is False
    assert config.disable_metrics is False
    assert config.tags == []


def test_from_env() -> None:
    """環境変数から設定を読み込めること。"""
    env = {
        **REQUIRED_ENV,
        "TOGGLE_CLIENT_SECRET": "s3cret",
        "TOGGLE_REFRESH_INTERVAL": "5",
        "TOGGLE_METRICS_INTERVAL": "30",
    }
    config = ToggleClientConfig.from_env(env)
    assert config.api_url == "http://toggle-server:4242/api"
    assert config.app_name == "checkout"
    assert config.instance_id == "pod-1"
    assert config.client_secret == "s3cret"
    assert config.refresh_interval_seconds == 5
    assert config.metrics_interval_seconds == 30


def test_from_env_reads_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """引数省略時は os.environ を読むこと。"""
    for name, value in REQUIRED_ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.delenv("TOGGLE_CLIENT_SECRET", raising=False)
    config = ToggleClientConfig.from_env()
    assert config.app_name == "checkout"
    assert config.client_secret is None


def test_from_env_missing_required() -> None:
    """必須の環境変数が無い場合は ConfigError で、不足分を列挙すること。"""
    with pytest.raises(ConfigError) as exc_info:
        ToggleClientConfig.from_env({"TOGGLE_API_URL": "http://localhost"})
    message = str(exc_info.value)
    assert "TOGGLE_APP_NAME" in message
    assert "TOGGLE_INSTANCE_ID" in message
    assert message.startswith("CONFIG_ERROR: ")


def test_from_env_invalid_interval() -> None:
    """不正な間隔は ConfigError。"""
    with pytest.raises(ConfigError):
        ToggleClientConfig.from_env({**REQUIRED_ENV, "TOGGLE_REFRESH_INTERVAL": "-1"})
    with pytest.raises(ConfigError):
        ToggleClientConfig.from_env({**REQUIRED_ENV, "TOGGLE_METRICS_INTERVAL": "soon"})


def test_blank_required_value_rejected() -> None:
    """空白のみの必須値は拒否されること。"""
    with pytest.raises(ValueError):
        ToggleClientConfig(api_url="http://localhost", app_name="  ", instance_id="i")


def test_tag_format_validated() -> None:
    """タグは name:value 形式であること。"""
    with pytest.raises(ValueError):
        ToggleClientConfig(
            api_url="http://localhost", app_name="app", instance_id="i", tags=["no-colon"]
        )


def test_load_config_toggle_section(tmp_path: Path) -> None:
    """toggle セクションから設定を読み込めること。"""
    path = tmp_path / "config.yaml"
    path.write_text(
        """
app:
  name: checkout
toggle:
  api_url: http://toggle-server:4242/api
  app_name: checkout
  instance_id: pod-1
  refresh_interval_seconds: 2.5
  project: shop
  tags:
    - team:payments
""",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.refresh_interval_seconds == 2.5
    assert config.project == "shop"
    assert config.tags == ["team:payments"]


def test_load_config_top_level(tmp_path: Path) -> None:
    """トップレベルの設定値も読み込めること。"""
    path = tmp_path / "config.yaml"
    path.write_text(
        "api_url: http://localhost\napp_name: app\ninstance_id: i\ndefault_enabled: true\n",
        encoding="utf-8",
    )
    assert load_config(path).default_enabled is True


def test_load_config_missing_file(tmp_path: Path) -> None:
    """ファイルが無い場合は ConfigError。"""
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml")


def test_load_config_invalid_yaml(tmp_path: Path) -> None:
    """YAML の構文エラーは ConfigError。"""
    path = tmp_path / "config.yaml"
    path.write_text("toggle: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_validation_error(tmp_path: Path) -> None:
    """必須項目が無い場合は ConfigError。"""
    path = tmp_path / "config.yaml"
    path.write_text("toggle:\n  app_name: app\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)
