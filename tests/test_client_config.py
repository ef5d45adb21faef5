"""Tests for client configuration helpers."""

import pytest

from autocloud.config import DEFAULT_API_URL, ClientConfig, resolve_client_config
from autocloud.utils.errors import ConfigurationError


def _clear_env(monkeypatch):
    for key in [
        "AUTOMATIONCLOUD_TOKEN",
        "AUTOMATIONCLOUD_API_URL",
        "AUTOMATIONCLOUD_VAULT_URL",
        "AUTOMATIONCLOUD_POLL_INTERVAL",
        "AUTOMATIONCLOUD_FETCH_TIMEOUT",
        "AUTOMATIONCLOUD_TRANSPORT",
        "AUTOMATIONCLOUD_EMIT_INITIAL",
    ]:
        monkeypatch.delenv(key, raising=False)


def test_defaults_without_environment(monkeypatch):
    _clear_env(monkeypatch)
    config = resolve_client_config()

    assert config.api_url == DEFAULT_API_URL
    assert config.token is None
    assert config.poll_interval == 1.0
    assert config.transport == "poll"
    assert config.emit_initial is True
    assert config.terminal_states == frozenset({"success", "fail"})


def test_environment_values_are_applied(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("AUTOMATIONCLOUD_TOKEN", " secret ")
    monkeypatch.setenv("AUTOMATIONCLOUD_API_URL", "api.staging.example/")
    monkeypatch.setenv("AUTOMATIONCLOUD_POLL_INTERVAL", "2.5")
    monkeypatch.setenv("AUTOMATIONCLOUD_TRANSPORT", "STREAM")
    monkeypatch.setenv("AUTOMATIONCLOUD_EMIT_INITIAL", "no")

    config = resolve_client_config()

    assert config.token == "secret"
    assert config.api_url == "https://api.staging.example"
    assert config.poll_interval == 2.5
    assert config.transport == "stream"
    assert config.emit_initial is False


def test_invalid_environment_values_are_ignored(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("AUTOMATIONCLOUD_POLL_INTERVAL", "-1")
    monkeypatch.setenv("AUTOMATIONCLOUD_TRANSPORT", "carrier-pigeon")
    monkeypatch.setenv("AUTOMATIONCLOUD_EMIT_INITIAL", "maybe")

    config = resolve_client_config()

    assert config.poll_interval == 1.0
    assert config.transport == "poll"
    assert config.emit_initial is True


def test_explicit_overrides_win(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("AUTOMATIONCLOUD_TOKEN", "from-env")

    config = resolve_client_config(token="explicit", poll_interval=0.2)

    assert config.token == "explicit"
    assert config.poll_interval == 0.2


@pytest.mark.parametrize(
    "kwargs",
    [
        {"poll_interval": 0},
        {"request_timeout": -5},
        {"fetch_timeout": 0},
        {"transport": "websocket"},
        {"terminal_states": []},
    ],
)
def test_invalid_config_values_raise(kwargs):
    with pytest.raises(ConfigurationError):
        ClientConfig(**kwargs)


def test_require_token_and_overrides():
    config = ClientConfig()
    with pytest.raises(ConfigurationError):
        config.require_token()

    updated = config.with_overrides(token="abc", terminal_states=["done"])
    assert updated.require_token() == "abc"
    assert updated.terminal_states == frozenset({"done"})
    assert config.token is None
