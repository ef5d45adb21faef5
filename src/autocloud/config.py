"""
Client configuration.

Everything the HTTP layer and the job tracker need is carried on an explicit
``ClientConfig`` value that callers pass into constructors. The environment is
only consulted by ``resolve_client_config`` when a caller asks for it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Optional

from autocloud.jobs.models import TERMINAL_STATES
from autocloud.utils.errors import ConfigurationError
from autocloud.utils.logging import LoggerFactory

logger = LoggerFactory.get_logger("config")

DEFAULT_API_URL = "https://api.automationcloud.net"
DEFAULT_VAULT_URL = "https://vault.automationcloud.net"
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0
TRANSPORTS = ("poll", "stream")
TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class ClientConfig:
    """Resolved connection and tracking settings for one client."""

    token: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    vault_url: str = DEFAULT_VAULT_URL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    fetch_timeout: Optional[float] = None
    transport: str = "poll"
    emit_initial: bool = True
    terminal_states: FrozenSet[str] = field(default_factory=lambda: TERMINAL_STATES)

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive", setting="poll_interval")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive", setting="request_timeout")
        if self.fetch_timeout is not None and self.fetch_timeout <= 0:
            raise ConfigurationError("fetch_timeout must be positive", setting="fetch_timeout")
        if self.transport not in TRANSPORTS:
            raise ConfigurationError(
                f"transport must be one of {', '.join(TRANSPORTS)}",
                setting="transport",
                context={"value": self.transport},
            )
        if not self.terminal_states:
            raise ConfigurationError("terminal_states must not be empty", setting="terminal_states")
        # Accept any iterable of labels from callers.
        object.__setattr__(self, "terminal_states", frozenset(self.terminal_states))

    @property
    def has_token(self) -> bool:
        return bool(self.token)

    def require_token(self) -> str:
        """Return the token or raise if none was configured."""
        if not self.token:
            raise ConfigurationError("Token required.", setting="token")
        return self.token

    def with_overrides(self, **changes: Any) -> "ClientConfig":
        """Return a copy with ``changes`` applied (validated again)."""
        return replace(self, **changes)


def _normalize_url(value: str, setting: str) -> str:
    candidate = value.strip()
    if not candidate:
        raise ConfigurationError(f"{setting} is empty", setting=setting)
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    return candidate.rstrip("/")


def _float_from_env(env_var: str) -> Optional[float]:
    raw = os.getenv(env_var)
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
        if value <= 0:
            raise ValueError
    except ValueError:
        logger.warning(
            "Ignoring invalid numeric setting",
            extra_context={"variable": env_var, "value": raw},
        )
        return None
    return value


def _bool_from_env(env_var: str) -> Optional[bool]:
    raw = (os.getenv(env_var) or "").strip().lower()
    if not raw:
        return None
    if raw in TRUTHY:
        return True
    if raw in FALSY:
        return False
    logger.warning("Ignoring invalid boolean setting", extra_context={"variable": env_var, "value": raw})
    return None


def resolve_client_config(**overrides: Any) -> ClientConfig:
    """Build a ClientConfig from AUTOMATIONCLOUD_* variables plus explicit overrides.

    Explicit keyword overrides win over the environment.
    """
    values: Dict[str, Any] = {}

    token = os.getenv("AUTOMATIONCLOUD_TOKEN")
    if token:
        values["token"] = token.strip()

    api_url = os.getenv("AUTOMATIONCLOUD_API_URL")
    if api_url:
        values["api_url"] = _normalize_url(api_url, "api_url")
        logger.info("Using API URL from environment", extra_context={"url": values["api_url"]})

    vault_url = os.getenv("AUTOMATIONCLOUD_VAULT_URL")
    if vault_url:
        values["vault_url"] = _normalize_url(vault_url, "vault_url")

    poll_interval = _float_from_env("AUTOMATIONCLOUD_POLL_INTERVAL")
    if poll_interval is not None:
        values["poll_interval"] = poll_interval

    fetch_timeout = _float_from_env("AUTOMATIONCLOUD_FETCH_TIMEOUT")
    if fetch_timeout is not None:
        values["fetch_timeout"] = fetch_timeout

    transport = (os.getenv("AUTOMATIONCLOUD_TRANSPORT") or "").strip().lower()
    if transport:
        if transport in TRANSPORTS:
            values["transport"] = transport
        else:
            logger.warning(
                "Ignoring unknown transport; falling back to polling",
                extra_context={"value": transport},
            )

    emit_initial = _bool_from_env("AUTOMATIONCLOUD_EMIT_INITIAL")
    if emit_initial is not None:
        values["emit_initial"] = emit_initial

    values.update({key: value for key, value in overrides.items() if value is not None})
    return ClientConfig(**values)
