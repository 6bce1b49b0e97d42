"""Client configuration for pyrtdb."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyrtdb._constants import DEFAULT_BANNER_TTL, DEFAULT_MAX_DEPTH
from pyrtdb.exceptions import RtdbConfigError

BACKENDS: tuple[str, ...] = ("rest", "mqtt")


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(value)
    except ValueError as exc:
        raise RtdbConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class RtdbConfig:
    """Client configuration.

    Parameters
    ----------
    backend : str
        Store backend, ``"rest"`` (realtime database REST/streaming API)
        or ``"mqtt"`` (retained-topic tree on an MQTT broker).
    database_url : str
        Realtime database root URL, e.g.
        ``"https://my-project-default-rtdb.europe-west1.firebasedatabase.app"``.
        Required for the REST backend.
    auth_token : str or None
        Pre-issued ID token. Signing in is handled elsewhere; the token
        is only forwarded as the ``auth`` query parameter.
    request_timeout : float
        Seconds before a single REST request is abandoned. Streaming
        subscriptions are not bounded by it.
    banner_ttl : float
        Seconds a status banner message stays visible.
    max_depth : int
        Deepest level the tree view descends before truncating.
    mqtt_host : str
        Broker host for the MQTT backend.
    mqtt_port : int
        Broker port.
    mqtt_prefix : str
        Topic prefix under which the document tree lives.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_tls : bool
        Enable TLS towards the broker.
    mqtt_qos : int
        QoS for published leaves (0, 1 or 2).
    """

    backend: str = "rest"
    database_url: str = ""
    auth_token: str | None = None
    request_timeout: float = 15.0
    banner_ttl: float = DEFAULT_BANNER_TTL
    max_depth: int = DEFAULT_MAX_DEPTH
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_prefix: str = "rtdb"
    mqtt_keepalive: int = 60
    mqtt_tls: bool = False
    mqtt_qos: int = 1

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise RtdbConfigError(f"backend must be one of {BACKENDS}, got {self.backend!r}")
        if self.max_depth < 1:
            raise RtdbConfigError("max_depth must be at least 1")
        if self.mqtt_qos not in (0, 1, 2):
            raise RtdbConfigError(f"mqtt_qos must be 0, 1 or 2, got {self.mqtt_qos}")
        # Trailing slashes would double up when paths are appended.
        object.__setattr__(self, "database_url", self.database_url.rstrip("/"))
        object.__setattr__(self, "mqtt_prefix", self.mqtt_prefix.strip("/"))

    def require_database_url(self) -> str:
        if not self.database_url:
            raise RtdbConfigError("database_url is required for the REST backend (set RTDB_DATABASE_URL)")
        return self.database_url

    @classmethod
    def from_env(cls, **overrides: Any) -> RtdbConfig:
        """Create configuration from environment variables.

        Reads ``RTDB_*`` variables. Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        RtdbConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "RTDB_BACKEND": "backend",
            "RTDB_DATABASE_URL": "database_url",
            "RTDB_AUTH_TOKEN": "auth_token",
            "RTDB_MQTT_HOST": "mqtt_host",
            "RTDB_MQTT_PREFIX": "mqtt_prefix",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "RTDB_REQUEST_TIMEOUT": ("request_timeout", float),
            "RTDB_BANNER_TTL": ("banner_ttl", float),
            "RTDB_MAX_DEPTH": ("max_depth", int),
            "RTDB_MQTT_PORT": ("mqtt_port", int),
            "RTDB_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "RTDB_MQTT_QOS": ("mqtt_qos", int),
        }
        for env_key, (field_name, kind) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, kind)

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("RTDB_MQTT_TLS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
