from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import urlparse
from dotenv import load_dotenv

DEFAULT_RESOLVER = "https://checkip.amazonaws.com/"
DEFAULT_CLIENT_TIMEOUT = 1000  # ms

ENV_LOADED = False


class ConfigError(ValueError):
    pass


def load_env(path: str | None = None) -> None:
    global ENV_LOADED
    if ENV_LOADED:
        return
    load_dotenv(dotenv_path=path)  # will silently ignore if not exists
    ENV_LOADED = True


@dataclass(frozen=True)
class ExtipConfig:
    resolver: str = DEFAULT_RESOLVER
    client_timeout: int = DEFAULT_CLIENT_TIMEOUT  # ms; 0 means no timeout
    validate_ip: Optional[bool] = None  # None when unset

    @property
    def timeout_seconds(self) -> float | None:
        if self.client_timeout == 0:
            return None
        return self.client_timeout / 1000.0

    def validate(self) -> "ExtipConfig":
        validate_resolver(self.resolver)
        validate_client_timeout(self.client_timeout)
        if self.validate_ip is not None and not isinstance(self.validate_ip, bool):
            raise ConfigError(f'expected "validate_ip" to be a bool, got {self.validate_ip!r}')
        return self

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ExtipConfig":
        """Build a config from host-supplied attributes.

        Rejects unknown attribute names and applies the same checks a host
        schema would, before any network activity happens. Missing or None
        values fall back to the defaults.
        """
        for name in raw:
            if name not in ATTRIBUTES:
                raise ConfigError(f'An argument named "{name}" is not expected here.')
        resolver = raw.get("resolver")
        client_timeout = raw.get("client_timeout")
        return cls(
            resolver=DEFAULT_RESOLVER if resolver is None else resolver,
            client_timeout=DEFAULT_CLIENT_TIMEOUT if client_timeout is None else client_timeout,
            validate_ip=raw.get("validate_ip"),
        ).validate()


ATTRIBUTES = frozenset({"resolver", "client_timeout", "validate_ip"})


def validate_resolver(value: Any, key: str = "resolver") -> str:
    if not isinstance(value, str):
        raise ConfigError(f'expected "{key}" to be a string, got {value!r}')
    if value == "":
        raise ConfigError(f'expected "{key}" to not be empty, got {value}')
    try:
        parsed = urlparse(value)
    except ValueError as exc:
        raise ConfigError(f'"{key}": invalid URL: {exc}') from exc
    if not parsed.netloc:
        raise ConfigError(f'expected "{key}" to have a host, got {value}')
    if parsed.scheme not in ("http", "https"):
        raise ConfigError(f'expected "{key}" to have a url with schema of: "http,https", got {value}')
    return value


def validate_client_timeout(value: Any, key: str = "client_timeout") -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f'expected "{key}" to be an integer, got {value!r}')
    if value < 0:
        raise ConfigError(f'expected "{key}" to be at least (0), got {value}')
    return value


def _parse_bool(val: str | None, default: bool | None = False) -> bool | None:
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(key: str, val: str | None, default: int) -> int:
    if val is None or val.strip() == "":
        return default
    try:
        return int(val)
    except ValueError as exc:
        raise ConfigError(f'expected "{key}" to be an integer, got {val!r}') from exc


def load_settings(env_path: str | None = None) -> ExtipConfig:
    """Load an ExtipConfig from the environment (and an optional .env file).

    Recognised variables: EXTIP_RESOLVER, EXTIP_CLIENT_TIMEOUT (ms) and
    EXTIP_VALIDATE_IP.
    """
    load_env(env_path)
    resolver = os.getenv("EXTIP_RESOLVER") or DEFAULT_RESOLVER
    client_timeout = _parse_int("client_timeout", os.getenv("EXTIP_CLIENT_TIMEOUT"), DEFAULT_CLIENT_TIMEOUT)
    validate_ip = _parse_bool(os.getenv("EXTIP_VALIDATE_IP"), default=None)

    return ExtipConfig(
        resolver=resolver,
        client_timeout=client_timeout,
        validate_ip=validate_ip,
    ).validate()
