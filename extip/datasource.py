from __future__ import annotations
import ipaddress
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from .config import ConfigError, ExtipConfig
from .ip import ResolverError

logger = logging.getLogger(__name__)

IPGetter = Callable[[str, int, Optional[threading.Event]], str]


class InvalidIPError(ValueError):
    pass


@dataclass(frozen=True)
class ExtipState:
    ipaddress: str
    id: str


@dataclass(frozen=True)
class Diagnostic:
    summary: str
    severity: str = "error"


@dataclass
class ReadOutcome:
    state: Optional[ExtipState] = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is not None and not self.diagnostics


def _new_id() -> str:
    return str(datetime.now(timezone.utc))


def is_ip_literal(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def read(config: ExtipConfig, cancel: threading.Event | None = None, ip_getter: IPGetter | None = None) -> ExtipState:
    """Run one resolution and return the state to publish.

    Any resolver failure propagates unchanged; validation only runs once the
    body was fetched successfully. ip_getter is resolved at call time so tests
    can patch extip.ip.get_external_ip_from.
    """
    if ip_getter is None:
        from .ip import get_external_ip_from as _get_external_ip_from
        ip_getter = _get_external_ip_from

    ip = ip_getter(config.resolver, config.client_timeout, cancel)

    if config.validate_ip and not is_ip_literal(ip):
        raise InvalidIPError(f'invalid IP address returned by resolver: "{ip}"')

    state = ExtipState(ipaddress=ip, id=_new_id())
    logger.debug("resolved %s via %s", state.ipaddress, config.resolver)
    return state


def read_diagnostics(raw: Mapping[str, Any], cancel: threading.Event | None = None, ip_getter: IPGetter | None = None) -> ReadOutcome:
    """Host-facing read: validate raw attributes, resolve, and report.

    Either a state with no diagnostics or no state with exactly one error
    diagnostic is returned; nothing is published on failure.
    """
    try:
        config = ExtipConfig.from_mapping(raw)
        state = read(config, cancel=cancel, ip_getter=ip_getter)
    except (ConfigError, ResolverError, InvalidIPError) as e:
        logger.debug("read failed: %s", e)
        return ReadOutcome(diagnostics=[Diagnostic(summary=str(e))])
    return ReadOutcome(state=state)
