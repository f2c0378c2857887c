from __future__ import annotations
import logging
import socket
import threading
import time
from typing import Iterator, Optional
from urllib.parse import urlparse

import requests

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 512
# how often the calling thread wakes to look at the deadline and cancel event
_POLL_INTERVAL = 0.05


class ResolverError(RuntimeError):
    pass


class ResolverLookupError(ResolverError):
    pass


class ResolverTransportError(ResolverError):
    pass


class ResolverTimeoutError(ResolverError):
    pass


class ResolverCancelledError(ResolverError):
    pass


class ResolverStatusError(ResolverError):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP request error. Response code: {status_code}")
        self.status_code = status_code


def _causes(exc: BaseException) -> Iterator[BaseException]:
    # requests wraps urllib3 errors which wrap socket errors; walk every link
    seen: set[int] = set()
    stack: list[Optional[BaseException]] = [exc]
    while stack:
        cur = stack.pop()
        if cur is None or id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur
        stack.append(cur.__cause__)
        stack.append(cur.__context__)
        reason = getattr(cur, "reason", None)
        if isinstance(reason, BaseException):
            stack.append(reason)
        stack.extend(arg for arg in cur.args if isinstance(arg, BaseException))


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    # requests rejects non-positive timeouts
    return max(deadline - time.monotonic(), 0.001)


def _expired(deadline: float | None) -> bool:
    return deadline is not None and time.monotonic() >= deadline


def _check_cancel(service: str, cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise ResolverCancelledError(f'Get "{service}": context canceled')


def _classify(
    service: str, exc: requests.RequestException, deadline: float | None, cancel: threading.Event | None = None
) -> ResolverError:
    if cancel is not None and cancel.is_set():
        return ResolverCancelledError(f'Get "{service}": context canceled ({exc})')
    causes = list(_causes(exc))
    if any(isinstance(c, socket.gaierror) for c in causes):
        host = urlparse(service).hostname or service
        return ResolverLookupError(f'Get "{service}": lookup {host}: no such host ({exc})')
    if (
        isinstance(exc, requests.Timeout)
        or any(isinstance(c, socket.timeout) for c in causes)
        or _expired(deadline)
    ):
        return ResolverTimeoutError(f'Get "{service}": context deadline exceeded ({exc})')
    if isinstance(exc, (requests.exceptions.ChunkedEncodingError, requests.exceptions.ContentDecodingError)):
        return ResolverTransportError(f'Get "{service}": unexpected EOF ({exc})')
    if isinstance(exc, requests.ConnectionError):
        return ResolverTransportError(f'Get "{service}": transport connection broken ({exc})')
    return ResolverError(f'Get "{service}": {exc}')


def _decode(service: str, body: bytes) -> str:
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug("%s returned a body that is not valid UTF-8; undecodable bytes replaced", service)
        return body.decode("utf-8", errors="replace")


class _Exchange(threading.Thread):
    """Runs the GET and body read so the caller can stop waiting at any time.

    Holds either ``body`` or ``error`` once finished. ``abort`` shuts down
    the socket of a response that is still being read.
    """

    def __init__(self, session: requests.Session, service: str, deadline: float | None) -> None:
        super().__init__(name=f"extip-get {service}", daemon=True)
        self.session = session
        self.service = service
        self.deadline = deadline
        self.response: Optional[requests.Response] = None
        self.body: Optional[bytes] = None
        self.error: Optional[Exception] = None
        self._aborted = threading.Event()

    def run(self) -> None:
        try:
            with self.session.get(self.service, timeout=_remaining(self.deadline), stream=True) as resp:
                self.response = resp
                logger.debug("%s responded %s", self.service, resp.status_code)
                if resp.status_code != 200:
                    raise ResolverStatusError(resp.status_code)
                chunks: list[bytes] = []
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if self._aborted.is_set():
                        return
                    chunks.append(chunk)
                self.body = b"".join(chunks)
        except Exception as exc:  # re-raised in the calling thread
            self.error = exc

    def abort(self) -> None:
        self._aborted.set()
        resp = self.response
        conn = resp.raw.connection if resp is not None and resp.raw is not None else None
        sock = getattr(conn, "sock", None)
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already closed by the peer


def _wait(exchange: _Exchange, deadline: float | None, cancel: threading.Event | None) -> None:
    while exchange.is_alive():
        _check_cancel(exchange.service, cancel)
        if _expired(deadline):
            raise ResolverTimeoutError(f'Get "{exchange.service}": context deadline exceeded')
        interval = _POLL_INTERVAL
        if deadline is not None:
            interval = min(interval, max(deadline - time.monotonic(), 0.0))
        exchange.join(interval)


def get_external_ip_from(service: str, client_timeout: int, cancel: threading.Event | None = None) -> str:
    """Fetch ``service`` once and return its body with surrounding whitespace removed.

    ``client_timeout`` is in milliseconds and bounds the whole exchange
    (connect, headers and body); 0 disables the bound. Setting ``cancel``
    ends the call promptly with ResolverCancelledError. Only a 200 response
    is accepted. The body is not interpreted, so an empty string is a valid
    result.
    """
    deadline = None if client_timeout == 0 else time.monotonic() + client_timeout / 1000.0
    _check_cancel(service, cancel)
    logger.debug("GET %s (client_timeout=%dms)", service, client_timeout)
    # a fresh session per call: nothing is pooled beyond this request
    with requests.Session() as session:
        exchange = _Exchange(session, service, deadline)
        exchange.start()
        try:
            _wait(exchange, deadline, cancel)
        except ResolverError:
            exchange.abort()
            raise

    if isinstance(exchange.error, requests.RequestException):
        raise _classify(service, exchange.error, deadline, cancel) from exchange.error
    if exchange.error is not None:
        raise exchange.error
    return _decode(service, exchange.body.strip())
