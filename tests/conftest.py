import socket
import threading
import time

import pytest


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for k in [
        "EXTIP_RESOLVER",
        "EXTIP_CLIENT_TIMEOUT",
        "EXTIP_VALIDATE_IP",
        "HTTP_PROXY",
        "HTTPS_PROXY",
        "ALL_PROXY",
        "http_proxy",
        "https_proxy",
        "all_proxy",
    ]:
        monkeypatch.delenv(k, raising=False)
    # Never pick up a stray .env file unless a test asks for one
    monkeypatch.setattr("extip.config.ENV_LOADED", True)


@pytest.fixture
def raw_server():
    """Serve canned bytes over a bare socket, then close.

    Each positional part is sent separately, ``interval`` seconds apart,
    after an initial ``delay``.

    Used for responses a well-behaved HTTP server refuses to produce
    (aborted connections, short bodies, stalls).
    """
    threads = []
    sockets = []

    def start(*parts: bytes, delay: float = 0.0, interval: float = 0.0) -> str:
        srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        srv.bind(("127.0.0.1", 0))
        srv.listen(1)
        sockets.append(srv)

        def serve():
            try:
                conn, _ = srv.accept()
            except OSError:
                return
            with conn:
                data = b""
                while b"\r\n\r\n" not in data:
                    chunk = conn.recv(1024)
                    if not chunk:
                        break
                    data += chunk
                time.sleep(delay)
                try:
                    for i, part in enumerate(parts):
                        if i:
                            time.sleep(interval)
                        conn.sendall(part)
                except OSError:
                    pass  # client already gave up

        t = threading.Thread(target=serve, daemon=True)
        t.start()
        threads.append(t)
        host, port = srv.getsockname()
        return f"http://{host}:{port}/meta.txt"

    yield start

    for s in sockets:
        s.close()
    for t in threads:
        t.join(timeout=5)
