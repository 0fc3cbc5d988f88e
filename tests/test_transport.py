"""
Tests for the per-attempt deadline against a real local socket.

A tiny threaded TCP server plays the upstream, so these tests exercise the
actual requests/urllib3 stack: headers trickling in, prompt answers, and a
body that pauses longer than the attempt timeout.
"""

import socketserver
import threading
import time

import pytest

from proxy.errors import FetchExhausted
from proxy.fetcher import AttemptDeadlineExceeded, ResilientFetcher
from proxy.policy import RetryPolicy
from proxy.transport import AbortableSession


@pytest.fixture(autouse=True)
def no_env_proxies(monkeypatch):
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def upstream_server():
    """Start a local upstream that runs `script(wfile)` for every request."""
    servers = []

    def start(script):
        connections = []

        class Handler(socketserver.StreamRequestHandler):
            def handle(self):
                connections.append(self.client_address)
                while self.rfile.readline() not in (b"\r\n", b"\n", b""):
                    pass
                try:
                    script(self.wfile)
                except OSError:
                    pass  # the proxy hung up on us

        class Server(socketserver.ThreadingTCPServer):
            daemon_threads = True
            allow_reuse_address = True

        server = Server(("127.0.0.1", 0), Handler)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        host, port = server.server_address
        return f"http://{host}:{port}/", connections

    yield start

    for server in servers:
        server.shutdown()
        server.server_close()


def trickle_headers(wfile):
    wfile.write(b"HTTP/1.1 200 OK\r\n")
    wfile.flush()
    for i in range(15):
        time.sleep(0.2)
        wfile.write(b"X-Slow-%d: y\r\n" % i)
        wfile.flush()
    wfile.write(b"Content-Length: 0\r\n\r\n")


def prompt_answer(wfile):
    wfile.write(b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\nContent-Length: 5\r\n\r\nhello")


def pausing_body(wfile):
    wfile.write(b"HTTP/1.1 200 OK\r\nContent-Length: 10\r\n\r\nhello")
    wfile.flush()
    time.sleep(1.0)
    wfile.write(b"world")


class TestAttemptDeadline:

    def test_trickling_headers_are_cut_off_at_the_deadline(self, upstream_server):
        url, _ = upstream_server(trickle_headers)
        policy = RetryPolicy(max_attempts=1, per_attempt_timeout=0.5)

        started = time.monotonic()
        with pytest.raises(FetchExhausted) as excinfo:
            ResilientFetcher().fetch(url, policy)
        elapsed = time.monotonic() - started

        assert elapsed <= policy.per_attempt_timeout + 0.5
        assert isinstance(excinfo.value.last_cause, AttemptDeadlineExceeded)

    def test_every_attempt_is_bounded(self, upstream_server):
        url, connections = upstream_server(trickle_headers)
        policy = RetryPolicy(max_attempts=2, per_attempt_timeout=0.4, backoff_delay=0.1)

        started = time.monotonic()
        with pytest.raises(FetchExhausted) as excinfo:
            ResilientFetcher().fetch(url, policy)
        elapsed = time.monotonic() - started

        assert excinfo.value.attempts == 2
        assert len(connections) == 2
        assert policy.max_attempts * policy.per_attempt_timeout <= elapsed
        assert elapsed <= policy.worst_case_latency() + 0.5

    def test_accepted_response_survives_the_deadline(self, upstream_server):
        url, _ = upstream_server(prompt_answer)
        policy = RetryPolicy(max_attempts=1, per_attempt_timeout=0.3)

        upstream = ResilientFetcher().fetch(url, policy)
        time.sleep(policy.per_attempt_timeout + 0.3)

        assert b"".join(upstream.body) == b"hello"
        upstream.close()

    def test_body_pause_longer_than_timeout_is_not_an_error(self, upstream_server):
        url, _ = upstream_server(pausing_body)
        upstream = ResilientFetcher().fetch(url, RetryPolicy(max_attempts=1, per_attempt_timeout=0.5))

        assert b"".join(upstream.body) == b"helloworld"
        upstream.close()


class TestAbortableSession:

    def test_abort_without_connections_is_harmless(self):
        session = AbortableSession()
        session.abort()
        session.clear_read_timeout()
        session.close()

