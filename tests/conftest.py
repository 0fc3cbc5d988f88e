"""Shared fakes: a scripted HTTP session, a fake clock, in-memory upstream responses."""

import io

import pytest
import requests
from requests.structures import CaseInsensitiveDict
from urllib3._collections import HTTPHeaderDict
from urllib3.response import HTTPResponse

from proxy.upstream import UpstreamResponse


def make_requests_response(status=200, body=b"", headers=None, reason="OK"):
    """A real streaming requests.Response backed by an in-memory urllib3 response."""
    raw_headers = headers if isinstance(headers, HTTPHeaderDict) else HTTPHeaderDict(headers or {})
    raw = HTTPResponse(
        body=io.BytesIO(body),
        headers=raw_headers,
        status=status,
        reason=reason,
        preload_content=False,
        decode_content=False,
    )
    resp = requests.Response()
    resp.status_code = status
    resp.reason = reason
    resp.raw = raw
    resp.headers = CaseInsensitiveDict(raw_headers)
    return resp


class FakeClock:
    """Monotonic clock that only moves when told to; doubles as `sleep`."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedSession:
    """
    Stands in for requests.Session. Each `get` pops the next outcome: an
    exception to raise or a response to return, optionally after letting
    `elapsed` seconds (one value, or one per call) pass on the fake clock.
    """

    def __init__(self, outcomes, clock=None, elapsed=0.0):
        self.outcomes = list(outcomes)
        self.clock = clock
        self.elapsed = elapsed
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.clock is not None:
            if isinstance(self.elapsed, list):
                self.clock.advance(self.elapsed[len(self.calls) - 1])
            else:
                self.clock.advance(self.elapsed)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class EndlessBody:
    """An upstream body that never ends on its own."""

    def __init__(self, chunk=b"x" * 1024):
        self.chunk = chunk
        self.pulled = 0
        self.closed = False

    def __iter__(self):
        return self

    def __next__(self):
        if self.closed:
            raise ValueError("read from closed upstream")
        self.pulled += 1
        return self.chunk

    def close(self):
        self.closed = True


class BrokenBody:
    """Yields some chunks, then fails like a dropped upstream connection."""

    def __init__(self, chunks, error):
        self.chunks = list(chunks)
        self.error = error

    def __iter__(self):
        for chunk in self.chunks:
            yield chunk
        raise self.error


class StaticFetcher:
    """A fetcher that returns one prepared UpstreamResponse (or raises)."""

    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def fetch(self, url, policy=None, headers=None):
        self.calls.append((url, policy, headers))
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def endless_upstream(status=200, headers=None):
    body = EndlessBody()
    upstream = UpstreamResponse(status, headers or [("Content-Type", "application/octet-stream")],
                                body, closer=body.close)
    return upstream, body


@pytest.fixture
def clock():
    return FakeClock()
