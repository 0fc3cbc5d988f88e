# backend/proxy/fetcher.py
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

from requests.exceptions import RequestException, Timeout

from .cancel import CancellationToken
from .errors import FetchExhausted
from .policy import Attempt, AttemptResult, Deliver, Failure, FailureKind, GiveUp, RetryPolicy, Success, advance
from .transport import AbortableSession
from .upstream import DEFAULT_CHUNK_SIZE, UpstreamResponse

logger = logging.getLogger("swiftrelay")

DEFAULT_HEADERS = {
    # mimic a common desktop browser so many servers accept the request
    "User-Agent": ("Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
                   "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    # bodies are relayed undecoded, so only ask for what the client accepts
    "Accept-Encoding": "identity",
}

DEADLINE = "deadline"


class AttemptDeadlineExceeded(Timeout):
    """The per-attempt deadline passed before the response headers were in."""


class ResilientFetcher:
    """
    Fetch a target URL with bounded retries.

    Only transport failures are retried: a timeout or a network error. Any
    response that makes it back, whatever its status code, is returned to
    the caller with its body unread.
    """

    def __init__(self, session=None, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        # None means a fresh AbortableSession per attempt
        self.session = session
        self.sleep = sleep
        self.clock = clock
        self.chunk_size = chunk_size

    def fetch(self, url: str, policy: Optional[RetryPolicy] = None,
              headers: Optional[Dict[str, str]] = None) -> UpstreamResponse:
        """
        Return the first response received for `url`.
        Raises FetchExhausted once `policy.max_attempts` attempts have failed.
        """
        policy = policy or RetryPolicy()
        request_headers = dict(DEFAULT_HEADERS)
        if headers:
            request_headers.update(headers)

        attempt = Attempt(index=1)
        while True:
            result = self._attempt(url, attempt, policy, request_headers)
            step = advance(attempt, result, policy)

            if isinstance(step, Deliver):
                if attempt.index > 1:
                    logger.info(f"[FETCH] {url} answered on attempt {attempt.index}/{policy.max_attempts}")
                return step.response

            if isinstance(step, GiveUp):
                cause = step.last_failure.cause
                logger.error(f"[FETCH] Could not fetch {url} after {step.attempts} attempt(s): {cause}")
                raise FetchExhausted(url, step.attempts, cause) from cause

            logger.info(f"[FETCH] Retrying {url} in {step.delay:.2f}s "
                        f"({attempt.index}/{policy.max_attempts} failed)")
            self.sleep(step.delay)
            attempt = step.attempt

    def _attempt(self, url: str, attempt: Attempt, policy: RetryPolicy,
                 headers: Dict[str, str]) -> AttemptResult:
        timeout = policy.per_attempt_timeout
        token = CancellationToken(name=f"attempt {attempt.index} {url}")
        started = self.clock()
        try:
            with self._attempt_scope(token, timeout) as (session, timer):
                resp = session.get(url, headers=headers, timeout=timeout,
                                   stream=True, allow_redirects=True)
                timer.cancel()
                token.subscribe(resp.close)
                if token.cancelled or self.clock() - started > timeout:
                    raise AttemptDeadlineExceeded(f"no response within {timeout:.2f}s")
                clear_read_timeout = getattr(session, "clear_read_timeout", None)
                if clear_read_timeout is not None:
                    clear_read_timeout()
                return Success(UpstreamResponse.from_requests(resp, self.chunk_size))
        except Timeout as e:
            logger.warning(f"[FETCH] Attempt {attempt.index}/{policy.max_attempts} "
                           f"for {url} timed out after {timeout:.2f}s")
            return Failure(FailureKind.TIMEOUT, e)
        except RequestException as e:
            if token.reason == DEADLINE:
                logger.warning(f"[FETCH] Attempt {attempt.index}/{policy.max_attempts} "
                               f"for {url} aborted at the {timeout:.2f}s deadline")
                cause = AttemptDeadlineExceeded(f"no response within {timeout:.2f}s")
                cause.__cause__ = e
                return Failure(FailureKind.TIMEOUT, cause)
            logger.warning(f"[FETCH] Attempt {attempt.index}/{policy.max_attempts} "
                           f"for {url} failed: {e}")
            return Failure(FailureKind.NETWORK_ERROR, e)

    @contextmanager
    def _attempt_scope(self, token: CancellationToken, timeout: float) -> Iterator[tuple]:
        """
        Scope one attempt: a session, and a timer that fires `token` when the
        deadline passes. Firing aborts the in-flight request. Whatever the
        attempt acquired is released when it leaves with an error; a
        successful attempt hands its response to the caller untouched.
        """
        owned = self.session is None
        session = AbortableSession() if owned else self.session
        abort = getattr(session, "abort", None)
        if abort is not None:
            token.subscribe(abort)

        timer = threading.Timer(timeout, token.cancel, args=(DEADLINE,))
        timer.daemon = True
        timer.start()
        try:
            yield session, timer
        except BaseException:
            token.cancel("attempt failed")
            raise
        finally:
            timer.cancel()
            if owned:
                # drops pooled state only; an accepted response keeps its connection
                session.close()
