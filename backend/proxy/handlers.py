# backend/proxy/handlers.py
import logging
from typing import Optional

from flask import Response

from .errors import FetchExhausted
from .policy import RetryPolicy
from .relay import StreamRelay

logger = logging.getLogger("swiftrelay")


def handle_proxy(fetcher, relay: StreamRelay, url: str, policy: RetryPolicy,
                 accept_encoding: Optional[str] = None) -> Response:
    """
    Proxy one request: fetch `url` with retries, then stream the answer back.

    FetchExhausted propagates to the caller, which can still send a clean
    error status because nothing has been written yet. Once `relay()` has
    returned, the status is fixed and failures only surface while the body
    is being iterated.
    """
    logger.info(f"[PROXY] Proxying request for target: {url}")

    headers = {"Accept-Encoding": accept_encoding} if accept_encoding else None
    try:
        upstream = fetcher.fetch(url, policy, headers=headers)
    except FetchExhausted as e:
        logger.error(f"[PROXY] Giving up on {url} after {e.attempts} attempt(s)")
        raise

    return relay.relay(upstream, url)


def text_response(message: str, status: int) -> Response:
    return Response(message, status=status, content_type="text/plain; charset=utf-8")
