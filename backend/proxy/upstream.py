# backend/proxy/upstream.py
from threading import Lock
from typing import Callable, Iterator, List, Optional, Tuple

import requests

DEFAULT_CHUNK_SIZE = 64 * 1024

Headers = List[Tuple[str, str]]


class UpstreamResponse:
    """
    A response accepted from the target, with its body still unread.

    The body is a one-shot iterator of raw byte chunks. `close()` releases the
    underlying connection and may be called any number of times from any
    thread.
    """

    def __init__(self, status_code: int, headers: Headers, body: Iterator[bytes],
                 closer: Optional[Callable[[], None]] = None, reason: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.headers = headers
        self.body = body
        self._closer = closer
        self._closed = False
        self._lock = Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._closer is not None:
            self._closer()

    @classmethod
    def from_requests(cls, resp: requests.Response, chunk_size: int = DEFAULT_CHUNK_SIZE) -> "UpstreamResponse":
        """
        Wrap a streaming `requests` response.

        Bytes are read from the raw urllib3 stream without content decoding so
        that Content-Encoding and Content-Length still describe what we send.
        Headers come from the raw header dict so repeated fields (Set-Cookie)
        stay separate.
        """
        raw = resp.raw
        raw_headers = getattr(raw, "headers", None)
        if raw_headers is not None:
            headers = list(raw_headers.items())
        else:
            headers = list(resp.headers.items())

        if raw is not None and hasattr(raw, "stream"):
            body = raw.stream(chunk_size, decode_content=False)
        else:
            body = resp.iter_content(chunk_size)

        return cls(status_code=resp.status_code, headers=headers, body=body,
                   closer=resp.close, reason=resp.reason or "")

    def __repr__(self):
        return f"<UpstreamResponse {self.status_code} closed={self._closed}>"
