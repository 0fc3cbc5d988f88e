# backend/proxy/relay.py
import logging
from enum import Enum
from threading import Lock
from typing import Iterator

from flask import Response
from werkzeug.datastructures import Headers as HeaderSet
from requests.exceptions import RequestException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from .cancel import CancellationToken
from .errors import StreamingFailure
from .upstream import Headers, UpstreamResponse

logger = logging.getLogger("swiftrelay")

# The WSGI server frames the body itself, so these must not be copied over.
HOP_BY_HOP = {
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailers", "transfer-encoding", "upgrade"
}

STREAM_ERRORS = (Urllib3HTTPError, RequestException, OSError)


def filter_headers(headers: Headers) -> Headers:
    """Drop hop-by-hop fields; keep everything else, in order, duplicates included."""
    return [(k, v) for k, v in headers if k.lower() not in HOP_BY_HOP]


class RelayState(Enum):
    RELAYING = "relaying"
    COMPLETE = "complete"
    ABORTED_BY_CLIENT = "aborted_by_client"
    STREAM_ERROR = "stream_error"


class RelaySession:
    """
    Book-keeping for one relayed body.

    The session owns the upstream response from the moment headers are
    committed. Its token is the single place where the upstream stream gets
    destroyed, whether the body finished, broke, or the client went away.
    """

    def __init__(self, upstream: UpstreamResponse, url: str):
        self.upstream = upstream
        self.url = url
        self.state = RelayState.RELAYING
        self.bytes_sent = 0
        self.token = CancellationToken(name=f"relay {url}")
        self.token.subscribe(upstream.close)
        self._lock = Lock()

    def finish(self, state: RelayState) -> bool:
        """Move out of RELAYING once; later calls are ignored."""
        with self._lock:
            if self.state is not RelayState.RELAYING:
                return False
            self.state = state
        return True

    def client_closed(self) -> None:
        # The WSGI server closes the response both after a full transfer and
        # when the client disconnected early; only the latter is an abort.
        if self.finish(RelayState.ABORTED_BY_CLIENT):
            logger.info(f"[RELAY] Client closed connection for {self.url} after "
                        f"{self.bytes_sent} bytes, destroying upstream stream")
        self.token.cancel("client closed")

    def release(self, reason: str) -> None:
        self.token.cancel(reason)


class StreamRelay:
    """Forward an UpstreamResponse to the client as a streamed Flask response."""

    def relay(self, upstream: UpstreamResponse, url: str) -> Response:
        session = RelaySession(upstream, url)
        status = f"{upstream.status_code} {upstream.reason}" if upstream.reason else upstream.status_code
        response = Response(self._pump(session), status=status)
        # replace wholesale so no default Content-Type sneaks in
        response.headers = HeaderSet(filter_headers(upstream.headers))
        response.call_on_close(session.client_closed)
        response.relay_session = session
        logger.info(f"[RELAY] {upstream.status_code} from {url}, streaming body")
        return response

    def _pump(self, session: RelaySession) -> Iterator[bytes]:
        """
        Copy upstream chunks to the client one at a time. The server only asks
        for the next chunk after writing the previous one, which keeps a slow
        client from making us buffer.
        """
        try:
            for chunk in session.upstream.body:
                if not chunk:
                    continue
                yield chunk
                # the server asks for the next chunk only after writing this one
                session.bytes_sent += len(chunk)
        except GeneratorExit:
            session.client_closed()
            raise
        except STREAM_ERRORS as e:
            if session.token.cancelled:
                # upstream was torn down underneath us by a client abort
                return
            session.finish(RelayState.STREAM_ERROR)
            failure = StreamingFailure(session.url, session.bytes_sent, e)
            logger.error(f"[RELAY] {failure}; headers already sent, dropping connection")
            raise failure from e
        else:
            if session.finish(RelayState.COMPLETE):
                logger.info(f"[RELAY] Finished {session.url} ({session.bytes_sent} bytes)")
        finally:
            session.release("relay finished")
