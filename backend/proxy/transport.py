# backend/proxy/transport.py
"""
A requests Session whose in-flight connections can be torn down from
another thread.

Closing a Session only drops idle pooled connections; a connection that a
request has checked out keeps blocking in recv(). The adapter here records
every connection it opens so that `abort()` can shut the sockets down and
make the blocked request fail right away.
"""

import logging
import socket
from threading import Lock

import requests
from requests.adapters import HTTPAdapter
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

logger = logging.getLogger("swiftrelay")


class AbortableAdapter(HTTPAdapter):

    def __init__(self, *args, **kwargs):
        self._connections = []
        self._lock = Lock()
        self._pool_classes = self._tracking_pool_classes()
        super().__init__(*args, **kwargs)

    def _tracking_pool_classes(self):
        track = self._track

        class TrackingHTTPConnectionPool(HTTPConnectionPool):
            def _new_conn(self):
                return track(super()._new_conn())

        class TrackingHTTPSConnectionPool(HTTPSConnectionPool):
            def _new_conn(self):
                return track(super()._new_conn())

        return {
            "http": TrackingHTTPConnectionPool,
            "https": TrackingHTTPSConnectionPool,
        }

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = self._pool_classes

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        manager = super().proxy_manager_for(proxy, **proxy_kwargs)
        # SOCKS managers bring their own connection classes
        if not proxy.lower().startswith("socks"):
            manager.pool_classes_by_scheme = self._pool_classes
        return manager

    def _track(self, conn):
        with self._lock:
            self._connections.append(conn)
        return conn

    def _sockets(self):
        with self._lock:
            conns = list(self._connections)
        return [conn.sock for conn in conns if getattr(conn, "sock", None) is not None]

    def abort(self) -> None:
        for sock in self._sockets():
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                # already closed or never connected
                logger.debug(f"[TRANSPORT] shutdown skipped: {e}")

    def clear_read_timeout(self) -> None:
        for sock in self._sockets():
            try:
                sock.settimeout(None)
            except OSError as e:
                logger.debug(f"[TRANSPORT] settimeout skipped: {e}")


class AbortableSession(requests.Session):
    """A short-lived session for a single fetch attempt."""

    def __init__(self):
        super().__init__()
        self.adapter = AbortableAdapter()
        self.mount("http://", self.adapter)
        self.mount("https://", self.adapter)

    def abort(self) -> None:
        """Fail whatever request is in flight on this session."""
        self.adapter.abort()

    def clear_read_timeout(self) -> None:
        """Let an accepted response's body wait on the upstream indefinitely."""
        self.adapter.clear_read_timeout()
