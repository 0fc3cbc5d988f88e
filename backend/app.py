# backend/app.py
"""
SwiftRelay: streaming reverse proxy with bounded retries
- Retrying, timeout-bounded outbound fetch
- Streaming relay with client-disconnect cancellation
- Clean error status before headers, connection drop after
"""

from flask import Flask, request
from flask_cors import CORS
import logging

from proxy.errors import ProxyError
from proxy.fetcher import ResilientFetcher
from proxy.handlers import handle_proxy, text_response
from proxy.relay import StreamRelay
from utils.config import Settings
from utils.validators import require_target

settings = Settings.from_env()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s [%(threadName)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(config: Settings = None, fetcher=None, relay: StreamRelay = None) -> Flask:
    """Build the Flask app; `fetcher` and `relay` can be swapped out in tests."""
    config = config or settings
    policy = config.retry_policy()
    fetcher = fetcher or ResilientFetcher(chunk_size=config.chunk_size)
    relay = relay or StreamRelay()

    app = Flask(__name__)
    # liveness only; proxied responses carry the upstream headers untouched
    CORS(app, resources={r"^/$": {}})

    logger.info(f"Retry policy: {policy.max_attempts} attempts, "
                f"{policy.per_attempt_timeout:.2f}s timeout, {policy.backoff_delay:.2f}s backoff")

    # ========================================================================
    # API ROUTES
    # ========================================================================

    @app.route("/", methods=["GET"])
    def index():
        """Liveness check."""
        return text_response("hello world!", 200)

    @app.route("/proxy", methods=["GET"])
    def proxy_route():
        """Fetch the `url` query parameter and stream the answer back."""
        url = require_target(request.args.get("url"))
        logger.info(f"[API] Proxy request for {url}")
        return handle_proxy(fetcher, relay, url, policy,
                            accept_encoding=request.headers.get("Accept-Encoding"))

    # ========================================================================
    # ERROR HANDLERS
    # ========================================================================

    @app.errorhandler(ProxyError)
    def proxy_error(e: ProxyError):
        logger.warning(f"[API] {request.path} -> {e.status_code}: {e.message}")
        if e.status_code >= 500:
            return text_response(f"Proxy request failed: {e.message}", e.status_code)
        return text_response(e.message, e.status_code)

    @app.errorhandler(404)
    def not_found(e):
        return text_response("Not Found", 404)

    return app


app = create_app()

# ============================================================================
# MAIN
# ============================================================================

def main():
    logger.info(f"Starting SwiftRelay server on {settings.host}:{settings.port}")
    app.run(host=settings.host, port=settings.port, debug=False, use_reloader=False, threaded=True)


if __name__ == "__main__":
    main()
