"""
Exposition Server — Flask app serving /metrics and /health.

Blueprint: exposition_bp
Routes:
    /metrics   (Prometheus text format 0.0.4)
    /health    (JSON daemon health; 503 when unhealthy)

The app runs on a werkzeug threaded server in its own thread so scrapes
never touch the probing event loop. Handlers only read published
snapshots.

## Usage

    app = create_app(metrics, checker)
    server = MetricsServer(app, bind="0.0.0.0", port=3000)
    server.start()
    ...
    server.stop(grace=5.0)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional

from flask import Blueprint, Flask, Response, current_app, g, jsonify, request
from werkzeug.serving import make_server

from .health import HealthChecker
from .metrics import MetricsRegistry

logger = logging.getLogger(__name__)

CONTENT_TYPE_LATEST = "text/plain; version=0.0.4; charset=utf-8"

exposition_bp = Blueprint("exposition", __name__)


def _state() -> Dict[str, Any]:
    return current_app.extensions["pinger"]


@exposition_bp.route("/metrics")
def metrics_endpoint():
    """Render current metrics; fall back to the last good rendering."""
    state = _state()
    try:
        body = state["metrics"].render()
        state["last_rendering"] = body
    except Exception:
        logger.exception("Metrics rendering failed, serving last good snapshot")
        body = state["last_rendering"]
    return Response(body, status=200, content_type=CONTENT_TYPE_LATEST)


@exposition_bp.route("/health")
def health_endpoint():
    """Daemon health as JSON."""
    checker: Optional[HealthChecker] = _state()["checker"]
    if checker is None:
        return jsonify({"status": "unknown", "healthy": False}), 503

    health = checker.check()
    return jsonify(health.to_dict()), (200 if health.healthy else 503)


def create_app(metrics: MetricsRegistry, checker: Optional[HealthChecker] = None) -> Flask:
    """Create the exposition Flask application."""
    app = Flask(__name__)
    app.extensions["pinger"] = {
        "metrics": metrics,
        "checker": checker,
        "last_rendering": "",
    }
    app.register_blueprint(exposition_bp)

    @app.before_request
    def log_request_start():
        g.start_time = time.time()

    @app.after_request
    def log_request_end(response):
        duration_ms = int((time.time() - g.get("start_time", time.time())) * 1000)
        logger.debug(f"{request.method} {request.path} → {response.status_code} ({duration_ms}ms)")
        return response

    return app


class MetricsServer:
    """
    werkzeug server for the exposition app, run on a background thread.

    Tracks in-flight requests so stop() can let running scrapes finish.
    """

    def __init__(self, app: Flask, bind: str = "0.0.0.0", port: int = 3000):
        self.app = app
        self.bind = bind
        self._inflight = 0
        self._idle = threading.Condition()
        self._server = make_server(bind, port, self._handle, threaded=True)
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self._server.server_port

    @property
    def inflight(self) -> int:
        return self._inflight

    def _handle(self, environ, start_response):
        with self._idle:
            self._inflight += 1
        try:
            return self.app(environ, start_response)
        finally:
            with self._idle:
                self._inflight -= 1
                if self._inflight == 0:
                    self._idle.notify_all()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="metrics-server",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Serving metrics on http://{self.bind}:{self.port}/metrics")

    def stop(self, grace: float = 5.0) -> bool:
        """
        Wait up to `grace` seconds for in-flight requests, then shut down.

        Returns:
            True if no request was still running when the server stopped
        """
        with self._idle:
            drained = self._idle.wait_for(lambda: self._inflight == 0, timeout=grace)
        if not drained:
            logger.warning(f"Stopping metrics server with {self._inflight} request(s) in flight")

        if self._thread is not None:
            self._server.shutdown()
            self._thread.join(timeout=grace)
            self._thread = None
        self._server.server_close()
        logger.info("Metrics server stopped")
        return drained
