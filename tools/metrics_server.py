from __future__ import annotations
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

from loguru import logger
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry

from tools.metrics import render_metrics

DEFAULT_PATH = "/metrics"


def _handler_for(registry: CollectorRegistry, path: str):
    class Handler(BaseHTTPRequestHandler):
        def log_message(self, fmt, *args):
            logger.debug("[metrics] {} {}", self.address_string(), fmt % args)

        def __getattr__(self, name):
            # every verb (HEAD, OPTIONS, unknown ones) goes through _respond
            if name.startswith("do_"):
                return self._respond
            raise AttributeError(name)

        def _drain_body(self):
            try:
                length = int(self.headers.get("Content-Length") or 0)
            except ValueError:
                length = 0
            if length > 0:
                self.rfile.read(length)

        def _respond(self):
            self._drain_body()
            if urlsplit(self.path).path != path:
                self.send_response(404)
                self.send_header("Content-Length", "0")
                self.end_headers()
                return
            body = render_metrics(registry)
            self.send_response(200)
            self.send_header("Content-Type", CONTENT_TYPE_LATEST)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(body)

    return Handler


def make_server(
    registry: CollectorRegistry, host: str = "0.0.0.0", port: int = 8080, path: str = DEFAULT_PATH
) -> ThreadingHTTPServer:
    httpd = ThreadingHTTPServer((host, port), _handler_for(registry, path))
    httpd.daemon_threads = True
    return httpd


def start_metrics_server(
    registry: CollectorRegistry, host: str = "0.0.0.0", port: int = 8080, path: str = DEFAULT_PATH
) -> ThreadingHTTPServer:
    httpd = make_server(registry, host, port, path)
    t = threading.Thread(target=httpd.serve_forever, name="metrics-server", daemon=True)
    t.start()
    bound_host, bound_port = httpd.server_address[:2]
    logger.info("Serving {} on {}:{}", path, bound_host, bound_port)
    return httpd
