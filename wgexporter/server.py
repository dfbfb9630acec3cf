"""HTTP server exposing /metrics, /health and an index page."""

import html
import logging
import select
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from wgexporter import __version__
from wgexporter.collector import WireGuardCollector
from wgexporter.config import ExporterConfig, load_config
from wgexporter.executor import CommandCancelled, CommandTimeout
from wgexporter.exposition import CONTENT_TYPE

logger = logging.getLogger(__name__)

# How often an in-flight scrape checks whether its client went away
DISCONNECT_POLL = 0.2


class DisconnectWatcher:
    """Sets an event when the client closes its socket during a request."""

    def __init__(self, sock: socket.socket, cancel: threading.Event):
        self.sock = sock
        self.cancel = cancel
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> "DisconnectWatcher":
        self._thread = threading.Thread(target=self._watch, daemon=True, name='disconnect-watcher')
        self._thread.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._done.set()
        if self._thread is not None:
            self._thread.join()

    def _watch(self) -> None:
        while not self._done.is_set():
            try:
                readable, _, _ = select.select([self.sock], [], [], DISCONNECT_POLL)
                if not readable:
                    continue
                if self.sock.recv(1, socket.MSG_PEEK) == b'':
                    logger.info("Client disconnected, cancelling collection")
                    self.cancel.set()
                    return
                # Pipelined bytes, not a disconnect
                self._done.wait(DISCONNECT_POLL)
            except (OSError, ValueError):
                self.cancel.set()
                return


class ExporterHTTPServer(ThreadingHTTPServer):
    """Thread-per-connection server with a bounded number of active scrapes."""

    daemon_threads = True
    allow_reuse_address = True
    request_queue_size = 128

    def __init__(self, address: tuple[str, int], collector: WireGuardCollector, max_connections: int):
        self.collector = collector
        self.slots = threading.BoundedSemaphore(max_connections)
        super().__init__(address, ScrapeHandler)


class ScrapeHandler(BaseHTTPRequestHandler):
    """HTTP handler routing scrape, health and index requests."""

    server: ExporterHTTPServer
    server_version = f"wgexporter/{__version__}"

    @property
    def route(self) -> str:
        return self.path.split('?', 1)[0]

    def do_GET(self) -> None:
        self._dispatch(head_only=False)

    def do_HEAD(self) -> None:
        self._dispatch(head_only=True)

    def _dispatch(self, head_only: bool) -> None:
        route = self.route
        if route == '/metrics':
            self.handle_metrics(head_only)
        elif route == '/health':
            self.handle_health(head_only)
        elif route == '/':
            self.handle_index(head_only)
        else:
            self._send(404, b'404 Not Found', 'text/plain', head_only)

    def handle_metrics(self, head_only: bool = False) -> None:
        cancel = threading.Event()

        with self.server.slots:
            with DisconnectWatcher(self.connection, cancel):
                try:
                    body = self.server.collector.collect(cancel=cancel)
                    status = 200
                except CommandCancelled:
                    logger.info("Scrape abandoned by client")
                    self.close_connection = True
                    return
                except CommandTimeout as e:
                    logger.error(f"Metrics collection timed out: {e}")
                    body = "# Timeout collecting metrics\n"
                    status = 504
                except Exception as e:
                    logger.exception(f"Metrics collection failed: {e}")
                    body = "# Error collecting metrics\n"
                    status = 200

        self._send(status, body.encode('utf-8'), CONTENT_TYPE, head_only)

    def handle_health(self, head_only: bool = False) -> None:
        with self.server.slots:
            try:
                ok, _ = self.server.collector.check_health()
            except Exception as e:
                logger.exception(f"Health check failed: {e}")
                ok = False

        if ok:
            self._send(200, b'OK', 'text/plain', head_only)
        else:
            self._send(503, b'ERROR', 'text/plain', head_only)

    def handle_index(self, head_only: bool = False) -> None:
        self._send(200, render_index(self.server.collector.config).encode('utf-8'), 'text/html', head_only)

    def _send(self, status: int, body: bytes, content_type: str, head_only: bool = False) -> None:
        try:
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if not head_only:
                self.wfile.write(body)
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"Client went away before response was sent: {e}")
            self.close_connection = True

    def log_message(self, format: str, *args) -> None:
        """Route access logs to debug."""
        logger.debug(f"{self.address_string()} {format % args}")


def render_index(config: ExporterConfig) -> str:
    """Static index page linking the metrics and health endpoints."""
    settings = '\n'.join(
        f"{key}: {value}" for key, value in config.model_dump(mode='json').items()
    )
    return (
        "<!DOCTYPE html><html><head><title>WireGuard Exporter</title></head><body>"
        "<h1>WireGuard Prometheus Exporter</h1>"
        f"<p>Version {html.escape(__version__)}</p>"
        '<p><a href="/metrics">Metrics</a> | <a href="/health">Health</a></p>'
        f"<h2>Configuration</h2><pre>{html.escape(settings)}</pre>"
        "</body></html>"
    )


class ScrapeServer:
    """Prometheus scrape endpoint for WireGuard metrics."""

    def __init__(self, config: Optional[ExporterConfig] = None, collector: Optional[WireGuardCollector] = None):
        self.config = config or load_config()
        self.collector = collector or WireGuardCollector(self.config)
        self.server: Optional[ExporterHTTPServer] = None
        self.thread: Optional[threading.Thread] = None

    @property
    def address(self) -> tuple[str, int]:
        if self.server is None:
            return self.config.listen_address, self.config.listen_port
        host, port = self.server.server_address[:2]
        return host, port

    def bind(self) -> ExporterHTTPServer:
        if self.server is None:
            self.server = ExporterHTTPServer(
                (self.config.listen_address, self.config.listen_port),
                self.collector,
                self.config.max_connections,
            )
            host, port = self.address
            logger.info(f"Listening on {host}:{port} (max {self.config.max_connections} concurrent scrapes)")
        return self.server

    def start(self) -> None:
        """Start serving in a background thread."""
        if self.thread is not None:
            return
        server = self.bind()
        self.thread = threading.Thread(target=server.serve_forever, daemon=True, name='scrape-server')
        self.thread.start()

    def serve_forever(self) -> None:
        """Serve in the calling thread until stop() is called."""
        self.bind().serve_forever()

    def stop(self) -> None:
        """Stop serving and close the listening socket."""
        if self.server is None:
            return
        self.server.shutdown()
        self.server.server_close()
        if self.thread is not None:
            self.thread.join(timeout=5)
            self.thread = None
        self.server = None
        logger.info("Scrape server stopped")
