"""Ephemeral HTTP file server.

Serves the staged key pair and index page over plain HTTP with permissive
CORS headers. Only three paths resolve; everything else is a 404.
"""

import logging
import os
import socket
import threading
import time
from dataclasses import dataclass
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import List, Optional
from urllib.parse import unquote, urlsplit

from server.staging import StagingDirectory

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_PORT = 8000
DEFAULT_BIND = "0.0.0.0"

# Seconds an idle client may hold a handler thread
REQUEST_TIMEOUT = 10

CORS_HEADERS = (
    ("Access-Control-Allow-Origin", "*"),
    ("Access-Control-Allow-Methods", "GET, POST, OPTIONS"),
    ("Access-Control-Allow-Headers", "Content-Type"),
)


class BindError(OSError):
    """Listening socket could not be bound (usually port already in use)."""


class NotFoundError(Exception):
    """Requested path is not one of the staged artifacts."""

    def __init__(self, path: str):
        super().__init__(f"Not found: {path}")
        self.path = path


@dataclass
class RequestRecord:
    """One served request."""
    timestamp: float
    client: str
    method: str
    path: str
    status: int


class RequestLog:
    """Thread-safe log of requests served during a session."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: List[RequestRecord] = []

    def record(self, client: str, method: str, path: str, status: int) -> RequestRecord:
        entry = RequestRecord(
            timestamp=time.time(),
            client=client,
            method=method,
            path=path,
            status=status,
        )
        with self._lock:
            self._records.append(entry)
        return entry

    @property
    def records(self) -> List[RequestRecord]:
        with self._lock:
            return list(self._records)

    def downloads(self, name: str) -> int:
        """Count successful GETs of /<name>."""
        target = f"/{name}"
        return sum(
            1 for r in self.records
            if r.method == "GET" and r.status == 200 and urlsplit(r.path).path == target
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def is_port_in_use(port: int, bind: str = DEFAULT_BIND, timeout: float = 0.5) -> bool:
    """Pre-flight probe: is something already listening on the port?"""
    host = "127.0.0.1" if bind in ("", "0.0.0.0") else bind
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class KeyShareHandler(SimpleHTTPRequestHandler):
    """Request handler serving only the staged artifacts."""

    server_version = "keyshare"
    timeout = REQUEST_TIMEOUT

    @property
    def request_target(self) -> str:
        """Request target exactly as the client sent it.

        parse_request() collapses a leading "//" in self.path on newer
        interpreters; routing uses the raw target instead.
        """
        words = self.requestline.split()
        if len(words) >= 2:
            return words[1]
        return self.path

    def resolve_artifact(self, raw_path: str) -> Path:
        """Map a request path to a staged file.

        Raises:
            NotFoundError: If the path is not /, /<key> or /<key>.pub
        """
        staging: StagingDirectory = self.server.staging
        path = unquote(urlsplit(raw_path).path)

        routes = {
            "/": staging.index,
            f"/{staging.key_name}": staging.private_key,
            f"/{staging.key_name}.pub": staging.public_key,
        }
        artifact = routes.get(path)
        if artifact is None or not artifact.is_file():
            raise NotFoundError(path)
        return artifact

    def end_headers(self):
        for name, value in CORS_HEADERS:
            self.send_header(name, value)
        super().end_headers()

    def log_request(self, code="-", size="-"):
        """Record every request in the session log."""
        if isinstance(code, HTTPStatus):
            code = code.value
        method = self.command or "-"
        path = getattr(self, "path", "")
        client = self.address_string()
        try:
            status = int(code)
        except (TypeError, ValueError):
            status = 0

        self.server.request_log.record(client, method, path, status)
        logger.info(
            "[%s] %s \"%s\" %s",
            time.strftime("%Y-%m-%d %H:%M:%S"),
            client,
            self.requestline,
            code,
        )

    def log_error(self, format: str, *args):
        # The status line is already logged by log_request
        logger.debug("%s - %s", self.address_string(), format % args)

    def log_message(self, format: str, *args):
        """Override to use Python logging."""
        logger.info("%s - %s", self.address_string(), format % args)

    def do_OPTIONS(self):
        """Handle CORS preflight."""
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self):
        """Handle GET requests."""
        f = self._send_artifact_head()
        if f is None:
            return
        try:
            self.copyfile(f, self.wfile)
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning("Client %s disconnected during %s: %s", self.address_string(), self.path, e)
        finally:
            f.close()

    def do_HEAD(self):
        """Handle HEAD requests."""
        f = self._send_artifact_head()
        if f is not None:
            f.close()

    def _send_artifact_head(self):
        """Send status and headers for the requested artifact.

        Returns an open file positioned at the start of the body, or None
        if an error response was already sent.
        """
        try:
            artifact = self.resolve_artifact(self.request_target)
        except NotFoundError as e:
            logger.debug("%s", e)
            self.send_error(HTTPStatus.NOT_FOUND, "File not found")
            return None

        try:
            f = open(artifact, "rb")
        except OSError:
            self.send_error(HTTPStatus.NOT_FOUND, "File not found")
            return None

        try:
            fs = os.fstat(f.fileno())
            self.send_response(HTTPStatus.OK)
            self.send_header("Content-Type", self.guess_type(str(artifact)))
            self.send_header("Content-Length", str(fs.st_size))
            self.send_header("Last-Modified", self.date_time_string(fs.st_mtime))
            self.end_headers()
        except Exception:
            f.close()
            raise
        return f


class KeyShareHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server bound to one staging directory."""

    # Let in-flight responses finish on server_close()
    daemon_threads = False
    block_on_close = True

    def __init__(self, server_address, staging: StagingDirectory, request_log: RequestLog):
        self.staging = staging
        self.request_log = request_log
        self._clients_lock = threading.Lock()
        self._clients = set()
        super().__init__(server_address, KeyShareHandler)

    def process_request(self, request, client_address):
        with self._clients_lock:
            self._clients.add(request)
        super().process_request(request, client_address)

    def shutdown_request(self, request):
        with self._clients_lock:
            self._clients.discard(request)
        super().shutdown_request(request)

    @property
    def open_connections(self) -> int:
        with self._clients_lock:
            return len(self._clients)

    def release_clients(self) -> int:
        """Shut the read side of every open connection.

        Handlers blocked waiting for a request line see EOF and exit, while
        responses already being written still complete.

        Returns:
            Number of connections released
        """
        with self._clients_lock:
            clients = list(self._clients)
        for request in clients:
            try:
                request.shutdown(socket.SHUT_RD)
            except OSError:
                pass
        if clients:
            logger.debug("Released %d open connection(s)", len(clients))
        return len(clients)

    def handle_error(self, request, client_address):
        """Log per-request failures without tearing down the session."""
        logger.warning("Error handling request from %s", client_address[0], exc_info=True)


class EphemeralServer:
    """Listening socket plus serve thread for one session."""

    def __init__(
        self,
        staging: StagingDirectory,
        bind: str = DEFAULT_BIND,
        port: int = DEFAULT_PORT,
        request_log: Optional[RequestLog] = None,
    ):
        """Initialize server.

        Args:
            staging: Staging directory to serve
            bind: Address to bind to
            port: Port to listen on (0 lets the OS pick)
            request_log: Log receiving one record per request
        """
        self.staging = staging
        self.bind = bind
        self.port = port
        self.request_log = request_log if request_log is not None else RequestLog()
        self.httpd: Optional[KeyShareHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "EphemeralServer":
        """Bind the listening socket.

        Raises:
            BindError: If the address cannot be bound
        """
        try:
            self.httpd = KeyShareHTTPServer((self.bind, self.port), self.staging, self.request_log)
        except OSError as e:
            raise BindError(f"Cannot bind {self.bind}:{self.port}: {e.strerror or e}") from e

        self.port = self.httpd.server_address[1]
        logger.info("Starting HTTP server on %s:%d", self.bind, self.port)
        return self

    def serve_in_background(self) -> threading.Thread:
        """Run the accept loop on a worker thread."""
        if not self.httpd:
            raise RuntimeError("Server not started")

        self._thread = threading.Thread(
            target=self.httpd.serve_forever,
            name=f"keyshare-http-{self.port}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    @property
    def serving(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def shutdown(self):
        """Stop accepting, wait for in-flight handlers, release the socket."""
        if not self.httpd:
            return

        logger.info("Shutting down server")
        # shutdown() blocks until serve_forever exits, so only call it when running
        if self.serving:
            self.httpd.shutdown()
            self._thread.join()
        # server_close() joins handler threads, so idle readers must go first
        self.httpd.release_clients()
        self.httpd.server_close()
        self.httpd = None
        self._thread = None
