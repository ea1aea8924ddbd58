from __future__ import annotations

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import structlog


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def do_GET(self) -> None:  # noqa: N802
        routes: dict[str, tuple[int, dict[str, str], str]] = {
            "/ok": (
                200,
                {"Content-Type": "text/html; charset=utf-8"},
                "<!doctype html><html><head><title>OK</title></head><body><h1>Everything is fine v3.0</h1></body></html>",
            ),
            "/placeholder": (
                200,
                {"Content-Type": "text/html; charset=utf-8"},
                "<!doctype html><html><body><h1>placeholder</h1><p>Your service is being built.</p></body></html>",
            ),
            "/long": (200, {"Content-Type": "text/plain; charset=utf-8"}, "x" * 1000),
            "/api/health": (
                200,
                {"Content-Type": "application/json"},
                '{"status":"healthy","version":"v3.0"}',
            ),
            "/bad_gateway": (502, {"Content-Type": "text/plain; charset=utf-8"}, "Bad Gateway"),
        }

        if self.path == "/redirect":
            self.send_response(302)
            self.send_header("Location", "/ok")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return

        if self.path == "/slow":
            time.sleep(2.0)

        status, headers, body = routes.get(
            self.path,
            (404, {"Content-Type": "text/plain; charset=utf-8"}, "Not Found"),
        )
        body_bytes = body.encode("utf-8")
        try:
            self.send_response(status)
            for k, v in headers.items():
                self.send_header(k, v)
            self.send_header("Content-Length", str(len(body_bytes)))
            self.end_headers()
            self.wfile.write(body_bytes)
        except (BrokenPipeError, ConnectionResetError):
            # Client gave up (timeout tests).
            return


@pytest.fixture(scope="session")
def local_server_base_url() -> str:
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.daemon_threads = True
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


@pytest.fixture(autouse=True)
def _reset_structlog():
    # The CLI configures structlog against the (captured) stderr of the
    # running test; reset so later tests don't log to a closed stream.
    yield
    structlog.reset_defaults()
