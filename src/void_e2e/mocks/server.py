"""Run a mock Flask app on a werkzeug server in a background thread."""
from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import httpx
from flask import Flask
from werkzeug.serving import BaseWSGIServer, make_server

from void_e2e.errors import MockStartupFailure

logger = logging.getLogger(__name__)

WILDCARD_HOSTS = {"0.0.0.0", "::", ""}


class MockHTTPServer:
    """Wrapper for serving a mock app from a daemon thread.

    Port 0 binds an ephemeral port; `port` reports the bound one after start().
    A wildcard bind host is reached through loopback from this process.
    """

    def __init__(self, name: str, app: Flask, host: str = "127.0.0.1", port: int = 0,
                 ready_timeout: float = 5.0):
        self.name = name
        self.app = app
        self.host = host
        self.port = port
        self.ready_timeout = ready_timeout
        self.server: Optional[BaseWSGIServer] = None
        self.thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.server is not None

    @property
    def local_host(self) -> str:
        return "127.0.0.1" if self.host in WILDCARD_HOSTS else self.host

    @property
    def url(self) -> str:
        return f"http://{self.local_host}:{self.port}"

    def start(self) -> None:
        """Start serving and wait for /health to answer."""
        if self.server is not None:
            return
        try:
            self.server = make_server(self.host, self.port, self.app, threaded=True)
        except (OSError, SystemExit) as exc:
            # werkzeug reports bind errors on stderr and exits instead of raising
            raise MockStartupFailure(self.name, f"cannot bind {self.host}:{self.port}: {exc}") from exc

        self.port = self.server.server_port
        self.thread = threading.Thread(
            target=self.server.serve_forever, name=f"mock-{self.name}", daemon=True
        )
        self.thread.start()

        if not self.wait_ready():
            self.stop()
            raise MockStartupFailure(
                self.name, f"no answer on {self.url}/health within {self.ready_timeout}s"
            )
        logger.info("Mock %s listening on %s", self.name, self.url)

    def wait_ready(self) -> bool:
        deadline = time.monotonic() + self.ready_timeout
        while time.monotonic() < deadline:
            if self.is_available():
                return True
            time.sleep(0.1)
        return False

    def is_available(self) -> bool:
        if self.server is None:
            return False
        try:
            response = httpx.get(f"{self.url}/health", timeout=0.5)
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    def stop(self) -> None:
        if self.server is None:
            return
        self.server.shutdown()
        self.server.server_close()
        if self.thread:
            self.thread.join(timeout=5)
        logger.info("Mock %s stopped", self.name)
        self.server = None
        self.thread = None
