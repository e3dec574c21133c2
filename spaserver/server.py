import logging
import socket
import threading
from typing import Optional, Tuple

from .config import Config
from .engine import HTTPEngine, close_quietly
from .handler import SPAHandler
from .pool import WorkerPool

logger = logging.getLogger(__name__)


class ThreadedHTTPServer:
    """Accept loop in the calling thread, requests served by a WorkerPool."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._listen_sock: Optional[socket.socket] = None
        self._pool: Optional[WorkerPool] = None

        self.server_address: Optional[Tuple[str, int]] = None
        # Set once the socket is bound and listening
        self.ready = threading.Event()
        self._stop_event = threading.Event()

    def run(self) -> None:
        """Bind, serve until stop(). Bind failures propagate as OSError."""
        self._stop_event.clear()
        self._listen_sock = self._bind()
        self.server_address = self._listen_sock.getsockname()[:2]
        logger.info("Server running at http://%s:%d", self._display_host(), self.server_address[1])
        logger.info("Serving %s (fallback %s)", self.config.root, self.config.index_path)

        self._pool = WorkerPool(self.config, HTTPEngine(self.config, SPAHandler(self.config)))
        self._pool.start()
        self.ready.set()
        try:
            self._accept_loop(self._listen_sock, self._pool)
        finally:
            self._shutdown()

    def stop(self) -> None:
        self._stop_event.set()
        # Closing the listener makes a blocked accept() return early
        if self._listen_sock is not None:
            close_quietly(self._listen_sock)

    def _shutdown(self) -> None:
        if self._listen_sock is not None:
            close_quietly(self._listen_sock)
        if self._pool is not None:
            self._pool.stop()
        self._listen_sock = None
        self._pool = None
        self.ready.clear()
        logger.info("Server stopped")

    def _display_host(self) -> str:
        if self.config.host in ("", "0.0.0.0"):
            return "localhost"
        return self.config.host

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.config.host, self.config.port))
            sock.listen(self.config.backlog)
            sock.settimeout(self.config.accept_timeout)
        except OSError:
            sock.close()
            raise
        return sock

    def _accept_loop(self, listener: socket.socket, pool: WorkerPool) -> None:
        while not self._stop_event.is_set():
            try:
                conn, addr = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                # listener closed by stop()
                break

            try:
                conn.settimeout(self.config.recv_timeout)
                conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                pool.submit(conn, addr)
            except OSError as e:
                logger.debug("Dropping connection from %s: %s", addr, e)
                close_quietly(conn)
