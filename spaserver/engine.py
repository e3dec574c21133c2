import logging
import os
import socket
import time
from datetime import datetime, timezone
from typing import BinaryIO, Optional
from urllib.parse import unquote, urlsplit

from .config import Config
from .handler import SPAHandler, simple_response
from .models import Request, ResponseSpec

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "HEAD")


class HeaderTooLarge(ValueError):
    pass


class ResponseAborted(Exception):
    """The status line already went out; nothing more can be sent."""


def close_quietly(sock: socket.socket) -> None:
    try:
        sock.close()
    except OSError:
        pass


class Engine:
    def handle_connection(self, conn: socket.socket) -> None:
        try:
            self.process(conn)
        finally:
            close_quietly(conn)

    def process(self, conn: socket.socket) -> None:
        raise NotImplementedError


class HTTPEngine(Engine):
    def __init__(self, config: Config, request_handler: SPAHandler, server_name: Optional[str] = None) -> None:
        self.config = config
        self.request_handler = request_handler
        if server_name is None:
            server_name = f"spaserver/{socket.gethostname()}"
        self.server_name = server_name

    def process(self, conn: socket.socket) -> None:
        method = "GET"
        try:
            raw = self._read_headers(conn)
            if raw is None:
                return

            req = self._parse_request(raw)
            method = req.method.upper()
            logger.debug("%s %s", method, req.target)
            if method not in ALLOWED_METHODS:
                resp = simple_response(405, "Method Not Allowed")
                resp.headers["Allow"] = ", ".join(ALLOWED_METHODS)
                return self._send(conn, method, resp)

            resp = self.request_handler.handle(req)
            self._send(conn, method, resp)

        except ResponseAborted as e:
            logger.warning("Response aborted mid-body: %s", e)
        except (socket.timeout, TimeoutError):
            logger.debug("Connection timed out")
        except HeaderTooLarge:
            self._send_error(conn, method, 431, "Request Header Fields Too Large")
        except ValueError as e:
            logger.debug("Bad request: %s", e)
            self._send_error(conn, method, 400, "Bad Request")
        except ConnectionError:
            logger.debug("Client went away")
        except Exception:
            logger.exception("Unhandled error while processing request")
            self._send_error(conn, method, 500, "Internal Server Error")

    def _send_error(self, conn: socket.socket, method: str, status: int, reason: str) -> None:
        try:
            self._send(conn, method, simple_response(status, reason))
        except (OSError, ResponseAborted) as e:
            logger.debug("Could not send %d to client: %s", status, e)

    def _read_headers(self, conn: socket.socket) -> Optional[bytes]:
        # recv_timeout bounds each recv(); header_timeout bounds the whole read
        deadline = time.monotonic() + self.config.header_timeout
        recv_timeout = conn.gettimeout()
        buf = bytearray()
        try:
            while True:
                if b"\r\n\r\n" in buf:
                    return bytes(buf)
                if len(buf) > self.config.max_header_bytes:
                    raise HeaderTooLarge(f"header block exceeds {self.config.max_header_bytes} bytes")
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise socket.timeout("request headers not received in time")
                conn.settimeout(remaining if recv_timeout is None else min(recv_timeout, remaining))
                chunk = conn.recv(self.config.chunk_size)
                if chunk == b"":
                    if buf:
                        raise ValueError("connection closed mid-request")
                    return None
                buf.extend(chunk)
        finally:
            conn.settimeout(recv_timeout)

    def _parse_request(self, raw: bytes) -> Request:
        head, _, _ = raw.partition(b"\r\n\r\n")
        request_line = head.split(b"\r\n", 1)[0].decode("iso-8859-1")
        parts = request_line.split()
        if len(parts) != 3:
            raise ValueError("bad request line")

        method, target, version = parts
        if not version.startswith("HTTP/"):
            raise ValueError("bad http version")

        if target.startswith(("http://", "https://")):
            # absolute-form, as sent to proxies
            path = urlsplit(target).path or "/"
        else:
            path = target.split("?", 1)[0].split("#", 1)[0]
        path = unquote(path)

        return Request(method=method, target=target, path=path)

    def _send(self, conn: socket.socket, method: str, resp: ResponseSpec) -> None:
        head_only = (method.upper() == "HEAD")

        body_file = None
        if resp.body_path:
            # Opened before the status line goes out so a failure is still a clean 500
            try:
                body_file = open(resp.body_path, "rb")
            except OSError as e:
                logger.error("Cannot open %r: %s", resp.body_path, e)
                resp = simple_response(500, "Internal Server Error")

        try:
            body_size = resp.body_size
            if body_file is not None:
                body_size = os.fstat(body_file.fileno()).st_size

            headers = dict(resp.headers)
            headers.setdefault("Date", self._http_date())
            headers.setdefault("Server", self.server_name)
            headers.setdefault("Connection", "close")
            headers["Content-Length"] = str(body_size)

            status_line = f"HTTP/1.1 {resp.status} {resp.reason}\r\n"
            header_block = status_line + "".join(f"{k}: {v}\r\n" for k, v in headers.items()) + "\r\n"
            conn.sendall(header_block.encode("iso-8859-1"))

            if head_only:
                return

            try:
                if body_file is not None:
                    self._send_file(conn, body_file, body_size)
                elif resp.body:
                    conn.sendall(resp.body)
            except (ConnectionError, socket.timeout):
                raise
            except Exception as e:
                raise ResponseAborted(f"{resp.status} after headers: {e}") from e
        finally:
            if body_file is not None:
                body_file.close()

    def _send_file(self, conn: socket.socket, f: BinaryIO, size: int) -> None:
        remaining = size
        while remaining > 0:
            data = f.read(min(self.config.chunk_size, remaining))
            if not data:
                break
            conn.sendall(data)
            remaining -= len(data)

    @staticmethod
    def _http_date() -> str:
        dt = datetime.now(timezone.utc)
        return dt.strftime("%a, %d %b %Y %H:%M:%S GMT")
