import errno
import logging
import mimetypes
import os
import stat
from typing import Optional

from .config import Config
from .models import Request, ResponseSpec

logger = logging.getLogger(__name__)

# stat errors meaning "no such file" for a request path
MISSING_ERRNOS = (errno.ENOENT, errno.ENOTDIR, errno.ENAMETOOLONG)

# mimetypes answers differ across platforms and Python versions for these
CONTENT_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".map": "application/json",
    ".svg": "image/svg+xml",
    ".wasm": "application/wasm",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
}

CHARSET_TYPES = ("text/", "application/javascript", "application/json")


def content_type_for(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    ctype = CONTENT_TYPES.get(ext)
    if ctype is None:
        ctype, _ = mimetypes.guess_type(path)
    if ctype is None:
        return "application/octet-stream"
    if ctype.startswith(CHARSET_TYPES):
        return f"{ctype}; charset=utf-8"
    return ctype


def simple_response(status: int, reason: str) -> ResponseSpec:
    body = f"{status} {reason}\n".encode("utf-8")
    return ResponseSpec(
        status,
        reason,
        headers={"Content-Type": "text/plain; charset=utf-8"},
        body=body,
        body_size=len(body),
    )


def file_response(path: str, size: int, ctype: Optional[str] = None) -> ResponseSpec:
    return ResponseSpec(
        200,
        "OK",
        headers={"Content-Type": ctype or content_type_for(path)},
        body_path=path,
        body_size=size,
    )


class StaticFileResolver:
    def __init__(self, document_root: str) -> None:
        self.root_real = os.path.realpath(document_root)

    def respond(self, url_path: str) -> Optional[ResponseSpec]:
        """
        Return a 200 for a readable regular file under the root, None when
        there is no such file. Raises OSError when the file is there but
        cannot be read.
        """
        abs_path = self._resolve(url_path)
        if abs_path is None:
            return None
        st = os.stat(abs_path)
        return file_response(abs_path, st.st_size)

    def _resolve(self, url_path: str) -> Optional[str]:
        abs_path = self._safe_join(self.root_real, url_path)
        if abs_path is None:
            return None

        try:
            st = os.stat(abs_path)
        except OSError as e:
            if e.errno in MISSING_ERRNOS:
                return None
            raise

        if not stat.S_ISREG(st.st_mode):
            return None

        if not os.access(abs_path, os.R_OK):
            raise PermissionError(f"{abs_path} is not readable")

        return abs_path

    def _safe_join(self, root_real: str, url_path: str) -> Optional[str]:
        if "\x00" in url_path:
            return None

        rel = url_path.lstrip("/")
        norm = os.path.normpath(rel)
        candidate = os.path.join(root_real, norm)
        real = os.path.realpath(candidate)

        root_prefix = root_real + os.sep
        if real != root_real and not real.startswith(root_prefix):
            logger.debug("Path %r escapes the asset root", url_path)
            return None
        return real


class FallbackHandler:
    def __init__(self, index_path: str) -> None:
        self.index_path = index_path

    def respond(self) -> ResponseSpec:
        st = os.stat(self.index_path)
        return file_response(self.index_path, st.st_size, "text/html; charset=utf-8")


class SPAHandler:
    """Static files first, the index document for every other path."""

    def __init__(self, config: Config) -> None:
        self.resolver = StaticFileResolver(config.root)
        self.fallback = FallbackHandler(config.index_path)

    def handle(self, req: Request) -> ResponseSpec:
        try:
            resp = self.resolver.respond(req.path)
        except OSError as e:
            logger.error("Cannot read %r: %s", req.path, e)
            return simple_response(500, "Internal Server Error")

        if resp is not None:
            return resp

        try:
            return self.fallback.respond()
        except OSError as e:
            logger.error("Cannot read index document %r: %s", self.fallback.index_path, e)
            return simple_response(500, "Internal Server Error")
