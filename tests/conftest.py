import http.client
import threading

import pytest

from spaserver.config import Config
from spaserver.server import ThreadedHTTPServer

INDEX = b"<html>Home</html>"
LOGO = bytes(range(256)) * 8
STYLES = b"body { color: red; }\n"
APP_JS = b"console.log('app');\n"
DATA_JSON = b'{"items": [1, 2, 3]}'
SECRET = b"top secret"


@pytest.fixture
def site(tmp_path):
    """An asset root with a secret file next to it, outside the root."""
    root = tmp_path / "public"
    root.mkdir()
    (root / "index.html").write_bytes(INDEX)
    (root / "logo.png").write_bytes(LOGO)
    (root / "styles.css").write_bytes(STYLES)
    (root / "app.js").write_bytes(APP_JS)
    (root / "assets").mkdir()
    (root / "assets" / "data.json").write_bytes(DATA_JSON)
    (root / "assets" / "blob.unknownext").write_bytes(b"\x00\x01")
    (tmp_path / "server-config").write_bytes(SECRET)
    return root


@pytest.fixture
def config(site):
    return Config.from_env({}, host="127.0.0.1", port=0, root=str(site), workers=2,
                           recv_timeout=1.0, accept_timeout=0.1)


def start_server(config):
    server = ThreadedHTTPServer(config)
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    assert server.ready.wait(5), "server did not start"
    return server, thread


@pytest.fixture
def running_server(config):
    server, thread = start_server(config)
    yield server
    server.stop()
    thread.join(timeout=10)


def fetch(port, path, method="GET"):
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
    try:
        conn.request(method, path)
        resp = conn.getresponse()
        return resp.status, dict(resp.getheaders()), resp.read()
    finally:
        conn.close()
