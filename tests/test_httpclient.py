import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from awgupdater.httpclient import HttpError, Session

IP_BODY = b"203.0.113.7\n"
BIG_BODY = bytes(i % 251 for i in range(256 * 1024))


class _Handler(BaseHTTPRequestHandler):
    def _send(self, body, with_length=True):
        self.send_response(200)
        if with_length:
            self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        if self.path == "/ip":
            self._send(IP_BODY)
        elif self.path == "/big":
            self._send(BIG_BODY)
        elif self.path == "/headers":
            body = json.dumps(
                {
                    "ua": self.headers.get("User-Agent"),
                    "pragma": self.headers.get("Pragma"),
                    "cache": self.headers.get("Cache-Control"),
                }
            ).encode()
            self._send(body)
        elif self.path == "/nolength":
            self._send(IP_BODY, with_length=False)
        else:
            self.send_error(404)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield httpd.server_address[1]
    httpd.shutdown()
    httpd.server_close()


@pytest.fixture
def connection(server):
    session = Session("WinHTTP Test Suite/1.0")
    conn = session.connect("127.0.0.1", server, False)
    yield conn
    session.close()


def test_response_length_matches_body(connection):
    response = connection.get("/ip", True)
    length = response.length()
    body = response.read()
    response.close()
    assert length == len(body)
    assert body == IP_BODY


def test_streamed_download_reads_full_length(connection):
    response = connection.get("/big", False)
    length = response.length()
    total = 0
    while chunk := response.read(4096):
        assert len(chunk) <= 4096
        total += len(chunk)
    response.close()
    assert total == length == len(BIG_BODY)


def test_iteration_yields_body(connection):
    with connection.get("/big") as response:
        assert b"".join(response) == BIG_BODY


def test_user_agent_and_refresh_headers(connection):
    with connection.get("/headers", True) as response:
        sent = json.loads(response.read())
    assert sent == {"ua": "WinHTTP Test Suite/1.0", "pragma": "no-cache", "cache": "no-cache"}


def test_no_refresh_headers_without_refresh(connection):
    with connection.get("/headers", False) as response:
        sent = json.loads(response.read())
    assert sent["pragma"] is None
    assert sent["cache"] is None


def test_missing_length_raises_but_body_reads(connection):
    with connection.get("/nolength") as response:
        with pytest.raises(HttpError):
            response.length()
        assert response.read() == IP_BODY


def test_status_is_reported(connection):
    with connection.get("/missing") as response:
        assert response.status == 404


def test_read_zero_returns_empty(connection):
    with connection.get("/ip") as response:
        assert response.read(0) == b""
        assert response.read() == IP_BODY


def test_read_after_close_raises(connection):
    response = connection.get("/ip")
    response.close()
    response.close()
    with pytest.raises(HttpError):
        response.read()


def test_closed_session_refuses_connect():
    session = Session("agent")
    session.close()
    with pytest.raises(HttpError):
        session.connect("127.0.0.1", 80, False)


def test_session_close_closes_connections(server):
    session = Session("agent")
    conn = session.connect("127.0.0.1", server, False)
    session.close()
    with pytest.raises(HttpError):
        conn.get("/ip")


def test_closing_connection_closes_responses(connection):
    response = connection.get("/ip")
    connection.close()
    with pytest.raises(HttpError):
        response.read()


def test_refused_connection_raises():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    with Session("agent") as session:
        conn = session.connect("127.0.0.1", port, False)
        with pytest.raises(HttpError):
            conn.get("/ip")


def test_port_out_of_range():
    with Session("agent") as session:
        with pytest.raises(ValueError):
            session.connect("127.0.0.1", 70000, False)


def test_default_port_depends_on_scheme():
    with Session("agent") as session:
        assert session.connect("example.com", 0, True).port == 443
        assert session.connect("example.com", 0, False).port == 80


def test_nul_in_user_agent_rejected():
    with pytest.raises(HttpError):
        Session("bad\x00agent")