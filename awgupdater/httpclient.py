"""A small HTTP client with sessions, connections and streamed responses."""

from __future__ import annotations

import http.client
import ssl
import weakref

_DEFAULT_HTTP_PORT = 80
_DEFAULT_HTTPS_PORT = 443


class HttpError(OSError):
    """An HTTP request could not be made or a response could not be read."""


def _check_text(value: str, what: str) -> str:
    if "\x00" in value:
        raise HttpError(f"{what} contains a NUL character")
    return value


class Session:
    """Holds settings shared by all connections, such as the User-Agent."""

    def __init__(self, user_agent: str) -> None:
        self.user_agent = _check_text(user_agent, "User agent")
        self._closed = False
        self._connections: weakref.WeakSet[Connection] = weakref.WeakSet()

    @property
    def closed(self) -> bool:
        return self._closed

    def connect(self, server: str, port: int = 0, https: bool = True) -> Connection:
        """Return a connection to ``server``; port 0 picks the scheme default."""
        if self._closed:
            raise HttpError("Session is closed")
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"Port {port} is out of range")
        connection = Connection(self, _check_text(server, "Server name"), port, https)
        self._connections.add(connection)
        return connection

    def close(self) -> None:
        """Close the session and every connection made from it."""
        if self._closed:
            return
        self._closed = True
        for connection in list(self._connections):
            connection.close()

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Connection:
    """A target server from which GET requests are made."""

    def __init__(self, session: Session, server: str, port: int, https: bool) -> None:
        self.session = session
        self.server = server
        self.https = https
        if port == 0:
            port = _DEFAULT_HTTPS_PORT if https else _DEFAULT_HTTP_PORT
        self.port = port
        self._closed = False
        self._responses: weakref.WeakSet[Response] = weakref.WeakSet()

    def _open(self) -> http.client.HTTPConnection:
        if self.https:
            return http.client.HTTPSConnection(
                self.server, self.port, context=ssl.create_default_context()
            )
        return http.client.HTTPConnection(self.server, self.port)

    def get(self, path: str, refresh: bool = False) -> Response:
        """Send a GET request for ``path`` and return its response.

        With ``refresh`` set, caches between here and the server are bypassed.
        """
        if self._closed or self.session.closed:
            raise HttpError("Connection is closed")
        _check_text(path, "Path")
        headers = {"User-Agent": self.session.user_agent}
        if refresh:
            headers["Pragma"] = "no-cache"
            headers["Cache-Control"] = "no-cache"
        conn = self._open()
        try:
            conn.request("GET", path, headers=headers)
            raw = conn.getresponse()
        except (OSError, http.client.HTTPException) as exc:
            conn.close()
            raise HttpError(f"GET {path} failed: {exc}") from exc
        response = Response(self, conn, raw)
        self._responses.add(response)
        return response

    def close(self) -> None:
        """Close the connection and any responses still open on it."""
        if self._closed:
            return
        self._closed = True
        for response in list(self._responses):
            response.close()

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Response:
    """The streamed body and headers of one request."""

    def __init__(
        self,
        connection: Connection,
        conn: http.client.HTTPConnection,
        raw: http.client.HTTPResponse,
    ) -> None:
        self.connection = connection
        self._conn = conn
        self._raw = raw
        self._closed = False
        self.status = raw.status
        self.reason = raw.reason
        self.headers = raw.headers

    def length(self) -> int:
        """The Content-Length of the body."""
        value = self._raw.getheader("Content-Length")
        if value is None:
            raise HttpError("The Content-Length header was not found")
        value = value.strip()
        if not (value.isascii() and value.isdigit()) or int(value) >= 1 << 64:
            raise HttpError(f"Invalid Content-Length {value!r}")
        return int(value)

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or all that remain if negative; b"" at end."""
        if self._closed:
            raise HttpError("Response is closed")
        if size == 0:
            return b""
        try:
            if size < 0:
                return self._raw.read()
            return self._raw.read1(size)
        except (OSError, http.client.HTTPException) as exc:
            raise HttpError(f"Reading response failed: {exc}") from exc

    def __iter__(self):
        while chunk := self.read(64 * 1024):
            yield chunk

    def close(self) -> None:
        """Release the response; closing twice is harmless."""
        if self._closed:
            return
        self._closed = True
        self._raw.close()
        self._conn.close()

    def __enter__(self) -> Response:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()