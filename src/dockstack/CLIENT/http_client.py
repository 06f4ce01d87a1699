"""
HTTP transport to the Docker daemon over a Unix socket or TCP.
"""

import http.client
import json
import logging
import os
import socket
import ssl
from typing import Any, Dict, Iterator, Optional, Type
from urllib.parse import quote, urlparse

from ..exceptions import APIError, Conflict, DockerConnectionError, NotFound

logger = logging.getLogger(__name__)

DEFAULT_UNIX_SOCKET = "unix:///var/run/docker.sock"
DEFAULT_TIMEOUT = 60


class UnixHTTPConnection(http.client.HTTPConnection):
    """HTTP connection over a Unix domain socket"""

    def __init__(self, socket_path: str, timeout: float = DEFAULT_TIMEOUT):
        super().__init__("localhost", timeout=timeout)
        self.socket_path = socket_path

    def connect(self):
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.sock.settimeout(self.timeout)
        self.sock.connect(self.socket_path)


def default_uri() -> str:
    """Daemon URI from DOCKER_HOST, falling back to the local socket."""
    return os.environ.get("DOCKER_HOST") or DEFAULT_UNIX_SOCKET


def default_timeout() -> float:
    value = os.environ.get("DOCKER_TIMEOUT")
    if not value:
        return DEFAULT_TIMEOUT
    try:
        return float(value)
    except ValueError:
        raise DockerConnectionError(f"DOCKER_TIMEOUT must be a number of seconds, got {value!r}")


def encode_params(params: Optional[Dict[str, Any]]) -> str:
    """
    Encodes query parameters the way the Engine API expects them.

    Booleans become 'true'/'false', lists and dicts are sent as JSON, None is dropped.
    """
    if not params:
        return ""
    parts = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif isinstance(value, (list, dict)):
            value = json.dumps(value)
        parts.append(f"{key}={quote(str(value), safe='')}")
    return "&".join(parts)


class DockerHTTPClient:
    """HTTP client for the Docker daemon"""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        """
        Parses the daemon URI and checks that a Unix socket exists.

        Args:
            base_url: unix:///path, tcp://host:port, http://host:port or https://host:port.
                Defaults to DOCKER_HOST or unix:///var/run/docker.sock.
            timeout: Request timeout in seconds.

        Raises:
            DockerConnectionError: If the URI is malformed or the socket is missing.
        """
        self.base_url = base_url or default_uri()
        self.timeout = timeout if timeout is not None else default_timeout()
        self.socket_path: Optional[str] = None
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self.use_tls = False

        parsed = urlparse(self.base_url)
        if parsed.scheme == "unix":
            self.socket_path = parsed.path or parsed.netloc
            if not self.socket_path:
                raise DockerConnectionError(f"Malformed Docker URI: {self.base_url}")
            if not os.path.exists(self.socket_path):
                raise DockerConnectionError(f"Docker socket not found: {self.socket_path}")
        elif parsed.scheme in ("tcp", "http", "https"):
            try:
                port = parsed.port
            except ValueError:
                raise DockerConnectionError(f"Malformed Docker URI: {self.base_url}")
            if not parsed.hostname:
                raise DockerConnectionError(f"Malformed Docker URI: {self.base_url}")
            self.use_tls = parsed.scheme == "https"
            self.host = parsed.hostname
            self.port = port or (2376 if self.use_tls else 2375)
        else:
            raise DockerConnectionError(
                f"Unsupported Docker URI scheme {parsed.scheme!r} in {self.base_url}"
            )

    def _connection(self) -> http.client.HTTPConnection:
        if self.socket_path:
            return UnixHTTPConnection(self.socket_path, timeout=self.timeout)
        if self.use_tls:
            return http.client.HTTPSConnection(
                self.host, self.port, timeout=self.timeout,
                context=ssl.create_default_context(),
            )
        return http.client.HTTPConnection(self.host, self.port, timeout=self.timeout)

    def _send(self, method: str, path: str, data: Any, params: Optional[Dict[str, Any]],
              headers: Optional[Dict[str, str]]):
        query = encode_params(params)
        url = f"{path}?{query}" if query else path

        req_headers = {"Host": "localhost"}
        if headers:
            req_headers.update(headers)

        body = None
        if data is not None:
            if isinstance(data, bytes):
                body = data
                req_headers.setdefault("Content-Type", "application/octet-stream")
            else:
                body = json.dumps(data).encode("utf-8")
                req_headers["Content-Type"] = "application/json"
            req_headers["Content-Length"] = str(len(body))

        logger.debug("%s %s", method, url)
        conn = self._connection()
        try:
            conn.request(method, url, body=body, headers=req_headers)
            response = conn.getresponse()
        except (OSError, http.client.HTTPException) as e:
            conn.close()
            raise DockerConnectionError(f"Cannot reach Docker daemon at {self.base_url}: {e}") from e
        return conn, response

    @staticmethod
    def _raise_for_status(response, not_found: Type[NotFound]):
        if response.status < 400:
            return
        error_body = response.read().decode("utf-8", errors="replace")
        try:
            message = json.loads(error_body).get("message", error_body)
        except (json.JSONDecodeError, AttributeError):
            message = error_body
        message = message.strip() or response.reason
        if response.status == 404:
            raise not_found(message, status_code=404, explanation=message)
        if response.status == 409:
            raise Conflict(message, status_code=409, explanation=message)
        raise APIError(
            f"Docker API error ({response.status}): {message}",
            status_code=response.status,
            explanation=message,
        )

    def request(self, method: str, path: str, data: Any = None,
                params: Optional[Dict[str, Any]] = None,
                headers: Optional[Dict[str, str]] = None,
                raw: bool = False,
                not_found: Type[NotFound] = NotFound) -> Any:
        """
        Makes an HTTP request to the Docker daemon.

        Args:
            method: HTTP method (GET, POST, DELETE, etc.)
            path: API path
            data: JSON-serialisable body, or raw bytes
            params: URL query parameters
            headers: Extra HTTP headers
            raw: Return the body as bytes instead of decoding it
            not_found: Exception class raised on a 404

        Returns:
            Parsed JSON, text, bytes when raw=True, or None for an empty body.
        """
        conn, response = self._send(method, path, data, params, headers)
        try:
            self._raise_for_status(response, not_found)
            try:
                payload = response.read()
            except (OSError, http.client.HTTPException) as e:
                raise DockerConnectionError(f"Connection to Docker daemon lost: {e}") from e
        finally:
            conn.close()

        if raw:
            return payload
        if not payload:
            return None
        text = payload.decode("utf-8", errors="replace")
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    def stream_json(self, method: str, path: str, data: Any = None,
                    params: Optional[Dict[str, Any]] = None,
                    headers: Optional[Dict[str, str]] = None,
                    not_found: Type[NotFound] = NotFound) -> Iterator[Dict[str, Any]]:
        """
        Yields the newline-delimited JSON objects of a progress stream (pull, push, build).

        Lines that are not JSON are yielded as {'stream': line}.
        """
        conn, response = self._send(method, path, data, params, headers)
        try:
            self._raise_for_status(response, not_found)
            while True:
                try:
                    line = response.readline()
                except (OSError, http.client.HTTPException) as e:
                    raise DockerConnectionError(f"Connection to Docker daemon lost: {e}") from e
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    yield json.loads(text)
                except json.JSONDecodeError:
                    yield {"stream": text}
        finally:
            conn.close()

    def head(self, path: str, params: Optional[Dict[str, Any]] = None,
             not_found: Type[NotFound] = NotFound) -> Dict[str, str]:
        """Sends a HEAD request and returns the response headers."""
        conn, response = self._send("HEAD", path, None, params, None)
        try:
            self._raise_for_status(response, not_found)
            response.read()
            return dict(response.getheaders())
        finally:
            conn.close()

    def get(self, path: str, **kwargs) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> Any:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs) -> Any:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs) -> Any:
        return self.request("DELETE", path, **kwargs)

    def close(self):
        """Connections are per request; nothing is held open between calls."""
        pass
