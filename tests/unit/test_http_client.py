"""
Unit tests for the HTTP transport, run against a throwaway local HTTP server.
"""
import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from dockstack.CLIENT.http_client import DockerHTTPClient, default_timeout, encode_params
from dockstack.exceptions import APIError, Conflict, ContainerNotFound, DockerConnectionError, NotFound


class DaemonHandler(BaseHTTPRequestHandler):
    def log_message(self, format, *args):
        pass

    def _send(self, status, body, content_type="application/json"):
        payload = body if isinstance(body, bytes) else body.encode()
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def do_GET(self):
        if self.path == "/_ping":
            self._send(200, "OK", "text/plain")
        elif self.path.startswith("/containers/missing"):
            self._send(404, json.dumps({"message": "No such container: missing"}))
        elif self.path == "/conflict":
            self._send(409, json.dumps({"message": "name already in use"}))
        elif self.path == "/boom":
            self._send(500, json.dumps({"message": "server exploded"}))
        elif self.path == "/empty":
            self.send_response(204)
            self.end_headers()
        elif self.path == "/raw":
            self._send(200, b"\x01\x00\x00\x00\x00\x00\x00\x02hi", "application/octet-stream")
        else:
            self._send(200, json.dumps({"path": self.path}))

    def do_HEAD(self):
        self.send_response(404 if "missing" in self.path else 200)
        self.send_header("X-Docker-Container-Path-Stat", "eyJuYW1lIjogImEifQ==")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_POST(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length).decode() if length else ""
        if self.path.startswith("/images/create"):
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.end_headers()
            self.wfile.write(b'{"status": "Pulling"}\r\n\r\n{"status": "Done"}\nplain text\n')
        else:
            self._send(201, json.dumps({"path": self.path, "body": body,
                                        "content_type": self.headers.get("Content-Type")}))


@pytest.fixture(scope="module")
def server():
    httpd = HTTPServer(("127.0.0.1", 0), DaemonHandler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"tcp://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


class TestRequests:
    """Tests for request/response handling."""

    def test_text_response(self, server):
        assert DockerHTTPClient(server).request("GET", "/_ping") == "OK"

    def test_json_response_and_params(self, server):
        client = DockerHTTPClient(server)
        data = client.get("/containers/json", params={"all": True, "limit": None,
                                                      "filters": {"label": ["a=b"]}})
        assert data["path"].startswith("/containers/json?all=true&filters=")
        assert "limit" not in data["path"]

    def test_json_body(self, server):
        data = DockerHTTPClient(server).post("/containers/create", data={"Image": "nginx"})
        assert json.loads(data["body"]) == {"Image": "nginx"}
        assert data["content_type"] == "application/json"

    def test_bytes_body(self, server):
        data = DockerHTTPClient(server).post("/build", data=b"tar", headers={"Content-Type": "application/x-tar"})
        assert data["body"] == "tar"
        assert data["content_type"] == "application/x-tar"

    def test_empty_response(self, server):
        assert DockerHTTPClient(server).get("/empty") is None

    def test_raw_response(self, server):
        assert DockerHTTPClient(server).get("/raw", raw=True) == b"\x01\x00\x00\x00\x00\x00\x00\x02hi"

    def test_not_found_uses_requested_class(self, server):
        with pytest.raises(ContainerNotFound) as exc:
            DockerHTTPClient(server).get("/containers/missing/json", not_found=ContainerNotFound)
        assert exc.value.status_code == 404
        assert exc.value.explanation == "No such container: missing"

    def test_not_found_default(self, server):
        with pytest.raises(NotFound):
            DockerHTTPClient(server).get("/containers/missing/json")

    def test_conflict(self, server):
        with pytest.raises(Conflict) as exc:
            DockerHTTPClient(server).get("/conflict")
        assert exc.value.status_code == 409

    def test_server_error(self, server):
        with pytest.raises(APIError) as exc:
            DockerHTTPClient(server).get("/boom")
        assert exc.value.status_code == 500
        assert "server exploded" in str(exc.value)

    def test_stream_json(self, server):
        events = list(DockerHTTPClient(server).stream_json("POST", "/images/create",
                                                          params={"fromImage": "nginx"}))
        assert events == [{"status": "Pulling"}, {"status": "Done"}, {"stream": "plain text"}]

    def test_head_returns_headers(self, server):
        headers = DockerHTTPClient(server).head("/containers/abc/archive", params={"path": "/a"})
        assert headers["X-Docker-Container-Path-Stat"] == "eyJuYW1lIjogImEifQ=="

    def test_head_not_found(self, server):
        with pytest.raises(NotFound):
            DockerHTTPClient(server).head("/containers/missing/archive", params={"path": "/a"})

    def test_unreachable_daemon(self):
        client = DockerHTTPClient("tcp://127.0.0.1:1", timeout=2)
        with pytest.raises(DockerConnectionError):
            client.get("/_ping")


class TestConfiguration:
    """Tests for URI parsing and environment defaults."""

    def test_tcp_uri(self):
        client = DockerHTTPClient("tcp://docker.example:2375")
        assert (client.host, client.port, client.use_tls) == ("docker.example", 2375, False)

    def test_https_default_port(self):
        client = DockerHTTPClient("https://docker.example")
        assert client.port == 2376
        assert client.use_tls

    def test_missing_socket(self, tmp_path):
        with pytest.raises(DockerConnectionError):
            DockerHTTPClient(f"unix://{tmp_path}/docker.sock")

    @pytest.mark.parametrize("uri", ["ftp://host", "tcp://:2375", "tcp://host:notaport", "unix://"])
    def test_malformed_uri(self, uri):
        with pytest.raises(DockerConnectionError):
            DockerHTTPClient(uri)

    def test_docker_host_from_environment(self, monkeypatch):
        monkeypatch.setenv("DOCKER_HOST", "tcp://from-env:1234")
        client = DockerHTTPClient()
        assert (client.host, client.port) == ("from-env", 1234)

    def test_timeout_from_environment(self, monkeypatch):
        monkeypatch.setenv("DOCKER_TIMEOUT", "5")
        assert default_timeout() == 5.0
        monkeypatch.setenv("DOCKER_TIMEOUT", "soon")
        with pytest.raises(DockerConnectionError):
            default_timeout()

    def test_encode_params(self):
        assert encode_params({"all": False, "t": 10, "skip": None}) == "all=false&t=10"
        assert encode_params({"filters": {"label": ["x=y"]}}) == (
            "filters=%7B%22label%22%3A%20%5B%22x%3Dy%22%5D%7D"
        )
        assert encode_params(None) == ""
