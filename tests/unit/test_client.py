"""
Unit tests for DockerClient and its resource collections.
"""
import base64
import json

import pytest

from dockstack.CLIENT.containers import build_port_bindings, demux_stream
from dockstack.CLIENT.images import tar_build_context
from dockstack.exceptions import (
    BuildError,
    Conflict,
    ContainerNotFound,
    DockerConnectionError,
    ImageNotFound,
    NetworkNotFound,
    NotFound,
    ValidationError,
    VolumeNotFound,
)
from dockstack.MODELS.auth import PasswordAuth, TokenAuth, encode_auth_header, resolve_auth
from fake_daemon import frame


class TestDockerClient:
    """Tests for the top-level client."""

    def test_ping_and_version(self, docker):
        assert docker.ping() is True
        assert docker.version()["ApiVersion"] == "1.43"
        assert "Containers" in docker.info()

    def test_collections_share_transport(self, docker, fake_daemon):
        assert docker.containers().http is fake_daemon
        assert docker.images().client is docker

    def test_wait_until_ready_retries_connection_errors(self, docker, monkeypatch):
        attempts = []

        def flaky_ping():
            attempts.append(1)
            if len(attempts) < 3:
                raise DockerConnectionError("not yet")
            return True

        monkeypatch.setattr(docker, "ping", flaky_ping)
        assert docker.wait_until_ready(timeout=5, interval=0) is True
        assert len(attempts) == 3

    def test_wait_until_ready_gives_up(self, docker, monkeypatch):
        def dead_ping():
            raise DockerConnectionError("down")

        monkeypatch.setattr(docker, "ping", dead_ping)
        with pytest.raises(DockerConnectionError):
            docker.wait_until_ready(timeout=0, interval=0)

    def test_context_manager(self, fake_daemon):
        from dockstack.CLIENT.docker_client import DockerClient
        with DockerClient(http_client=fake_daemon) as client:
            assert client.ping()


class TestContainers:
    """Tests for ContainerCollection."""

    def test_create_translates_arguments(self, docker, fake_daemon):
        container = docker.containers().create(
            "nginx:latest",
            name="web",
            command="nginx -g 'daemon off;'",
            environment={"A": "1"},
            ports=["8080:80", "443"],
            volumes=["/srv:/usr/share/nginx/html:ro"],
            labels={"team": "web"},
            restart_policy="on-failure:2",
            network="frontend",
        )
        body = fake_daemon.container_by_name("web")["Create"]
        assert container.name == "web"
        assert body["Cmd"] == ["sh", "-c", "nginx -g 'daemon off;'"]
        assert body["Env"] == ["A=1"]
        assert body["ExposedPorts"] == {"80/tcp": {}, "443/tcp": {}}
        assert body["HostConfig"]["PortBindings"] == {"80/tcp": [{"HostPort": "8080"}]}
        assert body["HostConfig"]["Binds"] == ["/srv:/usr/share/nginx/html:ro"]
        assert body["HostConfig"]["RestartPolicy"] == {"Name": "on-failure", "MaximumRetryCount": 2}
        assert body["HostConfig"]["NetworkMode"] == "frontend"
        assert body["Labels"] == {"team": "web"}

    def test_create_rejects_bad_port_before_calling_daemon(self, docker, fake_daemon):
        with pytest.raises(ValidationError):
            docker.containers().create("nginx:latest", ports=["80:http"])
        assert fake_daemon.calls == []

    def test_create_rejects_bad_restart_policy(self, docker, fake_daemon):
        with pytest.raises(ValidationError):
            docker.containers().create("nginx:latest", restart_policy="sometimes")
        with pytest.raises(ValidationError):
            docker.containers().create("nginx:latest", restart_policy={"Name": "always", "MaximumRetryCount": 3})
        assert fake_daemon.calls == []

    def test_duplicate_name_conflicts(self, docker):
        docker.containers().create("nginx:latest", name="web")
        with pytest.raises(Conflict):
            docker.containers().create("nginx:latest", name="web")

    def test_lifecycle(self, docker, fake_daemon):
        container = docker.containers().run("busybox:latest", command=["sleep", "60"], name="box")
        assert container.reload().status == "running"
        container.pause()
        assert container.reload().status == "paused"
        container.unpause()
        container.stop(timeout=1)
        assert container.reload().status == "exited"
        assert container.wait() == {"StatusCode": 0}
        container.rename("box2")
        assert docker.containers().get("box2").id == container.id
        container.remove(force=True)
        with pytest.raises(ContainerNotFound):
            docker.containers().get("box2")

    def test_list_filters(self, docker):
        docker.containers().run("busybox:latest", name="a", labels={"app": "x"})
        docker.containers().create("busybox:latest", name="b", labels={"app": "x"})
        docker.containers().run("busybox:latest", name="c", labels={"app": "y"})
        assert [c.name for c in docker.containers().list()] == ["a", "c"]
        assert [c.name for c in docker.containers().list(all=True, filters={"label": ["app=x"]})] == ["a", "b"]

    def test_missing_container(self, docker):
        with pytest.raises(ContainerNotFound):
            docker.containers().start("nope")

    def test_logs_are_demultiplexed(self, docker, fake_daemon):
        container = docker.containers().run("busybox:latest", name="talker")
        fake_daemon.logs["talker"] = ["first", "second"]
        assert container.logs() == "first\nsecond\n"
        assert container.logs(tail=1) == "second\n"

    def test_exec_run(self, docker):
        container = docker.containers().run("busybox:latest", name="box")
        result = container.exec_run("echo hi")
        assert result.exit_code == 0
        assert result.output == "ran sh -c echo hi\nwarn\n"
        assert container.exec_run(["true"], detach=True).exit_code is None

    def test_copy_file_into_and_back(self, docker, fake_daemon, tmp_path):
        """Test a file copied in can be stat'ed and copied back out."""
        container = docker.containers().run("busybox:latest", name="box")
        src = tmp_path / "greeting.txt"
        src.write_text("Hello from host!")

        container.copy_file_into(str(src), "/tmp/test.txt")
        put = fake_daemon.calls_to("PUT", r"/containers/.+/archive")[0]
        assert put["params"] == {"path": "/tmp"}
        assert put["headers"] == {"Content-Type": "application/x-tar"}

        stat = container.stat_file("/tmp/test.txt")
        assert stat["name"] == "test.txt"
        assert stat["size"] == len("Hello from host!")

        out = tmp_path / "out"
        out.mkdir()
        container.copy_from("/tmp/test.txt", str(out))
        assert (out / "test.txt").read_text() == "Hello from host!"

    def test_missing_path(self, docker, tmp_path):
        container = docker.containers().run("busybox:latest", name="box")
        with pytest.raises(NotFound):
            container.stat_file("/nope")
        with pytest.raises(NotFound):
            container.copy_from("/nope", str(tmp_path))

    def test_copy_file_into_needs_file_name(self, docker, fake_daemon, tmp_path):
        container = docker.containers().run("busybox:latest", name="box")
        src = tmp_path / "a.txt"
        src.write_text("a")
        with pytest.raises(ValidationError):
            container.copy_file_into(str(src), "/tmp/")
        assert fake_daemon.calls_to("PUT", r"/containers/.+/archive") == []

    def test_commit(self, docker, fake_daemon):
        container = docker.containers().run("busybox:latest", name="box")
        image_id = container.commit("test-commit", "v1", message="snapshot", changes=["CMD [\"sh\"]"])
        assert docker.images().get("test-commit:v1").id == image_id
        params = fake_daemon.calls_to("POST", r"/commit")[0]["params"]
        assert params["container"] == container.id
        assert params["comment"] == "snapshot"
        assert params["changes"] == "CMD [\"sh\"]"

    def test_commit_missing_container(self, docker):
        with pytest.raises(ContainerNotFound):
            docker.containers().commit("ghost", "x")


class TestStreamHelpers:
    """Tests for stream demultiplexing and port translation."""

    def test_demux_frames(self):
        data = frame(1, b"out\n") + frame(2, b"err\n") + frame(1, b"more")
        assert demux_stream(data) == "out\nerr\nmore"

    def test_demux_tty_output(self):
        assert demux_stream(b"plain tty output") == "plain tty output"
        assert demux_stream(b"") == ""

    def test_port_bindings_from_dict(self):
        exposed, bindings = build_port_bindings({"80/tcp": 8080, 53: None, "53/udp": 5353})
        assert exposed == {"80/tcp": {}, "53/tcp": {}, "53/udp": {}}
        assert bindings == {"80/tcp": [{"HostPort": "8080"}], "53/udp": [{"HostPort": "5353"}]}

    def test_port_bindings_with_ip(self):
        _, bindings = build_port_bindings(["127.0.0.1:8080:80"])
        assert bindings == {"80/tcp": [{"HostPort": "8080", "HostIp": "127.0.0.1"}]}

    def test_port_bindings_malformed_dict_key(self):
        with pytest.raises(ValidationError):
            build_port_bindings({"http": 80})


class TestImages:
    """Tests for ImageCollection."""

    def test_exists_and_get(self, docker):
        assert docker.images().exists("nginx:latest")
        assert not docker.images().exists("ghost:1")
        assert docker.images().get("nginx:latest").tags == ["nginx:latest"]
        with pytest.raises(ImageNotFound):
            docker.images().get("ghost:1")

    def test_pull_returns_events(self, docker, fake_daemon):
        events = docker.images().pull("alpine:3.19")
        assert events[-1]["status"].endswith("alpine:3.19")
        assert docker.images().exists("alpine:3.19")

    def test_pull_by_digest(self, docker, fake_daemon):
        docker.images().pull("alpine@sha256:abc")
        params = fake_daemon.calls_to("POST", r"/images/create")[0]["params"]
        assert params["fromImage"] == "alpine@sha256:abc"
        assert "tag" not in params

    def test_pull_needs_image_or_src(self, docker, fake_daemon):
        with pytest.raises(ValidationError):
            docker.images().pull()
        assert fake_daemon.calls == []

    def test_pull_with_both_auth_forms_fails_before_request(self, docker, fake_daemon):
        """Test giving password and token credentials together is refused locally."""
        with pytest.raises(ValidationError) as exc:
            docker.images().pull("nginx:latest",
                                 auth_password={"username": "u", "password": "p"},
                                 auth_token={"identity_token": "t"})
        assert "Only one of these options is allowed" in str(exc.value)
        assert fake_daemon.calls == []

    def test_pull_sends_registry_auth_header(self, docker, fake_daemon):
        docker.images().pull("registry.example/app:1",
                             auth_password={"username": "u", "password": "p",
                                            "server_address": "registry.example"})
        header = fake_daemon.calls_to("POST", r"/images/create")[0]["headers"]["X-Registry-Auth"]
        assert json.loads(base64.urlsafe_b64decode(header)) == {
            "username": "u", "password": "p", "serveraddress": "registry.example",
        }

    def test_push_with_token(self, docker, fake_daemon):
        docker.images().push("registry.example/app:1", auth_token=TokenAuth(identity_token="tok"))
        call = fake_daemon.calls_to("POST", r"/images/.+/push")[0]
        assert call["path"] == "/images/registry.example/app/push"
        assert call["params"] == {"tag": "1"}
        assert json.loads(base64.urlsafe_b64decode(call["headers"]["X-Registry-Auth"])) == {
            "identitytoken": "tok"
        }

    def test_build(self, docker, tmp_path):
        (tmp_path / "Dockerfile").write_text("FROM scratch\n")
        lines = []
        image = docker.images().build(path=str(tmp_path), tag="app:dev", callback=lines.append)
        assert image.tags == ["app:dev"]
        assert lines == ["Step 1/1 : FROM scratch"]

    def test_build_error(self, docker, fake_daemon, tmp_path):
        (tmp_path / "Dockerfile").write_text("FROM scratch\n")
        fake_daemon.build_error = "COPY failed: file not found"
        with pytest.raises(BuildError) as exc:
            docker.images().build(path=str(tmp_path), tag="app:dev")
        assert "COPY failed" in str(exc.value)

    def test_build_needs_directory(self, docker, tmp_path):
        with pytest.raises(ValidationError):
            docker.images().build(path=str(tmp_path / "missing"), tag="app:dev")

    def test_tag_history_remove(self, docker):
        images = docker.images()
        assert images.tag("nginx:latest", "mirror/nginx", "stable") is True
        assert images.exists("mirror/nginx:stable")
        assert images.history("nginx:latest")[0]["Id"] == "layer"
        images.remove("mirror/nginx:stable")
        assert not images.exists("mirror/nginx:stable")

    def test_export(self, docker, tmp_path):
        assert docker.images().export("nginx:latest") == b"TARBALL"
        out = tmp_path / "nginx.tar"
        assert docker.images().export(["nginx:latest"], output=str(out)) is None
        assert out.read_bytes() == b"TARBALL"

    def test_tar_build_context_honours_dockerignore(self, tmp_path):
        import io
        import tarfile

        (tmp_path / "Dockerfile").write_text("FROM scratch\n")
        (tmp_path / ".dockerignore").write_text("secrets\n# comment\n")
        (tmp_path / "secrets").mkdir()
        (tmp_path / "secrets" / "key").write_text("x")
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "app.py").write_text("print()")
        with tarfile.open(fileobj=io.BytesIO(tar_build_context(str(tmp_path)))) as tar:
            names = sorted(tar.getnames())
        assert names == [".dockerignore", "Dockerfile", "src/app.py"]


class TestAuth:
    """Tests for registry credential validation."""

    def test_none(self):
        assert resolve_auth() is None
        assert json.loads(base64.urlsafe_b64decode(encode_auth_header(None))) == {}

    def test_password_dict(self):
        auth = resolve_auth(auth_password={"username": "u", "password": "p"})
        assert isinstance(auth, PasswordAuth)

    def test_unexpected_field(self):
        with pytest.raises(ValidationError):
            resolve_auth(auth_password={"user": "u"})

    def test_blank_token(self):
        with pytest.raises(ValidationError):
            resolve_auth(auth_token={"identity_token": "  "})


class TestNetworksAndVolumes:
    """Tests for NetworkCollection and VolumeCollection."""

    def test_network_roundtrip(self, docker):
        network = docker.networks().create("backend", labels={"team": "core"})
        assert docker.networks().get("backend").labels == {"team": "core"}
        assert [n.name for n in docker.networks().list(filters={"label": ["team=core"]})] == ["backend"]
        network.remove()
        with pytest.raises(NetworkNotFound):
            docker.networks().get("backend")

    def test_duplicate_network(self, docker):
        docker.networks().create("backend")
        with pytest.raises(Conflict):
            docker.networks().create("backend")

    def test_connect(self, docker, fake_daemon):
        docker.networks().create("backend")
        container = docker.containers().create("busybox:latest", name="box")
        docker.networks().connect("backend", container.id, aliases=["box"])
        assert fake_daemon.networks["backend"]["Containers"] == [container.id]
        body = fake_daemon.calls_to("POST", r"/networks/backend/connect")[0]["data"]
        assert body["EndpointConfig"] == {"Aliases": ["box"]}
        docker.networks().get("backend").disconnect(container.id)
        assert fake_daemon.networks["backend"]["Containers"] == []

    def test_volume_roundtrip(self, docker):
        volume = docker.volumes().create("data", labels={"keep": "yes"})
        assert volume.name == "data"
        assert [v.name for v in docker.volumes().list()] == ["data"]
        volume.remove()
        with pytest.raises(VolumeNotFound):
            docker.volumes().get("data")
