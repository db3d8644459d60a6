"""Tests for the execution substrates.

The Docker substrate is driven against an ``httpx.MockTransport`` that
plays a tiny Docker Engine.
"""

from __future__ import annotations

import json

import httpx
import pytest
from vriksh.config import Settings
from vriksh.core.errors import SubstrateError
from vriksh.substrate import create_substrate
from vriksh.substrate.base import ExecResult
from vriksh.substrate.docker import DockerSubstrate, _split_image
from vriksh.substrate.memory import InMemorySubstrate


class FakeEngine:
    """Just enough of the Docker Engine API for the substrate."""

    def __init__(self, *, images=("nginx:1.27",), pull_error=None, exit_code=0):
        self.images = set(images)
        self.pull_error = pull_error
        self.exit_code = exit_code
        self.networks: dict[str, str] = {}
        self.containers: dict[str, dict] = {}
        self.requests: list[tuple[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path.removeprefix("/v1.43")
        self.requests.append((method, path))

        if path == "/_ping":
            return httpx.Response(200, text="OK")

        if path == "/networks" and method == "GET":
            wanted = json.loads(request.url.params["filters"])["name"][0]
            return httpx.Response(
                200,
                json=[{"Name": n, "Id": i} for n, i in self.networks.items() if wanted in n],
            )
        if path == "/networks/create":
            body = json.loads(request.content)
            if body["Name"] in self.networks:
                return httpx.Response(409, json={"message": "network already exists"})
            network_id = f"net{len(self.networks) + 1}"
            self.networks[body["Name"]] = network_id
            return httpx.Response(201, json={"Id": network_id})
        if path.startswith("/networks/") and method == "DELETE":
            network_id = path.rsplit("/", 1)[1]
            self.networks = {n: i for n, i in self.networks.items() if i != network_id}
            return httpx.Response(204)

        if path.startswith("/images/") and path.endswith("/json"):
            image = path[len("/images/") : -len("/json")]
            if image in self.images:
                return httpx.Response(200, json={"Id": "sha256:abc"})
            return httpx.Response(404, json={"message": f"No such image: {image}"})
        if path == "/images/create":
            if self.pull_error:
                return httpx.Response(200, text=json.dumps({"error": self.pull_error}) + "\n")
            image = request.url.params["fromImage"]
            tag = request.url.params.get("tag")
            self.images.add(f"{image}:{tag}" if tag else image)
            return httpx.Response(200, text='{"status": "Pulling"}\n{"status": "Done"}\n')

        if path == "/containers/create":
            container_id = f"c{len(self.containers) + 1}"
            self.containers[container_id] = {
                "name": request.url.params["name"],
                "body": json.loads(request.content),
                "running": False,
            }
            return httpx.Response(201, json={"Id": container_id})
        if path.startswith("/containers/"):
            parts = path.split("/")
            container = self.containers.get(parts[2])
            if container is None:
                return httpx.Response(404, json={"message": "No such container"})
            if method == "DELETE":
                del self.containers[parts[2]]
                return httpx.Response(204)
            action = parts[3]
            if action == "start":
                container["running"] = True
                return httpx.Response(204)
            if action == "stop":
                if not container["running"]:
                    return httpx.Response(304)
                container["running"] = False
                return httpx.Response(204)
            if action == "exec":
                return httpx.Response(201, json={"Id": "exec1"})

        if path == "/exec/exec1/start":
            return httpx.Response(200, text="hello from the container\n")
        if path == "/exec/exec1/json":
            return httpx.Response(200, json={"ExitCode": self.exit_code, "Running": False})

        return httpx.Response(500, json={"message": f"unexpected {method} {path}"})


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
async def docker(engine):
    substrate = DockerSubstrate(transport=httpx.MockTransport(engine))
    yield substrate
    await substrate.aclose()


class TestDockerSubstrate:
    @pytest.mark.asyncio
    async def test_reachable(self, docker):
        assert await docker.check_reachable()

    @pytest.mark.asyncio
    async def test_network_is_idempotent(self, docker, engine):
        first = await docker.create_shared_network("run-1")
        second = await docker.create_shared_network("run-1")

        assert first == second
        assert engine.networks == {"vriksh-net-run-1": first}

        await docker.remove_shared_network("run-1")
        await docker.remove_shared_network("run-1")
        assert engine.networks == {}

    @pytest.mark.asyncio
    async def test_network_name_filter_is_exact(self, docker, engine):
        engine.networks["vriksh-net-run-10"] = "other"

        network_id = await docker.create_shared_network("run-1")

        assert network_id != "other"
        assert set(engine.networks) == {"vriksh-net-run-1", "vriksh-net-run-10"}

    @pytest.mark.asyncio
    async def test_start_resource(self, docker, engine):
        started = await docker.start_resource(
            "run-1", "nginx:1.27", "web", ["MODE=lab"], {"8080": "80"}
        )

        container = engine.containers[started.resource_id]
        assert container["running"]
        assert container["name"] == "vriksh-run-1-web"
        body = container["body"]
        assert body["Env"] == ["MODE=lab"]
        assert body["ExposedPorts"] == {"80/tcp": {}}
        assert body["HostConfig"]["PortBindings"] == {"80/tcp": [{"HostPort": "8080"}]}
        assert body["HostConfig"]["NetworkMode"] == "vriksh-net-run-1"
        assert body["Labels"]["vriksh.run"] == "run-1"
        assert started.port_mappings == {"8080": "80"}
        assert ("POST", "/images/create") not in engine.requests

    @pytest.mark.asyncio
    async def test_missing_image_is_pulled(self, docker, engine):
        await docker.start_resource("run-1", "redis:7", "cache")

        assert ("POST", "/images/create") in engine.requests
        assert "redis:7" in engine.images

    @pytest.mark.asyncio
    async def test_pull_error_fails_start(self, engine):
        engine.pull_error = "manifest unknown"
        docker = DockerSubstrate(transport=httpx.MockTransport(engine))

        with pytest.raises(SubstrateError) as exc_info:
            await docker.start_resource("run-1", "ghost:1", "web")
        await docker.aclose()

        assert "manifest unknown" in exc_info.value.message
        assert engine.containers == {}

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, docker, engine):
        started = await docker.start_resource("run-1", "nginx:1.27", "web")

        await docker.stop_resource(started.resource_id)
        await docker.stop_resource(started.resource_id)

        assert engine.containers == {}

    @pytest.mark.asyncio
    async def test_exec(self, docker, engine):
        started = await docker.start_resource("run-1", "nginx:1.27", "web")

        result = await docker.exec_in_resource(started.resource_id, ["echo", "hello"])

        assert result.ok
        assert result.output == "hello from the container\n"

    @pytest.mark.asyncio
    async def test_exec_nonzero_exit(self, engine):
        engine.exit_code = 3
        docker = DockerSubstrate(transport=httpx.MockTransport(engine))
        started = await docker.start_resource("run-1", "nginx:1.27", "web")

        result = await docker.exec_in_resource(started.resource_id, ["false"])
        await docker.aclose()

        assert result.exit_code == 3
        assert not result.ok

    @pytest.mark.asyncio
    async def test_api_error_becomes_substrate_error(self, docker):
        with pytest.raises(SubstrateError) as exc_info:
            await docker.exec_in_resource("missing", ["true"])

        assert exc_info.value.details == {"status": 404}


@pytest.mark.parametrize(
    "image, expected",
    [
        ("nginx", ("nginx", "latest")),
        ("nginx:1.27", ("nginx", "1.27")),
        ("localhost:5000/team/app", ("localhost:5000/team/app", "latest")),
        ("localhost:5000/team/app:2", ("localhost:5000/team/app", "2")),
        ("nginx@sha256:abc", ("nginx@sha256:abc", None)),
    ],
)
def test_split_image(image, expected):
    assert _split_image(image) == expected


class TestInMemorySubstrate:
    @pytest.mark.asyncio
    async def test_network_calls_are_idempotent(self):
        substrate = InMemorySubstrate()

        first = await substrate.create_shared_network("run-1")
        assert await substrate.create_shared_network("run-1") == first

        await substrate.remove_shared_network("run-1")
        await substrate.remove_shared_network("run-1")
        assert substrate.networks == {}

    @pytest.mark.asyncio
    async def test_stop_unknown_resource(self):
        substrate = InMemorySubstrate()

        await substrate.stop_resource("mem-9999")

        assert substrate.stop_calls == ["mem-9999"]

    @pytest.mark.asyncio
    async def test_exec_handler(self):
        substrate = InMemorySubstrate(exec_handler=lambda rid, cmd: ExecResult(2, " ".join(cmd)))
        started = await substrate.start_resource("run-1", "alpine", "box")

        result = await substrate.exec_in_resource(started.resource_id, ["ls", "-l"])

        assert result == ExecResult(2, "ls -l")
        assert substrate.exec_calls == [(started.resource_id, ["ls", "-l"])]

    @pytest.mark.asyncio
    async def test_exec_on_stopped_resource(self):
        substrate = InMemorySubstrate()
        started = await substrate.start_resource("run-1", "alpine", "box")
        await substrate.stop_resource(started.resource_id)

        with pytest.raises(SubstrateError):
            await substrate.exec_in_resource(started.resource_id, ["true"])


def test_create_substrate_by_backend(tmp_path):
    settings = Settings(_env_file=None, home_dir=tmp_path, backend="memory")

    assert isinstance(create_substrate(settings), InMemorySubstrate)
    docker = create_substrate(settings.model_copy(update={"backend": "docker"}))
    assert isinstance(docker, DockerSubstrate)
