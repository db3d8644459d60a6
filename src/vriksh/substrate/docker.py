"""
Docker Engine substrate.

Talks to the Docker Engine HTTP API over its unix socket with httpx, so no
docker CLI or SDK is needed on the control node.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from vriksh.config import Settings
from vriksh.core.errors import SubstrateError
from vriksh.substrate.base import ExecResult, StartedResource, network_name, resource_name

logger = structlog.get_logger()

DEFAULT_SOCKET = "/var/run/docker.sock"
DEFAULT_API_VERSION = "v1.43"


def _split_image(image: str) -> tuple[str, str | None]:
    """Split an image reference into (repository, tag) for /images/create."""
    if "@" in image:
        return image, None
    repo, sep, tag = image.rpartition(":")
    if sep and "/" not in tag:
        return repo, tag
    return image, "latest"


def _port_key(container_port: str) -> str:
    return container_port if "/" in container_port else f"{container_port}/tcp"


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("message", response.text))
    except ValueError:
        return response.text


class DockerSubstrate:
    """Execution substrate backed by a local Docker Engine."""

    backend = "docker"
    runs_workloads = True

    def __init__(
        self,
        *,
        socket_path: str = DEFAULT_SOCKET,
        api_version: str = DEFAULT_API_VERSION,
        prefix: str = "vriksh",
        timeout: float = 30.0,
        pull_timeout: float = 900.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._prefix = prefix
        self._pull_timeout = pull_timeout
        self._client = httpx.AsyncClient(
            transport=transport or httpx.AsyncHTTPTransport(uds=socket_path),
            base_url=f"http://docker/{api_version}",
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> DockerSubstrate:
        return cls(
            socket_path=settings.docker_socket,
            api_version=settings.docker_api_version,
            prefix=settings.resource_prefix,
            timeout=settings.http_timeout,
            pull_timeout=settings.image_pull_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        reraise=True,
    )
    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.request(method, path, **kwargs)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        allow: Sequence[int] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("docker_request_failed", method=method, path=path, error=str(exc))
            raise SubstrateError(f"Docker API {method} {path} failed: {exc}") from exc

        if response.status_code >= 400 and response.status_code not in allow:
            message = _error_message(response)
            logger.error(
                "docker_api_error",
                method=method,
                path=path,
                status=response.status_code,
                error=message,
            )
            raise SubstrateError(
                f"Docker API {method} {path} returned {response.status_code}: {message}",
                {"status": response.status_code},
            )
        return response

    async def check_reachable(self) -> bool:
        try:
            response = await self._client.get("/_ping")
        except httpx.HTTPError as exc:
            logger.warning("docker_unreachable", error=str(exc))
            return False
        return response.status_code == 200

    async def _find_network(self, name: str) -> str | None:
        response = await self._request(
            "GET", "/networks", params={"filters": json.dumps({"name": [name]})}
        )
        # The name filter matches substrings
        for network in response.json():
            if network.get("Name") == name:
                return network["Id"]
        return None

    async def create_shared_network(self, run_id: str) -> str:
        name = network_name(self._prefix, run_id)
        existing = await self._find_network(name)
        if existing:
            return existing

        response = await self._request(
            "POST",
            "/networks/create",
            json={
                "Name": name,
                "Driver": "bridge",
                "CheckDuplicate": True,
                "Labels": {f"{self._prefix}.run": run_id},
            },
            allow=(409,),
        )
        if response.status_code == 409:
            existing = await self._find_network(name)
            if existing:
                return existing
            raise SubstrateError(f"Network {name} conflicts but cannot be found")

        network_id = response.json()["Id"]
        logger.info("network_created", run_id=run_id, network=name, network_id=network_id)
        return network_id

    async def remove_shared_network(self, run_id: str) -> None:
        name = network_name(self._prefix, run_id)
        network_id = await self._find_network(name)
        if network_id is None:
            return
        await self._request("DELETE", f"/networks/{network_id}", allow=(404,))
        logger.info("network_removed", run_id=run_id, network=name)

    async def _ensure_image(self, image: str) -> None:
        response = await self._request("GET", f"/images/{image}/json", allow=(404,))
        if response.status_code != 404:
            return

        repo, tag = _split_image(image)
        params = {"fromImage": repo}
        if tag:
            params["tag"] = tag
        logger.info("image_pull_started", image=image)
        response = await self._request(
            "POST", "/images/create", params=params, timeout=self._pull_timeout
        )
        # Pull progress is streamed as JSON lines; failures arrive in-band
        for line in response.text.splitlines():
            if not line.strip():
                continue
            try:
                progress = json.loads(line)
            except ValueError:
                continue
            if "error" in progress:
                raise SubstrateError(f"Failed to pull image {image}: {progress['error']}")
        logger.info("image_pull_finished", image=image)

    async def start_resource(
        self,
        run_id: str,
        image: str,
        name: str,
        env: Sequence[str] = (),
        ports: Mapping[str, str] | None = None,
    ) -> StartedResource:
        container_name = resource_name(self._prefix, run_id, name)
        ports = dict(ports or {})

        try:
            await self._ensure_image(image)
        except SubstrateError as exc:
            raise SubstrateError(f"Failed to start container {name}: {exc.message}") from exc

        exposed = {_port_key(cp): {} for cp in ports.values()}
        bindings = {_port_key(cp): [{"HostPort": str(hp)}] for hp, cp in ports.items()}
        body = {
            "Image": image,
            "Env": list(env),
            "ExposedPorts": exposed,
            "Labels": {f"{self._prefix}.run": run_id, f"{self._prefix}.resource": name},
            "HostConfig": {
                "PortBindings": bindings,
                "NetworkMode": network_name(self._prefix, run_id),
            },
        }
        response = await self._request(
            "POST", "/containers/create", params={"name": container_name}, json=body
        )
        container_id = response.json()["Id"]

        try:
            await self._request("POST", f"/containers/{container_id}/start", allow=(304,))
        except SubstrateError:
            await self.stop_resource(container_id)
            raise

        logger.info(
            "container_started",
            run_id=run_id,
            container=container_name,
            container_id=container_id,
        )
        return StartedResource(resource_id=container_id, port_mappings=ports)

    async def stop_resource(self, resource_id: str) -> None:
        await self._request("POST", f"/containers/{resource_id}/stop", allow=(304, 404))
        await self._request(
            "DELETE", f"/containers/{resource_id}", params={"force": "true"}, allow=(404,)
        )
        logger.info("container_stopped", container_id=resource_id)

    async def exec_in_resource(self, resource_id: str, command: Sequence[str]) -> ExecResult:
        response = await self._request(
            "POST",
            f"/containers/{resource_id}/exec",
            json={
                "Cmd": list(command),
                "AttachStdout": True,
                "AttachStderr": True,
                "Tty": True,
            },
        )
        exec_id = response.json()["Id"]
        output = await self._request(
            "POST",
            f"/exec/{exec_id}/start",
            json={"Detach": False, "Tty": True},
            timeout=self._pull_timeout,
        )
        inspect = await self._request("GET", f"/exec/{exec_id}/json")
        exit_code = inspect.json().get("ExitCode")
        return ExecResult(exit_code=exit_code if exit_code is not None else -1, output=output.text)
