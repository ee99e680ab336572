"""Test fixtures for berth.

FakeDockerAPI is an in-memory stand-in for ``docker.APIClient`` covering the
calls berth makes. It raises the same docker.errors exceptions the real
client raises, so error paths are exercised for real.
"""

from __future__ import annotations

import socket
import threading
import uuid
from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests
from docker.errors import APIError, ImageNotFound, NotFound
from docker.types import HostConfig

from berth.engine import EngineHandle


def make_api_error(message: str, status_code: int) -> APIError:
    response = requests.Response()
    response.status_code = status_code
    return APIError(message, response=response, explanation=message)


class FakeDockerAPI:
    """In-memory engine: containers, networks, images and volumes."""

    api_version = "1.43"

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.containers_by_name: dict[str, dict[str, Any]] = {}
        self.created_kwargs: list[dict[str, Any]] = []
        self.networks_by_name: dict[str, dict[str, Any]] = {}
        self.network_members: dict[str, list[str]] = {}
        self.image_tags: list[str] = []
        self.volumes_by_name: dict[str, dict[str, Any]] = {}
        self.exit_codes: dict[str, int] = {}
        self.calls: list[str] = []
        self.resizes: list[tuple[str, int, int]] = []
        self.create_network_barrier: threading.Barrier | None = None
        self.fail_next_create: APIError | None = None
        self.remote_sockets: list[socket.socket] = []

    # Containers

    def create_host_config(self, **kwargs: Any) -> HostConfig:
        return HostConfig(version=self.api_version, **kwargs)

    def containers(self, all: bool = False, filters: dict[str, Any] | None = None) -> list[dict]:
        with self.lock:
            summaries = list(self.containers_by_name.values())
        if not all:
            summaries = [s for s in summaries if s["State"] == "running"]
        if filters and "name" in filters:
            # The engine's name filter matches substrings
            summaries = [s for s in summaries if filters["name"] in s["Names"][0]]
        return [dict(s) for s in summaries]

    def create_container(self, image: str, name: str, **kwargs: Any) -> dict[str, str]:
        self.calls.append(f"create:{name}")
        with self.lock:
            if self.fail_next_create is not None:
                error, self.fail_next_create = self.fail_next_create, None
                raise error
            if name in self.containers_by_name:
                raise make_api_error(
                    f'Conflict. The container name "/{name}" is already in use', 409
                )
            container_id = uuid.uuid4().hex
            self.containers_by_name[name] = {
                "Id": container_id,
                "Names": [f"/{name}"],
                "Image": image,
                "State": "created",
                "Ports": [],
            }
            self.created_kwargs.append({"image": image, "name": name, **kwargs})
        return {"Id": container_id, "Warnings": []}

    def _by_id(self, container_id: str) -> dict[str, Any]:
        for summary in self.containers_by_name.values():
            if summary["Id"] == container_id:
                return summary
        raise NotFound(f"No such container: {container_id}")

    def start(self, container_id: str) -> None:
        self.calls.append("start")
        with self.lock:
            self._by_id(container_id)["State"] = "running"

    def stop_container(self, name: str, exit_code: int = 0) -> None:
        """Test helper: simulate the container process exiting."""
        with self.lock:
            summary = self.containers_by_name[name]
            summary["State"] = "exited"
            self.exit_codes[summary["Id"]] = exit_code

    def remove_container(self, container_id: str, force: bool = False, v: bool = False) -> None:
        self.calls.append("remove")
        with self.lock:
            summary = self._by_id(container_id)
            name = summary["Names"][0].lstrip("/")
            del self.containers_by_name[name]

    def wait(self, container_id: str, condition: str | None = None) -> dict[str, int]:
        return {"StatusCode": self.exit_codes.get(container_id, 0)}

    def resize(self, container_id: str, height: int, width: int) -> None:
        self.resizes.append((container_id, height, width))

    def logs(self, container_id: str, **kwargs: Any) -> Any:
        return iter([b"log line\n"])

    def attach_socket(self, container_id: str, params: dict[str, Any] | None = None) -> Any:
        """Hand out one end of a socketpair; the other end plays the container."""
        self.calls.append("attach")
        local, remote = socket.socketpair()
        self.remote_sockets.append(remote)
        return local

    # Networks

    def inspect_network(self, name: str) -> dict[str, Any]:
        with self.lock:
            if name not in self.networks_by_name:
                raise NotFound(f"network {name} not found")
            return dict(self.networks_by_name[name])

    def create_network(self, name: str, check_duplicate: bool | None = None) -> dict[str, str]:
        if self.create_network_barrier is not None:
            self.create_network_barrier.wait(timeout=5)
        with self.lock:
            if name in self.networks_by_name:
                raise make_api_error(f"network with name {name} already exists", 409)
            network_id = uuid.uuid4().hex
            self.networks_by_name[name] = {"Id": network_id, "Name": name}
            self.network_members[name] = []
        return {"Id": network_id}

    def connect_container_to_network(self, container_id: str, net_id: str) -> None:
        self.calls.append("connect")
        with self.lock:
            if net_id not in self.networks_by_name:
                raise NotFound(f"network {net_id} not found")
            members = self.network_members[net_id]
            if container_id in members:
                raise make_api_error(
                    f"endpoint with name x already exists in network {net_id}", 403
                )
            members.append(container_id)

    def networks(self) -> list[dict[str, Any]]:
        with self.lock:
            return [dict(n) for n in self.networks_by_name.values()]

    def remove_network(self, net_id: str) -> None:
        with self.lock:
            for name, attrs in list(self.networks_by_name.items()):
                if attrs["Id"] == net_id:
                    del self.networks_by_name[name]
                    return
        raise NotFound(f"network {net_id} not found")

    # Images

    def images(self) -> list[dict[str, Any]]:
        return [{"Id": f"sha256:{i}", "RepoTags": [tag]} for i, tag in enumerate(self.image_tags)]

    def pull(self, repository: str, tag: str | None = None, **kwargs: Any) -> Any:
        self.calls.append(f"pull:{repository}:{tag}")
        self.image_tags.append(f"{repository}:{tag}")
        return iter([{"status": "Pulling"}, {"status": "Downloaded newer image"}])

    def remove_image(self, image: str, force: bool = False) -> None:
        if image not in self.image_tags:
            raise ImageNotFound(f"No such image: {image}")
        self.image_tags.remove(image)

    # Volumes

    def inspect_volume(self, name: str) -> dict[str, Any]:
        if name not in self.volumes_by_name:
            raise NotFound(f"volume {name} not found")
        return self.volumes_by_name[name]

    def create_volume(self, name: str) -> dict[str, Any]:
        self.volumes_by_name[name] = {"Name": name, "Driver": "local", "Mountpoint": f"/v/{name}"}
        return self.volumes_by_name[name]

    def volumes(self) -> dict[str, Any]:
        return {"Volumes": list(self.volumes_by_name.values())}

    def remove_volume(self, name: str, force: bool = False) -> None:
        if name not in self.volumes_by_name:
            raise NotFound(f"volume {name} not found")
        del self.volumes_by_name[name]


@pytest.fixture
def fake_api() -> Iterator[FakeDockerAPI]:
    api = FakeDockerAPI()
    yield api
    for remote in api.remote_sockets:
        remote.close()


@pytest.fixture
def handle(fake_api: FakeDockerAPI) -> EngineHandle:
    """EngineHandle whose low-level API is the in-memory fake."""
    client = MagicMock()
    client.api = fake_api
    client.info.return_value = {"OperatingSystem": "Docker Desktop", "OSType": "linux"}
    return EngineHandle(client=client)
