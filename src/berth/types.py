"""Core value types for berth.

Narrower than the Docker SDK's wire dicts: callers
work with ContainerSpec/ContainerRecord/NetworkRecord and never with raw
engine payloads.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from docker.types import Mount as DockerMount


class MountKind(str, Enum):
    """Kind of mount attached to a container."""

    VOLUME = "volume"
    BIND = "bind"


class ContainerState(str, Enum):
    """Lifecycle state of a named container slot."""

    ABSENT = "absent"
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"

    @classmethod
    def from_engine(cls, state: str | None) -> ContainerState:
        """Map the engine's raw state string onto the slot state machine."""
        if not state:
            return cls.ABSENT
        if state == "created":
            return cls.CREATED
        if state == "running":
            return cls.RUNNING
        # exited, paused, dead, restarting, removing
        return cls.STOPPED


@dataclass(frozen=True)
class Mount:
    """A volume or bind mount."""

    source: str
    target: str
    kind: MountKind = MountKind.VOLUME
    read_only: bool = False
    consistency: str | None = None  # "delegated" on non-linux hosts

    def to_docker(self) -> DockerMount:
        return DockerMount(
            target=self.target,
            source=self.source,
            type=self.kind.value,
            read_only=self.read_only,
            consistency=self.consistency,
        )


@dataclass(frozen=True)
class PortBinding:
    """Exposed container port and the host port it is published on.

    public == 0 lets the engine choose a host port, public == -1 reuses the
    private port number.
    """

    private: int
    public: int = 0

    def host_port(self) -> int | None:
        if self.public == 0:
            return None
        if self.public == -1:
            return self.private
        return self.public


@dataclass(frozen=True)
class ContainerSpec:
    """Everything needed to create a container. Immutable and hashable once built.

    ``environment`` holds ``(key, value)`` pairs in the order they were set.
    """

    image: str
    command: tuple[str, ...] = ()
    environment: tuple[tuple[str, str], ...] = ()
    mounts: tuple[Mount, ...] = ()
    ports: tuple[PortBinding, ...] = ()
    interactive: bool = False

    def to_create_kwargs(
        self,
        api: Any,
        name: str,
        console_size: tuple[int, int] | None = None,
    ) -> dict[str, Any]:
        """Convert to low-level Docker SDK ``create_container`` arguments.

        Args:
            api: docker.APIClient used to build the host config.
            name: Container name.
            console_size: Initial (height, width) of the TTY, if known.

        Returns:
            Keyword arguments for ``APIClient.create_container``.
        """
        port_bindings: dict[int, list[int | None]] = {}
        for binding in self.ports:
            port_bindings.setdefault(binding.private, []).append(binding.host_port())

        host_config = api.create_host_config(
            mounts=[m.to_docker() for m in self.mounts] or None,
            port_bindings=port_bindings or None,
        )
        if console_size is not None:
            # HostConfig is a dict; the SDK has no keyword for this field
            host_config["ConsoleSize"] = list(console_size)

        kwargs: dict[str, Any] = {
            "image": self.image,
            "command": list(self.command) or None,
            "environment": dict(self.environment),
            "host_config": host_config,
            "name": name,
            "ports": list(port_bindings) or None,
        }

        if self.interactive:
            # detach=False makes the SDK set AttachStdin/Stdout/Stderr
            kwargs["detach"] = False
            kwargs["stdin_open"] = True
            kwargs["tty"] = True
        else:
            kwargs["detach"] = True

        return kwargs


SpecOption = Callable[[ContainerSpec], ContainerSpec]


def apply_options(spec: ContainerSpec, *options: SpecOption) -> ContainerSpec:
    """Return a new spec with every option applied in order."""
    for option in options:
        spec = option(spec)
    return spec


def with_env(key: str, value: str) -> SpecOption:
    """Set an environment variable, replacing an earlier value for ``key``."""

    def option(spec: ContainerSpec) -> ContainerSpec:
        env = tuple((k, v) for k, v in spec.environment if k != key)
        return dataclasses.replace(spec, environment=env + ((key, value),))

    return option


def with_cmd(*args: str) -> SpecOption:
    """Append arguments to the command."""

    def option(spec: ContainerSpec) -> ContainerSpec:
        return dataclasses.replace(spec, command=spec.command + tuple(args))

    return option


def with_port(public: int, private: int) -> SpecOption:
    """Add a port binding. See PortBinding for the meaning of 0 and -1."""

    def option(spec: ContainerSpec) -> ContainerSpec:
        return dataclasses.replace(spec, ports=spec.ports + (PortBinding(private, public),))

    return option


def _with_mount(
    kind: MountKind, source: str, target: str, read_only: bool, host_os: str
) -> SpecOption:
    consistency = "delegated" if host_os and host_os != "linux" else None

    def option(spec: ContainerSpec) -> ContainerSpec:
        mount = Mount(
            source=source,
            target=target,
            kind=kind,
            read_only=read_only,
            consistency=consistency,
        )
        return dataclasses.replace(spec, mounts=spec.mounts + (mount,))

    return option


def with_volume(name: str, target: str, host_os: str = "") -> SpecOption:
    return _with_mount(MountKind.VOLUME, name, target, False, host_os)


def with_shared_directory(host_path: str, target: str, host_os: str = "") -> SpecOption:
    return _with_mount(MountKind.BIND, host_path, target, False, host_os)


def with_ro_shared_directory(host_path: str, target: str, host_os: str = "") -> SpecOption:
    return _with_mount(MountKind.BIND, host_path, target, True, host_os)


@dataclass(frozen=True)
class ContainerRecord:
    """A container known to the engine, identified externally by name."""

    id: str
    name: str
    state: ContainerState
    image: str
    ports: tuple[dict[str, Any], ...] = ()

    @property
    def is_running(self) -> bool:
        return self.state is ContainerState.RUNNING

    @classmethod
    def from_summary(cls, summary: dict[str, Any], name: str | None = None) -> ContainerRecord:
        """Build a record from an entry of ``APIClient.containers()``."""
        if name is None:
            names = summary.get("Names") or [""]
            name = names[0].lstrip("/")
        return cls(
            id=summary["Id"],
            name=name,
            state=ContainerState.from_engine(summary.get("State")),
            image=summary.get("Image", ""),
            ports=tuple(summary.get("Ports") or ()),
        )


@dataclass(frozen=True)
class NetworkRecord:
    id: str
    name: str

    @classmethod
    def from_attrs(cls, attrs: dict[str, Any]) -> NetworkRecord:
        return cls(id=attrs["Id"], name=attrs["Name"])


@dataclass(frozen=True)
class VolumeRecord:
    name: str
    driver: str = "local"
    mountpoint: str = ""

    @classmethod
    def from_attrs(cls, attrs: dict[str, Any]) -> VolumeRecord:
        return cls(
            name=attrs["Name"],
            driver=attrs.get("Driver", "local"),
            mountpoint=attrs.get("Mountpoint", ""),
        )


@dataclass(frozen=True)
class ImageRecord:
    id: str
    repo_tags: tuple[str, ...] = ()

    @classmethod
    def from_summary(cls, summary: dict[str, Any]) -> ImageRecord:
        return cls(id=summary["Id"], repo_tags=tuple(summary.get("RepoTags") or ()))
