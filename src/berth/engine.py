"""Engine gateway: acquire and validate a connection to the Docker engine.

Every other module receives the EngineHandle returned by connect() explicitly;
there is no module-level client.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

import docker
from docker.errors import DockerException
from requests.exceptions import RequestException

from berth.errors import EngineConnectionError, UnsupportedEngineError

logger = logging.getLogger(__name__)

# Engine variants we refuse to talk to, matched case-insensitively against
# the OperatingSystem reported by the daemon.
UNSUPPORTED_VARIANTS = {"boot2docker": "Docker Toolbox"}

_WINDOWS_DRIVE = re.compile(r"^(\w):")


@dataclass(frozen=True)
class EngineHandle:
    """Validated connection to the container engine."""

    client: docker.DockerClient

    @property
    def api(self) -> docker.APIClient:
        """Low-level API client."""
        return self.client.api


def connect(**client_kwargs: Any) -> EngineHandle:
    """Create a Docker client from the environment and validate it.

    Performs three checks:
      1. the engine is installed and running,
      2. the engine is not a known unsupported variant (Docker Toolbox),
      3. the client API version is supported by the engine.

    Args:
        **client_kwargs: Forwarded to ``docker.from_env`` (e.g. ``timeout``).

    Returns:
        EngineHandle wrapping the validated client.

    Raises:
        EngineConnectionError: Engine unreachable or version negotiation failed.
        UnsupportedEngineError: Engine is a known incompatible variant.
    """
    logger.debug("Creating docker client from env")
    try:
        client = docker.from_env(**client_kwargs)
    except DockerException as e:
        raise EngineConnectionError("could not create docker client", e) from e

    logger.debug("Checking for unsupported engine variants")
    try:
        info = client.info()
    except (DockerException, RequestException) as e:
        raise EngineConnectionError("could not get information about docker server", e) from e

    operating_system = str(info.get("OperatingSystem", "")).lower()
    for marker, variant in UNSUPPORTED_VARIANTS.items():
        if marker in operating_system:
            raise UnsupportedEngineError(variant)

    logger.debug("Retrieving docker server version")
    try:
        # Forces the API version compatibility check
        client.version()
    except (DockerException, RequestException) as e:
        raise EngineConnectionError("could not retrieve docker server version", e) from e

    return EngineHandle(client=client)


def api_version(handle: EngineHandle) -> str:
    """Ping the engine and return the negotiated API version."""
    try:
        handle.client.ping()
    except (DockerException, RequestException) as e:
        raise EngineConnectionError("could not ping docker", e) from e
    return handle.api.api_version


def host_os(handle: EngineHandle) -> str:
    """Return the engine's OS type ("linux", "windows", ...)."""
    info = handle.client.info()
    return str(info.get("OSType", "")).lower()


def host_path(handle: EngineHandle, path: str) -> str:
    """Return the host path to use for bind mounts, depending on the engine OS.

    Windows engines expect paths like ``C:/Users/me`` as ``//c/Users/me``.
    """
    try:
        info = handle.client.info()
    except (DockerException, RequestException) as e:
        raise EngineConnectionError("could not get information about docker server", e) from e

    is_windows = (
        info.get("OSType") == "windows"
        or "windows" in str(info.get("OperatingSystem", "")).lower()
    )
    if not is_windows:
        return path

    return _WINDOWS_DRIVE.sub(lambda m: "//" + m.group(1).lower(), path)
