"""Lifecycle manager: idempotent create-or-reuse of named containers.

Container names are the external identity used by every caller. Engine ids
are only meaningful for one instance and are discarded when it is removed.

A named slot moves through absent -> created -> running -> stopped/removed.
A stopped container is never restarted: it is force-recreated so mounts,
environment and ports always match the ContainerSpec that asked for it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator

from docker.errors import APIError, DockerException, NotFound
from requests.exceptions import RequestException

from berth.config import NETWORK_NAME
from berth.engine import EngineHandle
from berth.errors import (
    BerthError,
    ContainerCreateError,
    ContainerNotFoundError,
    LifecycleError,
    NetworkError,
)
from berth.images import split_image_id
from berth.network import connect_to_network
from berth.types import ContainerRecord, ContainerSpec, VolumeRecord

logger = logging.getLogger(__name__)

StartFunc = Callable[[EngineHandle], None]


def info(handle: EngineHandle, name: str) -> ContainerRecord:
    """Look up a container (running or not) by its exact name.

    Raises:
        ContainerNotFoundError: No container has that name.
    """
    # The engine's name filter is a substring match, so check names exactly
    summaries = handle.api.containers(all=True, filters={"name": name})
    for summary in summaries:
        for candidate in summary.get("Names") or []:
            if candidate.lstrip("/") == name:
                return ContainerRecord.from_summary(summary, name=name)
    raise ContainerNotFoundError(name)


def list_containers(handle: EngineHandle) -> list[ContainerRecord]:
    return [ContainerRecord.from_summary(s) for s in handle.api.containers(all=True)]


def is_running(handle: EngineHandle, name: str, image: str = "") -> bool:
    """Return True if the container ``name`` is running.

    If ``image`` is given (``name:version``), the running container must also
    use exactly that image; missing versions compare as ``latest``.
    """
    try:
        record = info(handle, name)
    except ContainerNotFoundError:
        return False

    if not record.is_running:
        return False

    if not image:
        return True

    return split_image_id(record.image) == split_image_id(image)


def remove_container(handle: EngineHandle, name: str) -> None:
    """Find a container by name and force-remove it with its anonymous volumes.

    Raises:
        ContainerNotFoundError: No container has that name.
    """
    record = info(handle, name)
    try:
        handle.api.remove_container(record.id, force=True, v=True)
    except NotFound:
        logger.debug(f"container {name} was already removed")


def force_create(handle: EngineHandle, spec: ContainerSpec, name: str, **create_kwargs) -> str:
    """Create a container, recreating it once if the name is already taken.

    Removal only happens after a first creation attempt has failed, so a
    concurrent creator is not disturbed unless the name really is blocked.

    Args:
        handle: Engine connection.
        spec: Container configuration.
        name: Container name.
        **create_kwargs: Extra arguments for ContainerSpec.to_create_kwargs.

    Returns:
        Engine id of the new container.

    Raises:
        ContainerCreateError: Creation failed twice, or the stale container
            could not be removed.
    """
    kwargs = spec.to_create_kwargs(handle.api, name, **create_kwargs)
    try:
        return handle.api.create_container(**kwargs)["Id"]
    except APIError as first_error:
        try:
            stale = info(handle, name)
        except (ContainerNotFoundError, DockerException, RequestException):
            raise ContainerCreateError(name, first_error) from first_error

        logger.debug(f"removing stale container {name} ({stale.id}) to recreate it")
        try:
            handle.api.remove_container(stale.id, force=True, v=True)
        except NotFound:
            # Another creator removed it first
            logger.debug(f"stale container {name} ({stale.id}) was already removed")
        except (APIError, RequestException) as e:
            logger.error(f"could not remove container {name} after failing to create it: {e}")
            raise ContainerCreateError(name, e) from e
    except RequestException as e:
        raise ContainerCreateError(name, e) from e

    try:
        return handle.api.create_container(**kwargs)["Id"]
    except (APIError, RequestException) as e:
        raise ContainerCreateError(name, e) from e


def start(
    handle: EngineHandle,
    spec: ContainerSpec,
    name: str,
    network: str = NETWORK_NAME,
) -> str:
    """Create, connect to the shared network and start a container.

    An existing container with the same name is replaced so that it always
    has the configuration in ``spec``.

    Returns:
        Engine id of the started container.
    """
    container_id = force_create(handle, spec, name)

    try:
        connect_to_network(handle, container_id, network)
    except NetworkError as e:
        raise LifecycleError(name, "connect to network", e) from e

    try:
        handle.api.start(container_id)
    except APIError as e:
        raise LifecycleError(name, "start container", e) from e

    logger.info(f"started container {name} ({container_id[:12]})")
    return container_id


def ensure_running(
    handle: EngineHandle, name: str, start_fn: StartFunc, image: str = ""
) -> ContainerRecord:
    """Return the running container ``name``, starting it with ``start_fn`` if needed.

    A running container is returned as-is: no restart and no comparison with
    the configuration ``start_fn`` would use. If ``image`` is given, a running
    container with a different image counts as not running.

    Raises:
        LifecycleError: ``start_fn`` failed.
        ContainerNotFoundError: The container vanished right after starting.
    """
    if not is_running(handle, name, image):
        try:
            start_fn(handle)
        except (DockerException, RequestException, BerthError) as e:
            raise LifecycleError(name, "create", e) from e

    return info(handle, name)


def logs(handle: EngineHandle, container_id: str) -> Iterator[bytes]:
    """Follow stdout and stderr of a container from now on."""
    return handle.api.logs(
        container_id,
        stdout=True,
        stderr=True,
        stream=True,
        follow=True,
        since=int(time.time()),
    )


def create_volume(handle: EngineHandle, name: str) -> VolumeRecord:
    """Create a named volume unless it already exists."""
    try:
        return VolumeRecord.from_attrs(handle.api.inspect_volume(name))
    except NotFound:
        pass
    return VolumeRecord.from_attrs(handle.api.create_volume(name))


def list_volumes(handle: EngineHandle) -> list[VolumeRecord]:
    volumes = handle.api.volumes().get("Volumes") or []
    return [VolumeRecord.from_attrs(v) for v in volumes]


def remove_volume(handle: EngineHandle, name: str) -> None:
    try:
        handle.api.remove_volume(name, force=True)
    except NotFound:
        logger.debug(f"volume {name} already removed")
