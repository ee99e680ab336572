"""Network manager for the private bridge network shared by managed containers.

The network is created lazily the first time a container is connected to it.
Creation races between independent invocations are expected: whoever loses
sees "already exists" and carries on.
"""

from __future__ import annotations

import logging

from docker.errors import APIError, NotFound

from berth.config import NETWORK_NAME
from berth.engine import EngineHandle
from berth.errors import NetworkError
from berth.types import NetworkRecord

logger = logging.getLogger(__name__)


def _is_conflict(error: APIError) -> bool:
    if error.status_code == 409:
        return True
    return "already exists" in str(error.explanation or error).lower()


def inspect_network(handle: EngineHandle, name: str = NETWORK_NAME) -> NetworkRecord | None:
    """Return the network record, or None if it does not exist."""
    try:
        attrs = handle.api.inspect_network(name)
    except NotFound:
        return None
    return NetworkRecord.from_attrs(attrs)


def ensure_network(handle: EngineHandle, name: str = NETWORK_NAME) -> NetworkRecord:
    """Create the network unless it already exists.

    Raises:
        NetworkError: Creation failed for a reason other than a lost race.
    """
    record = inspect_network(handle, name)
    if record is not None:
        return record

    logger.debug(f"couldn't find network {name}")
    logger.info(f"creating {name} docker network")
    try:
        handle.api.create_network(name, check_duplicate=True)
    except APIError as e:
        if not _is_conflict(e):
            raise NetworkError(name, "create", e) from e
        logger.debug(f"network {name} was created concurrently")

    record = inspect_network(handle, name)
    if record is None:
        raise NetworkError(name, "create", RuntimeError("network disappeared after creation"))
    return record


def connect_to_network(
    handle: EngineHandle, container_id: str, name: str = NETWORK_NAME
) -> None:
    """Connect a container to the network, creating the network if needed.

    Connecting a container that is already attached is not an error.
    """
    ensure_network(handle, name)
    try:
        handle.api.connect_container_to_network(container_id, name)
    except APIError as e:
        if _is_conflict(e) or "already exists in network" in str(e).lower():
            logger.debug(f"container {container_id} already connected to {name}")
            return
        raise NetworkError(name, "connect to", e) from e


def list_networks(handle: EngineHandle) -> list[NetworkRecord]:
    return [NetworkRecord.from_attrs(n) for n in handle.api.networks()]


def remove_network(handle: EngineHandle, name: str = NETWORK_NAME) -> None:
    """Remove the network. A missing network is not an error."""
    record = inspect_network(handle, name)
    if record is None:
        return
    try:
        handle.api.remove_network(record.id)
    except NotFound:
        return
    except APIError as e:
        raise NetworkError(name, "remove", e) from e
