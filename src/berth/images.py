"""Image installer: make sure a given image:tag is available locally."""

from __future__ import annotations

import logging
import time

from docker.errors import APIError, ImageNotFound
from requests.exceptions import RequestException

from berth.engine import EngineHandle
from berth.errors import ImagePullError
from berth.types import ImageRecord

logger = logging.getLogger(__name__)

DEFAULT_PULL_TIMEOUT = 600.0


def split_image_id(image_id: str) -> tuple[str, str]:
    """Split ``name:version`` into its parts. A missing version means ``latest``.

    Registry hosts with ports (``localhost:5000/img:v1``) keep their port.
    """
    name, sep, version = image_id.rpartition(":")
    if not sep or "/" in version:
        return image_id, "latest"
    return name, version or "latest"


def list_images(handle: EngineHandle) -> list[ImageRecord]:
    return [ImageRecord.from_summary(s) for s in handle.api.images()]


def versions_installed(handle: EngineHandle, image: str) -> list[str]:
    """Return the locally installed versions of ``image``."""
    versions = []
    for record in list_images(handle):
        for repo_tag in record.repo_tags:
            name, version = split_image_id(repo_tag)
            if name == image:
                versions.append(version)
    return versions


def is_installed(handle: EngineHandle, image: str, version: str = "") -> bool:
    """Check whether ``image`` is installed.

    With an empty version any installed version counts.
    """
    versions = versions_installed(handle, image)
    if not version:
        return len(versions) > 0
    return version in versions


def pull(
    handle: EngineHandle,
    image: str,
    version: str = "latest",
    timeout: float = DEFAULT_PULL_TIMEOUT,
) -> None:
    """Pull ``image:version``, giving up after ``timeout`` seconds.

    The deadline is checked between progress events; a stream that stalls
    completely ends with the client's read timeout, reported the same way.

    Raises:
        ImagePullError: Pull failed, reported an error, or ran out of time.
    """
    image_id = f"{image}:{version}"
    deadline = time.monotonic() + timeout

    try:
        stream = handle.api.pull(image, tag=version, stream=True, decode=True)
        try:
            for event in stream:
                if "error" in event:
                    raise ImagePullError(image_id, str(event["error"]))
                logger.debug(f"pull {image_id}: {event.get('status', '')}")
                if time.monotonic() > deadline:
                    raise ImagePullError(image_id, f"timed out after {timeout}s")
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()
    except (APIError, RequestException) as e:
        raise ImagePullError(image_id, str(e)) from e


def ensure_installed(
    handle: EngineHandle,
    image: str,
    version: str = "",
    timeout: float = DEFAULT_PULL_TIMEOUT,
) -> None:
    """Install ``image:version`` unless it is already present.

    With an empty version any installed version is accepted; if none is,
    ``latest`` is pulled.

    Raises:
        ImagePullError: The image could not be listed or pulled.
    """
    image_id = f"{image}:{version or 'latest'}"
    try:
        if is_installed(handle, image, version):
            return

        version = version or "latest"
        logger.info(f"installing {image_id!r}")
        pull(handle, image, version, timeout=timeout)
        installed = is_installed(handle, image, version)
    except (APIError, RequestException) as e:
        raise ImagePullError(image_id, str(e)) from e

    if not installed:
        raise ImagePullError(image_id, "image not present after pull")

    logger.info(f"installed {image_id!r}")


def remove_image(handle: EngineHandle, image_id: str) -> None:
    """Force-remove an image. A missing image is not an error."""
    try:
        handle.api.remove_image(image_id, force=True)
    except ImageNotFound:
        logger.debug(f"image {image_id} already removed")
