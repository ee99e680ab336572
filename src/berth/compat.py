"""Resolve the newest published image tag compatible with a client version.

Stable clients get the highest tag that is >= their own version and below
the breaking boundary (next major, or next minor on 0.x lines). Pre-release
clients only ever get their exact own version back. In both cases the caller
is told whether a newer, breaking tag exists.

Usage:
    tag, has_breaking = resolve_compatible_tag("srcd/gitbase", "v0.24.0")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
import semver

from berth.errors import CompatibleTagNotFoundError, RegistryError

logger = logging.getLogger(__name__)

# Version reported by builds that were not released (e.g. run from source)
DEV_VERSION = "dev"
LATEST_TAG = "latest"


@dataclass(frozen=True)
class VersionTag:
    """A registry tag parsed as a semantic version."""

    version: semver.Version
    tag: str

    @property
    def is_prerelease(self) -> bool:
        return self.version.prerelease is not None


def parse_tolerant(value: str) -> semver.Version:
    """Parse a version leniently: surrounding spaces, a leading "v" and
    missing minor/patch components are accepted.

    Raises:
        ValueError: Not a semantic version.
    """
    value = value.strip()
    if value[:1] in ("v", "V"):
        value = value[1:]
    return semver.Version.parse(value, optional_minor_and_patch=True)


def parse_tags(tags: list[str]) -> list[VersionTag]:
    """Parse registry tags, silently dropping the ones that are not versions."""
    parsed = []
    for tag in tags:
        try:
            parsed.append(VersionTag(parse_tolerant(tag), tag))
        except (ValueError, TypeError):
            continue
    return parsed


def breaking_boundary(current: semver.Version) -> semver.Version:
    """Lowest version considered to break compatibility with ``current``."""
    if current.major >= 1:
        return semver.Version(current.major + 1, 0, 0)
    # 0.x lines treat every minor bump as breaking
    return semver.Version(0, current.minor + 1, 0)


def compatible_stable(
    tags: list[VersionTag], current: semver.Version
) -> tuple[semver.Version | None, bool]:
    """Pick the newest non-breaking stable version >= ``current``."""
    boundary = breaking_boundary(current)
    newest: semver.Version | None = None
    has_breaking = False

    for tag in tags:
        if tag.is_prerelease:
            continue
        if tag.version < current:
            continue
        if tag.version >= boundary:
            has_breaking = True
            continue
        if newest is None or tag.version > newest:
            newest = tag.version

    return newest, has_breaking


def compatible_prerelease(
    tags: list[VersionTag], current: semver.Version
) -> tuple[semver.Version | None, bool]:
    """Pre-releases never upgrade: only the exact same version is offered."""
    selected: semver.Version | None = None
    has_breaking = False

    for tag in tags:
        cmp = tag.version.compare(current)
        if cmp == 0:
            selected = current
        elif cmp > 0:
            has_breaking = True

    return selected, has_breaking


class RegistryClient:
    """Minimal client for the image registry's tag listing API.

    Exchanges an anonymous pull token, then lists the repository tags.
    """

    def __init__(
        self,
        auth_url: str = "https://auth.docker.io/token",
        service: str = "registry.docker.io",
        registry_url: str = "https://registry-1.docker.io",
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.auth_url = auth_url
        self.service = service
        self.registry_url = registry_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> RegistryClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def token(self, image: str) -> str:
        """Get an anonymous pull token for ``image``."""
        client = self._get_client()
        params = {"service": self.service, "scope": f"repository:{image}:pull"}
        try:
            response = client.get(self.auth_url, params=params)
        except httpx.HTTPError as e:
            raise RegistryError(f"can't authorize in docker registry: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise RegistryError(
                f"incorrect status code: {response.status_code} "
                "while requesting docker registry token",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RegistryError(
                f"can't parse authorization response from docker registry: {e}"
            ) from e

        token = data.get("token") or data.get("Token") or data.get("access_token")
        if not token:
            raise RegistryError("authorization response from docker registry has no token")
        return token

    def tags(self, image: str) -> list[str]:
        """List all tags published for ``image``."""
        token = self.token(image)
        client = self._get_client()
        try:
            response = client.get(
                f"{self.registry_url}/v2/{image}/tags/list",
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise RegistryError(f"can't request list of tags in docker registry: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise RegistryError(
                f"incorrect status code: {response.status_code} "
                "while requesting the list of tags in docker registry",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RegistryError(f"can't parse tags response from docker registry: {e}") from e

        return list(data.get("tags") or [])


def resolve_compatible_tag(
    image: str,
    current_version: str,
    registry: RegistryClient | None = None,
) -> tuple[str, bool]:
    """Return the tag of ``image`` compatible with ``current_version``.

    Args:
        image: Repository name, e.g. ``srcd/gitbase``.
        current_version: Version of the running client.
        registry: Registry client to fetch tags with (a default one is used
            and closed if omitted).

    Returns:
        (tag, has_breaking_newer_tag). Tags are ``v``-prefixed.

    Raises:
        ValueError: ``current_version`` is not a semantic version.
        RegistryError: Tags could not be fetched.
        CompatibleTagNotFoundError: No compatible tag is published.
    """
    if current_version in ("", DEV_VERSION):
        return LATEST_TAG, False

    current = parse_tolerant(current_version)

    if registry is None:
        with RegistryClient() as default_registry:
            raw_tags = default_registry.tags(image)
    else:
        raw_tags = registry.tags(image)

    tags = parse_tags(raw_tags)
    logger.debug(f"{len(tags)} version tags published for {image}")

    if current.prerelease is not None:
        selected, has_breaking = compatible_prerelease(tags, current)
    else:
        selected, has_breaking = compatible_stable(tags, current)

    if selected is None:
        raise CompatibleTagNotFoundError(image, current_version)

    return f"v{selected}", has_breaking
