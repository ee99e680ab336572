"""Error types for berth.

All errors inherit from BerthError for easy catching at the command level.
"""

from __future__ import annotations


class BerthError(Exception):
    """Base class for all berth errors."""

    pass


class EngineConnectionError(BerthError):
    """Raised when the container engine cannot be reached or negotiated with."""

    def __init__(self, action: str, cause: Exception | None = None) -> None:
        self.action = action
        self.cause = cause
        msg = action
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class UnsupportedEngineError(BerthError):
    """Raised when the engine is a known incompatible variant."""

    def __init__(self, variant: str) -> None:
        self.variant = variant
        super().__init__(f"{variant} is not supported")


class ContainerNotFoundError(BerthError):
    """Raised when an explicit lookup finds no container with the given name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"container '{name}' not found")


class ContainerCreateError(BerthError):
    """Raised when a container cannot be created, even after forced recreation."""

    def __init__(self, name: str, cause: Exception) -> None:
        self.name = name
        self.cause = cause
        super().__init__(f"could not create container {name}: {cause}")


class LifecycleError(BerthError):
    """Raised when starting or stopping a named container fails."""

    def __init__(self, name: str, action: str, cause: Exception) -> None:
        self.name = name
        self.action = action
        self.cause = cause
        super().__init__(f"could not {action} {name}: {cause}")


class NetworkError(BerthError):
    """Raised when the shared network cannot be created, connected or removed."""

    def __init__(self, network: str, action: str, cause: Exception) -> None:
        self.network = network
        self.action = action
        self.cause = cause
        super().__init__(f"could not {action} network {network}: {cause}")


class ImagePullError(BerthError):
    """Raised when an image cannot be pulled before its timeout."""

    def __init__(self, image: str, reason: str) -> None:
        self.image = image
        self.reason = reason
        super().__init__(f"could not pull image '{image}': {reason}")


class RegistryError(BerthError):
    """Raised when the image registry cannot be queried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CompatibleTagNotFoundError(BerthError):
    """Raised when no published tag is compatible with the running version."""

    def __init__(self, image: str, current_version: str) -> None:
        self.image = image
        self.current_version = current_version
        super().__init__(
            f"can't find compatible image in docker registry for {image} "
            f"(current version {current_version})"
        )


class ProbeNotReadyError(BerthError):
    """Raised by a readiness probe when the service answered but is not ready yet."""

    pass


class ReadinessTimeoutError(BerthError, TimeoutError):
    """Raised when a service does not become ready within the global deadline."""

    def __init__(self, deadline: float, last_error: Exception | None = None) -> None:
        self.deadline = deadline
        self.last_error = last_error
        msg = f"global timeout of {deadline}s exceeded"
        if last_error is not None:
            msg += f"\nLast probe error: {last_error}"
        super().__init__(msg)


class SessionError(BerthError):
    """Raised when an interactive session cannot be established."""

    def __init__(self, name: str, action: str, cause: Exception) -> None:
        self.name = name
        self.action = action
        self.cause = cause
        super().__init__(f"could not {action} {name}: {cause}")


class SqlClientError(BerthError):
    """Raised when the MySQL client exits with a non-zero status."""

    def __init__(self, exit_code: int) -> None:
        self.exit_code = exit_code
        super().__init__(f"MySQL exited with status {exit_code}")


class ConfigurationError(BerthError):
    """Error in configuration (unknown keys, malformed values)."""

    pass
