"""berth: start, supervise and attach to local service containers."""

# All errors (foundational)
from berth.errors import (
    BerthError,
    CompatibleTagNotFoundError,
    ConfigurationError,
    ContainerCreateError,
    ContainerNotFoundError,
    EngineConnectionError,
    ImagePullError,
    LifecycleError,
    NetworkError,
    ProbeNotReadyError,
    ReadinessTimeoutError,
    RegistryError,
    SessionError,
    SqlClientError,
    UnsupportedEngineError,
)

# Core entry points
from berth.compat import resolve_compatible_tag
from berth.config import BerthConfig, Component
from berth.engine import EngineHandle, connect
from berth.images import ensure_installed
from berth.lifecycle import ensure_running, force_create
from berth.network import connect_to_network
from berth.readiness import wait_until_ready
from berth.session import Session, attach, attach_stdio

# Core types
from berth.types import (
    ContainerRecord,
    ContainerSpec,
    ContainerState,
    Mount,
    MountKind,
    NetworkRecord,
    PortBinding,
)

__version__ = "0.1.0"

__all__ = [
    # Engine
    "EngineHandle",
    "connect",
    # Lifecycle
    "ensure_running",
    "force_create",
    "ensure_installed",
    "connect_to_network",
    # Sessions
    "Session",
    "attach",
    "attach_stdio",
    # Readiness
    "wait_until_ready",
    # Compatibility
    "resolve_compatible_tag",
    # Config
    "BerthConfig",
    "Component",
    # Types
    "ContainerRecord",
    "ContainerSpec",
    "ContainerState",
    "Mount",
    "MountKind",
    "NetworkRecord",
    "PortBinding",
    # Errors
    "BerthError",
    "EngineConnectionError",
    "UnsupportedEngineError",
    "ContainerNotFoundError",
    "ContainerCreateError",
    "LifecycleError",
    "NetworkError",
    "ImagePullError",
    "RegistryError",
    "CompatibleTagNotFoundError",
    "ProbeNotReadyError",
    "ReadinessTimeoutError",
    "SessionError",
    "SqlClientError",
    "ConfigurationError",
]
