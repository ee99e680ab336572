"""Configuration for berth.

BerthConfig is RUNTIME configuration only: which network and components to
manage and how long to wait for them. It is loaded from a YAML file and/or
BERTH_* environment variables.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from berth.errors import ConfigurationError

# Name of the private bridge network shared by every managed container
NETWORK_NAME = "srcd-cli-network"

DEFAULT_CONFIG_PATH = Path.home() / ".berth" / "config.yml"


@dataclass(frozen=True)
class Component:
    """A named container slot backed by a published image."""

    name: str
    image: str
    version: str = "latest"
    port: int = 0  # service port inside the container, 0 = none

    def image_with_version(self) -> str:
        return f"{self.image}:{self.version or 'latest'}"


SQL_SERVER = Component(name="srcd-cli-gitbase", image="srcd/gitbase", version="v0.24.0", port=3306)
SQL_CLIENT = Component(name="srcd-cli-mysql-cli", image="srcd/cli-mysql", version="8.0.16")


@dataclass
class BerthConfig:
    """Host-side configuration for orchestrating components."""

    # Networking
    network: str = NETWORK_NAME
    sql_host: str = "127.0.0.1"

    # Components
    sql_server: Component = SQL_SERVER
    sql_client: Component = SQL_CLIENT

    # Readiness
    ready_attempt_timeout: float = 1.0
    ready_poll_interval: float = 1.0
    ready_deadline: float = 300.0

    # Images
    pull_timeout: float = 600.0

    # Registry
    registry_auth_url: str = "https://auth.docker.io/token"
    registry_service: str = "registry.docker.io"
    registry_url: str = "https://registry-1.docker.io"
    registry_timeout: float = 10.0

    # Extra environment for the SQL server container
    sql_server_env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_yaml(cls, path: Path) -> BerthConfig:
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If the file is not a mapping or has unknown keys.
        """
        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"config file {path} is not valid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"config file {path} does not follow the expected format")

        return cls._from_dict(data, source=str(path))

    @classmethod
    def from_env(cls, base: BerthConfig | None = None) -> BerthConfig:
        """Apply BERTH_* environment variables on top of ``base`` (or defaults)."""
        config = base if base is not None else cls()
        updates: dict[str, Any] = {}

        if network := os.environ.get("BERTH_NETWORK"):
            updates["network"] = network
        if sql_host := os.environ.get("BERTH_SQL_HOST"):
            updates["sql_host"] = sql_host

        # Timeouts
        try:
            if deadline := os.environ.get("BERTH_READY_DEADLINE"):
                updates["ready_deadline"] = float(deadline)
            if interval := os.environ.get("BERTH_READY_POLL_INTERVAL"):
                updates["ready_poll_interval"] = float(interval)
            if pull_timeout := os.environ.get("BERTH_PULL_TIMEOUT"):
                updates["pull_timeout"] = float(pull_timeout)
        except ValueError as e:
            raise ConfigurationError(f"invalid timeout in environment: {e}") from e

        # Component versions
        if server_version := os.environ.get("BERTH_SQL_SERVER_VERSION"):
            updates["sql_server"] = dataclasses.replace(config.sql_server, version=server_version)
        if client_version := os.environ.get("BERTH_SQL_CLIENT_VERSION"):
            updates["sql_client"] = dataclasses.replace(config.sql_client, version=client_version)

        return dataclasses.replace(config, **updates)

    @classmethod
    def load(cls, path: Path | None = None) -> BerthConfig:
        """Load config from ``path``, falling back to the default file if it exists.

        Environment variables always take precedence over the file.
        """
        if path is None and DEFAULT_CONFIG_PATH.exists():
            path = DEFAULT_CONFIG_PATH

        config = cls.from_yaml(path) if path is not None else cls()
        return cls.from_env(config)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], source: str = "<dict>") -> BerthConfig:
        """Create config from dictionary, rejecting unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"config file {source} does not follow the expected format: "
                f"unknown keys {', '.join(unknown)}"
            )

        kwargs = dict(data)
        for key, default in (("sql_server", SQL_SERVER), ("sql_client", SQL_CLIENT)):
            if key in kwargs:
                kwargs[key] = cls._parse_component(kwargs[key], default, source)
        return cls(**kwargs)

    @staticmethod
    def _parse_component(data: Any, default: Component, source: str) -> Component:
        if not isinstance(data, dict):
            raise ConfigurationError(f"config file {source}: component must be a mapping")
        try:
            return dataclasses.replace(default, **data)
        except TypeError as e:
            raise ConfigurationError(f"config file {source}: {e}") from e
