"""Command line front end for berth.

Commands:
    sql     - Run a SQL query (or open a MySQL shell) against the SQL server
    compat  - Show the newest published tag compatible with a version
    version - Show the Docker engine API version
    prune   - Remove managed containers, the shared network and optionally images

Usage:
    berth sql "SELECT 1"
    echo "SHOW TABLES" | berth sql
    berth compat srcd/gitbase v0.24.0
    berth prune --images
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from docker.errors import DockerException
from requests.exceptions import RequestException

from berth import engine, images, lifecycle, network
from berth.compat import RegistryClient, resolve_compatible_tag
from berth.config import BerthConfig, Component
from berth.engine import EngineHandle
from berth.errors import BerthError, ContainerNotFoundError
from berth.sql import read_query, run_sql

logger = logging.getLogger(__name__)


def prune(
    handle: EngineHandle,
    components: list[Component],
    network_name: str,
    with_images: bool = False,
) -> None:
    """Remove component containers, the shared network and optionally images."""
    for component in components:
        try:
            lifecycle.remove_container(handle, component.name)
            logger.info(f"removed container {component.name}")
        except ContainerNotFoundError:
            logger.debug(f"container {component.name} not present")

    network.remove_network(handle, network_name)

    if with_images:
        for component in components:
            for version in images.versions_installed(handle, component.image):
                images.remove_image(handle, f"{component.image}:{version}")
                logger.info(f"removed image {component.image}:{version}")


def cmd_sql(args: argparse.Namespace, config: BerthConfig) -> int:
    query = read_query(args.query)
    handle = engine.connect()
    run_sql(handle, query, config)
    return 0


def cmd_compat(args: argparse.Namespace, config: BerthConfig) -> int:
    with RegistryClient(
        auth_url=config.registry_auth_url,
        service=config.registry_service,
        registry_url=config.registry_url,
        timeout=config.registry_timeout,
    ) as registry:
        try:
            tag, has_breaking = resolve_compatible_tag(args.image, args.version, registry)
        except ValueError as e:
            logger.error(f"invalid version {args.version!r}: {e}")
            return 2

    print(tag)
    if has_breaking:
        logger.warning(f"a newer version of {args.image} with breaking changes is available")
    return 0


def cmd_version(args: argparse.Namespace, config: BerthConfig) -> int:
    handle = engine.connect()
    print(engine.api_version(handle))
    return 0


def cmd_prune(args: argparse.Namespace, config: BerthConfig) -> int:
    handle = engine.connect()
    prune(handle, [config.sql_client, config.sql_server], config.network, args.images)
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the berth CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="berth",
        description="Start, supervise and attach to local service containers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="Path to config YAML file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sql = subparsers.add_parser("sql", help="Run a SQL query over the SQL server")
    sql.add_argument("query", nargs="?", default="", help="Query to run (default: interactive)")

    compat = subparsers.add_parser("compat", help="Find the compatible image tag")
    compat.add_argument("image", help="Image repository, e.g. srcd/gitbase")
    compat.add_argument("version", help="Current client version, e.g. v0.24.0")

    version = subparsers.add_parser("version", help="Show the Docker engine API version")

    pr = subparsers.add_parser("prune", help="Remove managed containers and network")
    pr.add_argument("--images", action="store_true", help="Also remove component images")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the berth CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    level_name = "DEBUG" if args.verbose else os.environ.get("BERTH_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = BerthConfig.load(args.config)
        if args.command == "sql":
            return cmd_sql(args, config)
        elif args.command == "compat":
            return cmd_compat(args, config)
        elif args.command == "version":
            return cmd_version(args, config)
        elif args.command == "prune":
            return cmd_prune(args, config)
        return 2
    except BerthError as e:
        logger.error(str(e))
        return 1
    except DockerException as e:
        logger.error(f"docker error: {e}")
        return 1
    except RequestException as e:
        logger.error(f"lost connection to docker: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
