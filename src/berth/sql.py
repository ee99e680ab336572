"""SQL command flow built on the lifecycle, readiness and session primitives.

Starts the SQL server component if needed, waits until it accepts MySQL
connections, then runs the MySQL client in an attached container: either a
one-shot query or a full interactive shell.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from collections.abc import Callable
from typing import Any

from berth import images, lifecycle
from berth.config import BerthConfig
from berth.engine import EngineHandle
from berth.errors import SqlClientError
from berth.readiness import mysql_probe, wait_until_ready
from berth.session import attach, attach_stdio, drain_output
from berth.terminal import is_terminal
from berth.types import (
    ContainerRecord,
    ContainerSpec,
    apply_options,
    with_cmd,
    with_env,
    with_port,
)

logger = logging.getLogger(__name__)

SLOW_NOTICE_AFTER = 5.0


def log_after_timeout(message: str, seconds: float = SLOW_NOTICE_AFTER) -> Callable[[], None]:
    """Log ``message`` once if the caller is still busy after ``seconds``.

    Returns:
        Callable that cancels the notice; call it when the operation is done.
    """
    timer = threading.Timer(seconds, logger.info, args=(message,))
    timer.daemon = True
    timer.start()
    return timer.cancel


def sql_server_spec(config: BerthConfig) -> ContainerSpec:
    server = config.sql_server
    spec = ContainerSpec(image=server.image_with_version())
    options = [with_env(k, v) for k, v in sorted(config.sql_server_env.items())]
    if server.port:
        options.append(with_port(-1, server.port))
    return apply_options(spec, *options)


def mysql_client_spec(config: BerthConfig, query: str = "") -> ContainerSpec:
    spec = ContainerSpec(image=config.sql_client.image_with_version())
    spec = apply_options(spec, with_cmd("mysql", "-h", config.sql_server.name))
    if query:
        spec = apply_options(spec, with_cmd("-e", query))
    return spec


def start_sql_server(handle: EngineHandle, config: BerthConfig) -> ContainerRecord:
    """Make sure the SQL server component is installed and running."""
    server = config.sql_server
    spec = sql_server_spec(config)

    def start(h: EngineHandle) -> None:
        images.ensure_installed(h, server.image, server.version, timeout=config.pull_timeout)
        lifecycle.start(h, spec, server.name, config.network)

    cancel = log_after_timeout(
        "this is taking a while, if this is the first time you launch the sql client, "
        "it might take a few more minutes while we install all the required images"
    )
    try:
        return lifecycle.ensure_running(handle, server.name, start, image=spec.image)
    finally:
        cancel()


def wait_for_sql_server(config: BerthConfig) -> None:
    """Block until the SQL server answers on its published port."""
    cancel = log_after_timeout(f"waiting for {config.sql_server.name} to be ready")
    try:
        asyncio.run(
            wait_until_ready(
                mysql_probe(config.sql_host, config.sql_server.port),
                attempt_timeout=config.ready_attempt_timeout,
                poll_interval=config.ready_poll_interval,
                deadline=config.ready_deadline,
            )
        )
    finally:
        cancel()


def read_query(query: str | None, stdin: Any = None) -> str:
    """Return the query to run: the argument, or piped stdin if there is one.

    An interactive terminal on stdin means "open a shell", so it is not read.
    """
    if query and query.strip():
        return query.strip()

    stdin = stdin if stdin is not None else sys.stdin
    if stdin is None or is_terminal(stdin):
        return ""
    return stdin.read().strip()


def run_sql(
    handle: EngineHandle,
    query: str = "",
    config: BerthConfig | None = None,
    stdin: Any = None,
    stdout: Any = None,
) -> None:
    """Run ``query`` against the SQL server, or open an interactive shell.

    Raises:
        SqlClientError: The one-shot client exited with a non-zero status.
    """
    config = config if config is not None else BerthConfig()

    start_sql_server(handle, config)
    wait_for_sql_server(config)

    client = config.sql_client
    images.ensure_installed(handle, client.image, client.version, timeout=config.pull_timeout)

    session = attach(handle, mysql_client_spec(config, query), client.name, config.network)
    try:
        with session.remove_on_signal():
            if query:
                drain_output(session, stdout)
                code = session.wait()
                if code != 0:
                    raise SqlClientError(code)
                return

            attach_stdio(session, stdin=stdin, stdout=stdout)
    finally:
        session.close()
        session.remove()
