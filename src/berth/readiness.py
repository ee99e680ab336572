"""Readiness prober: wait until a dependent service accepts connections.

Usage:
    await wait_until_ready(mysql_probe("127.0.0.1", 3306), deadline=300)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import httpx

from berth.errors import ProbeNotReadyError, ReadinessTimeoutError

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[object]]

DEFAULT_ATTEMPT_TIMEOUT = 1.0
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_DEADLINE = 300.0

# Failures that mean "not ready yet, keep polling"
RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    OSError,
    TimeoutError,
    asyncio.TimeoutError,
    httpx.HTTPError,
    ProbeNotReadyError,
)


async def wait_until_ready(
    probe: Probe,
    attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    deadline: float = DEFAULT_DEADLINE,
) -> None:
    """Run ``probe`` on a fixed cadence until it succeeds.

    Each attempt gets its own ``attempt_timeout``. Attempts run every
    ``poll_interval`` seconds with no backoff.

    Raises:
        ReadinessTimeoutError: ``deadline`` seconds elapsed without success.
        Exception: Any non-retryable error raised by ``probe``.
    """
    last_error: Exception | None = None
    attempts = 0

    async def poll() -> None:
        nonlocal last_error, attempts
        while True:
            attempts += 1
            try:
                await asyncio.wait_for(probe(), timeout=attempt_timeout)
                return
            except RETRYABLE_ERRORS as e:
                logger.debug(f"readiness probe failed (attempt {attempts}): {e!r}")
                last_error = e

            await asyncio.sleep(poll_interval)

    start_time = time.monotonic()
    task = asyncio.ensure_future(poll())
    try:
        await asyncio.wait_for(task, timeout=deadline)
    except asyncio.TimeoutError:
        # Raised by the outer wait_for only; probe timeouts are handled in poll()
        raise ReadinessTimeoutError(deadline, last_error) from None

    logger.debug(
        f"service ready after {attempts} attempt(s) in {time.monotonic() - start_time:.2f}s"
    )


def tcp_probe(host: str, port: int) -> Probe:
    """Probe that succeeds once a TCP connection can be opened."""

    async def probe() -> None:
        _, writer = await asyncio.open_connection(host, port)
        writer.close()
        await writer.wait_closed()

    return probe


def mysql_probe(host: str, port: int = 3306) -> Probe:
    """Probe that succeeds once a MySQL-protocol server sends its greeting.

    The greeting is the first packet a server writes after accepting a
    connection. A server still starting up either refuses the connection,
    closes it, or answers with an error packet (first payload byte 0xff).
    """

    async def probe() -> None:
        reader, writer = await asyncio.open_connection(host, port)
        try:
            header = await reader.readexactly(4)
            length = int.from_bytes(header[:3], "little")
            if length == 0:
                raise ProbeNotReadyError(f"empty greeting from {host}:{port}")
            payload = await reader.readexactly(length)
        except asyncio.IncompleteReadError as e:
            raise ProbeNotReadyError(f"connection to {host}:{port} closed during greeting") from e
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug(f"error closing probe connection: {e}")

        if payload[0] == 0xFF:
            message = payload[9:].decode("utf-8", "replace") if len(payload) > 9 else ""
            raise ProbeNotReadyError(f"server at {host}:{port} not ready: {message}")

    return probe


def http_probe(url: str, client: httpx.AsyncClient | None = None) -> Probe:
    """Probe that succeeds once ``url`` answers with a 2xx status."""

    async def probe() -> None:
        if client is not None:
            response = await client.get(url)
        else:
            async with httpx.AsyncClient() as http:
                response = await http.get(url)
        response.raise_for_status()

    return probe
