"""Interactive sessions: `docker run -it` for managed containers.

attach() creates the container, connects it to the shared network, attaches
to its combined stdio, starts it and returns a Session. attach_stdio() then
pumps the local terminal through the session until the remote side is done.

Usage:
    session = attach(handle, spec, "srcd-cli-mysql-cli")
    with session, session.remove_on_signal():
        attach_stdio(session)
    code = session.wait()
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import os
import signal
import socket
import sys
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, InvalidStateError, wait
from contextlib import contextmanager
from typing import Any

from docker.errors import APIError, DockerException, NotFound
from requests.exceptions import RequestException

from berth.config import NETWORK_NAME
from berth.engine import EngineHandle
from berth.errors import NetworkError, SessionError
from berth.lifecycle import force_create
from berth.network import connect_to_network
from berth.terminal import SizeNotifier, get_size, raw_mode, select_size_notifier
from berth.types import ContainerSpec

logger = logging.getLogger(__name__)

# Reported when waiting for the container itself fails
EXIT_WAIT_FAILED = 1

CHUNK_SIZE = 32 * 1024

# How long close() waits for the exit watcher before giving up on it
EXIT_GRACE_PERIOD = 2.0

INIT_RESIZE_RETRIES = 5
INIT_RESIZE_DELAY = 0.01


class DuplexStream:
    """Bidirectional byte stream over a hijacked attach connection.

    Wraps the socket returned by ``APIClient.attach_socket``, which may be a
    raw socket or a ``socket.SocketIO`` around one.
    """

    def __init__(self, sock: Any) -> None:
        self._raw = sock
        self._sock = getattr(sock, "_sock", sock)
        self._lock = threading.Lock()
        self._closed = False

    def read(self, size: int = CHUNK_SIZE) -> bytes:
        """Read up to ``size`` bytes; b"" means the remote closed its side."""
        if hasattr(self._sock, "recv"):
            return self._sock.recv(size)
        return self._raw.read(size) or b""

    def write(self, data: bytes) -> None:
        if hasattr(self._sock, "sendall"):
            self._sock.sendall(data)
        else:
            self._raw.write(data)

    def close_write(self) -> None:
        """Half-close: tell the remote no more input is coming."""
        try:
            self._sock.shutdown(socket.SHUT_WR)
        except (OSError, AttributeError) as e:
            logger.debug(f"Couldn't send EOF: {e}")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for closable in (self._raw, self._sock):
            try:
                closable.close()
            except OSError as e:
                logger.debug(f"error closing attach stream: {e}")

    @property
    def closed(self) -> bool:
        return self._closed


def resize_tty(
    handle: EngineHandle,
    container_id: str,
    size_fn: Callable[[], tuple[int, int]] = get_size,
) -> None:
    """Resize the remote TTY to the local terminal size.

    Nothing is sent when there is no local terminal.
    """
    height, width = size_fn()
    if height == 0 and width == 0:
        return
    handle.api.resize(container_id, height=height, width=width)


class TtySizeMonitor:
    """Keeps the remote TTY the same size as the local terminal.

    The initial size is applied eagerly; if that first attempt fails (window
    managers can race the container start) it is retried a few times in the
    background. Later changes are delivered by a SizeNotifier.
    """

    def __init__(
        self,
        resize: Callable[[], None],
        notifier: SizeNotifier | None = None,
        retries: int = INIT_RESIZE_RETRIES,
        retry_delay: float = INIT_RESIZE_DELAY,
    ) -> None:
        self._resize = resize
        self._notifier = notifier if notifier is not None else select_size_notifier()
        self._retries = retries
        self._retry_delay = retry_delay
        self._stop = threading.Event()
        self._retry_thread: threading.Thread | None = None
        self._started = False

    def start(self) -> None:
        if not self._try_resize():
            self._retry_thread = threading.Thread(
                target=self._retry_initial, name="berth-tty-init", daemon=True
            )
            self._retry_thread.start()
        self._notifier.start(self._on_change)
        self._started = True

    def stop(self) -> None:
        self._stop.set()
        if self._started:
            self._notifier.stop()
            self._started = False
        if self._retry_thread is not None:
            self._retry_thread.join(timeout=(self._retries + 1) * self._retry_delay + 1.0)
            self._retry_thread = None

    def _try_resize(self) -> bool:
        try:
            self._resize()
        except (DockerException, RequestException, OSError) as e:
            logger.debug(f"tty resize failed: {e}")
            return False
        return True

    def _retry_initial(self) -> None:
        for _ in range(self._retries):
            if self._stop.wait(self._retry_delay):
                return
            if self._try_resize():
                return

    def _on_change(self) -> None:
        if not self._stop.is_set():
            self._try_resize()


class Session:
    """An attached, running interactive container.

    ``exit_code`` resolves exactly once: with the container's exit status, or
    with EXIT_WAIT_FAILED if waiting for it failed. close() is idempotent.
    """

    def __init__(
        self,
        handle: EngineHandle,
        container_id: str,
        name: str,
        stream: DuplexStream,
        monitor: TtySizeMonitor | None = None,
    ) -> None:
        self.container_id = container_id
        self.name = name
        self.stream = stream
        self.exit_code: Future[int] = Future()
        self._handle = handle
        self._monitor = monitor
        self._watcher: threading.Thread | None = None
        self._resolve_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _resolve(self, code: int) -> bool:
        """Deliver the exit code unless it was already delivered."""
        with self._resolve_lock:
            try:
                self.exit_code.set_result(code)
            except InvalidStateError:
                return False
        return True

    def _watch_exit(self) -> None:
        try:
            result = self._handle.api.wait(self.container_id, condition="not-running")
            code = int(result.get("StatusCode", EXIT_WAIT_FAILED))
        except (DockerException, RequestException, OSError, ValueError) as e:
            logger.debug(f"waiting for container {self.name} failed: {e}")
            code = EXIT_WAIT_FAILED
        self._resolve(code)

    def start_exit_watcher(self) -> None:
        self._watcher = threading.Thread(
            target=self._watch_exit, name=f"berth-wait-{self.name}", daemon=True
        )
        self._watcher.start()

    def wait(self, timeout: float | None = None) -> int:
        """Block until the container exits and return its exit code."""
        return self.exit_code.result(timeout=timeout)

    def remove(self) -> None:
        """Force-remove the container. Best effort: failures are only logged."""
        try:
            self._handle.api.remove_container(self.container_id, force=True, v=True)
        except NotFound:
            logger.debug(f"container {self.name} already removed")
        except (DockerException, RequestException) as e:
            logger.warning(f"could not remove container {self.name}: {e}")

    @contextmanager
    def remove_on_signal(
        self, signals: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)
    ) -> Iterator[None]:
        """Remove the container when one of ``signals`` arrives.

        A copy loop blocked on a half-closed terminal does not notice an
        interrupt by itself; removing the container closes the remote side and
        unblocks it. Previous handlers are chained and restored on exit.
        """
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        previous: dict[int, Any] = {}

        def handler(signum: int, frame: Any) -> None:
            logger.debug(f"received signal {signum}, removing {self.name}")
            self.remove()
            chained = previous.get(signum)
            if callable(chained):
                chained(signum, frame)

        for sig in signals:
            previous[sig] = signal.signal(sig, handler)
        try:
            yield
        finally:
            for sig, old in previous.items():
                signal.signal(sig, old if old is not None else signal.SIG_DFL)

    def close(self) -> None:
        """Stop background workers and close the stream. Safe to call repeatedly."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        if self._monitor is not None:
            self._monitor.stop()
        self.stream.close()

        if self._watcher is not None:
            self._watcher.join(timeout=EXIT_GRACE_PERIOD)
        if self._resolve(EXIT_WAIT_FAILED):
            logger.debug(f"container {self.name} still running at close, exit code unknown")

    @property
    def closed(self) -> bool:
        return self._closed


def _discard(handle: EngineHandle, container_id: str, name: str) -> None:
    # Best effort, the original failure is what gets reported
    try:
        handle.api.remove_container(container_id, force=True, v=True)
    except (DockerException, RequestException) as e:
        logger.warning(f"could not remove container {name} after a failed attach: {e}")


def attach(
    handle: EngineHandle,
    spec: ContainerSpec,
    name: str,
    network: str = NETWORK_NAME,
    notifier: SizeNotifier | None = None,
) -> Session:
    """Create, attach to and start an interactive container.

    Works like ``docker run -it``: stdin, stdout and stderr are attached, stdin
    is kept open and a TTY is allocated. The order is fixed: create, connect
    to the network, attach, start.

    Raises:
        ContainerCreateError: The container could not be created.
        SessionError: Network connection, attach or start failed. The
            created container is removed before this is raised.
    """
    spec = dataclasses.replace(spec, interactive=True)

    # Some hosts paint the first screen before a later resize lands
    console_size = None
    if os.name != "posix":
        height, width = get_size()
        if height or width:
            console_size = (height, width)

    container_id = force_create(handle, spec, name, console_size=console_size)

    try:
        connect_to_network(handle, container_id, network)
    except NetworkError as e:
        _discard(handle, container_id, name)
        raise SessionError(name, "connect to network", e) from e

    try:
        sock = handle.api.attach_socket(
            container_id, params={"stdin": 1, "stdout": 1, "stderr": 1, "stream": 1}
        )
    except (APIError, RequestException) as e:
        _discard(handle, container_id, name)
        raise SessionError(name, "attach to container", e) from e
    stream = DuplexStream(sock)

    try:
        handle.api.start(container_id)
    except (APIError, RequestException) as e:
        stream.close()
        _discard(handle, container_id, name)
        raise SessionError(name, "start container", e) from e

    monitor = TtySizeMonitor(functools.partial(resize_tty, handle, container_id), notifier)
    session = Session(handle, container_id, name, stream, monitor)
    session.start_exit_watcher()
    monitor.start()

    logger.debug(f"attached to container {name} ({container_id[:12]})")
    return session


def _chunk_reader(source: Any) -> Callable[[int], bytes]:
    # read1 returns as soon as any input is available
    return getattr(source, "read1", None) or source.read


def _copy(
    read: Callable[[int], bytes],
    write: Callable[[bytes], Any],
    flush: Callable[[], Any] | None,
) -> int:
    total = 0
    while True:
        chunk = read(CHUNK_SIZE)
        if not chunk:
            return total
        write(chunk)
        if flush is not None:
            flush()
        total += len(chunk)


def drain_output(session: Session, stdout: Any = None) -> int:
    """Copy the remote output to ``stdout`` until the remote closes it.

    Returns:
        Number of bytes copied.
    """
    stdout = stdout if stdout is not None else sys.stdout
    local_out = getattr(stdout, "buffer", stdout)
    return _copy(session.stream.read, local_out.write, getattr(local_out, "flush", None))


def attach_stdio(session: Session, stdin: Any = None, stdout: Any = None) -> None:
    """Pump local stdin/stdout through the session until the remote is done.

    The remote output ending is the authoritative end of the session. If
    local input ends first, the remote write side is half-closed and the
    remaining output is still drained. A local terminal is switched to raw
    mode for the duration.

    Raises:
        OSError: Copying failed on either side.
    """
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    local_in = getattr(stdin, "buffer", stdin)
    local_out = getattr(stdout, "buffer", stdout)

    output_done: Future[int] = Future()
    input_done: Future[int] = Future()

    def copy_output() -> None:
        try:
            output_done.set_result(drain_output(session, local_out))
        except (OSError, ValueError) as e:
            output_done.set_exception(e)
        finally:
            session.stream.close_write()

    def copy_input() -> None:
        try:
            copied = _copy(_chunk_reader(local_in), session.stream.write, None)
        except (OSError, ValueError) as e:
            input_done.set_exception(e)
            return
        session.stream.close_write()
        input_done.set_result(copied)

    with raw_mode(stdin):
        # Daemon threads: a read blocked on local stdin is abandoned, not joined
        threading.Thread(target=copy_output, name="berth-stdout", daemon=True).start()
        threading.Thread(target=copy_input, name="berth-stdin", daemon=True).start()

        done, _ = wait([output_done, input_done], return_when=FIRST_COMPLETED)
        if output_done in done:
            output_done.result()
            return

        error = input_done.exception()
        if error is not None:
            raise error

        # Input ended cleanly: wait for the output to finish streaming
        output_done.result()
