"""Connection pool for transport sessions.

This module provides:
- ConnectionPool: Bounded pool of transport sessions with validation on borrow
- PooledConnection: A session owned by the pool
- PoolStats: Snapshot of the pool occupancy

Rules:
- A connection is borrowed by at most one task at a time.
- The number of live sessions (including ones being opened) never exceeds
  ``max_size``.
- Every acquire must be matched by a release or a destroy. The pool does
  not enforce this; use :meth:`ConnectionPool.connection` to get it for free.
- When the pool is full, callers block and are served in FIFO order. A
  release hands the connection to exactly one waiter.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from syncdeploy.deploy.retry import (
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
    NETWORK_EXCEPTIONS,
    retry_with_backoff,
)
from syncdeploy.deploy.types import ConnectionState, PoolExhaustedError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from syncdeploy.transport.base import Transport

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 100


@dataclass(eq=False)
class PooledConnection:
    """A transport session owned by the pool.

    Attributes:
        transport: The live session.
        conn_id: Sequential identifier, for logs.
        state: Current lifecycle state.
        created_at: Monotonic creation time.
        borrow_count: Number of times the session has been lent.
    """

    transport: Transport
    conn_id: int
    state: ConnectionState = ConnectionState.IDLE
    created_at: float = field(default_factory=time.monotonic)
    borrow_count: int = 0

    def __repr__(self) -> str:
        return f"PooledConnection(#{self.conn_id}, {self.state.name})"


@dataclass
class PoolStats:
    """Occupancy of the pool at one instant."""

    size: int
    idle: int
    borrowed: int
    waiting: int


class _Waiter:
    """A blocked acquire call.

    When woken, ``connection`` holds a connection handed over by a release,
    or is None when a freed slot was handed over instead.
    """

    __slots__ = ("event", "connection", "closed")

    def __init__(self) -> None:
        self.event = threading.Event()
        self.connection: PooledConnection | None = None
        self.closed = False


class ConnectionPool:
    """Bounded pool of transport sessions.

    Usage:
        pool = ConnectionPool(ftp_factory(ftp_config), max_size=100)

        with pool.connection() as transport:
            transport.upload(stream, "/public_html/index.php")

        pool.close()
    """

    def __init__(
        self,
        factory: Callable[[], Transport],
        max_size: int = DEFAULT_MAX_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the pool. No session is opened until first use.

        Args:
            factory: Returns a new, unconnected transport.
            max_size: Maximum number of live sessions.
            max_retries: Retries when opening a session fails.
            initial_backoff: First retry delay in seconds.
            max_backoff: Retry delay ceiling in seconds.
            sleep: Sleep function used between retries.
        """
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self._factory = factory
        self._max_size = max_size
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._sleep = sleep

        self._lock = threading.Lock()
        self._idle: deque[PooledConnection] = deque()
        self._waiters: deque[_Waiter] = deque()
        self._size = 0  # live sessions plus sessions being opened
        self._borrowed = 0
        self._closed = False
        self._ids = itertools.count(1)

    @property
    def max_size(self) -> int:
        """Maximum number of live sessions."""
        return self._max_size

    @property
    def stats(self) -> PoolStats:
        """Current occupancy."""
        with self._lock:
            return PoolStats(
                size=self._size,
                idle=len(self._idle),
                borrowed=self._borrowed,
                waiting=len(self._waiters),
            )

    def acquire(self, timeout: float | None = None) -> PooledConnection:
        """Borrow a validated connection.

        Blocks while the pool is full. Idle connections are probed before
        being lent; one that fails the probe is destroyed and replaced.

        Args:
            timeout: Maximum seconds to wait for capacity (None = forever).

        Returns:
            A connection in the BORROWED state.

        Raises:
            TimeoutError: If no capacity became available in time.
            PoolExhaustedError: If a new session could not be opened.
            RuntimeError: If the pool is closed.
        """
        conn = self._reserve(timeout)
        if conn is not None:
            if self._validate(conn):
                return self._lend(conn)
            logger.info("Connection #%d failed validation, replacing it", conn.conn_id)
            self._close_quietly(conn)
        # We hold a slot: open a fresh session in it
        return self._lend(self._create())

    def release(self, conn: PooledConnection) -> None:
        """Return a borrowed connection to the pool.

        Raises:
            ValueError: If the connection is not currently borrowed.
        """
        with self._lock:
            if conn.state != ConnectionState.BORROWED:
                raise ValueError(f"{conn!r} is not borrowed")
            self._borrowed -= 1
            if not self._closed:
                if self._waiters:
                    waiter = self._waiters.popleft()
                    conn.state = ConnectionState.VALIDATING
                    waiter.connection = conn
                    waiter.event.set()
                else:
                    conn.state = ConnectionState.IDLE
                    self._idle.append(conn)
                return
            conn.state = ConnectionState.VALIDATING
        self.destroy(conn)

    def destroy(self, conn: PooledConnection) -> None:
        """Close a connection and free its slot. Never raises."""
        with self._lock:
            if conn.state == ConnectionState.DESTROYED:
                return
            if conn.state == ConnectionState.BORROWED:
                self._borrowed -= 1
            elif conn.state == ConnectionState.IDLE:
                try:
                    self._idle.remove(conn)
                except ValueError:
                    pass
        self._close_quietly(conn)
        self._free_slot()

    @contextmanager
    def connection(self, timeout: float | None = None) -> Iterator[Transport]:
        """Borrow a session for the duration of a ``with`` block.

        The connection is released on every exit path. When a network
        error escapes the block the session is destroyed instead. Missing
        or unreadable local files are not network errors and keep the
        session.
        """
        conn = self.acquire(timeout=timeout)
        try:
            yield conn.transport
        except (FileNotFoundError, PermissionError):
            self.release(conn)
            raise
        except NETWORK_EXCEPTIONS:
            self.destroy(conn)
            raise
        except BaseException:
            self.release(conn)
            raise
        else:
            self.release(conn)

    def close(self) -> None:
        """Close idle sessions and refuse new borrows.

        Borrowed sessions are destroyed when they are released.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            waiters = list(self._waiters)
            self._waiters.clear()
        for waiter in waiters:
            waiter.closed = True
            waiter.event.set()
        for conn in idle:
            self._close_quietly(conn)
            with self._lock:
                self._size -= 1
        logger.debug("Connection pool closed")

    def _reserve(self, timeout: float | None) -> PooledConnection | None:
        """Take an idle connection, or a free slot (returns None)."""
        with self._lock:
            if self._closed:
                raise RuntimeError("Connection pool is closed")
            if self._idle:
                conn = self._idle.popleft()
                conn.state = ConnectionState.VALIDATING
                return conn
            if self._size < self._max_size:
                self._size += 1
                return None
            waiter = _Waiter()
            self._waiters.append(waiter)
            logger.debug("Pool full (%d), waiting for a connection", self._size)

        if not waiter.event.wait(timeout):
            with self._lock:
                if not waiter.event.is_set():
                    self._waiters.remove(waiter)
                    raise TimeoutError(f"No connection available after {timeout}s")
        if waiter.closed:
            raise RuntimeError("Connection pool is closed")
        return waiter.connection

    def _free_slot(self) -> None:
        with self._lock:
            if self._waiters and not self._closed:
                # Hand the slot over instead of shrinking
                waiter = self._waiters.popleft()
                waiter.connection = None
                waiter.event.set()
            else:
                self._size -= 1

    def _lend(self, conn: PooledConnection) -> PooledConnection:
        with self._lock:
            conn.state = ConnectionState.BORROWED
            conn.borrow_count += 1
            self._borrowed += 1
        return conn

    def _create(self) -> PooledConnection:
        """Open a session in an already reserved slot."""
        try:
            transport = retry_with_backoff(
                self._open,
                max_retries=self._max_retries,
                initial_backoff=self._initial_backoff,
                max_backoff=self._max_backoff,
                sleep=self._sleep,
            )
        except Exception as e:
            self._free_slot()
            raise PoolExhaustedError(
                f"Could not connect after {self._max_retries + 1} attempts: {e}"
            ) from e
        conn = PooledConnection(transport=transport, conn_id=next(self._ids))
        logger.debug("Opened connection #%d", conn.conn_id)
        return conn

    def _open(self) -> Transport:
        transport = self._factory()
        try:
            transport.connect()
        except Exception:
            try:
                transport.close()
            except Exception:
                logger.debug("Ignoring error while closing a failed session", exc_info=True)
            raise
        return transport

    def _validate(self, conn: PooledConnection) -> bool:
        try:
            conn.transport.noop()
        except Exception as e:
            logger.debug("Validation of connection #%d failed: %s", conn.conn_id, e)
            return False
        return True

    def _close_quietly(self, conn: PooledConnection) -> None:
        conn.state = ConnectionState.DESTROYED
        try:
            conn.transport.close()
        except Exception:
            logger.debug("Error closing connection #%d", conn.conn_id, exc_info=True)
