# -*- test-case-name: txrosterdb.test.test_pool -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
A fixed-size pool of U{DB-API 2.0<https://peps.python.org/pep-0249/>}
connections.

Everything in this module blocks.  It is meant to be called from the worker
threads of a L{txrosterdb.executor.DeferralExecutor}, never from the reactor
thread.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, TypeVar

from twisted.logger import Logger
from twisted.python import reflect

from txrosterdb.error import PoolTimeoutError, StorageClosedError

T = TypeVar("T")


class Connection:
    """
    A wrapper for a DB-API connection instance.

    The wrapper passes almost everything to the wrapped connection and so has
    the same API.  Closing it does nothing; the pool decides when the real
    connection goes away.
    """

    def __init__(self, pool: "ConnectionPool", connection: Any) -> None:
        self._pool = pool
        self._connection = connection

    def close(self) -> None:
        # Returning a connection is the pool's job; see ConnectionPool.release.
        pass

    def __getattr__(self, name: str) -> Any:
        return getattr(self._connection, name)


class Transaction:
    """
    A lightweight wrapper for a DB-API 'cursor' object.

    Relays attribute access to the DB cursor.  That is, you can call
    execute(), fetchall(), etc., and they will be called on the
    underlying DB-API cursor object.  Statements are written with C{?}
    placeholders, which L{execute} rewrites for modules whose C{paramstyle}
    is C{format} or C{pyformat}.

    @ivar dbapi: The DB-API module, for access to its exception classes.
    """

    _cursor = None

    def __init__(self, pool: "ConnectionPool", connection: Connection) -> None:
        self._pool = pool
        self._connection = connection
        self.dbapi = pool.dbapi
        self._cursor = connection.cursor()

    def execute(self, statement: str, params: tuple = ()) -> None:
        if self._pool.paramstyle in ("format", "pyformat"):
            statement = statement.replace("%", "%%").replace("?", "%s")
        self._cursor.execute(statement, params)

    def fetchvalue(self) -> Any:
        """
        @return: The first column of the next row, or L{None} if there are no
            more rows.
        """
        row = self._cursor.fetchone()
        if row is None:
            return None
        return row[0]

    def close(self) -> None:
        _cursor = self._cursor
        self._cursor = None
        _cursor.close()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._cursor, name)


class ConnectionPool:
    """
    I represent a pool of connections to a DB-API 2.0 compliant database.

    At most C{size} connections are ever open.  They are opened lazily, as
    workers ask for them, and each is held by exactly one caller between
    L{acquire} and L{release}.
    """

    CP_ARGS = "size noisy openfun timeout".split()

    noisy = False  # if true, generate informational log messages
    size = 5  # number of connections in pool
    openfun: Optional[Callable[[Any], None]] = None  # called on new connections
    timeout: Optional[float] = None  # seconds acquire() may wait

    _log = Logger()

    def __init__(self, dbapiName: str, *connargs: Any, **connkw: Any) -> None:
        """
        Create a new ConnectionPool.

        Any positional or keyword arguments other than those documented here
        are passed to the DB-API object when connecting.  Use these arguments
        to pass database names, usernames, passwords, etc.

        @param dbapiName: an import string to use to obtain a DB-API compatible
            module (e.g. C{'psycopg2'})

        @param cp_size: the number of connections in the pool (default 5)

        @param cp_noisy: generate informational log messages during operation
            (default False)

        @param cp_openfun: a callback invoked after every connect() on the
            underlying DB-API object.  The callback is passed a new DB-API
            connection object.  This callback can setup per-connection state
            such as charset, timezone, etc.

        @param cp_timeout: seconds L{acquire} waits for a free connection
            before raising L{PoolTimeoutError}; L{None} (the default) waits
            forever.
        """
        self.dbapiName = dbapiName
        self.dbapi = reflect.namedModule(dbapiName)

        if getattr(self.dbapi, "apilevel", None) != "2.0":
            self._log.warn("DB API module not DB API 2.0 compliant.")

        if getattr(self.dbapi, "threadsafety", 0) < 1:
            self._log.warn("DB API module not sufficiently thread-safe.")

        self.paramstyle = getattr(self.dbapi, "paramstyle", "qmark")
        self.connargs = connargs
        self.connkw = connkw

        for arg in self.CP_ARGS:
            cpArg = f"cp_{arg}"
            if cpArg in connkw:
                setattr(self, arg, connkw.pop(cpArg))

        if self.size < 1:
            raise ValueError(f"Pool size must be at least 1, not {self.size}")

        self._lock = threading.Condition()
        self._idle: List[Any] = []
        self._opened = 0
        self._inUse = 0
        self.peakInUse = 0
        self.closed = False

    @property
    def inUse(self) -> int:
        """
        Number of connections currently checked out.
        """
        with self._lock:
            return self._inUse

    def acquire(self) -> Any:
        """
        Return a database connection when one becomes available.

        This method blocks and should be run in a worker thread.  Don't call
        it from the reactor thread.

        @raise PoolTimeoutError: if C{timeout} is set and no connection was
            released in time.

        @raise StorageClosedError: if the pool is closed, including while
            waiting.

        @return: a DB-API connection, which must be passed to L{release}.
        """
        deadline = None
        if self.timeout is not None:
            deadline = time.monotonic() + self.timeout
        with self._lock:
            while not self.closed and not self._idle and self._opened >= self.size:
                if deadline is None:
                    self._lock.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0 or not self._lock.wait(remaining):
                    if (
                        not self.closed
                        and not self._idle
                        and self._opened >= self.size
                    ):
                        raise PoolTimeoutError(
                            f"No connection free after {self.timeout} seconds"
                        )
            if self.closed:
                raise StorageClosedError("Connection pool is closed")
            if self._idle:
                conn = self._idle.pop()
            else:
                # Reserve the slot before connecting outside the lock.
                self._opened += 1
                conn = None
            self._checkedOut()

        if conn is None:
            try:
                conn = self._connect()
            except BaseException:
                with self._lock:
                    self._opened -= 1
                    self._inUse -= 1
                    self._lock.notify()
                raise
        return conn

    def _checkedOut(self) -> None:
        self._inUse += 1
        self.peakInUse = max(self.peakInUse, self._inUse)

    def release(self, conn: Any, discard: bool = False) -> None:
        """
        Give back a connection obtained from L{acquire}.

        @param discard: close the connection rather than keeping it for
            reuse, e.g. because it is broken.
        """
        with self._lock:
            self._inUse -= 1
            if discard or self.closed:
                self._opened -= 1
            else:
                self._idle.append(conn)
            self._lock.notify()
        if discard or self.closed:
            self._close(conn)

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """
        Hold one connection for the duration of a C{with} block.  It is
        released however the block exits.
        """
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def runInteraction(
        self, interaction: Callable[..., T], *args: Any, **kw: Any
    ) -> T:
        """
        Run C{interaction} in a transaction on a pooled connection, blocking.

        C{interaction} is passed a L{Transaction} (whose interface is identical
        to that of the database cursor for your DB-API module of choice) and
        C{*args}, C{**kw}.  If it raises, the transaction is rolled back and
        the exception propagates; otherwise the transaction is committed and
        its result returned.  The connection is released either way.
        """
        raw = self.acquire()
        conn = Connection(self, raw)
        discard = False
        try:
            trans = Transaction(self, conn)
            try:
                result = interaction(trans, *args, **kw)
            finally:
                trans.close()
            conn.commit()
            return result
        except BaseException:
            try:
                conn.rollback()
            except BaseException:
                self._log.failure("Rollback failed, discarding connection")
                discard = True
            raise
        finally:
            self.release(raw, discard=discard)

    def close(self) -> None:
        """
        Close every idle connection.  Connections still checked out are
        closed as they are released.
        """
        with self._lock:
            self.closed = True
            idle, self._idle = self._idle, []
            self._opened -= len(idle)
            self._lock.notify_all()
        for conn in idle:
            self._close(conn)

    def _connect(self) -> Any:
        if self.noisy:
            self._log.info(
                "txrosterdb connecting: {dbapiName}", dbapiName=self.dbapiName
            )
        conn = self.dbapi.connect(*self.connargs, **self.connkw)
        if self.openfun is not None:
            self.openfun(conn)
        return conn

    def _close(self, conn: Any) -> None:
        if self.noisy:
            self._log.info("txrosterdb closing: {dbapiName}", dbapiName=self.dbapiName)
        try:
            conn.close()
        except Exception:
            self._log.failure("Error closing {dbapiName} connection", dbapiName=self.dbapiName)


__all__ = ["Connection", "ConnectionPool", "Transaction"]
