# -*- test-case-name: txrosterdb.test.test_executor -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Run blocking calls on a bounded set of threads and hand their results back
to the reactor thread as L{Deferred}s.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from twisted.internet.defer import Deferred, fail
from twisted.internet.threads import deferToThreadPool
from twisted.logger import Logger
from twisted.python.threadpool import ThreadPool

from txrosterdb.error import StorageClosedError


def _maybeGlobalReactor(maybeReactor):
    """
    @return: the argument, or the global reactor if the argument is L{None}.
    """
    if maybeReactor is None:
        from twisted.internet import reactor

        return reactor
    return maybeReactor


class DeferralExecutor:
    """
    A fixed number of worker threads fed from one queue.

    Work submitted before L{start} waits in the queue; work submitted after
    L{stop} fails with L{StorageClosedError}.  Once a worker has picked a
    call up it runs to completion: cancelling the returned L{Deferred} only
    discards the result.

    @ivar size: Number of worker threads.
    @ivar running: Whether the threads are running.
    """

    _log = Logger()

    running = False
    stopped = False

    def __init__(self, size: int, reactor: Any = None, name: Optional[str] = None):
        if size < 1:
            raise ValueError(f"Executor size must be at least 1, not {size}")
        self.size = size
        self._reactor = _maybeGlobalReactor(reactor)
        self.threadpool = ThreadPool(0, size, name)
        self._shutdownID = None

    def start(self) -> None:
        """
        Start the worker threads, and arrange for them to be stopped when the
        reactor shuts down.
        """
        if self.running or self.stopped:
            return
        self.threadpool.start()
        self._shutdownID = self._reactor.addSystemEventTrigger(
            "during", "shutdown", self._finalStop
        )
        self.running = True
        self._log.debug("Started {size} storage workers", size=self.size)

    def stop(self) -> None:
        """
        Refuse new work, and wait for the worker threads to finish what they
        are running.
        """
        if self._shutdownID is not None:
            self._reactor.removeSystemEventTrigger(self._shutdownID)
        self._finalStop()

    def _finalStop(self) -> None:
        self._shutdownID = None
        if self.stopped:
            return
        self.stopped = True
        self.running = False
        self.threadpool.stop()

    def submit(self, f: Callable[..., Any], *args: Any, **kwargs: Any) -> Deferred:
        """
        Call C{f(*args, **kwargs)} in a worker thread.

        @return: A L{Deferred} firing with its result, or failing with its
            exception, in the reactor thread.
        """
        if self.stopped:
            return fail(StorageClosedError("Storage executor has been stopped"))
        return deferToThreadPool(self._reactor, self.threadpool, f, *args, **kwargs)


__all__ = ["DeferralExecutor"]
