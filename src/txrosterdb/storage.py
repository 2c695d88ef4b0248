# -*- test-case-name: txrosterdb.test.test_storage -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
L{SQLStorage}: the asynchronous storage the server talks to.

Each operation is submitted to a L{DeferralExecutor}, whose worker checks a
connection out of the L{ConnectionPool} for the length of one transaction
and runs the matching L{BlockingStore} method in it.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from zope.interface import implementer

from twisted.application.service import Service
from twisted.internet.defer import Deferred, DeferredLock
from twisted.logger import Logger

from txrosterdb.config import StorageConfig
from txrosterdb.error import SchemaCreationError, StorageConfigurationError
from txrosterdb.executor import DeferralExecutor
from txrosterdb.interfaces import IStorage
from txrosterdb.jid import bareJID
from txrosterdb.pool import ConnectionPool
from txrosterdb.roster import User
from txrosterdb.store import BlockingStore, Payload


@implementer(IStorage)
class SQLStorage(Service):
    """
    A relational L{IStorage}.

    Start it (or add it to an application) after L{createSchema} and before
    relying on the returned L{Deferred}s firing.

    @ivar config: The L{StorageConfig}.
    @ivar pool: The L{ConnectionPool}.
    @ivar executor: The L{DeferralExecutor}, with one thread per pooled
        connection.
    @ivar store: The L{BlockingStore} run by the workers.
    """

    name = "txrosterdb"

    _log = Logger()

    def __init__(
        self,
        config: StorageConfig,
        reactor: Any = None,
        pool: Optional[ConnectionPool] = None,
    ) -> None:
        self.config = config
        dialect = config.dialect
        if pool is None:
            args, kw = config.connectionArguments()
            pool = ConnectionPool(
                dialect.moduleName,
                *args,
                cp_size=config.pool,
                cp_timeout=config.poolTimeout,
                cp_openfun=dialect.setup,
                **kw,
            )
        if pool.size < config.pool:
            raise StorageConfigurationError(
                f"Connection pool ({pool.size}) is smaller than the "
                f"number of workers ({config.pool})"
            )
        self.pool = pool
        self.executor = DeferralExecutor(config.pool, reactor, name=self.name)
        self.store = BlockingStore(
            dialect,
            identityManagedElsewhere=config.identityManagedElsewhere,
            nameColumn=config.userNameColumn,
            passwordColumn=config.userPasswordColumn,
        )
        self._writeLocks: Dict[str, DeferredLock] = {}

    def startService(self) -> None:
        Service.startService(self)
        self.executor.start()

    def stopService(self) -> None:
        Service.stopService(self)
        self.executor.stop()
        self.pool.close()

    def _defer(self, f: Callable[..., Any], *args: Any) -> Deferred:
        return self.executor.submit(self.pool.runInteraction, f, *args)

    def _write(self, jid, f: Callable[..., Any], *args: Any) -> Deferred:
        if not self.config.serializeWrites:
            return self._defer(f, *args)
        key = bareJID(jid)
        lock = self._writeLocks.get(key)
        if lock is None:
            lock = self._writeLocks[key] = DeferredLock()

        def cleanup(result):
            if not lock.locked and not lock.waiting:
                self._writeLocks.pop(key, None)
            return result

        return lock.run(self._defer, f, *args).addBoth(cleanup)

    def findUser(self, jid) -> Deferred:
        return self._defer(self.store.findUser, jid)

    def saveUser(self, user: User) -> Deferred:
        return self._write(user.jid, self.store.saveUser, user)

    def findVCard(self, jid) -> Deferred:
        return self._defer(self.store.findVCard, jid)

    def saveVCard(self, jid, card: Payload) -> Deferred:
        return self._write(jid, self.store.saveVCard, jid, card)

    def findFragment(self, jid, rootName: str, namespaceURI: str) -> Deferred:
        return self._defer(self.store.findFragment, jid, rootName, namespaceURI)

    def saveFragment(
        self, jid, rootName: str, namespaceURI: str, xml: Payload
    ) -> Deferred:
        return self._write(
            jid, self.store.saveFragment, jid, rootName, namespaceURI, xml
        )

    def saveFragmentElement(self, jid, element) -> Deferred:
        """
        Store a L{domish.Element<twisted.words.xish.domish.Element>} under
        its own name and namespace.
        """
        return self.saveFragment(
            jid, element.name, element.uri or "", element.toXml()
        )

    def createSchema(self, force: bool = False) -> None:
        """
        Create the tables in the calling thread.

        @raise SchemaCreationError: If the database refused.
        """
        try:
            self.pool.runInteraction(self.store.createSchema, force)
        except self.pool.dbapi.Error as e:
            self._log.failure("Could not create storage schema")
            raise SchemaCreationError(e) from e


__all__ = ["SQLStorage"]
