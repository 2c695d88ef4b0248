# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Tests for L{txrosterdb.storage}.
"""

import os
import threading

from zope.interface.verify import verifyObject

from twisted.internet import defer, reactor
from twisted.trial import unittest
from twisted.words.xish import domish

from txrosterdb.config import StorageConfig
from txrosterdb.error import (
    SchemaCreationError,
    StorageClosedError,
    StorageConfigurationError,
)
from txrosterdb.interfaces import IStorage
from txrosterdb.roster import Contact, Subscription, User
from txrosterdb.storage import SQLStorage
from txrosterdb.test.helpers import count, sqliteConfig, sqlitePool

VCARD = b"<vCard xmlns='vcard-temp'><FN>Alice</FN></vCard>"


class SQLStorageTests(unittest.TestCase):
    """
    Tests for L{SQLStorage} over SQLite, with the real reactor and worker
    threads.
    """

    serializeWrites = False

    def setUp(self):
        self.storage = SQLStorage(
            sqliteConfig(self, pool=3, serializeWrites=self.serializeWrites),
            reactor,
        )
        self.storage.createSchema()
        self.storage.startService()
        self.addCleanup(self.storage.stopService)

    def test_interface(self):
        self.assertTrue(verifyObject(IStorage, self.storage))

    def test_workersMatchPool(self):
        """
        There is one worker thread per pooled connection.
        """
        self.assertEqual(self.storage.executor.size, 3)
        self.assertEqual(self.storage.pool.size, 3)

    def test_returnsDeferred(self):
        """
        Operations return without waiting for the database.
        """
        d = self.storage.findUser("alice@example.com")
        self.assertIsInstance(d, defer.Deferred)
        return d

    @defer.inlineCallbacks
    def test_roundTrip(self):
        """
        A saved user is found again.
        """
        user = User(
            jid="alice@example.com",
            name="Alice",
            password="secret",
            roster=[Contact(jid="bob@example.com", subscription=Subscription.BOTH,
                            groups=["Friends"])],
        )
        yield self.storage.saveUser(user)
        found = yield self.storage.findUser("alice@example.com/laptop")
        self.assertEqual(found, user)

    @defer.inlineCallbacks
    def test_deletedContactExcluded(self):
        """
        A contact left out of a saved roster is gone from the next lookup.
        """
        yield self.storage.saveUser(
            User(jid="alice@example.com",
                 roster=[Contact(jid="bob@example.com"),
                         Contact(jid="carol@example.com")])
        )
        yield self.storage.saveUser(
            User(jid="alice@example.com", roster=[Contact(jid="carol@example.com")])
        )
        found = yield self.storage.findUser("alice@example.com")
        self.assertEqual([c.jid for c in found.roster], ["carol@example.com"])

    @defer.inlineCallbacks
    def test_absent(self):
        """
        Reads of things that are not stored fire with L{None}.
        """
        yield self.storage.saveUser(User(jid="alice@example.com"))
        results = yield defer.gatherResults(
            [
                self.storage.findUser("nonexistent@example.com"),
                self.storage.findVCard("alice@example.com"),
                self.storage.findFragment("alice@example.com", "x", "y"),
                self.storage.findUser(""),
            ]
        )
        self.assertEqual(results, [None, None, None, None])

    @defer.inlineCallbacks
    def test_invalidJIDWrites(self):
        """
        Writes for an unparseable JID succeed without doing anything.
        """
        yield self.storage.saveUser(User(jid="@"))
        yield self.storage.saveUser(User(jid=""))
        yield self.storage.saveVCard("", VCARD)
        yield self.storage.saveFragment("", "query", "urn:x", b"<query/>")
        self.assertEqual(count(self.storage.pool, "users"), 0)

    @defer.inlineCallbacks
    def test_vcard(self):
        yield self.storage.saveUser(User(jid="alice@example.com"))
        yield self.storage.saveVCard("alice@example.com", VCARD)
        card = yield self.storage.findVCard("alice@example.com/phone")
        self.assertEqual(card, VCARD)

    @defer.inlineCallbacks
    def test_fragmentUpsert(self):
        """
        The second save of a fragment replaces the first.
        """
        yield self.storage.saveUser(User(jid="alice@example.com"))
        blobA = b"<query xmlns='urn:example'>a</query>"
        blobB = b"<query xmlns='urn:example'>b</query>"
        yield self.storage.saveFragment("alice@example.com", "query",
                                        "urn:example", blobA)
        yield self.storage.saveFragment("alice@example.com", "query",
                                        "urn:example", blobB)
        found = yield self.storage.findFragment("alice@example.com", "query",
                                                "urn:example")
        self.assertEqual(found, blobB)
        self.assertEqual(count(self.storage.pool, "fragments"), 1)

    @defer.inlineCallbacks
    def test_fragmentElement(self):
        """
        An element is stored under its own name and namespace.
        """
        yield self.storage.saveUser(User(jid="alice@example.com"))
        element = domish.Element(("storage:bookmarks", "storage"))
        element.addElement("url")["url"] = "https://example.com/"
        yield self.storage.saveFragmentElement("alice@example.com", element)
        found = yield self.storage.findFragment("alice@example.com", "storage",
                                                "storage:bookmarks")
        self.assertEqual(found, element.toXml().encode("utf-8"))

    @defer.inlineCallbacks
    def test_groupShared(self):
        """
        Two saves naming the same group leave one group row.
        """
        for owner in ("alice@example.com", "bob@example.com"):
            yield self.storage.saveUser(
                User(jid=owner, roster=[Contact(jid="eve@example.com",
                                                groups=["Friends"])])
            )
        self.assertEqual(count(self.storage.pool, '"groups"'), 1)

    @defer.inlineCallbacks
    def test_manyUsers(self):
        """
        Saves for different users may be in flight at the same time.
        """
        users = [
            User(jid=f"user{i}@example.com",
                 roster=[Contact(jid=f"friend{i}@example.com")])
            for i in range(6)
        ]
        yield defer.gatherResults([self.storage.saveUser(u) for u in users])
        found = yield defer.gatherResults(
            [self.storage.findUser(u.jid) for u in users]
        )
        self.assertEqual(found, users)
        self.assertLessEqual(self.storage.pool.peakInUse, 3)

    @defer.inlineCallbacks
    def test_notOnReactorThread(self):
        """
        Database work does not run in the reactor thread.
        """
        reactorThread = threading.current_thread()
        threads = []

        def interaction(txn):
            threads.append(threading.current_thread())

        yield self.storage._defer(interaction)
        self.assertEqual(len(threads), 1)
        self.assertIsNot(threads[0], reactorThread)

    @defer.inlineCallbacks
    def test_failurePropagates(self):
        """
        An unexpected database error fails the operation's L{Deferred} and
        leaves no connection checked out.
        """
        yield self.storage._defer(lambda txn: txn.execute("DROP TABLE fragments"))
        yield self.storage.saveUser(User(jid="alice@example.com"))
        d = self.storage.saveFragment("alice@example.com", "query", "urn:x",
                                      b"<query/>")
        yield self.assertFailure(d, self.storage.pool.dbapi.OperationalError)
        self.assertEqual(self.storage.pool.inUse, 0)

    def test_stopped(self):
        """
        Operations after the service stops fail with L{StorageClosedError}.
        """
        self.storage.stopService()
        return self.assertFailure(
            self.storage.findUser("alice@example.com"), StorageClosedError
        )


class SerializedWritesTests(SQLStorageTests):
    """
    The same tests with per-JID write serialisation.
    """

    serializeWrites = True

    @defer.inlineCallbacks
    def test_sameJIDWritesInOrder(self):
        """
        Concurrent saves for one JID run one after another, in submission
        order, and the lock is dropped afterwards.
        """
        saves = [
            self.storage.saveUser(
                User(jid="alice@example.com",
                     roster=[Contact(jid=f"c{i}@example.com")])
            )
            for i in range(5)
        ]
        self.assertEqual(list(self.storage._writeLocks), ["alice@example.com"])
        yield defer.gatherResults(saves)
        found = yield self.storage.findUser("alice@example.com")
        self.assertEqual([c.jid for c in found.roster], ["c4@example.com"])
        self.assertEqual(self.storage._writeLocks, {})


class ConfigurationTests(unittest.TestCase):
    """
    Tests for setting up L{SQLStorage}.
    """

    def test_poolTooSmall(self):
        """
        A pool with fewer connections than workers is refused.
        """
        config = sqliteConfig(self, pool=4)
        pool = sqlitePool(config, cp_size=2)
        self.addCleanup(pool.close)
        self.assertRaises(
            StorageConfigurationError, SQLStorage, config, reactor, pool
        )

    def test_schemaIdempotent(self):
        """
        Creating the schema again keeps the data; forcing it drops the data.
        """
        storage = SQLStorage(sqliteConfig(self), reactor)
        self.addCleanup(storage.pool.close)
        storage.createSchema()
        storage.pool.runInteraction(storage.store.saveUser, User(jid="a@example.com"))
        storage.createSchema()
        self.assertEqual(count(storage.pool, "users"), 1)
        storage.createSchema(force=True)
        self.assertEqual(count(storage.pool, "users"), 0)

    def test_schemaFailure(self):
        """
        A database error while creating the schema is raised as
        L{SchemaCreationError}.
        """
        path = self.mktemp()
        os.mkdir(path)
        storage = SQLStorage(
            StorageConfig(adapter="sqlite3", database=path), reactor
        )
        self.addCleanup(storage.pool.close)
        e = self.assertRaises(SchemaCreationError, storage.createSchema)
        self.assertIsInstance(e.reason, storage.pool.dbapi.Error)
        self.flushLoggedErrors(storage.pool.dbapi.Error)
