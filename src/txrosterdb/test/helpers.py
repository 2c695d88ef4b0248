# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Helpers for txrosterdb tests.
"""

from txrosterdb.config import StorageConfig
from txrosterdb.dialect import DIALECTS
from txrosterdb.pool import ConnectionPool
from txrosterdb.store import BlockingStore


def sqliteConfig(testCase, **kw):
    """
    A L{StorageConfig} for a fresh SQLite database file owned by
    C{testCase}.
    """
    return StorageConfig(adapter="sqlite3", database=testCase.mktemp(), **kw)


def sqlitePool(config, **kw):
    """
    A L{ConnectionPool} connecting to the database of C{config}.
    """
    args, connkw = config.connectionArguments()
    connkw.update(kw)
    connkw.setdefault("cp_size", config.pool)
    connkw.setdefault("cp_openfun", DIALECTS["sqlite3"].setup)
    return ConnectionPool("sqlite3", *args, **connkw)


def sqliteStore(**kw):
    return BlockingStore(DIALECTS["sqlite3"], **kw)


def count(pool, table, where="", params=()):
    """
    Count the rows of C{table}, blocking.
    """

    def interaction(txn):
        txn.execute(f"SELECT COUNT(*) FROM {table} {where}", params)
        return txn.fetchvalue()

    return pool.runInteraction(interaction)
