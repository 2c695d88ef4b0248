# -*- test-case-name: txrosterdb.test.test_dialect -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
The handful of differences between the relational engines txrosterdb can
talk to.

All SQL in L{txrosterdb.store} is written with C{?} placeholders; the
L{Transaction<txrosterdb.pool.Transaction>} rewrites them for DB-API modules
using another C{paramstyle}.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

import attr

from txrosterdb.error import StorageConfigurationError


def _sqliteSetup(connection) -> None:
    connection.execute("PRAGMA foreign_keys = ON")


def _mysqlSetup(connection) -> None:
    # Rows committed by other connections must be visible to the re-fetch
    # in BlockingStore.findOrCreateGroup.
    cursor = connection.cursor()
    try:
        cursor.execute("SET SESSION TRANSACTION ISOLATION LEVEL READ COMMITTED")
    finally:
        cursor.close()


@attr.s(frozen=True)
class Dialect:
    """
    Engine specific SQL fragments.

    @ivar name: The adapter name used in configuration.
    @ivar moduleName: Import name of the DB-API 2.0 module.
    @ivar primaryKey: Column definition of an auto-incrementing integer key.
    @ivar blobType: Column type holding opaque payloads.
    @ivar nameType: Column type of group names, which compare case-sensitively.
    @ivar quote: Identifier quote character.
    @ivar savepoints: Whether a failed statement aborts the surrounding
        transaction, so that conflicting inserts must be wrapped in a
        savepoint to be retried.
    @ivar setup: Called with every new DB-API connection, or L{None}.
    """

    name: str = attr.ib()
    moduleName: str = attr.ib()
    primaryKey: str = attr.ib()
    blobType: str = attr.ib()
    nameType: str = attr.ib(default="VARCHAR(256)")
    quote: str = attr.ib(default='"')
    savepoints: bool = attr.ib(default=False)
    setup: Optional[Callable[[object], None]] = attr.ib(default=None)

    def quoted(self, identifier: str) -> str:
        return f"{self.quote}{identifier}{self.quote}"


DIALECTS: Dict[str, Dialect] = {
    "sqlite3": Dialect(
        name="sqlite3",
        moduleName="sqlite3",
        primaryKey="id INTEGER PRIMARY KEY AUTOINCREMENT",
        blobType="BLOB",
        setup=_sqliteSetup,
    ),
    "postgresql": Dialect(
        name="postgresql",
        moduleName="psycopg2",
        primaryKey="id SERIAL PRIMARY KEY",
        blobType="BYTEA",
        savepoints=True,
    ),
    "mysql": Dialect(
        name="mysql",
        moduleName="MySQLdb",
        primaryKey="id INTEGER NOT NULL AUTO_INCREMENT PRIMARY KEY",
        blobType="LONGBLOB",
        nameType="VARCHAR(256) CHARACTER SET utf8mb4 COLLATE utf8mb4_bin",
        quote="`",
        setup=_mysqlSetup,
    ),
}


def dialectFor(adapter: str) -> Dialect:
    """
    Look up the L{Dialect} for an adapter name.

    @raise StorageConfigurationError: If the adapter is unknown.
    """
    try:
        return DIALECTS[adapter]
    except KeyError:
        raise StorageConfigurationError(
            "Unsupported adapter %r (expected one of: %s)"
            % (adapter, ", ".join(sorted(DIALECTS)))
        )
