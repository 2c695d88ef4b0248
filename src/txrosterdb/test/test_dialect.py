# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Tests for L{txrosterdb.dialect}.
"""

from twisted.trial import unittest

from txrosterdb.dialect import DIALECTS, dialectFor
from txrosterdb.error import StorageConfigurationError


class DialectTests(unittest.SynchronousTestCase):
    def test_lookup(self):
        for name, dialect in DIALECTS.items():
            self.assertIs(dialectFor(name), dialect)

    def test_unknown(self):
        e = self.assertRaises(StorageConfigurationError, dialectFor, "dbase")
        self.assertIn("sqlite3", str(e))

    def test_quoted(self):
        """
        Identifiers are quoted the way each engine expects.
        """
        self.assertEqual(dialectFor("sqlite3").quoted("groups"), '"groups"')
        self.assertEqual(dialectFor("postgresql").quoted("groups"), '"groups"')
        self.assertEqual(dialectFor("mysql").quoted("groups"), "`groups`")

    def test_savepoints(self):
        """
        Only PostgreSQL aborts the whole transaction on a failed insert.
        """
        self.assertEqual(
            [name for name, d in sorted(DIALECTS.items()) if d.savepoints],
            ["postgresql"],
        )

    def test_mysqlReadCommitted(self):
        """
        New MySQL connections read rows committed by other connections.
        """
        connection = FakeConnection()
        dialectFor("mysql").setup(connection)
        self.assertEqual(
            connection.cursors[0].executed,
            ["SET SESSION TRANSACTION ISOLATION LEVEL READ COMMITTED"],
        )
        self.assertTrue(connection.cursors[0].closed)


class FakeCursor:
    closed = False

    def __init__(self):
        self.executed = []

    def execute(self, statement):
        self.executed.append(statement)

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self):
        self.cursors = []

    def cursor(self):
        cursor = FakeCursor()
        self.cursors.append(cursor)
        return cursor
