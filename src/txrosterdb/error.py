# -*- test-case-name: txrosterdb.test.test_storage -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Exceptions raised by txrosterdb.
"""


class StorageError(Exception):
    """
    Base class for all txrosterdb errors.
    """


class StorageConfigurationError(StorageError):
    """
    The storage was given connection settings it cannot work with.  This is
    raised while the server starts up and is not recoverable.
    """


class SchemaCreationError(StorageError):
    """
    Creating the tables or indexes failed.

    @ivar reason: The DB-API exception that caused the failure.
    """

    def __init__(self, reason):
        StorageError.__init__(self, reason)
        self.reason = reason


class InvalidRosterError(StorageError):
    """
    A roster snapshot names the same contact twice, or names a contact whose
    address is not a valid JID.

    @ivar jid: The offending contact address.
    """

    def __init__(self, message, jid):
        StorageError.__init__(self, message, jid)
        self.jid = jid

    def __str__(self) -> str:
        return f"{self.args[0]}: {self.jid!r}"


class PoolTimeoutError(StorageError):
    """
    No pooled connection became free within the configured wait.
    """


class StorageClosedError(StorageError):
    """
    An operation was submitted after the storage was stopped.
    """
