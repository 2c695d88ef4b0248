# -*- test-case-name: txrosterdb.test -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
txrosterdb: relational persistence for an XMPP server's users, rosters,
vCards and private XML fragments, usable from a running reactor.

The storage operations block on a DB-API 2.0 module, so L{SQLStorage} runs
them in a thread pool sized to its connection pool and hands back
L{Deferred<twisted.internet.defer.Deferred>}s.
"""

from txrosterdb._version import __version__ as version
from txrosterdb.config import StorageConfig
from txrosterdb.roster import Ask, Contact, Subscription, User
from txrosterdb.storage import SQLStorage

__version__ = version.short()

__all__ = [
    "__version__",
    "version",
    "Ask",
    "Contact",
    "SQLStorage",
    "StorageConfig",
    "Subscription",
    "User",
]
