# -*- test-case-name: txrosterdb.test.test_config -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Connection settings for L{txrosterdb.storage.SQLStorage}.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional, Tuple

import attr

from txrosterdb.dialect import dialectFor
from txrosterdb.error import StorageConfigurationError

_identifier = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Option names accepted by fromMapping for backwards compatibility.
_aliases = {
    "model_user_name": "userNameColumn",
    "model_user_password": "userPasswordColumn",
    "user_name": "userNameColumn",
    "user_password": "userPasswordColumn",
    "rails_mode": "identityManagedElsewhere",
    "identity_managed_elsewhere": "identityManagedElsewhere",
    "pool_timeout": "poolTimeout",
    "serialize_writes": "serializeWrites",
}


def _blankToNone(value: Optional[str]) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    return value


@attr.s(frozen=True)
class StorageConfig:
    """
    Everything needed to reach the database.

    @ivar adapter: One of the names in L{txrosterdb.dialect.DIALECTS}.
    @ivar database: Database name, or file name for C{sqlite3}.
    @ivar pool: Number of pooled connections, which is also the number of
        worker threads.
    @ivar poolTimeout: Seconds a worker waits for a free connection before
        failing with L{PoolTimeoutError<txrosterdb.error.PoolTimeoutError>};
        L{None} waits forever.
    @ivar identityManagedElsewhere: User rows are created and owned by
        another application; only roster and profile data is written.
    @ivar userNameColumn: Column of C{users} holding the display name.
    @ivar userPasswordColumn: Column of C{users} holding the password.
    @ivar serializeWrites: Run writes for the same JID one at a time.
    """

    adapter: str = attr.ib()
    database: str = attr.ib()
    host: Optional[str] = attr.ib(default=None)
    port: Optional[int] = attr.ib(default=None)
    username: Optional[str] = attr.ib(default=None, converter=_blankToNone)
    password: Optional[str] = attr.ib(default=None, converter=_blankToNone)
    pool: int = attr.ib(default=5, converter=int)
    poolTimeout: Optional[float] = attr.ib(default=None)
    identityManagedElsewhere: bool = attr.ib(default=False, converter=bool)
    userNameColumn: str = attr.ib(default="name")
    userPasswordColumn: str = attr.ib(default="password")
    serializeWrites: bool = attr.ib(default=False, converter=bool)

    def __attrs_post_init__(self) -> None:
        dialect = dialectFor(self.adapter)
        if not self.database:
            raise StorageConfigurationError("Must provide database")
        if dialect.name != "sqlite3":
            for key in ("host", "port"):
                if not getattr(self, key):
                    raise StorageConfigurationError(f"Must provide {key}")
        if self.pool < 1:
            raise StorageConfigurationError(
                f"Pool size must be at least 1, not {self.pool}"
            )
        if self.poolTimeout is not None and self.poolTimeout <= 0:
            raise StorageConfigurationError(
                f"Pool timeout must be positive, not {self.poolTimeout}"
            )
        for key in ("userNameColumn", "userPasswordColumn"):
            if not _identifier.match(getattr(self, key) or ""):
                raise StorageConfigurationError(
                    f"{key} must be a plain column name, not {getattr(self, key)!r}"
                )

    @classmethod
    def fromMapping(cls, mapping: Mapping[str, Any]) -> "StorageConfig":
        """
        Build a configuration from a flat mapping of option names, as read
        from a server configuration file.

        @raise StorageConfigurationError: If an option is unknown or a
            required one is missing.
        """
        known = {a.name for a in attr.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in mapping.items():
            name = _aliases.get(key, key)
            if name not in known:
                raise StorageConfigurationError(f"Unknown storage option {key!r}")
            kwargs[name] = value
        for required in ("adapter", "database"):
            if required not in kwargs:
                raise StorageConfigurationError(f"Must provide {required}")
        if kwargs.get("port") is not None:
            kwargs["port"] = int(kwargs["port"])
        return cls(**kwargs)

    @property
    def dialect(self):
        return dialectFor(self.adapter)

    def connectionArguments(self) -> Tuple[Tuple[Any, ...], Dict[str, Any]]:
        """
        @return: The positional and keyword arguments for the adapter's
            DB-API C{connect} function.
        """
        if self.adapter == "sqlite3":
            # Pooled connections move between worker threads.
            return (self.database,), {"check_same_thread": False}
        if self.adapter == "postgresql":
            kw: Dict[str, Any] = {
                "host": self.host,
                "port": self.port,
                "dbname": self.database,
            }
            if self.username is not None:
                kw["user"] = self.username
            if self.password is not None:
                kw["password"] = self.password
            return (), kw
        kw = {"host": self.host, "port": self.port, "db": self.database}
        if self.username is not None:
            kw["user"] = self.username
        if self.password is not None:
            kw["passwd"] = self.password
        return (), kw
