# -*- test-case-name: txrosterdb.test.test_initschema -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
C{txrosterdb-initschema}: create the storage tables before starting the
server.
"""

import sys

from twisted.logger import globalLogBeginner, textFileLogObserver
from twisted.python import usage

from txrosterdb.config import StorageConfig
from txrosterdb.dialect import DIALECTS
from txrosterdb.error import SchemaCreationError, StorageConfigurationError
from txrosterdb.storage import SQLStorage


class InitSchemaOptions(usage.Options):
    synopsis = "Usage: txrosterdb-initschema [options]"

    optParameters = [
        ["adapter", "a", "sqlite3", "Database engine: " + ", ".join(sorted(DIALECTS))],
        ["database", "d", None, "Database name, or file name for sqlite3"],
        ["host", "H", None, "Database server host"],
        ["port", "p", None, "Database server port", int],
        ["username", "u", None, "Database user"],
        ["password", "w", None, "Database password"],
    ]

    optFlags = [
        ["force", "f", "Drop existing tables first, discarding their data"],
        ["quiet", "q", "Do not log progress"],
    ]

    def postOptions(self):
        try:
            self["config"] = StorageConfig(
                adapter=self["adapter"],
                database=self["database"],
                host=self["host"],
                port=self["port"],
                username=self["username"],
                password=self["password"],
                pool=1,
            )
        except StorageConfigurationError as e:
            raise usage.UsageError(str(e))


def run(argv=None, stdout=None):
    """
    Parse C{argv} and create the schema it describes.

    @return: The process exit status.
    """
    if argv is None:
        argv = sys.argv[1:]
    if stdout is None:
        stdout = sys.stdout
    options = InitSchemaOptions()
    try:
        options.parseOptions(argv)
    except usage.UsageError as e:
        stdout.write(f"{options}\n{e}\n")
        return 2

    if not options["quiet"]:
        globalLogBeginner.beginLoggingTo(
            [textFileLogObserver(stdout)], redirectStandardIO=False
        )
    storage = SQLStorage(options["config"])
    try:
        storage.createSchema(force=options["force"])
    except SchemaCreationError as e:
        stdout.write(f"Could not create schema: {e.reason}\n")
        return 1
    finally:
        storage.pool.close()
    return 0


def main():
    sys.exit(run())
