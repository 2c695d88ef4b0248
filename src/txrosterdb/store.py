# -*- test-case-name: txrosterdb.test.test_store -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
The blocking half of the storage: one method per operation, each taking a
L{Transaction<txrosterdb.pool.Transaction>} as its first argument so that it
can be passed to L{ConnectionPool.runInteraction
<txrosterdb.pool.ConnectionPool.runInteraction>}.

Table layout::

    users(id, jid UNIQUE, name, password, vcard)
    contacts(id, user_id, jid, name, ask, subscription, UNIQUE(user_id, jid))
    groups(id, name UNIQUE)
    contacts_groups(contact_id, group_id, UNIQUE(contact_id, group_id))
    fragments(id, user_id, root, namespace, xml,
              UNIQUE(user_id, root, namespace))
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set, Union

from twisted.logger import Logger
from twisted.words.xish import domish

from txrosterdb.dialect import Dialect
from txrosterdb.error import InvalidRosterError
from txrosterdb.jid import bareJID
from txrosterdb.roster import (
    Ask,
    Contact,
    ContactRecord,
    User,
    mergeRoster,
    trimmedGroups,
)

Payload = Union[bytes, str]


def _payload(data: Payload) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def isWellFormed(data: Optional[bytes]) -> bool:
    """
    Check that C{data} holds exactly one well-formed XML element.
    """
    if not data:
        return False
    stream = domish.elementStream()
    seen = []
    stream.DocumentStartEvent = lambda root: seen.append("start")
    stream.ElementEvent = lambda element: None
    stream.DocumentEndEvent = lambda: seen.append("end")
    try:
        stream.parse(data)
    except domish.ParserError:
        return False
    return seen == ["start", "end"]


class BlockingStore:
    """
    SQL statements for users, rosters, vCards and fragments.

    @ivar dialect: The L{Dialect} of the database.
    @ivar identityManagedElsewhere: Never create user rows or write their
        name and password; another application owns them.
    @ivar nameColumn: Column of C{users} read as the display name.
    @ivar passwordColumn: Column of C{users} read as the password.
    """

    _log = Logger()

    def __init__(
        self,
        dialect: Dialect,
        identityManagedElsewhere: bool = False,
        nameColumn: str = "name",
        passwordColumn: str = "password",
    ) -> None:
        self.dialect = dialect
        self.identityManagedElsewhere = identityManagedElsewhere
        self.nameColumn = nameColumn
        self.passwordColumn = passwordColumn
        self.groups = dialect.quoted("groups")

    # Users

    def findUser(self, txn, jid) -> Optional[User]:
        """
        Load a user and its roster.

        @return: The L{User}, or L{None} if there is none for C{jid}.
        """
        jid = bareJID(jid)
        if not jid:
            return None
        txn.execute(
            f"SELECT id, {self.nameColumn}, {self.passwordColumn} "
            "FROM users WHERE jid = ?",
            (jid,),
        )
        row = txn.fetchone()
        if row is None:
            return None
        userID, name, password = row
        roster = [record.contact for record in self._contacts(txn, userID)]
        return User(jid=jid, name=name, password=password, roster=roster)

    def saveUser(self, txn, user: User) -> None:
        """
        Store C{user}'s account fields and make its stored roster equal to
        C{user.roster}.

        A roster with an invalid or repeated contact JID is logged and
        nothing is written.
        """
        jid = bareJID(user.jid)
        if not jid:
            return
        userID = self._userID(txn, jid)
        persisted = self._contacts(txn, userID) if userID is not None else []
        try:
            diff = mergeRoster(user.roster, persisted)
        except InvalidRosterError as e:
            self._log.warn("Not saving roster of {jid}: {error}", jid=jid, error=e)
            return

        if userID is None:
            if self.identityManagedElsewhere:
                self._log.debug("No user row for {jid}, not saving", jid=jid)
                return
            txn.execute(
                "INSERT INTO users (jid, name, password) VALUES (?, ?, ?)",
                (jid, user.name, user.password),
            )
            userID = self._userID(txn, jid)

        for record in diff.toDelete:
            txn.execute(
                "DELETE FROM contacts_groups WHERE contact_id = ?",
                (record.contactID,),
            )
            txn.execute("DELETE FROM contacts WHERE id = ?", (record.contactID,))

        for record, fresh in diff.toUpdate:
            groupIDs = self._resolveGroups(txn, fresh.groups)
            txn.execute(
                "UPDATE contacts SET name = ?, ask = ?, subscription = ? "
                "WHERE id = ?",
                (fresh.name, self._askColumn(fresh), fresh.subscription.value,
                 record.contactID),
            )
            self._attachGroups(txn, record.contactID, groupIDs)

        for fresh in diff.toInsert:
            groupIDs = self._resolveGroups(txn, fresh.groups)
            txn.execute(
                "INSERT INTO contacts (user_id, jid, name, ask, subscription) "
                "VALUES (?, ?, ?, ?, ?)",
                (userID, fresh.jid, fresh.name, self._askColumn(fresh),
                 fresh.subscription.value),
            )
            txn.execute(
                "SELECT id FROM contacts WHERE user_id = ? AND jid = ?",
                (userID, fresh.jid),
            )
            self._attachGroups(txn, txn.fetchvalue(), groupIDs)

        if not self.identityManagedElsewhere:
            txn.execute(
                "UPDATE users SET name = ?, password = ? WHERE id = ?",
                (user.name, user.password, userID),
            )

    def _userID(self, txn, jid: str) -> Optional[int]:
        txn.execute("SELECT id FROM users WHERE jid = ?", (jid,))
        return txn.fetchvalue()

    def _contacts(self, txn, userID: int) -> List[ContactRecord]:
        txn.execute(
            "SELECT id, jid, name, ask, subscription FROM contacts "
            "WHERE user_id = ?",
            (userID,),
        )
        rows = txn.fetchall()
        txn.execute(
            f"SELECT cg.contact_id, g.name FROM contacts_groups cg "
            f"JOIN {self.groups} g ON g.id = cg.group_id "
            "JOIN contacts c ON c.id = cg.contact_id "
            "WHERE c.user_id = ?",
            (userID,),
        )
        groups: Dict[int, Set[str]] = {}
        for contactID, name in txn.fetchall():
            groups.setdefault(contactID, set()).add(name)
        return [
            ContactRecord(
                contactID=contactID,
                contact=Contact(
                    jid=jid,
                    name=name,
                    ask=ask,
                    subscription=subscription,
                    groups=groups.get(contactID, ()),
                ),
            )
            for contactID, jid, name, ask, subscription in rows
        ]

    @staticmethod
    def _askColumn(contact: Contact) -> Optional[str]:
        if contact.ask is Ask.NONE:
            return None
        return contact.ask.value

    # Groups

    def findOrCreateGroup(self, txn, name: str) -> Optional[int]:
        """
        Look up a group by its trimmed name, creating it if it does not exist.

        A concurrent insert of the same name shows up as a unique key
        violation; the group is then fetched again rather than failing.

        @raise IntegrityError: The DB-API module's C{IntegrityError}, if the
            insert conflicted but the group still cannot be fetched.

        @return: The group's id, or L{None} for a blank name.
        """
        name = name.strip()
        if not name:
            return None
        select = f"SELECT id FROM {self.groups} WHERE name = ?"
        txn.execute(select, (name,))
        groupID = txn.fetchvalue()
        if groupID is not None:
            return groupID
        if self.dialect.savepoints:
            txn.execute("SAVEPOINT find_or_create_group")
        try:
            txn.execute(f"INSERT INTO {self.groups} (name) VALUES (?)", (name,))
        except txn.dbapi.IntegrityError:
            if self.dialect.savepoints:
                txn.execute("ROLLBACK TO SAVEPOINT find_or_create_group")
            self._log.debug("Group {name!r} created concurrently", name=name)
            txn.execute(select, (name,))
            groupID = txn.fetchvalue()
            if groupID is None:
                raise
            return groupID
        if self.dialect.savepoints:
            txn.execute("RELEASE SAVEPOINT find_or_create_group")
        txn.execute(select, (name,))
        return txn.fetchvalue()

    def _resolveGroups(self, txn, names: Iterable[str]) -> Set[int]:
        ids = set()
        for name in sorted(trimmedGroups(names)):
            groupID = self.findOrCreateGroup(txn, name)
            if groupID is not None:
                ids.add(groupID)
        return ids

    def _attachGroups(self, txn, contactID: int, groupIDs: Set[int]) -> None:
        txn.execute("DELETE FROM contacts_groups WHERE contact_id = ?", (contactID,))
        for groupID in sorted(groupIDs):
            txn.execute(
                "INSERT INTO contacts_groups (contact_id, group_id) VALUES (?, ?)",
                (contactID, groupID),
            )

    # vCards

    def findVCard(self, txn, jid) -> Optional[bytes]:
        """
        @return: The stored vCard document, or L{None} if the user or the
            vCard is missing or the document is not well-formed XML.
        """
        jid = bareJID(jid)
        if not jid:
            return None
        txn.execute("SELECT vcard FROM users WHERE jid = ?", (jid,))
        card = txn.fetchvalue()
        if card is None:
            return None
        card = _payload(card)
        if not isWellFormed(card):
            self._log.debug("Ignoring malformed vCard of {jid}", jid=jid)
            return None
        return card

    def saveVCard(self, txn, jid, card: Payload) -> None:
        """
        Replace a user's vCard.  Nothing happens if the user does not exist.
        """
        jid = bareJID(jid)
        if not jid:
            return
        txn.execute(
            "UPDATE users SET vcard = ? WHERE jid = ?",
            (self._binary(txn, card), jid),
        )

    # Fragments

    def findFragment(self, txn, jid, rootName: str, namespaceURI: str) -> Optional[bytes]:
        """
        @return: The document stored under C{(jid, rootName, namespaceURI)},
            or L{None} if there is none or it is not well-formed XML.
        """
        jid = bareJID(jid)
        if not jid:
            return None
        txn.execute(
            "SELECT f.xml FROM fragments f JOIN users u ON u.id = f.user_id "
            "WHERE u.jid = ? AND f.root = ? AND f.namespace = ?",
            (jid, rootName, namespaceURI),
        )
        xml = txn.fetchvalue()
        if xml is None:
            return None
        xml = _payload(xml)
        if not isWellFormed(xml):
            self._log.debug(
                "Ignoring malformed fragment {{{namespace}}}{root} of {jid}",
                namespace=namespaceURI,
                root=rootName,
                jid=jid,
            )
            return None
        return xml

    def saveFragment(
        self, txn, jid, rootName: str, namespaceURI: str, xml: Payload
    ) -> None:
        """
        Store C{xml} under C{(jid, rootName, namespaceURI)}, replacing what
        was there.  Nothing happens if the user does not exist.
        """
        jid = bareJID(jid)
        if not jid:
            return
        userID = self._userID(txn, jid)
        if userID is None:
            self._log.debug("No user row for {jid}, not saving fragment", jid=jid)
            return
        key = (userID, rootName, namespaceURI)
        txn.execute(
            "SELECT id FROM fragments WHERE user_id = ? AND root = ? "
            "AND namespace = ?",
            key,
        )
        fragmentID = txn.fetchvalue()
        data = self._binary(txn, xml)
        if fragmentID is None:
            txn.execute(
                "INSERT INTO fragments (user_id, root, namespace, xml) "
                "VALUES (?, ?, ?, ?)",
                key + (data,),
            )
        else:
            txn.execute(
                "UPDATE fragments SET xml = ? WHERE id = ?", (data, fragmentID)
            )

    @staticmethod
    def _binary(txn, data: Payload):
        return txn.dbapi.Binary(_payload(data))

    # Schema

    def createSchema(self, txn, force: bool = False) -> None:
        """
        Create the tables used by this store if they do not exist.

        @param force: Drop the tables first, discarding all data.
        """
        if self.identityManagedElsewhere:
            self._log.info("User rows are managed elsewhere, not creating schema")
            return
        d = self.dialect
        blob = d.blobType
        if force:
            for table in ("fragments", "contacts_groups", self.groups,
                          "contacts", "users"):
                txn.execute(f"DROP TABLE IF EXISTS {table}")
        statements = [
            f"""CREATE TABLE IF NOT EXISTS users (
                {d.primaryKey},
                jid VARCHAR(512) NOT NULL,
                name VARCHAR(256),
                password VARCHAR(256),
                vcard {blob},
                UNIQUE (jid))""",
            f"""CREATE TABLE IF NOT EXISTS contacts (
                {d.primaryKey},
                user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
                jid VARCHAR(512) NOT NULL,
                name VARCHAR(256),
                ask VARCHAR(128),
                subscription VARCHAR(128) NOT NULL,
                UNIQUE (user_id, jid))""",
            f"""CREATE TABLE IF NOT EXISTS {self.groups} (
                {d.primaryKey},
                name {d.nameType} NOT NULL,
                UNIQUE (name))""",
            f"""CREATE TABLE IF NOT EXISTS contacts_groups (
                contact_id INTEGER NOT NULL
                    REFERENCES contacts (id) ON DELETE CASCADE,
                group_id INTEGER NOT NULL
                    REFERENCES {self.groups} (id) ON DELETE CASCADE,
                UNIQUE (contact_id, group_id))""",
            f"""CREATE TABLE IF NOT EXISTS fragments (
                {d.primaryKey},
                user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
                root VARCHAR(256) NOT NULL,
                namespace VARCHAR(256) NOT NULL,
                xml {blob} NOT NULL,
                UNIQUE (user_id, root, namespace))""",
        ]
        for statement in statements:
            txn.execute(statement)
        self._log.info("Storage schema ready ({dialect})", dialect=d.name)


__all__ = ["BlockingStore", "isWellFormed"]
