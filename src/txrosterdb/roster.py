# -*- test-case-name: txrosterdb.test.test_roster -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Users, their rosters, and the reconciliation of a desired roster against
the stored one.

The value types here are what the protocol layer hands to, and gets back
from, L{txrosterdb.interfaces.IStorage}.  L{mergeRoster} does no I/O.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, Optional, Tuple

import attr
from constantly import ValueConstant, Values

from txrosterdb.error import InvalidRosterError
from txrosterdb.jid import bareJID


class Subscription(Values):
    """
    Presence subscription state of a roster item (RFC 6121, section 2.1.2.5).
    """

    NONE = ValueConstant("none")
    TO = ValueConstant("to")
    FROM = ValueConstant("from")
    BOTH = ValueConstant("both")


class Ask(Values):
    """
    Pending outbound subscription request of a roster item.
    """

    NONE = ValueConstant("none")
    SUBSCRIBE = ValueConstant("subscribe")


def _subscription(value):
    if isinstance(value, ValueConstant):
        return value
    if not value:
        return Subscription.NONE
    return Subscription.lookupByValue(value)


def _ask(value):
    if isinstance(value, ValueConstant):
        return value
    if not value:
        return Ask.NONE
    return Ask.lookupByValue(value)


def trimmedGroups(names: Iterable[str]) -> FrozenSet[str]:
    """
    Group names as they are stored: surrounding whitespace removed, blank
    names dropped.
    """
    return frozenset(n.strip() for n in names if n and n.strip())


@attr.s(frozen=True)
class Contact:
    """
    One roster item.

    @ivar jid: Address of the contact.
    @ivar name: Display name chosen by the roster owner, or L{None}.
    @ivar subscription: A L{Subscription} constant; plain values such as
        C{"both"} are converted.
    @ivar ask: An L{Ask} constant; plain values are converted.
    @ivar groups: Names of the groups the contact is filed under.
    """

    jid: str = attr.ib()
    name: Optional[str] = attr.ib(default=None)
    subscription: ValueConstant = attr.ib(
        default=Subscription.NONE, converter=_subscription
    )
    ask: ValueConstant = attr.ib(default=Ask.NONE, converter=_ask)
    groups: FrozenSet[str] = attr.ib(default=frozenset(), converter=frozenset)


@attr.s(frozen=True)
class User:
    """
    A local account and its roster.

    @ivar jid: The account's bare JID.
    @ivar name: Display name, or L{None}.
    @ivar password: Stored credential, opaque to this package.
    @ivar roster: The account's L{Contact}s.
    """

    jid: str = attr.ib()
    name: Optional[str] = attr.ib(default=None)
    password: Optional[str] = attr.ib(default=None, repr=False)
    roster: FrozenSet[Contact] = attr.ib(default=frozenset(), converter=frozenset)

    def contact(self, jid: str) -> Optional[Contact]:
        """
        @return: The roster item for C{jid}, or L{None}.
        """
        bare = bareJID(jid)
        for item in self.roster:
            if bareJID(item.jid) == bare:
                return item
        return None

    def hasContact(self, jid: str) -> bool:
        return self.contact(jid) is not None


@attr.s(frozen=True)
class ContactRecord:
    """
    A stored roster item and its row identifier.
    """

    contactID: int = attr.ib()
    contact: Contact = attr.ib()

    @property
    def jid(self) -> str:
        return self.contact.jid


@attr.s(frozen=True)
class RosterDiff:
    """
    The changes that turn a stored roster into a desired one.

    Every JID involved appears in exactly one of the four groups, and each
    group is ordered by JID.

    @ivar toDelete: L{ContactRecord}s no longer wanted.
    @ivar toUpdate: C{(record, desired)} pairs whose stored fields differ
        from the desired L{Contact}; the record is overwritten with
        C{desired}'s name, subscription, ask and groups.
    @ivar toInsert: Desired L{Contact}s (with bare JIDs) not yet stored.
    @ivar unchanged: L{ContactRecord}s that already match.
    """

    toDelete: Tuple[ContactRecord, ...] = attr.ib(default=())
    toUpdate: Tuple[Tuple[ContactRecord, Contact], ...] = attr.ib(default=())
    toInsert: Tuple[Contact, ...] = attr.ib(default=())
    unchanged: Tuple[ContactRecord, ...] = attr.ib(default=())


def _normalized(contact: Contact) -> Contact:
    return attr.evolve(
        contact, jid=bareJID(contact.jid), groups=trimmedGroups(contact.groups)
    )


def validateRoster(desired: Iterable[Contact]) -> Dict[str, Contact]:
    """
    Index a desired roster by bare JID.

    @raise InvalidRosterError: If an item's JID does not parse, or two items
        share a bare JID.

    @return: The normalised items, keyed on bare JID.
    """
    index: Dict[str, Contact] = {}
    for contact in desired:
        bare = bareJID(contact.jid)
        if not bare:
            raise InvalidRosterError("Invalid contact JID", contact.jid)
        if bare in index:
            raise InvalidRosterError("Duplicate contact JID", bare)
        index[bare] = _normalized(contact)
    return index


def mergeRoster(
    desired: Iterable[Contact], persisted: Iterable[ContactRecord]
) -> RosterDiff:
    """
    Compute what must be deleted, updated and inserted so that the stored
    roster C{persisted} becomes C{desired}.

    Matching is by bare JID.  A matched item is a full overwrite of its
    name, subscription, ask and group fields, not a field-level merge.

    @raise InvalidRosterError: See L{validateRoster}.
    """
    wanted = validateRoster(desired)
    stored = {record.jid: record for record in persisted}

    toDelete = []
    toUpdate = []
    unchanged = []
    for jid in sorted(stored):
        record = stored[jid]
        fresh = wanted.get(jid)
        if fresh is None:
            toDelete.append(record)
        elif fresh == record.contact:
            unchanged.append(record)
        else:
            toUpdate.append((record, fresh))

    toInsert = [wanted[jid] for jid in sorted(wanted) if jid not in stored]

    return RosterDiff(
        toDelete=tuple(toDelete),
        toUpdate=tuple(toUpdate),
        toInsert=tuple(toInsert),
        unchanged=tuple(unchanged),
    )
