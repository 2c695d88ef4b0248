# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Interfaces for L{txrosterdb}.
"""

from zope.interface import Interface


class IStorage(Interface):
    """
    Persistence for an XMPP server's accounts.

    Every method except L{createSchema} returns a
    L{Deferred<twisted.internet.defer.Deferred>} and never blocks the
    reactor.  JIDs may carry a resource; it is ignored.  An empty or
    unparseable JID reads as absent and writes as a no-op.
    """

    def findUser(jid):
        """
        Load an account and its roster.

        @type jid: C{str} or L{JID<twisted.words.protocols.jabber.jid.JID>}

        @return: A L{Deferred} firing with a L{txrosterdb.roster.User}, or
            L{None} if there is no such account.
        """

    def saveUser(user):
        """
        Store an account, replacing its stored roster with C{user.roster}.

        Contacts missing from C{user.roster} are deleted, matching ones are
        overwritten and new ones inserted.  A roster naming the same contact
        twice is not saved.

        @type user: L{txrosterdb.roster.User}

        @return: A L{Deferred} firing with L{None}.
        """

    def findVCard(jid):
        """
        @return: A L{Deferred} firing with the vCard document as C{bytes}, or
            L{None} if there is none or it is not well-formed XML.
        """

    def saveVCard(jid, card):
        """
        Replace the vCard of an existing account.

        @type card: C{bytes} or C{str}

        @return: A L{Deferred} firing with L{None}.
        """

    def findFragment(jid, rootName, namespaceURI):
        """
        Load the private XML stored under an element name.

        @return: A L{Deferred} firing with the document as C{bytes}, or
            L{None} if there is none or it is not well-formed XML.
        """

    def saveFragment(jid, rootName, namespaceURI, xml):
        """
        Store private XML under an element name, replacing what was there.

        @return: A L{Deferred} firing with L{None}.
        """

    def createSchema(force=False):
        """
        Create the tables, synchronously.  Call it once at startup before any
        other method.

        @param force: Drop existing tables first.

        @raise txrosterdb.error.SchemaCreationError: If the database refused.
        """
