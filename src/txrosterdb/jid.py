# -*- test-case-name: txrosterdb.test.test_jid -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Address normalisation.

Everything in the store is keyed on bare JIDs (C{user@host}, no resource),
in the stringprep-normalised form produced by
L{twisted.words.protocols.jabber.jid}.
"""

from __future__ import annotations

from typing import Union

from twisted.words.protocols.jabber import jid


def bareJID(address: Union[str, jid.JID, None]) -> str:
    """
    Reduce C{address} to its bare form.

    @param address: A JID, either parsed or as text.

    @return: The normalised C{user@host} (or C{host}) text, or an empty
        string if C{address} is missing or cannot be parsed.
    """
    if not address:
        return ""
    if isinstance(address, jid.JID):
        return address.userhost()
    try:
        return jid.internJID(address).userhost()
    except jid.InvalidFormat:
        return ""
