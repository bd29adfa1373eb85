"""WhatsApp JID parsing (Baileys addressing).

A JID looks like ``<user>[_<agent>][:<device>]@<server>``.
"""

from __future__ import annotations

from typing import Literal

JidType = Literal["user", "group", "lid", "status", "broadcast", "newsletter", "call", "unknown"]

USER_SERVERS = ("s.whatsapp.net", "c.us")

# JID types that address a single contact
CONTACT_JID_TYPES = ("user", "lid")


def jid_server(jid: str) -> str:
    return jid.rsplit("@", 1)[-1] if "@" in jid else ""


def jid_type(jid: str | None) -> JidType:
    """Classify a JID by its server part."""
    if not jid:
        return "unknown"
    server = jid_server(jid)
    if server in USER_SERVERS:
        return "user"
    if server == "g.us":
        return "group"
    if server == "lid":
        return "lid"
    if server == "broadcast":
        return "status" if jid.startswith("status@") else "broadcast"
    if server == "newsletter":
        return "newsletter"
    if server == "call":
        return "call"
    return "unknown"


def jid_user(jid: str | None) -> str | None:
    """Return the user part, without agent and device suffixes."""
    if not jid:
        return None
    user = jid.split("@", 1)[0].split(":", 1)[0].split("_", 1)[0]
    return user or None
