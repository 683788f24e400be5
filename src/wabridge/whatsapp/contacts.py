"""In-memory contact name cache."""

from typing import Any, Iterable

from .jid import normalize_user

_NAME_FIELDS = ("name", "notify", "verifiedName")


def contact_display_name(contact: dict[str, Any]) -> str | None:
    """Pick the best available name from a gateway contact payload."""
    for field in _NAME_FIELDS:
        value = contact.get(field)
        if value:
            return str(value)
    return None


class ContactResolver:
    """Maps contact JIDs to display names for the lifetime of the process.

    Only ever touched from the event loop, so no locking.
    """

    def __init__(self) -> None:
        self._names: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._names)

    def lookup(self, jid: str) -> str | None:
        return self._names.get(normalize_user(jid))

    def remember(self, jid: str, name: str) -> None:
        self._names[normalize_user(jid)] = name

    def merge(self, contacts: Iterable[dict[str, Any]]) -> int:
        """Insert contacts; later entries for the same id win.

        Contacts without an id or without any name are skipped.

        Returns:
            Number of contacts stored.
        """
        stored = 0
        for contact in contacts:
            jid = contact.get("id")
            name = contact_display_name(contact)
            if not jid or not name:
                continue
            self.remember(jid, name)
            stored += 1
        return stored

    def fill_gaps(self, hints: Iterable[tuple[str, str]]) -> int:
        """Add (jid, name) hints only where no name is cached yet."""
        added = 0
        for jid, name in hints:
            if jid and name and self.lookup(jid) is None:
                self.remember(jid, name)
                added += 1
        return added
