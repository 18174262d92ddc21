"""ContentStore abstract base class: the user-to-content ownership interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..types import Content, UserHashPair


class ContentStore(ABC):
    """Pluggable storage backend for (user, hash) ownership records.

    Every write is atomic per row. Implementations raise ``StoreError`` on
    any persistence failure and never report partial success.
    """

    @abstractmethod
    def add(self, content: Content) -> None:
        """Insert an active record, or reactivate an existing (user, hash) one.

        ``content.created`` is ignored; the original creation time of an
        existing row is preserved. Name and size are refreshed.
        """

    @abstractmethod
    def list_active_content_by_user(self, user: str) -> list[str]:
        """Hashes of all active records owned by *user*."""

    @abstractmethod
    def list_active_content_by_hash(self, hashes: list[str]) -> list[UserHashPair]:
        """Active (user, hash) pairs across all users for the given hashes."""

    @abstractmethod
    def remove_content_by_hash_for_user(self, user: str, hashes: list[str]) -> int:
        """Mark active records of *user* matching *hashes* as removed now.

        Hashes that are not active for *user* are ignored. Returns the number
        of rows affected.
        """

    @abstractmethod
    def list_all(self) -> list[Content]:
        """All records, active and removed, oldest first."""

    def migrate_to_latest(self) -> int:
        """Apply pending schema migrations. Returns the schema version."""
        return 0

    def close(self) -> None:
        """Release any held resources."""
