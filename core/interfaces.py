"""Abstract base classes for tracker engine components"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from .models import Alias, Row, Tracker, Update


class TrackerStore(ABC):
    """Persistent store behind the engine.

    Implementations must enforce uniqueness of ``(tracker_id, row_id)``,
    ``slug`` and ``(tracker_id, alias)`` themselves and raise
    ``DuplicateKeyError`` on violation; the services' existence checks are
    only a fast path.
    """

    # Trackers

    @abstractmethod
    async def insert_tracker(self, tracker: Tracker) -> Tracker:
        """Insert a tracker; slug collisions raise DuplicateKeyError"""
        pass

    @abstractmethod
    async def get_tracker(self, tracker_id: str) -> Optional[Tracker]:
        pass

    @abstractmethod
    async def get_tracker_by_slug(self, slug: str) -> Optional[Tracker]:
        pass

    @abstractmethod
    async def list_trackers(self, user_id: str, active_only: bool = False) -> list[Tracker]:
        pass

    @abstractmethod
    async def save_tracker(self, tracker: Tracker) -> Tracker:
        """Overwrite an existing tracker document"""
        pass

    @abstractmethod
    async def delete_tracker(self, tracker_id: str) -> None:
        """Delete a tracker together with its rows and aliases"""
        pass

    # Rows

    @abstractmethod
    async def get_row(self, tracker_id: str, row_id: str) -> Optional[Row]:
        pass

    @abstractmethod
    async def insert_row(self, row: Row) -> Row:
        """Insert a row and assign its ``seq``; key collisions raise DuplicateKeyError"""
        pass

    @abstractmethod
    async def patch_row(
        self,
        tracker_id: str,
        row_id: str,
        data: dict[str, Any],
        updated_by: str,
        expected_version: Optional[int] = None,
        new_row_id: Optional[str] = None,
    ) -> Row:
        """
        Replace a row's data atomically

        Args:
            tracker_id: Owning tracker
            row_id: Current row id
            data: Full new data map
            updated_by: Caller subject for the audit stamp
            expected_version: Compare-and-swap guard; a mismatch raises VersionConflictError
            new_row_id: Re-key the row; a taken key raises DuplicateKeyError

        Returns:
            The stored row with its version incremented
        """
        pass

    @abstractmethod
    async def delete_row(self, tracker_id: str, row_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_all_rows(self, tracker_id: str) -> int:
        pass

    @abstractmethod
    async def list_rows(self, tracker_id: str, after_seq: Optional[int] = None, limit: int = 50) -> list[Row]:
        """Rows in ascending ``seq`` order strictly after ``after_seq``"""
        pass

    @abstractmethod
    async def drop_row_keys(self, tracker_id: str, keys: list[str]) -> int:
        """Remove data keys from every row of a tracker"""
        pass

    # Aliases

    @abstractmethod
    async def insert_alias(self, alias: Alias) -> Alias:
        pass

    @abstractmethod
    async def get_alias(self, tracker_id: str, alias: str) -> Optional[Alias]:
        pass

    @abstractmethod
    async def get_alias_by_id(self, alias_id: str) -> Optional[Alias]:
        pass

    @abstractmethod
    async def delete_alias(self, alias_id: str) -> bool:
        pass

    @abstractmethod
    async def list_aliases(self, tracker_id: str, row_id: Optional[str] = None) -> list[Alias]:
        pass

    @abstractmethod
    async def rebind_aliases(self, tracker_id: str, old_row_id: str, new_row_id: str) -> int:
        pass

    # Updates

    @abstractmethod
    async def insert_update(self, update: Update) -> Update:
        pass

    @abstractmethod
    async def get_update(self, update_id: str) -> Optional[Update]:
        pass

    @abstractmethod
    async def patch_update(self, update_id: str, fields: dict[str, Any]) -> Update:
        pass

    @abstractmethod
    async def claim_update(self, update_id: str, fields: dict[str, Any]) -> Optional[Update]:
        """Set ``processed`` plus ``fields`` only if still unprocessed; None otherwise"""
        pass

    @abstractmethod
    async def list_updates(self, user_id: str) -> list[Update]:
        """All updates of a user, newest first"""
        pass
