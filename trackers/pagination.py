"""Cursor pagination over tracker rows"""

import base64
import binascii
import json
from typing import Any, Optional, Union

from config import Settings, settings as default_settings
from core.enums import SortOrder
from core.exceptions import MalformedInputError, NotFoundError, SizeLimitError
from core.interfaces import TrackerStore
from core.models import Page, Row
from .rows import load_owned_tracker


def encode_cursor(seq: int) -> str:
    """Opaque continuation token for the row after ``seq``"""
    payload = json.dumps({"after": seq}, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> int:
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        seq = payload["after"]
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as e:
        raise MalformedInputError("Invalid cursor") from e

    if not isinstance(seq, int) or isinstance(seq, bool) or seq < 0:
        raise MalformedInputError("Invalid cursor")
    return seq


def _sort_key(value: Any) -> tuple:
    # Mixed types compare by type name first
    if isinstance(value, bool):
        return ("bool", int(value))
    if isinstance(value, (int, float)):
        return ("number", value)
    return (type(value).__name__, str(value))


def sort_page(rows: list[Row], sort_by: str, sort_order: SortOrder) -> list[Row]:
    """Re-order one page of rows by a data key; None values go last in either order"""
    present = [row for row in rows if row.data.get(sort_by) is not None]
    missing = [row for row in rows if row.data.get(sort_by) is None]
    present.sort(
        key=lambda row: _sort_key(row.data[sort_by]),
        reverse=sort_order is SortOrder.DESC,
    )
    return present + missing


class PageReader:
    """Insertion-ordered row pages with an optional per-page sort"""

    def __init__(self, store: TrackerStore, config: Optional[Settings] = None):
        self.store = store
        self.settings = config or default_settings

    async def get_page(
        self,
        tracker_id: str,
        cursor: Optional[str] = None,
        page_size: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Union[SortOrder, str] = SortOrder.ASC,
        user_id: Optional[str] = None,
    ) -> Page:
        """
        Read one page of rows

        Rows are returned in insertion order so cursors stay stable. When
        ``sort_by`` is given only the rows of this page are re-ordered;
        ordering across pages is not global.

        Args:
            tracker_id: Tracker to read
            cursor: Token from a previous page's ``continue_cursor``
            page_size: Rows per page
            sort_by: Column key to sort the page by
            sort_order: asc or desc
            user_id: Verify the caller owns the tracker when given

        Returns:
            Page with ``is_done`` set on the last page
        """
        if user_id is not None:
            tracker = await load_owned_tracker(self.store, user_id, tracker_id)
        else:
            tracker = await self.store.get_tracker(tracker_id)
            if tracker is None:
                raise NotFoundError(f"Tracker {tracker_id} not found", resource="tracker")

        size = self.settings.DEFAULT_PAGE_SIZE if page_size is None else page_size
        if size < 1:
            raise MalformedInputError("page_size must be at least 1")
        if size > self.settings.MAX_PAGE_SIZE:
            raise SizeLimitError(
                f"page_size cannot exceed {self.settings.MAX_PAGE_SIZE}",
                limit=self.settings.MAX_PAGE_SIZE,
            )

        try:
            order = SortOrder(sort_order)
        except ValueError as e:
            raise MalformedInputError(f"Unknown sort order: {sort_order}") from e

        if sort_by is not None and tracker.get_column(sort_by) is None:
            raise MalformedInputError(f"Unknown sort column: {sort_by}")

        after_seq = decode_cursor(cursor) if cursor else None

        # One extra row tells whether another page exists
        rows = await self.store.list_rows(tracker.id, after_seq=after_seq, limit=size + 1)
        is_done = len(rows) <= size
        rows = rows[:size]

        continue_cursor = None if is_done or not rows else encode_cursor(rows[-1].seq)

        if sort_by is not None:
            rows = sort_page(rows, sort_by, order)

        return Page(tracker=tracker, page=rows, is_done=is_done, continue_cursor=continue_cursor)
