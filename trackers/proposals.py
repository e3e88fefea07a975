"""Proposal reconciliation: applying suggested edits to tracker rows"""

import logging
import uuid
from typing import Any, Optional, Union

from config import Settings, settings as default_settings
from core.enums import ProposalOutcome, UpdateSource, UpdateViewMode
from core.exceptions import (
    AuthorizationError,
    DuplicateKeyError,
    MalformedInputError,
    NotFoundError,
    SizeLimitError,
    VersionConflictError,
)
from core.interfaces import TrackerStore
from core.models import (
    ApplyResult,
    ColumnEdit,
    EditedProposal,
    Proposal,
    ProposalResult,
    Tracker,
    Update,
    UpdatePage,
    UpdateStats,
    utc_now,
)
from .aliases import AliasService
from .pagination import decode_cursor, encode_cursor
from .rows import RowService
from .validation import format_errors


logger = logging.getLogger(__name__)


def proposal_to_edit(proposal: Proposal) -> EditedProposal:
    """Accept a proposal as suggested, without user edits"""
    return EditedProposal(
        tracker_id=proposal.tracker_id,
        row_id=proposal.row_id,
        is_new_row=proposal.is_new_row,
        edited_columns=[
            ColumnEdit(column_key=update.column_key, new_value=update.proposed_value)
            for update in proposal.column_updates
        ],
    )


class ProposalEngine:
    """
    Update lifecycle and proposal application

    An update moves from pending to approved or rejected exactly once.
    ``archived_at`` is independent of that decision.
    """

    def __init__(self, store: TrackerStore, config: Optional[Settings] = None):
        self.store = store
        self.settings = config or default_settings
        self.rows = RowService(store, self.settings)
        self.aliases = AliasService(store, self.settings)

    # ─────────────────────────────────────────────────────────────
    # Updates
    # ─────────────────────────────────────────────────────────────

    async def create_update(
        self,
        user_id: str,
        title: str,
        proposals: Optional[list[Union[Proposal, dict[str, Any]]]] = None,
        source: Union[UpdateSource, str] = UpdateSource.EMAIL,
        source_id: Optional[str] = None,
        summary: Optional[str] = None,
    ) -> Update:
        """Record an update produced by the extraction pipeline"""
        update = Update(
            id=str(uuid.uuid4()),
            user_id=user_id,
            source=UpdateSource(source),
            source_id=source_id,
            title=title,
            summary=summary,
            proposals=[Proposal.model_validate(p) for p in proposals or []],
        )
        stored = await self.store.insert_update(update)
        logger.info("Created update %s with %d proposals", stored.id, len(stored.proposals))
        return stored

    async def get_update(self, user_id: str, update_id: str) -> Update:
        return await self._load_owned_update(user_id, update_id)

    async def list_updates(
        self,
        user_id: str,
        view_mode: Union[UpdateViewMode, str] = UpdateViewMode.ACTIVE,
        cursor: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> UpdatePage:
        """Newest-first page of active (not archived) or archived updates"""
        try:
            mode = UpdateViewMode(view_mode)
        except ValueError as e:
            raise MalformedInputError(f"Unknown view mode: {view_mode}") from e

        size = self.settings.DEFAULT_PAGE_SIZE if page_size is None else page_size
        if size < 1:
            raise MalformedInputError("page_size must be at least 1")
        if size > self.settings.MAX_PAGE_SIZE:
            raise SizeLimitError(
                f"page_size cannot exceed {self.settings.MAX_PAGE_SIZE}",
                limit=self.settings.MAX_PAGE_SIZE,
            )

        archived = mode is UpdateViewMode.ARCHIVED
        updates = [
            u for u in await self.store.list_updates(user_id)
            if (u.archived_at is not None) == archived
        ]

        offset = decode_cursor(cursor) if cursor else 0
        page = updates[offset:offset + size]
        next_offset = offset + len(page)
        is_done = next_offset >= len(updates)

        return UpdatePage(
            page=page,
            is_done=is_done,
            continue_cursor=None if is_done else encode_cursor(next_offset),
        )

    async def get_stats(self, user_id: str) -> UpdateStats:
        updates = await self.store.list_updates(user_id)
        return UpdateStats(
            total=len(updates),
            active=sum(1 for u in updates if not u.processed and u.archived_at is None),
            archived=sum(1 for u in updates if u.archived_at is not None),
            pending=sum(1 for u in updates if not u.processed),
            approved=sum(1 for u in updates if u.approved),
            rejected=sum(1 for u in updates if u.rejected),
            with_proposals=sum(1 for u in updates if u.archived_at is None and u.proposals),
            unread=sum(1 for u in updates if u.archived_at is None and u.viewed_at is None),
        )

    async def mark_viewed(self, user_id: str, update_id: str) -> Update:
        update = await self._load_owned_update(user_id, update_id)
        if update.viewed_at is not None:
            return update
        return await self.store.patch_update(update_id, {"viewed_at": utc_now()})

    async def mark_all_viewed(self, user_id: str) -> int:
        """Mark every unread, unarchived update as viewed; returns how many changed"""
        now = utc_now()
        count = 0
        for update in await self.store.list_updates(user_id):
            if update.viewed_at is None and update.archived_at is None:
                await self.store.patch_update(update.id, {"viewed_at": now})
                count += 1
        return count

    # ─────────────────────────────────────────────────────────────
    # Decisions
    # ─────────────────────────────────────────────────────────────

    async def apply_proposals(
        self,
        user_id: str,
        update_id: str,
        edited_proposals: Optional[list[Union[EditedProposal, dict[str, Any]]]] = None,
    ) -> ApplyResult:
        """
        Approve an update and apply its proposals

        The update is claimed before any row is touched, so a second
        approval (or a rejection that got there first) makes this a no-op.
        Each proposal's outcome is reported independently; the update is
        approved even when some proposals fail.

        Args:
            user_id: Caller subject, must own the update
            update_id: Update to approve
            edited_proposals: User-edited proposals; None applies the
                update's own proposals with their proposed values

        Returns:
            ApplyResult with one ProposalResult per proposal
        """
        update = await self._load_owned_update(user_id, update_id)

        if edited_proposals is None:
            edits = [proposal_to_edit(p) for p in update.proposals]
        else:
            edits = [self._inherit_new_row(update, EditedProposal.model_validate(p)) for p in edited_proposals]

        now = utc_now()
        claimed = await self.store.claim_update(update_id, {
            "approved": True,
            "approved_at": now,
            "approved_by": user_id,
            "processed_at": now,
        })
        if claimed is None:
            logger.info("Update %s was already processed; approval ignored", update_id)
            return ApplyResult(update_id=update_id, already_processed=True)

        results = []
        for edit in edits:
            results.append(await self._apply_one(user_id, edit))

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            "Approved update %s: %d of %d proposals applied",
            update_id, succeeded, len(results),
        )
        return ApplyResult(update_id=update_id, results=results)

    async def reject_proposals(self, user_id: str, update_id: str) -> Update:
        """Reject without touching any row; a processed update is returned unchanged"""
        await self._load_owned_update(user_id, update_id)

        now = utc_now()
        claimed = await self.store.claim_update(update_id, {"rejected": True, "rejected_at": now, "processed_at": now})
        if claimed is None:
            return await self._load_owned_update(user_id, update_id)

        logger.info("Rejected update %s", update_id)
        return claimed

    async def archive_update(self, user_id: str, update_id: str) -> Update:
        update = await self._load_owned_update(user_id, update_id)
        if update.archived_at is not None:
            return update

        archived = await self.store.patch_update(update_id, {"archived_at": utc_now()})
        logger.info("Archived update %s", update_id)
        return archived

    # ─────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────

    async def _load_owned_update(self, user_id: str, update_id: str) -> Update:
        update = await self.store.get_update(update_id)
        if update is None:
            raise NotFoundError(f"Update {update_id} not found", resource="update")
        if update.user_id != user_id:
            raise AuthorizationError("Not authorized to access this update")
        return update

    def _inherit_new_row(self, update: Update, edit: EditedProposal) -> EditedProposal:
        # Edits that don't say otherwise keep the is_new_row flag of the proposal they came from
        if "is_new_row" in edit.model_fields_set:
            return edit
        for proposal in update.proposals:
            if proposal.tracker_id == edit.tracker_id and proposal.row_id == edit.row_id:
                return edit.model_copy(update={"is_new_row": proposal.is_new_row})
        return edit

    async def _resolve_target(self, tracker: Tracker, reference: str) -> Optional[str]:
        """Row id for a proposal's row reference, trying aliases second"""
        if await self.store.get_row(tracker.id, reference) is not None:
            return reference
        return await self.aliases.resolve_alias(tracker.id, reference)

    async def _apply_one(self, user_id: str, edit: EditedProposal) -> ProposalResult:
        def outcome(kind: ProposalOutcome, error: Optional[str] = None, row_id: Optional[str] = None) -> ProposalResult:
            return ProposalResult(
                tracker_id=edit.tracker_id,
                row_id=row_id or edit.row_id,
                success=kind is ProposalOutcome.SUCCESS,
                outcome=kind,
                error=error,
            )

        tracker = await self.store.get_tracker(edit.tracker_id)
        if tracker is None:
            return outcome(ProposalOutcome.NOT_FOUND, "Tracker not found")
        if tracker.user_id != user_id:
            return outcome(ProposalOutcome.UNAUTHORIZED, "Not authorized to modify this tracker")

        data: dict[str, Any] = {}
        for column_edit in edit.edited_columns:
            target_key = column_edit.target_column_key or column_edit.column_key
            if tracker.get_column(target_key) is None:
                return outcome(ProposalOutcome.VALIDATION_ERROR, f"Column {target_key} not found in tracker")
            data[target_key] = column_edit.new_value

        if not data:
            return outcome(ProposalOutcome.VALIDATION_ERROR, "No valid columns to update")

        try:
            if edit.is_new_row:
                data.setdefault(tracker.primary_key_column, edit.row_id)
                row_result = await self.rows.insert_into(tracker, user_id, data)
            else:
                row_id = await self._resolve_target(tracker, edit.row_id)
                if row_id is None:
                    return outcome(ProposalOutcome.NOT_FOUND, f'Row "{edit.row_id}" not found')
                row_result = await self.rows.merge_into(tracker, user_id, row_id, data)
        except DuplicateKeyError as e:
            logger.info("Proposal for row %s of tracker %s hit a duplicate key", edit.row_id, tracker.id)
            return outcome(ProposalOutcome.DUPLICATE_KEY, str(e))
        except NotFoundError as e:
            return outcome(ProposalOutcome.NOT_FOUND, str(e))
        except VersionConflictError as e:
            return outcome(ProposalOutcome.CONFLICT, str(e))

        if not row_result.success:
            return outcome(ProposalOutcome.VALIDATION_ERROR, format_errors(row_result.errors))
        return outcome(ProposalOutcome.SUCCESS, row_id=row_result.row_id)
