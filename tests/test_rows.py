import asyncio

import pytest

from core.exceptions import (
    AuthorizationError,
    DuplicateKeyError,
    MalformedInputError,
    NotFoundError,
    SizeLimitError,
    VersionConflictError,
)
from core.models import Row
from db import InMemoryStore
from trackers import AliasService, RowService, TrackerManager

from conftest import OWNER, STRANGER, inventory_columns, make_settings


class InterferingStore(InMemoryStore):
    """Store that lets another writer change a row right before a patch lands"""

    def __init__(self, field=None, value=None, always=False):
        super().__init__()
        self.field = field
        self.value = value
        self.always = always
        self.patches = 0

    async def patch_row(self, tracker_id, row_id, data, updated_by, expected_version=None, new_row_id=None):
        self.patches += 1
        if self.field is not None:
            current = await self.get_row(tracker_id, row_id)
            await super().patch_row(
                tracker_id, row_id, {**current.data, self.field: self.value}, "someone-else"
            )
            if not self.always:
                self.field = None
        return await super().patch_row(
            tracker_id, row_id, data, updated_by,
            expected_version=expected_version, new_row_id=new_row_id,
        )


async def _create_inventory(store, settings):
    return await TrackerManager(store, settings).create_tracker(
        OWNER, "Inventory", columns=inventory_columns(), primary_key_column="sku"
    )


# ─────────────────────────────────────────────────────────────
# Single rows
# ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_add_row_coerces_values(rows, inventory):
    result = await rows.add_row(OWNER, inventory.id, {"sku": "A-1", "qty": "50"})

    assert result.success
    assert result.row_id == "A-1"
    assert result.data["qty"] == 50
    assert isinstance(result.data["qty"], int)

    stored = await rows.get_row(OWNER, inventory.id, "A-1")
    assert stored.data == {"sku": "A-1", "qty": 50}
    assert stored.version == 1
    assert stored.created_by == OWNER


@pytest.mark.asyncio
async def test_add_row_reports_field_errors(rows, store, inventory):
    result = await rows.add_row(OWNER, inventory.id, {"qty": "many"})

    assert not result.success
    assert {e.field for e in result.errors} == {"sku", "qty"}
    assert await store.list_rows(inventory.id) == []


@pytest.mark.asyncio
async def test_duplicate_primary_key_is_rejected(rows, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1", "qty": 1})

    with pytest.raises(DuplicateKeyError, match="duplicate"):
        await rows.add_row(OWNER, inventory.id, {"sku": "A-1", "qty": 2})

    stored = await rows.get_row(OWNER, inventory.id, "A-1")
    assert stored.data["qty"] == 1


@pytest.mark.asyncio
async def test_numeric_primary_key_is_stringified(rows, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": 12.0})

    with pytest.raises(DuplicateKeyError):
        await rows.add_row(OWNER, inventory.id, {"sku": "12"})


@pytest.mark.asyncio
async def test_concurrent_inserts_with_same_key(rows, store, inventory):
    results = await asyncio.gather(
        *[rows.add_row(OWNER, inventory.id, {"sku": "A-1", "qty": i}) for i in range(10)],
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    duplicates = [r for r in results if isinstance(r, DuplicateKeyError)]
    assert len(successes) == 1
    assert len(duplicates) == 9
    assert len(await store.list_rows(inventory.id)) == 1


@pytest.mark.asyncio
async def test_store_rejects_duplicate_insert(store, inventory):
    row = Row(tracker_id=inventory.id, row_id="A-1", data={"sku": "A-1"}, created_by=OWNER, updated_by=OWNER)
    await store.insert_row(row)

    with pytest.raises(DuplicateKeyError):
        await store.insert_row(row)


@pytest.mark.asyncio
async def test_row_access_requires_ownership(rows, inventory):
    with pytest.raises(AuthorizationError):
        await rows.add_row(STRANGER, inventory.id, {"sku": "A-1"})

    with pytest.raises(NotFoundError):
        await rows.add_row(OWNER, "missing-tracker", {"sku": "A-1"})


@pytest.mark.asyncio
async def test_get_missing_row(rows, inventory):
    with pytest.raises(NotFoundError):
        await rows.get_row(OWNER, inventory.id, "nope")


# ─────────────────────────────────────────────────────────────
# Updates
# ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_update_merges_and_keeps_explicit_null(rows, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1", "qty": 5, "notes": "fragile"})

    result = await rows.update_row(OWNER, inventory.id, "A-1", {"notes": None, "price": "2.50"})

    assert result.success
    assert result.data == {"sku": "A-1", "qty": 5, "notes": None, "price": 2.5}

    stored = await rows.get_row(OWNER, inventory.id, "A-1")
    assert stored.version == 2


@pytest.mark.asyncio
async def test_invalid_update_leaves_row_unchanged(rows, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1", "qty": 5})

    result = await rows.update_row(OWNER, inventory.id, "A-1", {"qty": "many"})

    assert not result.success
    assert result.errors[0].field == "qty"
    stored = await rows.get_row(OWNER, inventory.id, "A-1")
    assert stored.data == {"sku": "A-1", "qty": 5}
    assert stored.version == 1


@pytest.mark.asyncio
async def test_clearing_primary_key_fails(rows, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1"})

    result = await rows.update_row(OWNER, inventory.id, "A-1", {"sku": None})

    assert not result.success
    assert result.errors[0].field == "sku"


@pytest.mark.asyncio
async def test_update_missing_row(rows, inventory):
    with pytest.raises(NotFoundError):
        await rows.update_row(OWNER, inventory.id, "nope", {"qty": 1})


@pytest.mark.asyncio
async def test_primary_key_change_rekeys_row_and_aliases(rows, aliases, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1", "qty": 5})
    await aliases.add_alias(OWNER, inventory.id, "A-1", "Blue Widget")

    result = await rows.update_row(OWNER, inventory.id, "A-1", {"sku": "B-1"})

    assert result.success
    assert result.row_id == "B-1"
    with pytest.raises(NotFoundError):
        await rows.get_row(OWNER, inventory.id, "A-1")
    assert (await rows.get_row(OWNER, inventory.id, "B-1")).data == {"sku": "B-1", "qty": 5}
    assert await aliases.resolve_alias(inventory.id, "blue widget") == "B-1"


@pytest.mark.asyncio
async def test_rekey_to_own_alias_drops_that_alias(rows, aliases, store, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1"})
    await aliases.add_alias(OWNER, inventory.id, "A-1", "widget")
    await aliases.add_alias(OWNER, inventory.id, "A-1", "gadget")

    result = await rows.update_row(OWNER, inventory.id, "A-1", {"sku": "Widget"})

    assert result.success
    assert result.row_id == "Widget"
    remaining = await store.list_aliases(inventory.id)
    assert [(a.alias, a.row_id) for a in remaining] == [("gadget", "Widget")]
    for alias in remaining:
        assert alias.alias != alias.row_id.lower()


@pytest.mark.asyncio
async def test_rekey_onto_existing_row_is_rejected(rows, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1", "qty": 1})
    await rows.add_row(OWNER, inventory.id, {"sku": "A-2", "qty": 2})

    with pytest.raises(DuplicateKeyError):
        await rows.update_row(OWNER, inventory.id, "A-1", {"sku": "A-2"})

    assert (await rows.get_row(OWNER, inventory.id, "A-1")).data["qty"] == 1
    assert (await rows.get_row(OWNER, inventory.id, "A-2")).data["qty"] == 2


@pytest.mark.asyncio
async def test_update_retries_after_concurrent_write():
    settings = make_settings()
    store = InterferingStore(field="notes", value="written elsewhere")
    tracker = await _create_inventory(store, settings)
    service = RowService(store, settings)
    await service.add_row(OWNER, tracker.id, {"sku": "A-1", "qty": 1})

    result = await service.update_row(OWNER, tracker.id, "A-1", {"qty": 2})

    assert result.success
    assert store.patches == 2
    stored = await service.get_row(OWNER, tracker.id, "A-1")
    assert stored.data == {"sku": "A-1", "qty": 2, "notes": "written elsewhere"}
    assert stored.version == 3


@pytest.mark.asyncio
async def test_update_gives_up_when_row_keeps_changing():
    settings = make_settings(ROW_UPDATE_MAX_RETRIES=3)
    store = InterferingStore(field="notes", value="again", always=True)
    tracker = await _create_inventory(store, settings)
    service = RowService(store, settings)
    await service.add_row(OWNER, tracker.id, {"sku": "A-1", "qty": 1})

    with pytest.raises(VersionConflictError):
        await service.update_row(OWNER, tracker.id, "A-1", {"qty": 2})

    assert store.patches == 3
    stored = await service.get_row(OWNER, tracker.id, "A-1")
    assert stored.data["qty"] == 1


@pytest.mark.asyncio
async def test_stale_version_is_rejected_by_store(store, rows, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1"})

    with pytest.raises(VersionConflictError):
        await store.patch_row(inventory.id, "A-1", {"sku": "A-1"}, OWNER, expected_version=7)


@pytest.mark.asyncio
async def test_delete_row_removes_its_aliases(rows, aliases, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1"})
    await aliases.add_alias(OWNER, inventory.id, "A-1", "widget")

    await rows.delete_row(OWNER, inventory.id, "A-1")

    assert await aliases.resolve_alias(inventory.id, "widget") is None
    with pytest.raises(NotFoundError):
        await rows.delete_row(OWNER, inventory.id, "A-1")


# ─────────────────────────────────────────────────────────────
# Bulk import
# ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_bulk_import_collects_row_failures(rows, store, inventory):
    result = await rows.bulk_import(OWNER, inventory.id, [
        {"sku": "A-1", "qty": "1"},
        {"sku": "A-2", "qty": "lots"},
        {"sku": "A-3"},
    ])

    assert result.imported == 2
    assert result.updated == 0
    assert len(result.failed) == 1
    assert result.failed[0].row == 2
    assert "Quantity must be a number" in result.failed[0].error
    assert [r.row_id for r in await store.list_rows(inventory.id)] == ["A-1", "A-3"]


@pytest.mark.asyncio
async def test_bulk_import_duplicate_within_batch(rows, inventory):
    result = await rows.bulk_import(OWNER, inventory.id, [{"sku": "A"}, {"sku": "A"}])

    assert result.imported == 1
    assert [f.row for f in result.failed] == [2]
    assert "duplicate" in result.failed[0].error


@pytest.mark.asyncio
async def test_bulk_import_update_mode_upserts(rows, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1", "qty": 1, "notes": "keep"})

    result = await rows.bulk_import(
        OWNER, inventory.id, [{"sku": "A-1", "qty": "9"}, {"sku": "A-9"}], mode="update"
    )

    assert result.updated == 1
    assert result.imported == 1
    assert (await rows.get_row(OWNER, inventory.id, "A-1")).data == {"sku": "A-1", "qty": 9, "notes": "keep"}


@pytest.mark.asyncio
async def test_bulk_import_replace_mode(rows, store, inventory):
    await rows.bulk_import(OWNER, inventory.id, [{"sku": "A-1"}, {"sku": "A-2"}])

    result = await rows.bulk_import(OWNER, inventory.id, [{"sku": "B-1"}], mode="replace")

    assert result.imported == 1
    assert [r.row_id for r in await store.list_rows(inventory.id)] == ["B-1"]


@pytest.mark.asyncio
async def test_bulk_import_row_limit_touches_nothing(store, inventory):
    service = RowService(store, make_settings(MAX_IMPORT_ROWS=2))
    await service.add_row(OWNER, inventory.id, {"sku": "A-1"})

    with pytest.raises(SizeLimitError):
        await service.bulk_import(OWNER, inventory.id, [{"sku": "B-1"}, {"sku": "B-2"}, {"sku": "B-3"}], mode="replace")

    assert [r.row_id for r in await store.list_rows(inventory.id)] == ["A-1"]


@pytest.mark.asyncio
async def test_bulk_import_cell_limit_touches_nothing(store, inventory):
    service = RowService(store, make_settings(TEXT_FIELD_MAX_LENGTH=10))

    with pytest.raises(SizeLimitError):
        await service.bulk_import(OWNER, inventory.id, [{"sku": "B-1"}, {"sku": "B-2", "notes": "x" * 11}])

    assert await store.list_rows(inventory.id) == []


@pytest.mark.asyncio
async def test_bulk_import_rejects_unknown_mode(rows, inventory):
    with pytest.raises(MalformedInputError):
        await rows.bulk_import(OWNER, inventory.id, [{"sku": "A"}], mode="merge")


@pytest.mark.asyncio
async def test_bulk_import_rejects_non_record_rows(rows, inventory):
    with pytest.raises(MalformedInputError):
        await rows.bulk_import(OWNER, inventory.id, [{"sku": "A"}, ["B"]])


@pytest.mark.asyncio
async def test_import_csv_maps_headers_and_neutralizes_formulas(rows, inventory):
    text = "SKU,Quantity,Delivery Date,Notes\nA-1,5,2024-09-10,=1+1\nA-2,7,,plain\n"

    result = await rows.import_csv(OWNER, inventory.id, text)

    assert result.imported == 2
    assert not result.failed
    first = await rows.get_row(OWNER, inventory.id, "A-1")
    assert first.data == {"sku": "A-1", "qty": 5, "delivery_date": "2024-09-10", "notes": "'=1+1"}
    second = await rows.get_row(OWNER, inventory.id, "A-2")
    assert "delivery_date" not in second.data


@pytest.mark.asyncio
async def test_import_csv_tolerates_wide_rows(rows, inventory):
    result = await rows.import_csv(OWNER, inventory.id, "sku,qty\nA,1\nB,2,extra\nC,3\n")

    assert result.imported == 3
    assert not result.failed
    assert (await rows.get_row(OWNER, inventory.id, "B")).data == {"sku": "B", "qty": 2}


@pytest.mark.asyncio
async def test_import_csv_negative_numbers_are_neutralized(rows, inventory):
    result = await rows.import_csv(OWNER, inventory.id, "SKU,Quantity\nA-1,-5\n")

    assert result.imported == 0
    assert "Quantity must be a number" in result.failed[0].error


@pytest.mark.asyncio
async def test_import_csv_size_limit(store, inventory):
    service = RowService(store, make_settings(MAX_CSV_SIZE_BYTES=10))

    with pytest.raises(SizeLimitError):
        await service.import_csv(OWNER, inventory.id, "SKU\nA-1\nA-2\nA-3\n")


@pytest.mark.asyncio
async def test_import_csv_without_data_rows(rows, inventory):
    with pytest.raises(MalformedInputError):
        await rows.import_csv(OWNER, inventory.id, "SKU,Quantity\n")


@pytest.mark.asyncio
async def test_import_csv_requires_ownership(rows, inventory):
    with pytest.raises(AuthorizationError):
        await rows.import_csv(STRANGER, inventory.id, "SKU\nA-1\n")


@pytest.mark.asyncio
async def test_aliases_survive_unrelated_updates(store, inventory):
    aliases = AliasService(store)
    service = RowService(store)
    await service.add_row(OWNER, inventory.id, {"sku": "A-1"})
    await aliases.add_alias(OWNER, inventory.id, "A-1", "widget")

    await service.update_row(OWNER, inventory.id, "A-1", {"qty": 3})

    assert await aliases.resolve_alias(inventory.id, "widget") == "A-1"
