import pytest

from core.enums import ColumnType
from core.exceptions import (
    AuthorizationError,
    DuplicateKeyError,
    MalformedInputError,
    NotFoundError,
    SizeLimitError,
    ValidationError,
)
from trackers import TrackerManager

from conftest import OWNER, STRANGER, inventory_columns, make_settings


@pytest.mark.asyncio
async def test_create_tracker(manager, inventory):
    assert inventory.slug == "inventory"
    assert inventory.user_id == OWNER
    assert inventory.primary_key_column == "sku"
    assert [c.key for c in inventory.columns][:2] == ["sku", "qty"]
    assert inventory.is_active

    fetched = await manager.get_tracker(tracker_id=inventory.id, user_id=OWNER)
    assert fetched == inventory


@pytest.mark.asyncio
async def test_columns_may_be_plain_dicts(manager):
    tracker = await manager.create_tracker(OWNER, "Plain", columns=[
        {"id": "c1", "key": "code", "name": "Code", "type": "text", "required": True},
        {"id": "c2", "key": "done", "name": "Done", "type": "boolean"},
    ], primary_key_column="code")

    assert tracker.get_column("done").type is ColumnType.BOOLEAN


@pytest.mark.asyncio
async def test_slugs_are_unique(manager):
    first = await manager.create_tracker(OWNER, "Q3 Orders", columns=inventory_columns(), primary_key_column="sku")
    second = await manager.create_tracker(OWNER, "Q3 Orders", columns=inventory_columns(), primary_key_column="sku")
    third = await manager.create_tracker(STRANGER, "q3 orders!", columns=inventory_columns(), primary_key_column="sku")

    assert [first.slug, second.slug, third.slug] == ["q3-orders", "q3-orders-1", "q3-orders-2"]

    by_slug = await manager.get_tracker(slug="q3-orders-1")
    assert by_slug.id == second.id


@pytest.mark.asyncio
async def test_slug_attempts_run_out(store):
    manager = TrackerManager(store, make_settings(MAX_SLUG_GENERATION_ATTEMPTS=1))
    await manager.create_tracker(OWNER, "Dup", columns=inventory_columns(), primary_key_column="sku")
    await manager.create_tracker(OWNER, "Dup", columns=inventory_columns(), primary_key_column="sku")

    with pytest.raises(DuplicateKeyError, match="Unable to generate unique slug"):
        await manager.create_tracker(OWNER, "Dup", columns=inventory_columns(), primary_key_column="sku")


@pytest.mark.asyncio
async def test_create_from_template(manager):
    tracker = await manager.create_tracker(OWNER, "Shipments", template_key="logistics")

    assert tracker.primary_key_column == "po_number"
    assert tracker.get_column("status").options == ["Pending", "In Transit", "Delivered", "Delayed"]

    with pytest.raises(NotFoundError):
        await manager.create_tracker(OWNER, "Other", template_key="spaceships")


def test_templates_are_valid(manager):
    templates = manager.get_templates()

    assert {t.key for t in templates} == {"fashion", "logistics", "simple"}
    for template in templates:
        assert any(c.key == template.primary_key_column for c in template.columns)


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs,error", [
    ({"name": "  "}, ValidationError),
    ({"name": "x" * 101}, ValidationError),
    ({"description": "d" * 501}, ValidationError),
    ({"columns": []}, ValidationError),
    ({"primary_key_column": "missing"}, ValidationError),
    ({"primary_key_column": None}, ValidationError),
])
async def test_create_tracker_rejects_bad_input(manager, kwargs, error):
    args = {"name": "Inventory", "columns": inventory_columns(), "primary_key_column": "sku"}
    args.update(kwargs)

    with pytest.raises(error):
        await manager.create_tracker(OWNER, **args)


@pytest.mark.asyncio
async def test_invalid_column_definitions(manager):
    columns = inventory_columns() + [
        {"id": "c8", "key": "size", "name": "Size", "type": "select"},
    ]

    with pytest.raises(ValidationError) as exc_info:
        await manager.create_tracker(OWNER, "Inventory", columns=columns, primary_key_column="sku")

    assert exc_info.value.errors[0].field == "size"


@pytest.mark.asyncio
async def test_too_many_columns(store):
    manager = TrackerManager(store, make_settings(MAX_COLUMNS=3))

    with pytest.raises(SizeLimitError):
        await manager.create_tracker(OWNER, "Wide", columns=inventory_columns(), primary_key_column="sku")


@pytest.mark.asyncio
async def test_get_tracker_lookup_rules(manager, inventory):
    with pytest.raises(MalformedInputError):
        await manager.get_tracker()
    with pytest.raises(NotFoundError):
        await manager.get_tracker(tracker_id="missing")
    with pytest.raises(AuthorizationError):
        await manager.get_tracker(slug=inventory.slug, user_id=STRANGER)


@pytest.mark.asyncio
async def test_list_trackers(manager, inventory):
    second = await manager.create_tracker(OWNER, "Second", columns=inventory_columns(), primary_key_column="sku")
    await manager.update_tracker(OWNER, second.id, is_active=False)
    await manager.create_tracker(STRANGER, "Theirs", columns=inventory_columns(), primary_key_column="sku")

    mine = await manager.list_trackers(OWNER)
    active = await manager.list_trackers(OWNER, active_only=True)

    assert {t.id for t in mine} == {inventory.id, second.id}
    assert [t.id for t in active] == [inventory.id]


@pytest.mark.asyncio
async def test_update_tracker_metadata(manager, inventory):
    updated = await manager.update_tracker(OWNER, inventory.id, name=" Stock ", description="Main warehouse")

    assert updated.name == "Stock"
    assert updated.description == "Main warehouse"
    assert updated.slug == inventory.slug

    with pytest.raises(AuthorizationError):
        await manager.update_tracker(STRANGER, inventory.id, name="Mine now")


@pytest.mark.asyncio
async def test_removing_a_column_prunes_row_data(manager, rows, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1", "qty": 3, "notes": "n"})
    columns = [c for c in inventory.columns if c.key != "notes"]

    updated = await manager.update_tracker(OWNER, inventory.id, columns=columns)

    assert "notes" not in updated.column_keys()
    row = await rows.get_row(OWNER, inventory.id, "A-1")
    assert row.data == {"sku": "A-1", "qty": 3}


@pytest.mark.asyncio
async def test_column_keys_are_stable(manager, inventory):
    columns = [c.model_copy(update={"key": "quantity"}) if c.key == "qty" else c for c in inventory.columns]

    with pytest.raises(ValidationError):
        await manager.update_tracker(OWNER, inventory.id, columns=columns)


@pytest.mark.asyncio
async def test_primary_key_change(manager, rows, inventory):
    columns = inventory.columns

    changed = await manager.update_tracker(OWNER, inventory.id, columns=columns, primary_key_column="notes")
    assert changed.primary_key_column == "notes"

    await rows.add_row(OWNER, inventory.id, {"sku": "A-1", "notes": "n-1"})
    with pytest.raises(ValidationError):
        await manager.update_tracker(OWNER, inventory.id, primary_key_column="sku")


@pytest.mark.asyncio
async def test_delete_tracker_removes_rows_and_aliases(manager, rows, aliases, store, inventory):
    await rows.add_row(OWNER, inventory.id, {"sku": "A-1"})
    await aliases.add_alias(OWNER, inventory.id, "A-1", "widget")

    with pytest.raises(AuthorizationError):
        await manager.delete_tracker(STRANGER, inventory.id)

    await manager.delete_tracker(OWNER, inventory.id)

    assert await store.get_tracker(inventory.id) is None
    assert await store.list_aliases(inventory.id) == []
    with pytest.raises(NotFoundError):
        await manager.get_tracker(tracker_id=inventory.id)


@pytest.mark.asyncio
async def test_toggle_column_ai(manager, inventory):
    updated = await manager.set_column_ai_enabled(OWNER, inventory.id, "c7", False)

    assert updated.get_column("notes").ai_enabled is False
    assert all(c.ai_enabled for c in updated.columns if c.key != "notes")
    assert (await manager.get_tracker(tracker_id=inventory.id)).get_column("notes").ai_enabled is False

    with pytest.raises(NotFoundError):
        await manager.set_column_ai_enabled(OWNER, inventory.id, "c99", False)
    with pytest.raises(AuthorizationError):
        await manager.set_column_ai_enabled(STRANGER, inventory.id, "c7", True)
