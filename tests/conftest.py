import pytest
import pytest_asyncio

from config import Settings
from core.enums import ColumnType
from core.models import ColumnDefinition
from db import InMemoryStore
from trackers import AliasService, PageReader, ProposalEngine, RowService, TrackerManager


OWNER = "user-owner"
STRANGER = "user-stranger"
SECRET = "test-secret-key-with-at-least-32-bytes"


def make_settings(**overrides) -> Settings:
    values = {"STORE_BACKEND": "memory", "JWT_SECRET_KEY": SECRET}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def inventory_columns() -> list[ColumnDefinition]:
    return [
        ColumnDefinition(id="c1", key="sku", name="SKU", type=ColumnType.TEXT, required=True, order=0),
        ColumnDefinition(id="c2", key="qty", name="Quantity", type=ColumnType.NUMBER, order=1),
        ColumnDefinition(id="c3", key="price", name="Price", type=ColumnType.NUMBER, order=2),
        ColumnDefinition(id="c4", key="delivery_date", name="Delivery Date", type=ColumnType.DATE, order=3),
        ColumnDefinition(
            id="c5", key="status", name="Status", type=ColumnType.SELECT,
            options=["active", "discontinued"], order=4,
        ),
        ColumnDefinition(id="c6", key="in_stock", name="In Stock", type=ColumnType.BOOLEAN, order=5),
        ColumnDefinition(id="c7", key="notes", name="Notes", type=ColumnType.TEXT, order=6),
    ]


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def manager(store, settings):
    return TrackerManager(store, settings)


@pytest.fixture
def rows(store, settings):
    return RowService(store, settings)


@pytest.fixture
def pages(store, settings):
    return PageReader(store, settings)


@pytest.fixture
def aliases(store, settings):
    return AliasService(store, settings)


@pytest.fixture
def engine(store, settings):
    return ProposalEngine(store, settings)


@pytest_asyncio.fixture
async def inventory(manager):
    return await manager.create_tracker(
        OWNER,
        "Inventory",
        columns=inventory_columns(),
        primary_key_column="sku",
    )
