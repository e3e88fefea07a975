"""Predefined tracker layouts"""

from core.enums import ColumnType
from core.models import ColumnDefinition, TrackerTemplate


def _column(key: str, name: str, column_type: ColumnType, order: int, **extra) -> ColumnDefinition:
    return ColumnDefinition(id=f"col_{key}", key=key, name=name, type=column_type, order=order, **extra)


DEFAULT_TEMPLATES: dict[str, TrackerTemplate] = {
    "fashion": TrackerTemplate(
        key="fashion",
        name="Fashion Inventory",
        description="Styles, colors and sizes with stock levels",
        primary_key_column="sku",
        columns=[
            _column("sku", "SKU", ColumnType.TEXT, 0, required=True),
            _column("style", "Style", ColumnType.TEXT, 1),
            _column("color", "Color", ColumnType.TEXT, 2),
            _column("size", "Size", ColumnType.SELECT, 3, options=["XS", "S", "M", "L", "XL"]),
            _column("quantity", "Quantity", ColumnType.NUMBER, 4),
            _column("price", "Price", ColumnType.NUMBER, 5),
            _column("delivery_date", "Delivery Date", ColumnType.DATE, 6),
        ],
    ),
    "logistics": TrackerTemplate(
        key="logistics",
        name="Shipments",
        description="Purchase orders and their delivery status",
        primary_key_column="po_number",
        columns=[
            _column("po_number", "PO Number", ColumnType.TEXT, 0, required=True),
            _column("supplier", "Supplier", ColumnType.TEXT, 1),
            _column(
                "status", "Status", ColumnType.SELECT, 2,
                options=["Pending", "In Transit", "Delivered", "Delayed"],
            ),
            _column("eta", "ETA", ColumnType.DATE, 3),
            _column("units", "Units", ColumnType.NUMBER, 4),
            _column("confirmed", "Confirmed", ColumnType.BOOLEAN, 5),
        ],
    ),
    "simple": TrackerTemplate(
        key="simple",
        name="Simple List",
        description="Named items with free-form notes",
        primary_key_column="id",
        columns=[
            _column("id", "ID", ColumnType.TEXT, 0, required=True),
            _column("name", "Name", ColumnType.TEXT, 1, required=True),
            _column("notes", "Notes", ColumnType.TEXT, 2),
        ],
    ),
}


def get_templates() -> list[TrackerTemplate]:
    return [template.model_copy(deep=True) for template in DEFAULT_TEMPLATES.values()]
