"""
Utility functions for the application.
"""
from typing import Any, Dict
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a number to a Decimal rounded to cents."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def serialize_value(obj: Any) -> Any:
    """Serialize dates and decimals to JSON-safe values."""
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if hasattr(obj, "value"):  # enum members
        return obj.value
    return obj


def snapshot(model) -> Dict[str, Any]:
    """Capture a JSON-safe dict of a model's column values for the audit log."""
    return {
        attr.key: serialize_value(getattr(model, attr.key))
        for attr in model.__mapper__.column_attrs
    }
