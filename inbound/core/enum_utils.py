"""
Status and code helpers.

Statuses are stored as uppercase VARCHAR, never as a database ENUM.
Pydantic enums arrive on input and are unwrapped with ``get_enum_value``;
stored strings are returned as they are.
"""

from enum import Enum
from typing import Any, Optional


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(ASNStatus.PENDING)  # Pydantic input
        'PENDING'
        >>> get_enum_value("PENDING")  # Database value
        'PENDING'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def normalize_to_uppercase(value: Any) -> Optional[str]:
    """Normalize user supplied codes (SKUs, location codes) to uppercase."""
    if value is None:
        return None
    return get_enum_value(value).strip().upper()
