"""
Coercions applied to raw environment values before pydantic validates them.
"""

from typing import Literal


def normalize_case(value: str | None, case: Literal["upper", "lower"]) -> str | None:
    """Strip and change the case of a string; other values pass through."""
    if not isinstance(value, str):
        return value
    value = value.strip()
    return value.upper() if case == "upper" else value.lower()


def blank_to_none(value: str | None) -> str | None:
    """Treat `REDIS_URL=` style placeholders as unset."""
    if isinstance(value, str) and not value.strip():
        return None
    return value
