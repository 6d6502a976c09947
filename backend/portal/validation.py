# Overview: Shared input validation helpers and the HTTP-mapped error taxonomy.

from __future__ import annotations

from typing import Any, Iterable


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(LookupError):
    """404-level missing resource."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


class TenantAccessError(PermissionError):
    """403-level cross-tenant access attempt."""


def require_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for JSON input.

    Rejects bools, floats, scientific notation and decimal strings so that
    "1e3" or 2.5 never become a quantity.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def require_str(value: Any, field: str, *, max_length: int | None = None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    result = str(value).strip()
    if max_length is not None and len(result) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return result


def optional_str(value: Any, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    result = str(value).strip()
    if not result:
        return None
    if max_length is not None and len(result) > max_length:
        raise ValidationError(f"value must be at most {max_length} characters")
    return result


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = sorted(choices)
    if value not in allowed:
        raise ValidationError(f"Invalid {field} '{value}'. Must be one of: {', '.join(allowed)}")
    return value
