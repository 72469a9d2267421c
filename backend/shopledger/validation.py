from __future__ import annotations

from typing import Any, Iterable

from .errors import ValidationError


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON input.

    Rejects bools, floats, decimals and scientific notation so "12.5" or
    1e3 can never silently become a quantity.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", {"field": field})
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                {"field": field},
            )
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", {"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", {"field": field})
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", {"field": field})
    raise ValidationError(f"{field} must be an integer", {"field": field})


def require_int(payload: dict, field: str, *, minimum: int | None = None) -> int:
    if payload.get(field) is None:
        raise ValidationError(f"{field} is required", {"field": field})
    value = coerce_int(payload[field], field)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", {"field": field})
    return value


def optional_int(payload: dict, field: str, *, minimum: int | None = None) -> int | None:
    if payload.get(field) is None:
        return None
    return require_int(payload, field, minimum=minimum)


def require_str(payload: dict, field: str, *, max_length: int | None = None) -> str:
    value = payload.get(field)
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", {"field": field})
    value = str(value).strip()
    if max_length and len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", {"field": field})
    return value


def optional_str(payload: dict, field: str, *, max_length: int | None = None) -> str | None:
    value = payload.get(field)
    if value is None or not str(value).strip():
        return None
    return require_str(payload, field, max_length=max_length)


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = tuple(choices)
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{field} is required", {"field": field})
    normalized = str(value).strip().upper()
    if normalized not in allowed:
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {', '.join(allowed)}",
            {"field": field, "allowed": list(allowed)},
        )
    return normalized


def require_price_cents(value: Any, field: str) -> int:
    price = coerce_int(value, field)
    if price < 0:
        raise ValidationError(f"{field} must be >= 0", {"field": field})
    if price > MAX_PRICE_CENTS:
        raise ValidationError(
            f"{field} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})",
            {"field": field},
        )
    return price
