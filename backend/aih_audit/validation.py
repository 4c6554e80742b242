from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


COMPETENCE_PATTERN = re.compile(r"^(\d{2})/(\d{4})$")


class ValidationError(ValueError):
    """400-level input problem. Carries every violation found, not just the first."""

    def __init__(self, reasons: list[str] | str):
        if isinstance(reasons, str):
            reasons = [reasons]
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons))


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate record number)."""


class NotFoundError(LookupError):
    """404-level missing entity."""


def clean_text(value: Any) -> str | None:
    """Trimmed string, or None for missing / blank input."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_money_cents(
    value: Any,
    field: str,
    reasons: list[str],
    *,
    minimum: str | None = None,
    maximum: str | None = None,
) -> int | None:
    """
    Convert a decimal amount into integer cents, appending problems to `reasons`.

    Accepts Decimal, int, float (via str to avoid binary noise) and numeric strings.
    Booleans are rejected even though they are ints.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        reasons.append(f"{field} is required")
        return None
    if isinstance(value, bool):
        reasons.append(f"{field} must be a number")
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        reasons.append(f"{field} must be a number")
        return None
    if not amount.is_finite():
        reasons.append(f"{field} must be a number")
        return None

    if minimum is not None and amount < Decimal(minimum):
        reasons.append(f"{field} must be at least {minimum}")
        return None
    if maximum is not None and amount > Decimal(maximum):
        reasons.append(f"{field} cannot exceed {maximum}")
        return None

    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_decimal(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def check_competence(value: Any, reasons: list[str], *, min_year: int = 2020) -> str | None:
    """Validate a "MM/YYYY" billing competence."""
    text = clean_text(value)
    if text is None:
        reasons.append("competence is required")
        return None
    match = COMPETENCE_PATTERN.match(text)
    if not match:
        reasons.append("competence must use the MM/YYYY format")
        return None
    month, year = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        reasons.append("competence month must be between 01 and 12")
        return None
    if year < min_year:
        reasons.append(f"competence year must be {min_year} or later")
        return None
    return text


def check_positive_int(value: Any, field: str, reasons: list[str]) -> int | None:
    """
    Strict integer >= 1.

    Rejects floats, decimals in strings and scientific notation.
    """
    if isinstance(value, bool):
        reasons.append(f"{field} must be an integer")
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            reasons.append(f"{field} must be an integer")
            return None
        try:
            number = int(stripped)
        except ValueError:
            reasons.append(f"{field} must be an integer")
            return None
    else:
        reasons.append(f"{field} must be an integer")
        return None

    if number < 1:
        reasons.append(f"{field} must be at least 1")
        return None
    return number
