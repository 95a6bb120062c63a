"""
Money arithmetic.

- Amounts are integer cents.
- Rates are integer basis points (10000 = 100%).
- Applying a rate rounds half-up to the nearest cent.
"""

from __future__ import annotations

BPS_DENOMINATOR = 10_000


def apply_bps(amount_cents: int, rate_bps: int) -> int:
    """Return amount_cents * rate_bps / 10000, rounded half-up."""
    if amount_cents < 0 or rate_bps < 0:
        raise ValueError("amount and rate must be non-negative")
    return (amount_cents * rate_bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def format_cents(amount_cents: int | None) -> str | None:
    if amount_cents is None:
        return None
    sign = "-" if amount_cents < 0 else ""
    whole, frac = divmod(abs(amount_cents), 100)
    return f"{sign}{whole:,}.{frac:02d}"
