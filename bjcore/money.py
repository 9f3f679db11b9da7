"""Currency helpers shared by the engine and hosts."""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
HALF = Decimal("0.5")
ZERO = Decimal("0")


def to_money(value: object) -> Decimal:
    """Coerce a number or numeric string into a Decimal (0 when invalid)."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            return ZERO
    if not result.is_finite():
        return ZERO
    return result


def round_money(value: object) -> Decimal:
    """Round an amount to the table's cent precision."""
    return to_money(value).quantize(CENT, rounding=ROUND_HALF_UP)


def floor_to_half_unit(value: object) -> Decimal:
    """Round an amount down to the nearest 0.50 (insurance and chip increments)."""
    amount = to_money(value)
    halves = (amount / HALF).to_integral_value(rounding=ROUND_FLOOR)
    return round_money(halves * HALF)


def floor_to_unit(value: object, unit: object) -> Decimal:
    """Round an amount down to a multiple of ``unit``."""
    amount = to_money(value)
    step = to_money(unit)
    if step <= 0:
        return amount
    return (amount / step).to_integral_value(rounding=ROUND_FLOOR) * step


def blackjack_return(wager: object) -> Decimal:
    """
    Total return for a natural blackjack (stake plus 3:2 profit).

    The 2.5x return is truncated to whole currency units, so a $5 wager
    returns $12 rather than $12.50.
    """
    gross = to_money(wager) * Decimal("2.5")
    return gross.to_integral_value(rounding=ROUND_FLOOR)


def format_money(value: object) -> str:
    """Format an amount as ``$15`` or ``$12.50``."""
    amount = round_money(abs(to_money(value)))
    if amount == amount.to_integral_value():
        return f"${int(amount):,}"
    return f"${amount:,.2f}"
