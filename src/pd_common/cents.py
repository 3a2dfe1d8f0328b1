"""Integer arithmetic utilities for cents-based balances.

All principals, profits, and balances use int (cents). Rates use int basis
points (1 bp = 0.0001). No float, no Decimal.
"""

_BPS_DENOMINATOR = 10_000


def validate_principal(principal: int) -> None:
    """Principal must be a positive number of cents."""
    if principal <= 0:
        raise ValueError(f"Principal must be positive, got {principal} cents")


def validate_rate_bps(rate_bps: int) -> None:
    """Per-period rate must be non-negative (0 bps allowed)."""
    if rate_bps < 0:
        raise ValueError(f"Rate must be >= 0 bps, got {rate_bps}")


def cents_to_display(cents: int) -> str:
    """Convert cents to display string: 6500 -> '$65.00', -1200 -> '-$12.00'."""
    if cents < 0:
        abs_cents = -cents
        return f"-${abs_cents // 100:,}.{abs_cents % 100:02d}"
    return f"${cents // 100:,}.{cents % 100:02d}"


def bps_to_display(rate_bps: int) -> str:
    """Convert basis points to a percent string: 150 -> '1.50%'."""
    return f"{rate_bps // 100}.{rate_bps % 100:02d}%"


def period_profit(principal: int, rate_bps: int) -> int:
    """Profit credited for one accrual period, floor-rounded (platform never overpays).

    profit = floor(principal * rate_bps / 10000)
    e.g. $1,000.00 at 150 bps -> 100000 * 150 // 10000 = 1500 cents ($15.00)
    """
    if principal == 0 or rate_bps == 0:
        return 0
    return principal * rate_bps // _BPS_DENOMINATOR
