"""
Split calculation.

Rules:
- Platform share = floor(gross * platform_rate / 10000)
- Clinic share   = floor(gross * clinic_rate / 10000), only with a clinic
- Expert share   = gross - platform - clinic (remainder, never rounded)

Floor rounding means fee takers never get more than their nominal
percentage; any rounding slack goes to the expert. All arithmetic is
on integers (minor units, basis points).

Reversals split a refund against what is left of the original shares
(compute_reversal_split), so partial refunds never reverse more of a
share than was paid.
"""

from dataclasses import dataclass
from typing import Optional

from src.services.errors import InvalidGrossAmount

BPS_DENOMINATOR = 10000


@dataclass(frozen=True)
class Split:
    """Computed shares of one gross amount."""

    gross_amount: int
    platform_rate_bps: int
    platform_amount: int
    clinic_rate_bps: Optional[int]
    clinic_amount: int
    expert_amount: int

    @property
    def has_clinic(self) -> bool:
        return self.clinic_rate_bps is not None

    @property
    def total_fees(self) -> int:
        return self.platform_amount + self.clinic_amount


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _share(gross: int, rate_bps: int) -> int:
    # Integer floor division; never via float
    return gross * rate_bps // BPS_DENOMINATOR


def _check_rate(name: str, rate_bps) -> None:
    if not _is_int(rate_bps) or not 0 <= rate_bps <= BPS_DENOMINATOR:
        raise ValueError(f"{name} must be an integer between 0 and {BPS_DENOMINATOR} bps, got {rate_bps!r}")


def compute_split(
    gross_amount_minor_units: int,
    platform_rate_bps: int,
    clinic_rate_bps: Optional[int] = None,
) -> Split:
    """Divide a gross amount between platform, clinic and expert.

    Args:
        gross_amount_minor_units: Amount paid, in cents
        platform_rate_bps: Resolved platform commission rate
        clinic_rate_bps: Clinic marketing fee, None outside a clinic

    Returns:
        Split whose three amounts always sum to the gross amount

    Raises:
        InvalidGrossAmount: gross is negative or not an integer
    """
    gross = gross_amount_minor_units
    if not _is_int(gross) or gross < 0:
        raise InvalidGrossAmount(gross)

    _check_rate("platform_rate_bps", platform_rate_bps)
    if clinic_rate_bps is not None:
        _check_rate("clinic_rate_bps", clinic_rate_bps)

    platform_amount = _share(gross, platform_rate_bps)
    clinic_amount = _share(gross, clinic_rate_bps) if clinic_rate_bps is not None else 0
    expert_amount = gross - platform_amount - clinic_amount

    return Split(
        gross_amount=gross,
        platform_rate_bps=platform_rate_bps,
        platform_amount=platform_amount,
        clinic_rate_bps=clinic_rate_bps,
        clinic_amount=clinic_amount,
        expert_amount=expert_amount,
    )


def compute_reversal_split(refund_amount: int, remaining: Split) -> Split:
    """Split a refund against the still-unreversed shares of a charge.

    ``remaining`` holds the original shares minus every earlier reversal.
    A refund of everything that remains reverses exactly those shares,
    so a charge refunded in pieces nets to zero for every party. A
    smaller refund is split at the original rates, but no share is
    reversed beyond what is left of it; overflow moves to the fee
    shares, platform first.

    Raises:
        InvalidGrossAmount: refund is negative or not an integer
        ValueError: refund exceeds the remaining gross
    """
    if not _is_int(refund_amount) or refund_amount < 0:
        raise InvalidGrossAmount(refund_amount)
    if refund_amount > remaining.gross_amount:
        raise ValueError(f"Refund {refund_amount} exceeds remaining {remaining.gross_amount}")
    if refund_amount == remaining.gross_amount:
        return remaining

    nominal = compute_split(refund_amount, remaining.platform_rate_bps, remaining.clinic_rate_bps)
    platform_amount = min(nominal.platform_amount, remaining.platform_amount)
    clinic_amount = min(nominal.clinic_amount, remaining.clinic_amount)
    expert_amount = refund_amount - platform_amount - clinic_amount

    overflow = max(0, expert_amount - remaining.expert_amount)
    if overflow:
        expert_amount -= overflow
        to_platform = min(overflow, remaining.platform_amount - platform_amount)
        platform_amount += to_platform
        clinic_amount += overflow - to_platform

    return Split(
        gross_amount=refund_amount,
        platform_rate_bps=remaining.platform_rate_bps,
        platform_amount=platform_amount,
        clinic_rate_bps=remaining.clinic_rate_bps,
        clinic_amount=clinic_amount,
        expert_amount=expert_amount,
    )
