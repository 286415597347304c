"""
Business-rule checks on a computed split.

A failed check is an explicit Rejected result, not an exception: the
pipeline records it and stops before any money moves.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from src.config import Settings, settings as app_settings
from src.services.split_calculator import BPS_DENOMINATOR, Split, compute_split

logger = logging.getLogger(__name__)


class RejectionReason(str, Enum):
    EXPERT_SHARE_BELOW_MINIMUM = "expert_share_below_minimum"
    AGGREGATE_FEE_EXCEEDS_MAXIMUM = "aggregate_fee_exceeds_maximum"
    CLINIC_RATE_OUT_OF_RANGE = "clinic_rate_out_of_range"
    RECONCILIATION_MISMATCH = "reconciliation_mismatch"


@dataclass(frozen=True)
class SplitPolicy:
    """Configured thresholds, all in basis points."""

    expert_minimum_share_bps: int = 6000
    max_aggregate_fee_bps: int = 4000
    clinic_fee_min_bps: int = 1000
    clinic_fee_max_bps: int = 2500

    def __post_init__(self):
        for name in (
            "expert_minimum_share_bps",
            "max_aggregate_fee_bps",
            "clinic_fee_min_bps",
            "clinic_fee_max_bps",
        ):
            value = getattr(self, name)
            if not 0 <= value <= BPS_DENOMINATOR:
                raise ValueError(f"{name} must be within 0..{BPS_DENOMINATOR}, got {value}")
        if self.clinic_fee_min_bps > self.clinic_fee_max_bps:
            raise ValueError("clinic_fee_min_bps must not exceed clinic_fee_max_bps")

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "SplitPolicy":
        config = config or app_settings
        return cls(
            expert_minimum_share_bps=config.expert_minimum_share_bps,
            max_aggregate_fee_bps=config.max_aggregate_fee_bps,
            clinic_fee_min_bps=config.clinic_fee_min_bps,
            clinic_fee_max_bps=config.clinic_fee_max_bps,
        )


@dataclass(frozen=True)
class ValidationResult:
    accepted: bool
    reason: Optional[RejectionReason] = None
    detail: Optional[str] = None

    @classmethod
    def accept(cls) -> "ValidationResult":
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: RejectionReason, detail: str) -> "ValidationResult":
        return cls(accepted=False, reason=reason, detail=detail)


def validate(split: Split, gross_amount: int, policy: SplitPolicy) -> ValidationResult:
    """
    Check a split against the policy.

    Order: reconciliation, clinic range, fee ceiling, expert floor.
    The first failing rule is reported.
    """
    result = _check(split, gross_amount, policy)
    if not result.accepted:
        logger.warning(
            f"Split rejected ({result.reason.value}): gross={gross_amount} "
            f"platform={split.platform_amount} clinic={split.clinic_amount} "
            f"expert={split.expert_amount} - {result.detail}"
        )
    return result


def check_clinic_rate(clinic_rate_bps: int, policy: SplitPolicy) -> Optional[ValidationResult]:
    """Rejection for a clinic rate outside the configured range, else None."""
    if policy.clinic_fee_min_bps <= clinic_rate_bps <= policy.clinic_fee_max_bps:
        return None
    return ValidationResult.reject(
        RejectionReason.CLINIC_RATE_OUT_OF_RANGE,
        f"clinic rate {clinic_rate_bps} bps outside "
        f"{policy.clinic_fee_min_bps}..{policy.clinic_fee_max_bps}",
    )


def compute_and_validate(
    gross_amount: int,
    platform_rate_bps: int,
    clinic_rate_bps: Optional[int],
    policy: SplitPolicy,
) -> Tuple[Split, ValidationResult]:
    """Compute a split and check it.

    A clinic rate outside the policy range is rejected before the
    calculator sees it, so a misconfigured clinic (even one above 100%)
    yields a recorded rejection instead of an error. The split recorded
    with that rejection charges no clinic share.

    Raises:
        InvalidGrossAmount: gross is negative or not an integer
    """
    if clinic_rate_bps is not None:
        rejection = check_clinic_rate(clinic_rate_bps, policy)
        if rejection is not None:
            split = replace(compute_split(gross_amount, platform_rate_bps), clinic_rate_bps=clinic_rate_bps)
            logger.warning(f"Split rejected ({rejection.reason.value}): gross={gross_amount} - {rejection.detail}")
            return split, rejection

    split = compute_split(gross_amount, platform_rate_bps, clinic_rate_bps)
    return split, validate(split, gross_amount, policy)


def _check(split: Split, gross: int, policy: SplitPolicy) -> ValidationResult:
    # Reconciliation (should hold by construction)
    if split.gross_amount != gross:
        return ValidationResult.reject(
            RejectionReason.RECONCILIATION_MISMATCH,
            f"split gross {split.gross_amount} != transaction gross {gross}",
        )
    if split.platform_amount < 0 or split.clinic_amount < 0:
        return ValidationResult.reject(
            RejectionReason.RECONCILIATION_MISMATCH,
            "negative fee amount",
        )
    if split.platform_amount + split.clinic_amount + split.expert_amount != gross:
        return ValidationResult.reject(
            RejectionReason.RECONCILIATION_MISMATCH,
            f"shares sum to {split.platform_amount + split.clinic_amount + split.expert_amount}, expected {gross}",
        )
    if not split.has_clinic and split.clinic_amount != 0:
        return ValidationResult.reject(
            RejectionReason.RECONCILIATION_MISMATCH,
            "clinic amount without a clinic",
        )

    if split.has_clinic:
        rejection = check_clinic_rate(split.clinic_rate_bps, policy)
        if rejection is not None:
            return rejection

    if split.total_fees * BPS_DENOMINATOR > gross * policy.max_aggregate_fee_bps:
        combined_rate = split.platform_rate_bps + (split.clinic_rate_bps or 0)
        return ValidationResult.reject(
            RejectionReason.AGGREGATE_FEE_EXCEEDS_MAXIMUM,
            f"fees {split.total_fees} of {gross} ({combined_rate} bps) exceed maximum "
            f"{policy.max_aggregate_fee_bps} bps",
        )

    if split.expert_amount * BPS_DENOMINATOR < gross * policy.expert_minimum_share_bps:
        return ValidationResult.reject(
            RejectionReason.EXPERT_SHARE_BELOW_MINIMUM,
            f"expert receives {split.expert_amount} of {gross}, minimum "
            f"{policy.expert_minimum_share_bps} bps",
        )

    return ValidationResult.accept()
