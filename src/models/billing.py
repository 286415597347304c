"""
Billing inputs: tiers, plans, payout destinations and clinic settings.

Tiers and plans are versioned. A change closes the current row with
an ``ended_at`` timestamp and opens a new one, so any past instant
still resolves to the values that were active then.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, CreatedAtMixin, TimestampMixin


class Tier(str, Enum):
    """Expert standing, set by the external role-progression process."""
    COMMUNITY = "community"
    TOP = "top"


class BillingPlan(str, Enum):
    """Billing mode of an expert or organization."""
    COMMISSION = "commission"  # No recurring fee, highest rate
    MONTHLY = "monthly"        # Monthly fee, reduced rate
    ANNUAL = "annual"          # Annual fee, reduced rate


class SubscriptionPlan(Base, CreatedAtMixin):
    """One version of a billing entity's plan."""

    __tablename__ = "subscription_plans"

    id: Mapped[int] = mapped_column(primary_key=True)
    billing_entity_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    plan: Mapped[BillingPlan] = mapped_column(
        SQLAlchemyEnum(
            BillingPlan,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Null while this version is current",
    )

    def __repr__(self) -> str:
        return (
            f"<SubscriptionPlan(entity={self.billing_entity_id}, plan={self.plan}, "
            f"started_at={self.started_at}, ended_at={self.ended_at})>"
        )


class ExpertTier(Base, CreatedAtMixin):
    """One version of an expert's tier."""

    __tablename__ = "expert_tiers"

    id: Mapped[int] = mapped_column(primary_key=True)
    expert_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    tier: Mapped[Tier] = mapped_column(
        SQLAlchemyEnum(
            Tier,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<ExpertTier(expert={self.expert_id}, tier={self.tier})>"


class ExpertAccount(Base, TimestampMixin):
    """Where an expert's share is deposited (processor connected account)."""

    __tablename__ = "expert_accounts"

    expert_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    destination_account_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ExpertAccount(expert={self.expert_id})>"


class ClinicSettings(Base, TimestampMixin):
    """Marketing-fee configuration for an organization (clinic)."""

    __tablename__ = "clinic_settings"
    __table_args__ = (
        CheckConstraint(
            "clinic_fee_rate_bps BETWEEN 0 AND 10000",
            name="ck_clinic_settings_fee_rate_bps",
        ),
    )

    clinic_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    clinic_fee_rate_bps: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Clinic share of gross in basis points",
    )
    destination_account_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ClinicSettings(clinic={self.clinic_id}, rate_bps={self.clinic_fee_rate_bps})>"
