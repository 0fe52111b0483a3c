"""
mealdrop.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- users              — Per-user balance record (meals, coins, streak)
- teams              — Optional user teams with a running meal total
- global_stats       — Singleton community totals (one row, id "global")
- donation_events    — Append-only donation journal, idempotent by key
- coin_awards        — Append-only coin award journal, idempotent by key
- flash_sponsorships — Time-boxed restaurant goals
- sponsorship_drops  — One user's contribution toward a sponsorship
- coupons            — Finite-supply restaurant coupons priced in coins
- user_coupons       — Claims of a coupon by a user

Counters on these rows are never written through ORM attribute assignment;
they change only through :mod:`mealdrop.database.counters`.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all mealdrop ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class DonationSource(enum.StrEnum):
    """What produced a donation event."""
    POST = "post"
    PURCHASE = "purchase"
    SPONSORSHIP_BONUS = "sponsorship_bonus"


class CouponStatus(enum.StrEnum):
    """Lifecycle of a user's coupon claim."""
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------
class Team(Base):
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    total_meals: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    member_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    members: Mapped[list[User]] = relationship(back_populates="team")

    def __repr__(self) -> str:
        return f"<Team id={self.id} name={self.name!r} meals={self.total_meals}>"


# ---------------------------------------------------------------------------
# Users — one balance record per account
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    team_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("teams.id", ondelete="SET NULL"), default=None
    )

    meals_donated_total: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    meals_available: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    coin_balance: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    coin_lifetime_earned: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    last_activity_date: Mapped[date | None] = mapped_column(Date, default=None)
    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    team: Mapped[Team | None] = relationship(back_populates="members")

    __table_args__ = (
        CheckConstraint("meals_available >= 0", name="ck_users_meals_available_nonneg"),
        CheckConstraint("coin_balance >= 0", name="ck_users_coin_balance_nonneg"),
        Index("ix_users_meals_donated_desc", "meals_donated_total"),
    )

    def __repr__(self) -> str:
        return (
            f"<User id={self.id} name={self.username!r} "
            f"donated={self.meals_donated_total} coins={self.coin_balance}>"
        )


# ---------------------------------------------------------------------------
# GlobalStats — singleton community totals
# ---------------------------------------------------------------------------
class GlobalStats(Base):
    __tablename__ = "global_stats"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    total_meals_donated: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    goal_target: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_contributors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<GlobalStats meals={self.total_meals_donated} goal={self.goal_target}>"


# ---------------------------------------------------------------------------
# DonationEvent — append-only donation journal
# ---------------------------------------------------------------------------
class DonationEvent(Base):
    """One applied donation.  Never updated or deleted.

    ``user_id`` is NULL for community-level credits (sponsorship bonuses),
    which count toward the global total only.
    """
    __tablename__ = "donation_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)
    user_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )
    meal_count: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_donation_events_idempotency_key"),
        CheckConstraint("meal_count > 0", name="ck_donation_events_meal_count_pos"),
        Index("ix_donation_events_user_created", "user_id", "created_at"),
        Index("ix_donation_events_reference", "source", "reference_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DonationEvent id={self.id} user={self.user_id} "
            f"meals={self.meal_count} source={self.source!r}>"
        )


# ---------------------------------------------------------------------------
# CoinAward — append-only coin award journal
# ---------------------------------------------------------------------------
class CoinAward(Base):
    __tablename__ = "coin_awards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_coin_awards_idempotency_key"),
        CheckConstraint("amount > 0", name="ck_coin_awards_amount_pos"),
        Index("ix_coin_awards_user", "user_id"),
    )


# ---------------------------------------------------------------------------
# FlashSponsorship — time-boxed restaurant goal
# ---------------------------------------------------------------------------
class FlashSponsorship(Base):
    """A restaurant-funded goal: reach ``target_drops`` before ``ends_at`` and
    ``total_meals_pledged`` meals are credited to the community total.

    Rows are created by the restaurant/admin surface; the ledger only mutates
    ``current_drops``, ``is_completed``, ``completed_at`` and
    ``total_meals_donated``.
    """
    __tablename__ = "flash_sponsorships"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    restaurant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    charity_name: Mapped[str | None] = mapped_column(String(200), default=None)

    target_drops: Mapped[int] = mapped_column(Integer, nullable=False)
    current_drops: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    meals_per_drop: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    bonus_meals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_meals_pledged: Mapped[int] = mapped_column(Integer, nullable=False)
    total_meals_donated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    drops: Mapped[list[SponsorshipDrop]] = relationship(
        back_populates="sponsorship", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("target_drops > 0", name="ck_sponsorships_target_pos"),
        Index("ix_sponsorships_restaurant", "restaurant_id"),
        Index("ix_sponsorships_ends_at", "ends_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<FlashSponsorship id={self.id} drops={self.current_drops}/"
            f"{self.target_drops} completed={self.is_completed}>"
        )


# ---------------------------------------------------------------------------
# SponsorshipDrop — one user's contribution
# ---------------------------------------------------------------------------
class SponsorshipDrop(Base):
    __tablename__ = "sponsorship_drops"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    sponsorship_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("flash_sponsorships.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    post_id: Mapped[str | None] = mapped_column(String(64), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    sponsorship: Mapped[FlashSponsorship] = relationship(back_populates="drops")

    __table_args__ = (
        # NULL post ids compare distinct, so only post-tied drops are unique.
        UniqueConstraint(
            "sponsorship_id", "user_id", "post_id",
            name="uq_sponsorship_drops_sponsorship_user_post",
        ),
        Index("ix_sponsorship_drops_user", "user_id"),
    )


# ---------------------------------------------------------------------------
# Coupon — finite-supply reward priced in coins
# ---------------------------------------------------------------------------
class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    restaurant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    coin_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    total_quantity: Mapped[int | None] = mapped_column(Integer, default=None)
    claimed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("coin_cost >= 0", name="ck_coupons_coin_cost_nonneg"),
        CheckConstraint(
            "total_quantity IS NULL OR claimed_count <= total_quantity",
            name="ck_coupons_claimed_within_quantity",
        ),
        Index("ix_coupons_restaurant", "restaurant_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Coupon id={self.id} cost={self.coin_cost} "
            f"claimed={self.claimed_count}/{self.total_quantity}>"
        )


# ---------------------------------------------------------------------------
# UserCoupon — a user's claim
# ---------------------------------------------------------------------------
class UserCoupon(Base):
    __tablename__ = "user_coupons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    coupon_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CouponStatus.ACTIVE.value
    )
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    coupon: Mapped[Coupon] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "coupon_id", name="uq_user_coupons_user_coupon"),
        Index("ix_user_coupons_status_expires", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<UserCoupon id={self.id} coupon={self.coupon_id} status={self.status!r}>"
