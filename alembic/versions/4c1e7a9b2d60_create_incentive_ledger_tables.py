"""Create incentive ledger tables

Balance records, the global stats singleton, the donation and coin award
journals, flash sponsorships with their drops, and coupons with claims.

Revision ID: 4c1e7a9b2d60
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "4c1e7a9b2d60"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "teams",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("total_meals", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("team_id", sa.String(64), nullable=True),
        sa.Column("meals_donated_total", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("meals_available", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("coin_balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("coin_lifetime_earned", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("last_activity_date", sa.Date(), nullable=True),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("meals_available >= 0", name="ck_users_meals_available_nonneg"),
        sa.CheckConstraint("coin_balance >= 0", name="ck_users_coin_balance_nonneg"),
    )
    op.create_index("ix_users_meals_donated_desc", "users", ["meals_donated_total"])

    op.create_table(
        "global_stats",
        sa.Column("id", sa.String(20), nullable=False),
        sa.Column("total_meals_donated", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("goal_target", sa.BigInteger(), nullable=False),
        sa.Column("total_contributors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "donation_events",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("idempotency_key", sa.String(200), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("meal_count", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("source", sa.String(30), nullable=False),
        sa.Column("reference_id", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_donation_events_idempotency_key"),
        sa.CheckConstraint("meal_count > 0", name="ck_donation_events_meal_count_pos"),
    )
    op.create_index(
        "ix_donation_events_user_created", "donation_events", ["user_id", "created_at"]
    )
    op.create_index(
        "ix_donation_events_reference", "donation_events", ["source", "reference_id"]
    )

    op.create_table(
        "coin_awards",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("idempotency_key", sa.String(200), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(50), nullable=False),
        sa.Column("reference_id", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_coin_awards_idempotency_key"),
        sa.CheckConstraint("amount > 0", name="ck_coin_awards_amount_pos"),
    )
    op.create_index("ix_coin_awards_user", "coin_awards", ["user_id"])

    op.create_table(
        "flash_sponsorships",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("restaurant_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(200), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("charity_name", sa.String(200), nullable=True),
        sa.Column("target_drops", sa.Integer(), nullable=False),
        sa.Column("current_drops", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("meals_per_drop", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("bonus_meals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_meals_pledged", sa.Integer(), nullable=False),
        sa.Column("total_meals_donated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("target_drops > 0", name="ck_sponsorships_target_pos"),
    )
    op.create_index("ix_sponsorships_restaurant", "flash_sponsorships", ["restaurant_id"])
    op.create_index("ix_sponsorships_ends_at", "flash_sponsorships", ["ends_at"])

    op.create_table(
        "sponsorship_drops",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("sponsorship_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("post_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(
            ["sponsorship_id"], ["flash_sponsorships.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "sponsorship_id", "user_id", "post_id",
            name="uq_sponsorship_drops_sponsorship_user_post",
        ),
    )
    op.create_index("ix_sponsorship_drops_user", "sponsorship_drops", ["user_id"])

    op.create_table(
        "coupons",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("restaurant_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(200), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("coin_cost", sa.Integer(), nullable=False),
        sa.Column("total_quantity", sa.Integer(), nullable=True),
        sa.Column("claimed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("coin_cost >= 0", name="ck_coupons_coin_cost_nonneg"),
        sa.CheckConstraint(
            "total_quantity IS NULL OR claimed_count <= total_quantity",
            name="ck_coupons_claimed_within_quantity",
        ),
    )
    op.create_index("ix_coupons_restaurant", "coupons", ["restaurant_id"])

    op.create_table(
        "user_coupons",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("coupon_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("claimed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "coupon_id", name="uq_user_coupons_user_coupon"),
    )
    op.create_index(
        "ix_user_coupons_status_expires", "user_coupons", ["status", "expires_at"]
    )


def downgrade() -> None:
    op.drop_table("user_coupons")
    op.drop_table("coupons")
    op.drop_table("sponsorship_drops")
    op.drop_table("flash_sponsorships")
    op.drop_table("coin_awards")
    op.drop_table("donation_events")
    op.drop_table("global_stats")
    op.drop_table("users")
    op.drop_table("teams")
