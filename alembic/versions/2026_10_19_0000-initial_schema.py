"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0000"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # users
    # ========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("username", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("google_id", sa.String(255), nullable=True, unique=True),
        sa.Column("profile_image_url", sa.Text(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("reset_token", sa.String(64), nullable=True, unique=True),
        sa.Column("reset_token_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("role IN ('user', 'admin')", name="ck_user_role"),
    )

    # ========================================================================
    # subscriptions
    # ========================================================================
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=False, unique=True),
        sa.Column("stripe_price_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("plan_name", sa.String(100), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )

    # ========================================================================
    # gpt_models (primary key is the catalog product id)
    # ========================================================================
    op.create_table(
        "gpt_models",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("icon", sa.String(100), nullable=False),
        sa.Column("required_plan", sa.String(50), nullable=False, server_default="basic"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )

    # ========================================================================
    # payments (ledger)
    # ========================================================================
    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "subscription_id", sa.String(36), sa.ForeignKey("subscriptions.id"), nullable=True
        ),
        sa.Column("stripe_payment_id", sa.String(255), nullable=False),
        sa.Column("product_id", sa.String(100), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
        sa.CheckConstraint(
            "status IN ('succeeded', 'failed', 'pending')", name="ck_payment_status_valid"
        ),
        sa.UniqueConstraint("stripe_payment_id", name="uq_payments_stripe_payment_id"),
    )
    op.create_index("idx_payments_user_created", "payments", ["user_id", "created_at"])

    # ========================================================================
    # gpt_access (entitlements)
    # ========================================================================
    op.create_table(
        "gpt_access",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("model_id", sa.String(100), sa.ForeignKey("gpt_models.id"), nullable=False),
        sa.Column("access_token", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("queries_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_accessed", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("queries_used >= 0", name="ck_queries_used_non_negative"),
        sa.UniqueConstraint("user_id", "model_id", name="uq_gpt_access_user_model"),
        sa.UniqueConstraint("access_token", name="uq_gpt_access_token"),
    )
    op.create_index("idx_gpt_access_user", "gpt_access", ["user_id"])

    # ========================================================================
    # revoked_tokens
    # ========================================================================
    op.create_table(
        "revoked_tokens",
        sa.Column("token_hash", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column(
            "revoked_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_revoked_tokens_user_id", "revoked_tokens", ["user_id"])
    op.create_index("idx_revoked_tokens_expires_at", "revoked_tokens", ["token_expires_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index("idx_revoked_tokens_expires_at", table_name="revoked_tokens")
    op.drop_index("idx_revoked_tokens_user_id", table_name="revoked_tokens")
    op.drop_table("revoked_tokens")
    op.drop_index("idx_gpt_access_user", table_name="gpt_access")
    op.drop_table("gpt_access")
    op.drop_index("idx_payments_user_created", table_name="payments")
    op.drop_table("payments")
    op.drop_table("gpt_models")
    op.drop_table("subscriptions")
    op.drop_table("users")
