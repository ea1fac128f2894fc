"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.

Uniqueness that protects money (one ledger row per gateway payment, one
grant per user and model) lives here as constraints, not in service code.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from drivers that drop tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def new_id() -> str:
    """Opaque UUID-shaped primary key."""
    return str(uuid4())


class User(Base):
    """
    ORM model for users table.

    Password is nullable for users that only ever signed in with Google.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    google_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    profile_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")

    # Single-use password reset
    reset_token: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    reset_token_expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("role IN ('user', 'admin')", name="ck_user_role"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class Subscription(Base):
    """
    ORM model for subscriptions table.

    Recurring-billing records. One-time GPT purchases never create these.
    """

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    stripe_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    stripe_price_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    plan_name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    current_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Subscription(id={self.id}, user_id={self.user_id}, status={self.status})>"


class GptModel(Base):
    """
    ORM model for gpt_models table.

    Primary key is the catalog product id, so purchases map to models
    without matching on display names.
    """

    __tablename__ = "gpt_models"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    icon: Mapped[str] = mapped_column(String(100), nullable=False)
    required_plan: Mapped[str] = mapped_column(String(50), nullable=False, default="basic")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<GptModel(id={self.id}, name={self.name}, active={self.is_active})>"


class Payment(Base):
    """
    ORM model for payments table.

    Append-only financial ledger. The gateway payment id is unique, which is
    what makes reconciliation idempotent.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    subscription_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("subscriptions.id"), nullable=True
    )

    stripe_payment_id: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
        CheckConstraint(
            "status IN ('succeeded', 'failed', 'pending')", name="ck_payment_status_valid"
        ),
        UniqueConstraint("stripe_payment_id", name="uq_payments_stripe_payment_id"),
        Index("idx_payments_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Payment(id={self.id}, stripe_payment_id={self.stripe_payment_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class GptAccess(Base):
    """
    ORM model for gpt_access table.

    One entitlement per (user, model). ``queries_used`` only ever grows.
    """

    __tablename__ = "gpt_access"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    model_id: Mapped[str] = mapped_column(String(100), ForeignKey("gpt_models.id"), nullable=False)
    access_token: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    queries_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_accessed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("queries_used >= 0", name="ck_queries_used_non_negative"),
        UniqueConstraint("user_id", "model_id", name="uq_gpt_access_user_model"),
        UniqueConstraint("access_token", name="uq_gpt_access_token"),
        Index("idx_gpt_access_user", "user_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<GptAccess(id={self.id}, user_id={self.user_id}, model_id={self.model_id}, "
            f"queries_used={self.queries_used})>"
        )


class RevokedToken(Base):
    """
    ORM model for revoked_tokens table.

    Bearer tokens invalidated by logout, identified by a SHA-256 hash of the
    token. Rows can be deleted once the token would have expired anyway.
    """

    __tablename__ = "revoked_tokens"

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    revoked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    token_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_revoked_tokens_user_id", "user_id"),
        Index("idx_revoked_tokens_expires_at", "token_expires_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<RevokedToken(hash={self.token_hash[:16]}..., user_id={self.user_id})>"
