"""
Access Ledger - Payment and GptAccess persistence with write verification.

NO DICTIONARIES - All operations return strongly typed domain models.

Idempotency is enforced by the datastore: an insert that collides with
``uq_payments_stripe_payment_id`` or ``uq_gpt_access_user_model`` means the
row already exists, and the existing row is returned instead.
"""

import secrets
from datetime import datetime
from decimal import Decimal

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.db.models import GptAccess, Payment, as_utc, utc_now
from storefront.exceptions import WriteVerificationError
from storefront.models.domain import AccessGrant, PaymentRecord, PaymentStatus

logger = get_logger(__name__)


def _new_access_token() -> str:
    return secrets.token_hex(24)


class AccessLedger:
    """
    Ledger of payments and access grants.

    All inserts follow the pattern:
    1. Add row and flush
    2. On unique violation: roll back and return the existing row
    3. Read back and verify
    4. Commit
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Payments
    # ========================================================================

    async def record_payment(
        self,
        user_id: str,
        stripe_payment_id: str,
        amount: Decimal,
        currency: str,
        status: PaymentStatus,
        description: str,
        product_id: str | None = None,
    ) -> tuple[PaymentRecord, bool]:
        """
        Insert a ledger row unless one exists for this gateway payment id.

        Returns:
            (payment, created) - ``created`` is False when the row already existed

        Raises:
            WriteVerificationError: Insert collided but no row could be read back
        """
        payment = Payment(
            user_id=user_id,
            stripe_payment_id=stripe_payment_id,
            product_id=product_id,
            amount=amount,
            currency=currency.lower(),
            status=status.value,
            description=description,
        )
        self.session.add(payment)

        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            existing = await self._find_payment(stripe_payment_id)
            if existing is None:
                raise WriteVerificationError(
                    f"Payment {stripe_payment_id} collided but was not found"
                )
            logger.info(
                "payment_already_recorded",
                stripe_payment_id=stripe_payment_id,
                status=existing.status,
            )
            return self._payment_to_domain(existing), False

        verified = await self.session.get(Payment, payment.id)
        if verified is None:
            raise WriteVerificationError(f"Payment {payment.id} not found after insert")

        await self.session.commit()

        logger.info(
            "payment_recorded",
            payment_id=verified.id,
            stripe_payment_id=stripe_payment_id,
            amount=str(amount),
            status=status.value,
        )
        return self._payment_to_domain(verified), True

    async def promote_to_succeeded(
        self,
        stripe_payment_id: str,
        amount: Decimal,
        product_id: str,
        description: str,
    ) -> PaymentRecord | None:
        """
        Turn a failed/pending row into a succeeded one.

        The card can fail and then succeed on the same intent. This is the only
        transition a ledger row allows; succeeded rows are never touched.

        Returns:
            The promoted row, or None when no failed/pending row matched
        """
        stmt = (
            update(Payment)
            .where(
                Payment.stripe_payment_id == stripe_payment_id,
                Payment.status != PaymentStatus.SUCCEEDED.value,
            )
            .values(
                status=PaymentStatus.SUCCEEDED.value,
                amount=amount,
                product_id=product_id,
                description=description,
            )
            .returning(Payment.id)
        )
        result = await self.session.execute(stmt)
        promoted_id = result.scalar_one_or_none()
        if promoted_id is None:
            await self.session.rollback()
            return None

        await self.session.commit()
        payment = await self._find_payment(stripe_payment_id)
        if payment is None:
            raise WriteVerificationError(f"Payment {stripe_payment_id} vanished after promotion")

        logger.info("payment_promoted_to_succeeded", stripe_payment_id=stripe_payment_id)
        return self._payment_to_domain(payment)

    async def find_payment(self, stripe_payment_id: str) -> PaymentRecord | None:
        """Find a ledger row by gateway payment id."""
        payment = await self._find_payment(stripe_payment_id)
        return self._payment_to_domain(payment) if payment else None

    async def list_payments(self, user_id: str, limit: int = 10) -> list[PaymentRecord]:
        """Most recent payments first."""
        stmt = (
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._payment_to_domain(p) for p in result.scalars().all()]

    async def find_unfulfilled_payments(self, limit: int = 100) -> list[PaymentRecord]:
        """
        Succeeded purchases with no matching access grant.

        These are orders where the ledger write committed but the grant did not.
        """
        stmt = (
            select(Payment)
            .outerjoin(
                GptAccess,
                and_(
                    GptAccess.user_id == Payment.user_id,
                    GptAccess.model_id == Payment.product_id,
                ),
            )
            .where(
                Payment.status == PaymentStatus.SUCCEEDED.value,
                Payment.product_id.isnot(None),
                GptAccess.id.is_(None),
            )
            .order_by(Payment.created_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._payment_to_domain(p) for p in result.scalars().all()]

    # ========================================================================
    # Access grants
    # ========================================================================

    async def grant_access(
        self,
        user_id: str,
        model_id: str,
        expires_at: datetime | None = None,
    ) -> tuple[AccessGrant, bool]:
        """
        Create the (user, model) grant unless it already exists.

        Returns:
            (grant, created) - ``created`` is False when the grant already existed

        Raises:
            WriteVerificationError: Insert collided but no grant could be read back
        """
        access = GptAccess(
            user_id=user_id,
            model_id=model_id,
            access_token=_new_access_token(),
            expires_at=expires_at,
            queries_used=0,
        )
        self.session.add(access)

        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            existing = await self._find_access(user_id, model_id)
            if existing is None:
                raise WriteVerificationError(
                    f"Access for {user_id}/{model_id} collided but was not found"
                )
            logger.info("access_already_granted", user_id=user_id, model_id=model_id)
            return self._access_to_domain(existing), False

        verified = await self.session.get(GptAccess, access.id)
        if verified is None:
            raise WriteVerificationError(f"Access grant {access.id} not found after insert")

        await self.session.commit()

        logger.info("access_granted", user_id=user_id, model_id=model_id, grant_id=verified.id)
        return self._access_to_domain(verified), True

    async def find_access(self, user_id: str, model_id: str) -> AccessGrant | None:
        """Find the grant for a user and model."""
        access = await self._find_access(user_id, model_id)
        return self._access_to_domain(access) if access else None

    async def find_access_by_token(self, access_token: str) -> AccessGrant | None:
        """Find a grant by its opaque access token."""
        stmt = select(GptAccess).where(GptAccess.access_token == access_token)
        result = await self.session.execute(stmt)
        access = result.scalar_one_or_none()
        return self._access_to_domain(access) if access else None

    async def list_access(self, user_id: str) -> list[AccessGrant]:
        """All grants of a user, oldest first."""
        stmt = (
            select(GptAccess).where(GptAccess.user_id == user_id).order_by(GptAccess.created_at)
        )
        result = await self.session.execute(stmt)
        return [self._access_to_domain(a) for a in result.scalars().all()]

    async def record_usage(self, grant_id: str) -> int:
        """
        Atomically bump ``queries_used`` and stamp ``last_accessed``.

        A single UPDATE, so concurrent uses never lose an increment.

        Returns:
            The counter value after this use
        """
        stmt = (
            update(GptAccess)
            .where(GptAccess.id == grant_id)
            .values(queries_used=GptAccess.queries_used + 1, last_accessed=utc_now())
            .returning(GptAccess.queries_used)
        )
        result = await self.session.execute(stmt)
        queries_used = result.scalar_one_or_none()
        if queries_used is None:
            await self.session.rollback()
            raise WriteVerificationError(f"Access grant {grant_id} not found for usage update")

        await self.session.commit()
        return int(queries_used)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_payment(self, stripe_payment_id: str) -> Payment | None:
        # Refresh rows a bulk UPDATE in this session may have changed
        stmt = (
            select(Payment)
            .where(Payment.stripe_payment_id == stripe_payment_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_access(self, user_id: str, model_id: str) -> GptAccess | None:
        stmt = (
            select(GptAccess)
            .where(GptAccess.user_id == user_id, GptAccess.model_id == model_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _payment_to_domain(self, payment: Payment) -> PaymentRecord:
        """Convert ORM payment to domain model."""
        return PaymentRecord(
            payment_id=payment.id,
            user_id=payment.user_id,
            stripe_payment_id=payment.stripe_payment_id,
            product_id=payment.product_id,
            amount=Decimal(payment.amount),
            currency=payment.currency,
            status=PaymentStatus(payment.status),
            description=payment.description,
            created_at=as_utc(payment.created_at),
        )

    def _access_to_domain(self, access: GptAccess) -> AccessGrant:
        """Convert ORM grant to domain model."""
        return AccessGrant(
            grant_id=access.id,
            user_id=access.user_id,
            model_id=access.model_id,
            access_token=access.access_token,
            expires_at=as_utc(access.expires_at) if access.expires_at else None,
            queries_used=access.queries_used,
            last_accessed=as_utc(access.last_accessed) if access.last_accessed else None,
            created_at=as_utc(access.created_at),
        )
