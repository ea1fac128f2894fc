"""
Token Revocation Service.

Bearer tokens are stateless JWTs, so logout works by remembering the token
until it would have expired anyway. Only a SHA-256 hash of the token is
stored.
"""

import hashlib
import time
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.db.models import RevokedToken, as_utc, utc_now

logger = get_logger(__name__)


class TokenRevocationService:
    """
    Revoked-token store.

    Uses a hybrid approach:
    - In-memory cache for O(1) checks on every authenticated request
    - Database rows so revocations survive restarts and reach other workers
    """

    CLEANUP_INTERVAL_SECONDS = 300

    def __init__(self) -> None:
        # token_hash -> expires_at timestamp
        self._cache: dict[str, float] = {}
        self._cache_loaded = False
        self._last_cleanup = 0.0

    @staticmethod
    def hash_token(token: str) -> str:
        """SHA-256 of the raw token; raw tokens are never stored."""
        return hashlib.sha256(token.encode()).hexdigest()

    async def load_cache(self, db: AsyncSession) -> None:
        """Load unexpired revocations from the database."""
        stmt = select(RevokedToken).where(RevokedToken.token_expires_at > utc_now())
        result = await db.execute(stmt)
        tokens = result.scalars().all()
        for token in tokens:
            self._cache[token.token_hash] = as_utc(token.token_expires_at).timestamp()
        self._cache_loaded = True
        logger.info("token_revocation_cache_loaded", count=len(tokens))

    async def is_revoked(self, token: str, db: AsyncSession) -> bool:
        """True if the token was revoked and has not expired yet."""
        if not self._cache_loaded:
            await self.load_cache(db)
        await self._cleanup_if_needed(db)

        token_hash = self.hash_token(token)
        expires_at = self._cache.get(token_hash)
        if expires_at is None:
            # Another worker may have revoked it since our cache load
            row = await db.get(RevokedToken, token_hash)
            if row is None:
                return False
            expires_at = as_utc(row.token_expires_at).timestamp()
            self._cache[token_hash] = expires_at

        if time.time() < expires_at:
            logger.warning("revoked_token_rejected", token_hash=token_hash[:16])
            return True

        del self._cache[token_hash]
        return False

    async def revoke_token(
        self,
        token: str,
        user_id: str,
        reason: str,
        token_exp: datetime,
        db: AsyncSession,
    ) -> None:
        """Revoke a token until its natural expiry. Idempotent."""
        token_hash = self.hash_token(token)
        await db.merge(
            RevokedToken(
                token_hash=token_hash,
                user_id=user_id,
                reason=reason,
                revoked_at=utc_now(),
                token_expires_at=token_exp,
            )
        )
        await db.commit()

        self._cache[token_hash] = token_exp.timestamp()
        logger.info(
            "token_revoked",
            token_hash=token_hash[:16],
            user_id=user_id,
            reason=reason,
            expires_at=token_exp.isoformat(),
        )

    async def _cleanup_if_needed(self, db: AsyncSession) -> None:
        """Periodically drop expired entries from cache and database."""
        now = time.time()
        if now - self._last_cleanup < self.CLEANUP_INTERVAL_SECONDS:
            return
        self._last_cleanup = now

        expired = [h for h, exp in self._cache.items() if now > exp]
        for token_hash in expired:
            del self._cache[token_hash]

        result = await db.execute(
            delete(RevokedToken).where(RevokedToken.token_expires_at < utc_now())
        )
        await db.commit()
        rows_deleted = result.rowcount or 0  # type: ignore[attr-defined]

        if expired or rows_deleted:
            logger.info(
                "revoked_tokens_cleanup", cache_removed=len(expired), db_removed=rows_deleted
            )


# Global singleton
token_revocation_service = TokenRevocationService()
