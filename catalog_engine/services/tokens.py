"""API token governance: encrypted storage, active token selection, usage audit."""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_engine import metrics
from catalog_engine.db.encryption import DecryptionError, decrypt_value, encrypt_value, mask_token
from catalog_engine.db.models import ApiToken, TokenProvider, TokenUsageLog

logger = logging.getLogger(__name__)


class TokenService:
    """
    Stores provider credentials encrypted and logs every use.

    Selection among several usable tokens is newest first (created_at, then
    id). Integrity problems (decrypt failure, missing token) degrade to
    "no credential" instead of raising.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.now = now

    def _active_query(self, provider: str):
        now = self.now()
        return (
            select(ApiToken)
            .where(
                ApiToken.provider == provider,
                ApiToken.active.is_(True),
                or_(ApiToken.expires_at.is_(None), ApiToken.expires_at > now),
            )
            .order_by(ApiToken.created_at.desc(), ApiToken.id.desc())
            .limit(1)
        )

    async def _get_active(self, provider: str) -> Optional[ApiToken]:
        async with self.session_factory() as db:
            result = await db.execute(self._active_query(TokenProvider(provider).value))
            return result.scalar_one_or_none()

    async def get_active_token(self, provider: str) -> Optional[str]:
        """
        Decrypted value of the provider's active, non-expired token.

        Args:
            provider: openai, gemini or medusa

        Returns:
            Plaintext token or None
        """
        try:
            token = await self._get_active(provider)
        except Exception as e:
            logger.error(f"Error getting token for provider {provider}: {e}")
            return None

        if token is None:
            return None

        try:
            return decrypt_value(token.token_value_encrypted)
        except DecryptionError as e:
            logger.error(f"Failed to decrypt token {token.id}: {e}")
            return None

    async def get_active_token_id(self, provider: str) -> Optional[int]:
        """Id of the token get_active_token would use, for usage logging."""
        try:
            token = await self._get_active(provider)
        except Exception as e:
            logger.error(f"Error getting token id for provider {provider}: {e}")
            return None
        return token.id if token else None

    async def log_usage(
        self,
        token_id: int,
        provider: str,
        process_name: str,
        record_count: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Record one use of a token.

        Skips (with a warning) when the token is missing or inactive. Never
        raises: usage logging must not break the operation being logged.
        """
        try:
            async with self.session_factory() as db:
                token = await db.get(ApiToken, token_id)
                if token is None or not token.active:
                    logger.warning(f"Token {token_id} not found or inactive, skipping usage log")
                    metrics.record_token_usage(provider, "skipped")
                    return

                db.add(
                    TokenUsageLog(
                        token_id=token_id,
                        provider=provider,
                        process_name=process_name,
                        record_count=record_count,
                        details=details,
                        used_at=self.now(),
                    )
                )
                await db.commit()

            metrics.record_token_usage(provider, "written")
            logger.info(f"Token usage logged: {process_name} using {provider} token")
        except Exception as e:
            metrics.record_token_usage(provider, "failed")
            logger.error(f"Failed to log token usage: {e}")

    async def create_token(
        self,
        provider: str,
        token_value: str,
        expires_at: Optional[datetime] = None,
    ) -> ApiToken:
        """Encrypt and store a new token."""
        token = ApiToken(
            provider=TokenProvider(provider).value,
            token_value_encrypted=encrypt_value(token_value),
            expires_at=expires_at,
            active=True,
            created_at=self.now(),
        )
        async with self.session_factory() as db:
            db.add(token)
            await db.commit()
            await db.refresh(token)
        logger.info(f"Stored {provider} token {token.id} ({mask_token(token_value)})")
        return token

    async def deactivate_token(self, token_id: int) -> bool:
        """Soft delete. Returns False when the token does not exist."""
        async with self.session_factory() as db:
            token = await db.get(ApiToken, token_id)
            if token is None:
                return False
            token.active = False
            await db.commit()
        return True

    async def list_tokens(self) -> list[dict[str, Any]]:
        """All tokens with their values masked."""
        async with self.session_factory() as db:
            result = await db.execute(select(ApiToken).order_by(ApiToken.created_at))
            tokens = result.scalars().all()

        views = []
        for token in tokens:
            try:
                masked = mask_token(decrypt_value(token.token_value_encrypted))
            except DecryptionError:
                masked = "****"
            views.append(
                {
                    "id": token.id,
                    "provider": token.provider,
                    "token_value": masked,
                    "active": token.active,
                    "expires_at": token.expires_at,
                    "created_at": token.created_at,
                }
            )
        return views

    async def usage_stats(
        self,
        token_id: Optional[int] = None,
        provider: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Aggregate usage logs: call count, records processed, calls per provider."""
        conditions = []
        if token_id is not None:
            conditions.append(TokenUsageLog.token_id == token_id)
        if provider is not None:
            conditions.append(TokenUsageLog.provider == provider)
        if start is not None:
            conditions.append(TokenUsageLog.used_at >= start)
        if end is not None:
            conditions.append(TokenUsageLog.used_at <= end)

        query = (
            select(
                TokenUsageLog.provider,
                func.count(TokenUsageLog.id),
                func.coalesce(func.sum(TokenUsageLog.record_count), 0),
            )
            .where(*conditions)
            .group_by(TokenUsageLog.provider)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(query)).all()

        by_provider = {row[0]: int(row[1]) for row in rows}
        return {
            "total_calls": sum(by_provider.values()),
            "total_records": sum(int(row[2]) for row in rows),
            "by_provider": by_provider,
        }
