"""Persistence for per-client Search Console OAuth tokens."""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...database import upsert_statement
from ...models.gsc import ClientGSCToken, ensure_utc, utcnow
from .types import GSCTokens

logger = logging.getLogger(__name__)


class GSCTokenStore:
    """Reads and writes rows in client_gsc_tokens."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def get(self, tenant_id: str) -> Optional[GSCTokens]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ClientGSCToken).where(ClientGSCToken.client_id == tenant_id)
            )
            record = result.scalars().first()

        if record is None:
            return None

        return GSCTokens(
            access_token=record.access_token,
            refresh_token=record.refresh_token,
            expires_at=ensure_utc(record.expires_at),
            scope=record.scope or "",
        )

    async def upsert(self, tenant_id: str, tokens: GSCTokens) -> None:
        """Insert or replace the token record for a client."""
        now = self._clock()
        async with self._session_factory() as session:
            stmt = upsert_statement(session, ClientGSCToken.__table__).values(
                client_id=tenant_id,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                expires_at=ensure_utc(tokens.expires_at),
                scope=tokens.scope,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["client_id"],
                set_={
                    "access_token": stmt.excluded.access_token,
                    "refresh_token": stmt.excluded.refresh_token,
                    "expires_at": stmt.excluded.expires_at,
                    "scope": stmt.excluded.scope,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)
            await session.commit()

        logger.debug(f"Stored GSC tokens for client {tenant_id}")

    async def delete(self, tenant_id: str) -> bool:
        """Remove a client's tokens. Returns True if a row was deleted."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ClientGSCToken).where(ClientGSCToken.client_id == tenant_id)
            )
            await session.commit()
        return bool(result.rowcount)
