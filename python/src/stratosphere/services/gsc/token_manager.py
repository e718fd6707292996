"""
Per-tenant OAuth token lifecycle for Search Console.

Guarantees that a token handed to a caller is valid for at least the
safety buffer (5 minutes). Concurrent requests that find an expired token
share a single refresh.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from ...models.gsc import utcnow
from ...monitoring.gsc_metrics import gsc_token_refreshes_total
from .exceptions import GSCOAuthError
from .oauth import GoogleOAuthClient, decode_oauth_state, encode_oauth_state
from .token_store import GSCTokenStore
from .types import ConnectionStatus, GSCTokens

logger = logging.getLogger(__name__)


class TokenManager:
    """
    Hands out valid access tokens and manages the OAuth connect flow.

    Refresh failures are reported as "no token" (None) so the access facade
    can fall back to mock data or raise GSCAuthUnavailableError.
    """

    EXPIRY_BUFFER_SECONDS = 300

    def __init__(
        self,
        token_store: GSCTokenStore,
        oauth_client: GoogleOAuthClient,
        state_secret: str,
        expiry_buffer_seconds: int = EXPIRY_BUFFER_SECONDS,
        state_max_age_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.token_store = token_store
        self.oauth_client = oauth_client
        self.state_secret = state_secret
        self.expiry_buffer = timedelta(seconds=expiry_buffer_seconds)
        self.state_max_age_seconds = state_max_age_seconds
        self._clock = clock
        # Entries vanish once no coroutine holds or waits on the lock
        self._refresh_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        lock = self._refresh_locks.get(tenant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[tenant_id] = lock
        return lock

    def _is_valid(self, tokens: GSCTokens) -> bool:
        return self._clock() + self.expiry_buffer < tokens.expires_at

    async def get_valid_token(self, tenant_id: str) -> Optional[str]:
        """
        Access token valid for at least the expiry buffer.

        Args:
            tenant_id: Client ID

        Returns:
            Access token, or None if the client is not connected or the
            refresh failed
        """
        tokens = await self.token_store.get(tenant_id)
        if tokens is None:
            return None
        if self._is_valid(tokens):
            return tokens.access_token

        async with self._lock_for(tenant_id):
            # Another task may have refreshed while we waited
            tokens = await self.token_store.get(tenant_id)
            if tokens is None:
                return None
            if self._is_valid(tokens):
                return tokens.access_token

            try:
                refreshed = await self.oauth_client.refresh_access_token(tokens.refresh_token)
            except GSCOAuthError as e:
                gsc_token_refreshes_total.labels(status="failure").inc()
                logger.error(f"Failed to refresh GSC token for client {tenant_id}: {e}")
                return None

            await self.token_store.upsert(tenant_id, refreshed)
            gsc_token_refreshes_total.labels(status="success").inc()
            logger.info(
                f"Refreshed GSC token for client {tenant_id}, "
                f"expires {refreshed.expires_at.isoformat()}"
            )
            return refreshed.access_token

    async def store(self, tenant_id: str, tokens: GSCTokens) -> None:
        """Persist tokens from a completed authorization."""
        await self.token_store.upsert(tenant_id, tokens)
        logger.info(f"GSC connected for client {tenant_id}")

    async def disconnect(self, tenant_id: str) -> bool:
        """Forget a client's tokens."""
        removed = await self.token_store.delete(tenant_id)
        logger.info(f"GSC disconnected for client {tenant_id} (removed={removed})")
        return removed

    async def connection_status(self, tenant_id: str) -> ConnectionStatus:
        tokens = await self.token_store.get(tenant_id)
        connected = tokens is not None
        has_credentials = self.oauth_client.is_configured
        return ConnectionStatus(
            connected=connected,
            has_credentials=has_credentials,
            expires_at=tokens.expires_at if tokens else None,
            can_connect=has_credentials and not connected,
        )

    def authorization_url(self, tenant_id: str, return_url: Optional[str] = None) -> str:
        """
        Consent URL for connecting a client.

        Raises:
            GSCOAuthError: If OAuth credentials are not configured
        """
        state = encode_oauth_state(
            tenant_id, self.state_secret, return_url=return_url, now=self._clock()
        )
        return self.oauth_client.build_authorization_url(state)

    async def complete_authorization(self, code: str, state: str) -> Tuple[str, str]:
        """
        Handle the OAuth callback.

        Returns:
            (client_id, return_url)

        Raises:
            GSCOAuthError: If the state is invalid or the code exchange fails
        """
        parsed = decode_oauth_state(
            state,
            self.state_secret,
            max_age_seconds=self.state_max_age_seconds,
            now=self._clock(),
        )
        if parsed is None:
            raise GSCOAuthError("Invalid or expired OAuth state")

        tokens = await self.oauth_client.exchange_code(code)
        await self.store(parsed.client_id, tokens)
        return parsed.client_id, parsed.return_url
