"""
Google OAuth 2.0 client for Search Console connections.

Provides:
- Authorization URL generation (offline access, forced consent so Google
  always issues a refresh token)
- Code exchange and access token refresh against Google's token endpoint
- Signed OAuth state parameters (HS256 JWT) carrying the client ID and the
  post-connect return URL
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt

from ...models.gsc import utcnow
from .exceptions import GSCOAuthError
from .types import GSCTokens, OAuthState

logger = logging.getLogger(__name__)

GSC_SCOPES = [
    "https://www.googleapis.com/auth/webmasters.readonly",
    "https://www.googleapis.com/auth/webmasters",
]

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

STATE_ALGORITHM = "HS256"
STATE_MAX_AGE_SECONDS = 3600


def default_return_url(client_id: str) -> str:
    return f"/clients/{client_id}/gsc"


def encode_oauth_state(
    client_id: str,
    secret: str,
    return_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Build a signed state parameter for the authorization redirect.

    Args:
        client_id: Client the connection is for
        secret: HMAC signing secret
        return_url: Where to send the user afterwards
        now: Issue time (defaults to current UTC time)

    Returns:
        Compact JWT string
    """
    issued_at = now or utcnow()
    claims = {
        "client_id": client_id,
        "return_url": return_url or default_return_url(client_id),
        "iat": int(issued_at.timestamp()),
        "nonce": secrets.token_urlsafe(8),
    }
    return jwt.encode(claims, secret, algorithm=STATE_ALGORITHM)


def decode_oauth_state(
    state: str,
    secret: str,
    max_age_seconds: int = STATE_MAX_AGE_SECONDS,
    now: Optional[datetime] = None,
) -> Optional[OAuthState]:
    """
    Validate and parse a state parameter.

    Returns:
        OAuthState, or None if the state is malformed, tampered with, or
        older than max_age_seconds
    """
    try:
        claims = jwt.decode(state, secret, algorithms=[STATE_ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected OAuth state: {e}")
        return None

    if not claims.get("client_id") or not claims.get("return_url") or "iat" not in claims:
        logger.warning("Rejected OAuth state: missing claims")
        return None

    now = now or utcnow()
    issued_at = datetime.fromtimestamp(claims["iat"], tz=timezone.utc)
    if (now - issued_at).total_seconds() > max_age_seconds:
        logger.warning(f"Rejected OAuth state for client {claims['client_id']}: expired")
        return None

    return OAuthState(
        client_id=claims["client_id"],
        return_url=claims["return_url"],
        issued_at=issued_at,
        nonce=claims.get("nonce", ""),
    )


class GoogleOAuthClient:
    """
    Google token endpoint client.

    An httpx.AsyncClient may be injected (tests use httpx.MockTransport);
    otherwise one is created per request.
    """

    TIMEOUT = 30.0

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._http_client = http_client
        self.timeout = timeout
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise GSCOAuthError("GSC OAuth credentials not configured")

    def build_authorization_url(self, state: str, redirect_uri: Optional[str] = None) -> str:
        """Google consent screen URL for the Search Console scopes."""
        self._require_configured()
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri or self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GSC_SCOPES),
            "access_type": "offline",
            "prompt": "consent",  # Always ask, so a refresh token is issued
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def _post_token(self, form: Dict[str, str]) -> Dict[str, Any]:
        try:
            if self._http_client is not None:
                response = await self._http_client.post(GOOGLE_TOKEN_URL, data=form)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(GOOGLE_TOKEN_URL, data=form)
        except httpx.HTTPError as e:
            raise GSCOAuthError(f"Token endpoint unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            detail = body.get("error_description") or body.get("error") or response.text
            raise GSCOAuthError(f"Token request failed ({response.status_code}): {detail}")

        if "access_token" not in body:
            raise GSCOAuthError("Token response missing access_token")

        return body

    def _expires_at(self, body: Dict[str, Any]) -> datetime:
        return self._clock() + timedelta(seconds=int(body.get("expires_in", 3600)))

    async def exchange_code(self, code: str, redirect_uri: Optional[str] = None) -> GSCTokens:
        """
        Exchange an authorization code for tokens.

        Raises:
            GSCOAuthError: If the exchange fails or no refresh token is issued
        """
        self._require_configured()
        body = await self._post_token({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri or self.redirect_uri,
        })

        if not body.get("refresh_token"):
            raise GSCOAuthError("Token exchange did not return a refresh token")

        return GSCTokens(
            access_token=body["access_token"],
            refresh_token=body["refresh_token"],
            expires_at=self._expires_at(body),
            scope=body.get("scope", ""),
        )

    async def refresh_access_token(self, refresh_token: str) -> GSCTokens:
        """
        Obtain a new access token.

        Google usually omits refresh_token on refresh; the existing one is
        kept in that case.

        Raises:
            GSCOAuthError: If the refresh is rejected
        """
        self._require_configured()
        body = await self._post_token({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })

        return GSCTokens(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token") or refresh_token,
            expires_at=self._expires_at(body),
            scope=body.get("scope", ""),
        )
