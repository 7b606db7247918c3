"""
Authenticator - Obtains and reuses the LibreLinkUp bearer token.

The token lives in memory only and is replaced wholesale when it ages past
token_ttl or when a data endpoint rejects it.
"""

import asyncio

from loguru import logger

from glucolink.datasource.libreview import LibreLinkUpClient
from glucolink.exceptions import (
    NoCredentialsError,
    RateLimitError,
    ServiceError,
)
from glucolink.models import AuthToken
from glucolink.services.clock import Clock, SystemClock
from glucolink.services.throttler import Throttler


class Authenticator:
    def __init__(
        self,
        client: LibreLinkUpClient,
        throttler: Throttler,
        username: str,
        password: str,
        token_ttl: float = 50 * 60.0,
        clock: Clock | None = None,
    ):
        self._client = client
        self._throttler = throttler
        self._username = username
        self._password = password
        self._token_ttl = token_ttl
        self._clock = clock or SystemClock()
        self._token: AuthToken | None = None
        self._lock = asyncio.Lock()
        self.login_count = 0

    @property
    def has_valid_token(self) -> bool:
        return self._token is not None and self._token.is_valid(
            self._clock.monotonic(), self._token_ttl
        )

    async def get_token(self) -> AuthToken:
        """
        Return a valid token, logging in only when the cached one expired.

        Raises:
            InvalidCredentialsError: Credentials missing or rejected
            RateLimitError: Still rate limited after one retry
            ServiceError: Any other login failure
        """
        async with self._lock:
            if self._token is not None and self._token.is_valid(
                self._clock.monotonic(), self._token_ttl
            ):
                return self._token

            if not self._username or not self._password:
                raise NoCredentialsError()

            self._token = await self._login()
            return self._token

    async def _login(self) -> AuthToken:
        try:
            return await self._attempt_login()
        except RateLimitError as e:
            # One immediate retry after the throttler-mandated wait
            logger.warning(f"Login rate limited, retrying once: {e}")
            await self._throttler.backoff(e.retry_after)
        return await self._attempt_login()

    async def _attempt_login(self) -> AuthToken:
        await self._throttler.wait_turn()
        logger.info("Authenticating with LibreLinkUp...")
        self.login_count += 1
        try:
            token = await self._client.login(self._username, self._password)
        except RateLimitError:
            self._throttler.record_outcome(False)
            raise
        except ServiceError as e:
            self._throttler.record_outcome(False)
            logger.error(f"Login failed: {e}")
            raise

        self._throttler.record_outcome(True)
        logger.info("Authentication successful")
        return AuthToken(token=token, issued_at=self._clock.monotonic())

    def invalidate(self) -> None:
        """Drop the cached token so the next call logs in again."""
        if self._token is not None:
            logger.debug("Auth token invalidated")
        self._token = None

    async def check_credentials(self) -> bool:
        """Force a login to verify the stored credentials."""
        self.invalidate()
        await self.get_token()
        return True
