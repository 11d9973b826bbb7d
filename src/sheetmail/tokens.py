"""Anti-forgery token acquisition for the dispatch endpoint."""

import logging
from enum import Enum
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import TokenFetchError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TIMEOUT = 10.0


class TokenState(str, Enum):
    """Lifecycle of the cached token."""

    UNINITIALIZED = "uninitialized"
    FETCHING = "fetching"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    csrf_token: str = Field(..., min_length=1, strict=True)


def derive_token_url(endpoint: str, token_script: str = "get_csrf.php") -> str:
    """Replace the last path segment of the dispatch endpoint with the token script."""
    return str(httpx.URL(endpoint).join(token_script))


class TokenManager:
    """Fetches the anti-forgery token once and caches it for the session.

    Failures are never raised: the manager moves to ``UNAVAILABLE``, keeps
    the error in :attr:`last_error` and callers dispatch without a token.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_url: str,
        timeout: float = DEFAULT_TOKEN_TIMEOUT,
    ):
        self._client = client
        self.token_url = token_url
        self.timeout = timeout
        self.state = TokenState.UNINITIALIZED
        self.last_error: Optional[TokenFetchError] = None
        self._token: Optional[str] = None

    @property
    def token(self) -> Optional[str]:
        return self._token if self.state is TokenState.AVAILABLE else None

    async def acquire(self) -> Optional[str]:
        """Request a fresh token; returns None if it cannot be obtained."""
        self.state = TokenState.FETCHING
        logger.debug(f"Fetching anti-forgery token from {self.token_url}")
        try:
            token = await self._request_token()
        except TokenFetchError as e:
            self._token = None
            self.last_error = e
            self.state = TokenState.UNAVAILABLE
            logger.log(e.log_level, f"Failed to fetch anti-forgery token, continuing without it: {e.message}")
            return None

        self._token = token
        self.last_error = None
        self.state = TokenState.AVAILABLE
        logger.info("Anti-forgery token fetched successfully")
        return token

    async def ensure(self) -> Optional[str]:
        """Return the cached token, acquiring it once if none is cached."""
        if self.state is TokenState.AVAILABLE:
            return self._token
        return await self.acquire()

    async def _request_token(self) -> str:
        context = {"token_url": self.token_url}
        try:
            response = await self._client.get(
                self.token_url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TokenFetchError(
                f"Token request timed out after {self.timeout}s", cause=e, context=context
            )
        except httpx.HTTPError as e:
            raise TokenFetchError(f"Token request failed: {e}", cause=e, context=context)

        if response.status_code != 200:
            raise TokenFetchError(
                f"Token endpoint returned HTTP {response.status_code}",
                context={**context, "status_code": response.status_code}
            )

        try:
            return TokenResponse.model_validate(response.json()).csrf_token
        except (ValueError, ValidationError) as e:
            raise TokenFetchError(f"Malformed token response: {e}", cause=e, context=context)
