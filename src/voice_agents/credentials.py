"""Ephemeral session credentials.

The realtime service is opened with a short-lived secret minted by a local
session endpoint. The endpoint answers `{"client_secret": {"value": "..."}}`;
anything else means no credential is available.
"""

import logging
from typing import Any, Protocol

import aiohttp

from voice_agents.config import CredentialConfig
from voice_agents.errors import CredentialError
from voice_agents.recorder import EventLog

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Source of short-lived transport credentials."""

    async def fetch(self) -> str | None:
        """Return a credential, or None when the endpoint issued none.

        Raises:
            CredentialError: If the endpoint cannot be reached
        """
        ...


class HttpCredentialProvider:
    """Fetches the ephemeral key from the session endpoint with aiohttp."""

    def __init__(
        self,
        config: CredentialConfig,
        events: EventLog | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize provider.

        Args:
            config: Endpoint configuration
            events: Event log receiving request/response records
            session: Optional shared aiohttp session (owned by caller)
        """
        self._config = config
        self._events = events
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.request_timeout_s)
            )
            self._owns_session = True
        return self._session

    async def fetch(self) -> str | None:
        self._log({"type": "fetch_session_token_request"})

        session = await self._ensure_session()
        try:
            async with session.get(self._config.url) as resp:
                if resp.status >= 400:
                    raise CredentialError(
                        f"Session endpoint returned HTTP {resp.status}"
                    )
                data: Any = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise CredentialError(f"Session endpoint unreachable: {e}") from e
        except ValueError as e:
            raise CredentialError(f"Session endpoint returned invalid JSON: {e}") from e

        self._log({"type": "fetch_session_token_response", "data": data}, server=True)

        key = extract_client_secret(data)
        if key is None:
            logger.error("No ephemeral key provided by the server")
            self._log({"type": "error.no_ephemeral_key", "data": data}, server=True)
        return key

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None

    def _log(self, event: dict[str, Any], server: bool = False) -> None:
        if self._events is None:
            return
        if server:
            self._events.log_server_event(event)
        else:
            self._events.log_client_event(event)


def extract_client_secret(data: Any) -> str | None:
    """Pull `client_secret.value` out of a session endpoint response."""
    if not isinstance(data, dict):
        return None
    secret = data.get("client_secret")
    if not isinstance(secret, dict):
        return None
    value = secret.get("value")
    return value if isinstance(value, str) and value else None
