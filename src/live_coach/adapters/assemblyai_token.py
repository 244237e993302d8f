import logging
import time

import httpx

from live_coach.config import redact_secret
from live_coach.domain.errors import AuthFailure, ProtocolFailure, TransientFailure
from live_coach.ports.credentials import Credential

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URL = "https://api.assemblyai.com/v2/realtime/token"

AUTH_STATUS_CODES = {401, 403}
RATE_LIMITED = 429


class AssemblyAITokenBroker:
    def __init__(
        self,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_url = token_url
        self._timeout = timeout
        self._transport = transport

    async def fetch_token(self, api_key: str, ttl_seconds: int) -> Credential:
        if not api_key or not api_key.strip():
            raise AuthFailure("API key is not configured")

        logger.debug("Requesting %ds token with key %s", ttl_seconds, redact_secret(api_key))
        issued_at = time.time()
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self._token_url,
                    headers={"authorization": api_key},
                    json={"expires_in": ttl_seconds},
                )
        except httpx.TimeoutException as exc:
            raise TransientFailure(f"Token request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientFailure(f"Token request failed: {exc}") from exc

        status = response.status_code
        body = response.text
        if status in AUTH_STATUS_CODES:
            logger.error("Token request rejected (%d): %s", status, body)
            raise AuthFailure(f"Token request rejected ({status})", status_code=status, body=body)
        if status == RATE_LIMITED or status >= 500:
            logger.warning("Token request failed (%d), retryable: %s", status, body)
            raise TransientFailure(f"Token service unavailable ({status})", status_code=status, body=body)
        if not response.is_success:
            logger.error("Unexpected token response (%d): %s", status, body)
            raise ProtocolFailure(f"Unexpected token response ({status})", raw=body, status_code=status)

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("Token response is not JSON: %r", body)
            raise ProtocolFailure("Token response is not JSON", raw=body, status_code=status) from exc

        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            logger.error("Token response has no token: %r", body)
            raise ProtocolFailure("Token response has no token", raw=body, status_code=status)

        logger.info("Obtained streaming token valid for %ds", ttl_seconds)
        return Credential(token=token, ttl_seconds=ttl_seconds, issued_at=issued_at)
