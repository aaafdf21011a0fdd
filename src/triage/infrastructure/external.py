"""
Triage External Service Adapters
==================================

Email notifier used by the workflow's notification steps.

Delivery goes through an HTTP send API (Mailtrap-compatible payload) with:
- Circuit breaker to stop hammering a failing provider
- Exponential backoff retry
- Timeout handling

The notifier is best-effort: ``send`` logs failures and returns False,
it never raises.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from src.config import settings
from src.shared.infrastructure.logging import get_logger
from src.triage.application import INotifier

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Opens after consecutive failures, half-opens after a cool-down."""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._state = CircuitState.CLOSED

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class EmailNotifier(INotifier):
    """
    Email delivery over an HTTP send API.

    Without an API token every send is skipped and reported as not
    delivered, which the workflow treats as a best-effort failure.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        from_address: Optional[str] = None,
        from_name: Optional[str] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self._api_url = api_url or settings.mail_api_url
        self._api_token = api_token if api_token is not None else settings.mail_api_token
        self._from_address = from_address or settings.mail_from_address
        self._from_name = from_name or settings.mail_from_name
        self._max_retries = max_retries or settings.mail_max_retries
        self._backoff_seconds = backoff_seconds
        self._http_client = http_client
        self._circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=60)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.mail_timeout_seconds)
        return self._http_client

    def _build_message(self, to: str, subject: str, body: str) -> Dict[str, Any]:
        return {
            "from": {"email": self._from_address, "name": self._from_name},
            "to": [{"email": to}],
            "subject": subject,
            "text": body,
            "category": "ticket-triage",
        }

    async def send(self, to: str, subject: str, body: str) -> bool:
        """
        Send an email.

        Returns:
            True if the provider accepted the message, False otherwise
        """
        if not self._api_token:
            logger.info("Mail API token not configured, skipping email", extra={"subject": subject})
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning("Circuit breaker open, skipping email", extra={"subject": subject})
            return False

        message = self._build_message(to, subject, body)
        headers = {"Authorization": f"Bearer {self._api_token}"}

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._api_url, json=message, headers=headers)

                if 200 <= response.status_code < 300:
                    self._circuit_breaker.record_success()
                    logger.info("Email sent", extra={"subject": subject, "attempt": attempt + 1})
                    return True

                logger.warning(
                    "Mail API returned non-2xx",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
                if 400 <= response.status_code < 500 and response.status_code != 429:
                    break  # retrying a rejected message cannot help

            except httpx.HTTPError as e:
                logger.error(
                    "Email delivery failed",
                    extra={"error": str(e), "attempt": attempt + 1, "subject": subject}
                )

            if attempt < self._max_retries - 1 and self._backoff_seconds > 0:
                await asyncio.sleep(self._backoff_seconds * (2 ** attempt))

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
