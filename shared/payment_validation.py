"""
Payment validation client.

Asks the client scoring service whether a client must prepay online before
booking. The engine consumes the result as a PaymentDecision value object.

Decision rules:
- No score on record (new client): either payment method is allowed
- star_rating above the trusted threshold: either payment method is allowed
- Otherwise: online payment is required, scoring details are attached

The gate fails open: any error, timeout or open circuit yields a decision
that does not require payment, with `degraded=True` so callers can surface a
warning.
"""

import asyncio
import logging
from typing import Any

import httpx
import pybreaker
from pydantic import BaseModel, Field
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.circuit_breaker import call_with_breaker, payment_validation_breaker
from shared.config import get_settings

logger = logging.getLogger(__name__)


class ClientScoring(BaseModel):
    star_rating: float
    total_bookings: int = 0
    attended_count: int = 0
    no_show_count: int = 0


class PaymentDecision(BaseModel):
    """Outcome of the payment gate for one client."""

    requires_online_payment: bool = False
    allowed_methods: list[str] = Field(default_factory=lambda: ["local", "online"])
    scoring: ClientScoring | None = None
    reason: str | None = None
    degraded: bool = False

    @classmethod
    def allow_all(cls, reason: str | None = None, degraded: bool = False) -> "PaymentDecision":
        return cls(reason=reason, degraded=degraded)


class PaymentValidationClient:
    """
    HTTP client for the client scoring service.

    Example:
        >>> client = PaymentValidationClient()
        >>> decision = await client.evaluate(email="ana@example.com", phone=None)
        >>> decision.requires_online_payment
        False
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        trusted_rating: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url if base_url is not None else settings.PAYMENT_VALIDATION_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.PAYMENT_VALIDATION_TIMEOUT_SECONDS
        self.trusted_rating = (
            trusted_rating if trusted_rating is not None else settings.PAYMENT_VALIDATION_TRUSTED_RATING
        )
        self._transport = transport

    async def evaluate(self, email: str | None, phone: str | None) -> PaymentDecision:
        if not self.base_url:
            return PaymentDecision.allow_all(reason="Validación de pago deshabilitada")
        if not email and not phone:
            return PaymentDecision.allow_all(reason="Cliente sin datos de contacto")

        try:
            async with asyncio.timeout(self.timeout_seconds):
                payload = await call_with_breaker(
                    payment_validation_breaker, self._fetch_score, email, phone
                )
        except pybreaker.CircuitBreakerError:
            logger.warning("Payment validation circuit open, allowing all payment methods")
            return PaymentDecision.allow_all(reason="Servicio de validación no disponible", degraded=True)
        except TimeoutError:
            logger.warning(
                f"Payment validation timed out after {self.timeout_seconds}s, allowing all payment methods"
            )
            return PaymentDecision.allow_all(reason="Servicio de validación no disponible", degraded=True)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Payment validation failed: {e}", exc_info=True)
            return PaymentDecision.allow_all(reason="Servicio de validación no disponible", degraded=True)

        return self.decide(payload.get("score"))

    def decide(self, score: dict[str, Any] | None) -> PaymentDecision:
        if not score:
            return PaymentDecision.allow_all(reason="Cliente nuevo, sin historial")

        scoring = ClientScoring(
            star_rating=score.get("starRating", score.get("star_rating", 0)),
            total_bookings=score.get("totalBookings", score.get("total_bookings", 0)),
            attended_count=score.get("attendedCount", score.get("attended_count", 0)),
            no_show_count=score.get("noShowCount", score.get("no_show_count", 0)),
        )
        if scoring.star_rating > self.trusted_rating:
            return PaymentDecision(scoring=scoring, reason="Cliente confiable")

        return PaymentDecision(
            requires_online_payment=True,
            allowed_methods=["online"],
            scoring=scoring,
            reason=(
                f"Calificación {scoring.star_rating:.1f} estrellas "
                f"({scoring.no_show_count} ausencias en {scoring.total_bookings} turnos)"
            ),
        )

    # All attempts must fit inside PAYMENT_VALIDATION_TIMEOUT_SECONDS
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=1),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _fetch_score(self, email: str | None, phone: str | None) -> dict[str, Any]:
        params = {k: v for k, v in {"email": email, "phone": phone}.items() if v}
        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.get(
                    f"{self.base_url}/clients/score",
                    params=params,
                    timeout=self.timeout_seconds,
                )
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as e:
                logger.error(f"HTTP error fetching client score: {e}")
                raise
