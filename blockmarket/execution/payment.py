"""Payment annotation for orders via an optional wallet-signing provider.

Payment never gates the marketplace: callers ask the processor to settle an
order's price, and whatever happens (success, rejection, timeout, missing
wallet) the result is reduced to a ``payment_status`` annotation stored on the
order row.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from blockmarket.execution.errors import PaymentFailed, TransportError

PAID = "paid"
PENDING_PAYMENT = "pending_payment"


class WalletClient(Protocol):
    """Minimal surface area required to move value for an order."""

    async def transfer(self, order_id: str, amount: float, payer_id: str, payee_id: Optional[str]) -> Dict[str, Any]:
        ...


class NoopWalletClient:
    """Placeholder client that records intent without touching a payment rail."""

    async def transfer(self, order_id: str, amount: float, payer_id: str, payee_id: Optional[str]) -> Dict[str, Any]:
        return {"order_id": order_id, "submitted": False}


class PaymentProcessor:
    """Submit order payments through the configured wallet client."""

    def __init__(
        self,
        client: Optional[WalletClient] = None,
        logger: Optional[logging.Logger] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.client = client or NoopWalletClient()
        self.logger = logger or logging.getLogger(__name__)
        self.timeout_seconds = timeout_seconds

    async def settle(self, order_id: str, amount: float, payer_id: str, payee_id: Optional[str] = None) -> str:
        """Attempt payment and return the resulting payment status."""

        try:
            response = await asyncio.wait_for(
                self.client.transfer(order_id, amount, payer_id, payee_id),
                timeout=self.timeout_seconds,
            )
            self._raise_for_response(order_id, response)
        except asyncio.TimeoutError:
            self.logger.warning(
                "Payment timed out for %s", order_id,
                extra={"event": "payment_timeout", "order_id": order_id, "amount": amount},
            )
            return PENDING_PAYMENT
        except (PaymentFailed, TransportError) as exc:
            self.logger.warning(
                "Payment failed for %s: %s", order_id, exc,
                extra={"event": "payment_failed", "order_id": order_id, "amount": amount},
            )
            return PENDING_PAYMENT
        except Exception as exc:  # wallet libraries raise their own error types
            self.logger.exception(
                "Wallet client error for %s: %s", order_id, exc,
                extra={"event": "payment_failed", "order_id": order_id, "amount": amount},
            )
            return PENDING_PAYMENT

        if not response or not response.get("submitted", True):
            return PENDING_PAYMENT
        return PAID

    def _raise_for_response(self, order_id: str, response: Optional[Dict[str, Any]]) -> None:
        if not response:
            return
        status = response.get("status") or response.get("state")
        if status and str(status).lower() in {"reject", "rejected", "error", "failed"}:
            raise PaymentFailed(f"Wallet rejected payment for {order_id}: {status}")
        if response.get("error"):
            raise PaymentFailed(str(response["error"]))


__all__ = ["WalletClient", "NoopWalletClient", "PaymentProcessor", "PAID", "PENDING_PAYMENT"]
