"""Payment gateway HTTP client for card charges and refunds"""

import httpx
from dataclasses import dataclass
from typing import Any, Dict, Optional
from credit_ledger.domain.models import CardDetails
from credit_ledger.domain.exceptions import GatewayError
from credit_ledger.config import settings
from credit_ledger.utils.money import cents_to_dollars


@dataclass
class ChargeResult:
    success: bool
    transaction_id: str


@dataclass
class RefundResult:
    success: bool
    refund_transaction_id: str


class PaymentGatewayClient:
    """
    Client for the external card gateway.

    Failures are terminal for the attempt: nothing here retries, callers
    decide what state the attempted record is left in.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.gateway_api_base
        self.timeout = timeout or settings.http_timeout_seconds

    def charge_card(
        self,
        amount_cents: int,
        card: CardDetails,
        order_reference: Optional[str] = None,
    ) -> ChargeResult:
        """
        Charge raw card details or a saved gateway profile.

        Raises:
            GatewayError: On timeout, HTTP errors, decline, or invalid response
        """
        if card.is_saved_profile:
            body: Dict[str, Any] = {
                "action": "chargeSavedCard",
                "customerProfileId": card.customer_profile_id,
                "paymentProfileId": card.payment_profile_id,
            }
        else:
            body = {
                "payment": {
                    "type": "card",
                    "cardNumber": card.card_number,
                    "expirationDate": card.expiration_date,
                    "cvv": card.cvv,
                    "cardholderName": card.cardholder_name,
                },
            }
        body["amount"] = str(cents_to_dollars(amount_cents))
        body["orderId"] = order_reference

        data = self._post("/process-payment", body)
        try:
            return ChargeResult(success=True, transaction_id=str(data["transactionId"]))
        except KeyError as e:
            raise GatewayError(f"Invalid charge response from gateway: missing {e}") from e

    def refund(self, transaction_id: str, amount_cents: int, reason: Optional[str] = None) -> RefundResult:
        """
        Refund part or all of a settled transaction.

        Raises:
            GatewayError: On timeout, HTTP errors, rejection, or invalid response
        """
        data = self._post(
            "/refund-payment",
            {
                "transactionId": transaction_id,
                "amount": str(cents_to_dollars(amount_cents)),
                "reason": reason,
            },
        )
        try:
            return RefundResult(success=True, refund_transaction_id=str(data["refundTransactionId"]))
        except KeyError as e:
            raise GatewayError(f"Invalid refund response from gateway: missing {e}") from e

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        with httpx.Client(timeout=self.timeout) as client:
            try:
                response = client.post(f"{self.base_url}{path}", json=body)
                response.raise_for_status()
                data = response.json()
            except httpx.TimeoutException as e:
                raise GatewayError(f"Gateway timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise GatewayError(f"Gateway error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise GatewayError(f"Gateway unreachable: {e}") from e
            except ValueError as e:
                raise GatewayError(f"Invalid response from gateway: {e}") from e

        if not isinstance(data, dict):
            raise GatewayError("Invalid response from gateway: expected an object")
        if not data.get("success"):
            raise GatewayError(data.get("error") or "Gateway declined the request")
        return data
