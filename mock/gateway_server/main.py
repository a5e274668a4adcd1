from fastapi import FastAPI
from pydantic import BaseModel
from typing import Any, Dict, Optional
from decimal import Decimal
import itertools

app = FastAPI(title="Mock Payment Gateway", version="1.0.0")

# Cards ending in 0002 are declined, like the usual gateway sandbox numbers
DECLINED_SUFFIX = "0002"
_ids = itertools.count(1)
_charges: Dict[str, str] = {}


class ChargeBody(BaseModel):
    amount: str
    orderId: Optional[str] = None
    action: Optional[str] = None
    customerProfileId: Optional[str] = None
    paymentProfileId: Optional[str] = None
    payment: Optional[Dict[str, Any]] = None


class RefundBody(BaseModel):
    transactionId: str
    amount: str
    reason: Optional[str] = None


@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/process-payment")
def process_payment(body: ChargeBody):
    if body.action == "chargeSavedCard":
        if not (body.customerProfileId and body.paymentProfileId):
            return {"success": False, "error": "Saved card profile is incomplete"}
    else:
        card_number = (body.payment or {}).get("cardNumber") or ""
        if not card_number:
            return {"success": False, "error": "Card number is required"}
        if card_number.endswith(DECLINED_SUFFIX):
            return {"success": False, "error": "This transaction has been declined"}

    transaction_id = f"mock_txn_{next(_ids)}"
    _charges[transaction_id] = body.amount
    return {"success": True, "transactionId": transaction_id}

@app.post("/refund-payment")
def refund_payment(body: RefundBody):
    charged = _charges.get(body.transactionId)
    if charged is None:
        return {"success": False, "error": f"Unknown transaction {body.transactionId}"}
    if Decimal(body.amount) > Decimal(charged):
        return {"success": False, "error": "Refund exceeds the settled amount"}
    return {"success": True, "refundTransactionId": f"mock_rf_{next(_ids)}"}
