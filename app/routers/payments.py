import html
from typing import Dict, List
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app import runtime
from app.database import get_db
from app.exceptions import InactiveMerchant, SignatureMismatch, UnknownMerchant
from app.logging import get_logger
from app.schemas.requests import PaymentRequest, QueryRequest
from app.schemas.responses import PaymentCreatedResponse, TransactionQueryRecord
from app.services import payments
from app.services.merchants import resolve_merchant
from app.services.signature import verify_request

router = APIRouter()
logger = get_logger("payment_routes")

REDIRECT_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8"/>
  <meta http-equiv="refresh" content="2;url={url}"/>
  <title>Processing Payment...</title>
</head>
<body>
  <h2>Processing Payment</h2>
  <p>Please wait while we process your payment...</p>
  <p>Reference: {reference}</p>
</body>
</html>
"""


async def read_fields(request: Request) -> Dict[str, str]:
    """Request body as a flat str → str mapping, from JSON or form encoding."""
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Malformed JSON body")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Body must be an object")
    else:
        body = dict(await request.form())
    return {key: str(value) for key, value in body.items() if value is not None}


def authenticate_merchant(db: Session, merchant_token: str):
    try:
        return resolve_merchant(db, merchant_token)
    except UnknownMerchant as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InactiveMerchant as e:
        raise HTTPException(status_code=403, detail=str(e))


def check_signature(fields: Dict[str, str], secret: str) -> None:
    try:
        verify_request(fields, secret)
    except SignatureMismatch as e:
        raise HTTPException(status_code=400, detail=str(e))


def validation_detail(error: ValidationError) -> str:
    messages = [
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in error.errors()
    ]
    return f"Validation failed: {', '.join(messages)}"


@router.post("/app/page/{merchant_token}")
async def create_payment(merchant_token: str, request: Request, db: Session = Depends(get_db)):
    """
    Accept a payment initiation.

    - Resolves the merchant (404 unknown, 403 inactive)
    - Validates the fields and the per-network rules (400)
    - Verifies the SHA-512 signature (400)
    - Creates a PENDING transaction and starts its lifecycle
    """
    merchant = authenticate_merchant(db, merchant_token)
    fields = await read_fields(request)

    try:
        payment = PaymentRequest(**fields)
    except ValidationError as e:
        logger.warning("payment_request_invalid", merchant_token=merchant_token)
        raise HTTPException(status_code=400, detail=validation_detail(e))

    network_errors = payment.network_errors()
    if network_errors:
        raise HTTPException(status_code=400, detail="; ".join(network_errors))

    check_signature(fields, merchant.signature_secret)

    txn = payments.create_transaction(db, merchant, payment)
    runtime.lifecycle.start(txn.id)

    if txn.return_url:
        # Customer is sent back straight away with the signed PENDING state
        signed = runtime.delivery_agent.build_payload(txn, merchant.signature_secret)
        separator = "&" if "?" in txn.return_url else "?"
        redirect_url = f"{txn.return_url}{separator}{urlencode(signed)}"
        return HTMLResponse(REDIRECT_PAGE.format(
            url=html.escape(redirect_url, quote=True),
            reference=html.escape(txn.request_reference),
        ))

    return PaymentCreatedResponse(
        request_reference=txn.request_reference,
        merchant_reference=txn.merchant_reference,
        status=txn.transaction_status.code,
    )


@router.post("/{merchant_token}/payment/query", response_model=List[TransactionQueryRecord])
async def query_payment(merchant_token: str, request: Request, db: Session = Depends(get_db)):
    """
    Return every transaction the merchant created under a merchant_reference,
    oldest first. An unknown reference yields an empty list.
    """
    merchant = authenticate_merchant(db, merchant_token)
    fields = await read_fields(request)

    try:
        query = QueryRequest(**fields)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=validation_detail(e))

    check_signature(fields, merchant.signature_secret)

    logger.info(
        "payment_query",
        merchant_token=merchant_token,
        merchant_reference=query.merchant_reference,
    )
    transactions = payments.find_by_merchant_reference(db, query.merchant_reference, merchant.id)
    return [payments.to_query_record(txn) for txn in transactions]
