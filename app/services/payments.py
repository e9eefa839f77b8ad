"""
Transaction store access.

All reads and writes of Transaction rows go through here. Each function works
on the Session it is given; scheduled work opens its own session per step.

Status changes are forward-only:
  PENDING → PROCESSING → SUCCESS | FAIL
completed_at is stamped exactly when a terminal status is written.
"""
import calendar
import math
from decimal import Decimal, localcontext
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app import models
from app.exceptions import InvalidTransition, RecordNotFound
from app.logging import get_logger
from app.models import TransactionStatus, utcnow
from app.schemas.requests import PaymentRequest

logger = get_logger("payments")

QUERY_AMOUNT_PLACES = Decimal("0.000001")
WEBHOOK_AMOUNT_PLACES = Decimal("0.01")


def create_transaction(db: Session, merchant: models.Merchant, request: PaymentRequest) -> models.Transaction:
    """Insert a PENDING transaction for a validated, signature-checked request."""
    txn = models.Transaction(
        merchant_id=merchant.id,
        merchant_reference=request.merchant_reference,
        currency=request.currency,
        amount=request.amount,
        network=request.network.value,
        subject=request.subject,
        customer_ip=request.customer_ip,
        customer_first_name=request.customer_first_name,
        customer_last_name=request.customer_last_name,
        customer_email=request.customer_email,
        customer_phone=request.customer_phone,
        customer_address=request.customer_address,
        customer_state=request.customer_state,
        customer_country=request.customer_country,
        customer_postal_code=request.customer_postal_code,
        notify_url=request.notify_url,
        return_url=request.return_url,
        status=TransactionStatus.PENDING.value,
        type="Sale",
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)

    logger.info(
        "transaction_created",
        transaction_id=txn.id,
        request_reference=txn.request_reference,
        merchant_reference=txn.merchant_reference,
    )
    return txn


def get_transaction(db: Session, transaction_id: str) -> Optional[models.Transaction]:
    return db.query(models.Transaction).filter(models.Transaction.id == transaction_id).first()


def require_transaction(db: Session, transaction_id: str) -> models.Transaction:
    txn = get_transaction(db, transaction_id)
    if txn is None:
        raise RecordNotFound(f"Transaction {transaction_id} not found")
    return txn


def get_by_request_reference(db: Session, request_reference: str) -> Optional[models.Transaction]:
    return db.query(models.Transaction).filter(
        models.Transaction.request_reference == request_reference
    ).first()


def find_by_merchant_reference(
    db: Session,
    merchant_reference: str,
    merchant_id: Optional[str] = None,
) -> List[models.Transaction]:
    """All transactions sharing a caller reference, oldest first."""
    query = db.query(models.Transaction).filter(
        models.Transaction.merchant_reference == merchant_reference
    )
    if merchant_id is not None:
        query = query.filter(models.Transaction.merchant_id == merchant_id)
    return query.order_by(models.Transaction.created_at.asc(), models.Transaction.id.asc()).all()


def advance_status(db: Session, txn: models.Transaction, status: TransactionStatus) -> models.Transaction:
    """
    Move a transaction forward.

    Raises:
        InvalidTransition: if status would stay put or move backwards
    """
    current = txn.transaction_status
    if status.rank <= current.rank:
        raise InvalidTransition(
            f"Transaction {txn.id} cannot move from {current.value} to {status.value}"
        )

    txn.status = status.value
    if status.is_terminal:
        txn.completed_at = utcnow()
    db.commit()
    db.refresh(txn)

    logger.info(
        "transaction_status_updated",
        transaction_id=txn.id,
        request_reference=txn.request_reference,
        status=status.value,
        completed_at=txn.completed_at.isoformat() if txn.completed_at else None,
    )
    return txn


def record_delivery_attempt(db: Session, txn: models.Transaction, confirmed: bool) -> models.Transaction:
    txn.delivery_attempts = (txn.delivery_attempts or 0) + 1
    txn.last_delivery_at = utcnow()
    if confirmed:
        txn.delivery_confirmed = True
    db.commit()
    db.refresh(txn)
    return txn


def list_transactions(db: Session, page: int = 1, limit: int = 20) -> Tuple[List[models.Transaction], Dict[str, int]]:
    page = max(page, 1)
    limit = max(limit, 1)
    total = db.query(models.Transaction).count()
    transactions = (
        db.query(models.Transaction)
        .order_by(models.Transaction.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit),
    }
    return transactions, pagination


def format_amount(amount: str, places: Decimal) -> str:
    value = Decimal(amount)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(value.as_tuple().digits) - places.as_tuple().exponent)
        return str(value.quantize(places))


def to_epoch(value) -> Optional[int]:
    if value is None:
        return None
    return calendar.timegm(value.utctimetuple())


def to_query_record(txn: models.Transaction) -> Dict:
    """Shape a transaction the way the payment query endpoint reports it."""
    return {
        "type": txn.type,
        "merchant_reference": txn.merchant_reference,
        "request_reference": txn.request_reference,
        "status": txn.transaction_status.code,
        "currency": txn.currency,
        "amount": format_amount(txn.amount, QUERY_AMOUNT_PLACES),
        "created_time": to_epoch(txn.created_at),
        "completed_time": to_epoch(txn.completed_at),
    }


def to_detail(txn: models.Transaction) -> Dict:
    return {
        "id": txn.id,
        "request_reference": txn.request_reference,
        "merchant_reference": txn.merchant_reference,
        "merchant_token": txn.merchant.merchant_token if txn.merchant else None,
        "type": txn.type,
        "amount": txn.amount,
        "currency": txn.currency,
        "network": txn.network,
        "status": txn.status,
        "status_code": txn.transaction_status.code,
        "subject": txn.subject,
        "notify_url": txn.notify_url,
        "return_url": txn.return_url,
        "delivery_attempts": txn.delivery_attempts,
        "delivery_confirmed": txn.delivery_confirmed,
        "last_delivery_at": txn.last_delivery_at,
        "created_at": txn.created_at,
        "completed_at": txn.completed_at,
    }
