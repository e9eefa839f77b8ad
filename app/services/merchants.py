from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app import models
from app.exceptions import InactiveMerchant, UnknownMerchant
from app.logging import get_logger

logger = get_logger("merchants")


def resolve_merchant(db: Session, merchant_token: str) -> models.Merchant:
    """
    Look up the merchant a request is addressed to.

    Raises:
        UnknownMerchant: no merchant has this token
        InactiveMerchant: merchant exists but is switched off
    """
    merchant = db.query(models.Merchant).filter(
        models.Merchant.merchant_token == merchant_token
    ).first()

    if merchant is None:
        logger.warning("merchant_not_found", merchant_token=merchant_token)
        raise UnknownMerchant("Invalid merchant token")

    if not merchant.active:
        logger.warning("inactive_merchant_access", merchant_token=merchant_token)
        raise InactiveMerchant("Merchant is inactive")

    return merchant


def create_merchant(
    db: Session,
    name: str,
    merchant_token: Optional[str] = None,
    signature_secret: Optional[str] = None,
    active: bool = True,
) -> models.Merchant:
    merchant = models.Merchant(name=name, active=active)
    if merchant_token:
        merchant.merchant_token = merchant_token
    if signature_secret:
        merchant.signature_secret = signature_secret
    db.add(merchant)
    db.commit()
    db.refresh(merchant)
    logger.info("merchant_created", merchant_id=merchant.id, merchant_token=merchant.merchant_token)
    return merchant


def ensure_merchant(db: Session, name: str, merchant_token: str, signature_secret: str) -> models.Merchant:
    """Create the merchant unless one with this token already exists."""
    merchant = db.query(models.Merchant).filter(
        models.Merchant.merchant_token == merchant_token
    ).first()
    if merchant is not None:
        return merchant
    return create_merchant(db, name, merchant_token, signature_secret)


def list_merchants(db: Session) -> List[Dict]:
    counts = dict(
        db.query(models.Transaction.merchant_id, func.count(models.Transaction.id))
        .group_by(models.Transaction.merchant_id)
        .all()
    )
    merchants = db.query(models.Merchant).order_by(models.Merchant.created_at.asc()).all()
    return [
        {
            "id": m.id,
            "merchant_token": m.merchant_token,
            "name": m.name,
            "active": m.active,
            "created_at": m.created_at,
            "transaction_count": counts.get(m.id, 0),
        }
        for m in merchants
    ]
