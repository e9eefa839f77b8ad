"""
Seeds the database with the default merchant and sample transactions.

Distribution:
- 2 fixed samples (one settled Alipay sale, one pending credit card sale)
- 40 random sales across all networks, ~70% SUCCESS, ~20% FAIL, rest in flight
- A few merchant_reference values reused to mimic caller retries
"""
import sys
import os
import random
from datetime import timedelta

# Allow running from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import settings
from app.database import engine, SessionLocal
from app import models
from app.models import Network, TransactionStatus, utcnow
from app.services.merchants import ensure_merchant

random.seed(42)

NETWORKS = [n.value for n in Network]
STATUSES = (
    [TransactionStatus.SUCCESS] * 70 +
    [TransactionStatus.FAIL] * 20 +
    [TransactionStatus.PROCESSING] * 5 +
    [TransactionStatus.PENDING] * 5
)


def make_transaction(merchant, merchant_reference, amount, network, status, created_at, **extra):
    currency = extra.pop("currency", "HKD")
    return models.Transaction(
        merchant_id=merchant.id,
        merchant_reference=merchant_reference,
        currency=currency,
        amount=amount,
        network=network,
        subject=extra.pop("subject", f"Sample {network} Payment"),
        status=status.value,
        customer_ip="123.123.123.123",
        customer_first_name=extra.pop("customer_first_name", "John"),
        customer_last_name=extra.pop("customer_last_name", "Doe"),
        customer_email=extra.pop("customer_email", "john@example.com"),
        customer_phone="0123123123",
        notify_url="https://example.com/notify",
        return_url="https://example.com/return",
        created_at=created_at,
        completed_at=created_at + timedelta(seconds=3) if status.is_terminal else None,
        **extra,
    )


def generate_transactions(merchant):
    now = utcnow()
    transactions = [
        make_transaction(
            merchant, "SAMPLE-001", "100.00", "Alipay", TransactionStatus.SUCCESS,
            now - timedelta(days=1),
        ),
        make_transaction(
            merchant, "SAMPLE-002", "50.00", "CreditCard", TransactionStatus.PENDING,
            now - timedelta(hours=1),
            currency="USD",
            subject="Sample Credit Card Payment",
            customer_first_name="Jane",
            customer_last_name="Smith",
            customer_email="jane@example.com",
            customer_address="123 Main Street",
            customer_state="CA",
            customer_country="US",
            customer_postal_code="90210",
        ),
    ]

    retry_refs = [f"RETRY-{i:03d}" for i in range(5)]
    for i in range(40):
        network = random.choice(NETWORKS)
        amount = f"{random.uniform(30, 5000):.2f}"
        reference = random.choice(retry_refs) if i % 4 == 0 else f"ORDER-{i:04d}"
        extra = {}
        if network in ("CreditCard", "Atome"):
            extra = {
                "customer_address": "1, Bay Street",
                "customer_country": "US",
                "customer_postal_code": "10001",
            }
        transactions.append(make_transaction(
            merchant, reference, amount, network, random.choice(STATUSES),
            now - timedelta(minutes=random.randint(5, 72 * 60)),
            **extra,
        ))

    return transactions


def main():
    print("Creating database tables...")
    models.Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        merchant = ensure_merchant(
            db,
            name=settings.default_merchant.name,
            merchant_token=settings.default_merchant.token,
            signature_secret=settings.default_merchant.secret,
        )
        print(f"Default merchant: {merchant.name} ({merchant.merchant_token})")

        existing = db.query(models.Transaction).count()
        if existing > 0:
            print(f"Database already has {existing} transactions. Skipping seed.")
            return

        print("Generating transactions...")
        db.add_all(generate_transactions(merchant))
        db.commit()

        count = db.query(models.Transaction).count()
        print(f"Successfully seeded {count} transactions.")

        from sqlalchemy import func as sqlfunc
        statuses = db.query(
            models.Transaction.status,
            sqlfunc.count(models.Transaction.id)
        ).group_by(models.Transaction.status).all()
        print("\nStatus distribution:")
        for status, cnt in statuses:
            print(f"  {status}: {cnt}")

    finally:
        db.close()


if __name__ == "__main__":
    main()
