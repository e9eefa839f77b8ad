import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.database import Base


def utcnow():
    """Naive UTC timestamp; SQLite does not keep tz info."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_id():
    return uuid.uuid4().hex


def generate_reference():
    return str(uuid.uuid4())


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"

    @property
    def code(self) -> str:
        """Single-character code used on the wire."""
        return STATUS_CODES[self]

    @property
    def rank(self) -> int:
        return STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.SUCCESS, TransactionStatus.FAIL)


STATUS_CODES = {
    TransactionStatus.PENDING: "0",
    TransactionStatus.SUCCESS: "1",
    TransactionStatus.FAIL: "2",
    TransactionStatus.PROCESSING: "4",
}

STATUS_RANK = {
    TransactionStatus.PENDING: 0,
    TransactionStatus.PROCESSING: 1,
    TransactionStatus.SUCCESS: 2,
    TransactionStatus.FAIL: 2,
}


class Network(str, enum.Enum):
    ALIPAY = "Alipay"
    WECHATPAY = "WechatPay"
    CUP = "CUP"
    CREDIT_CARD = "CreditCard"
    ATOME = "Atome"


class Merchant(Base):
    __tablename__ = "merchants"

    id = Column(String, primary_key=True, default=generate_id)
    merchant_token = Column(String, nullable=False, unique=True, index=True, default=generate_reference)
    signature_secret = Column(String, nullable=False, default=generate_reference)
    name = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    transactions = relationship("Transaction", back_populates="merchant")


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=generate_id)
    request_reference = Column(String, nullable=False, unique=True, index=True, default=generate_reference)
    merchant_id = Column(String, ForeignKey("merchants.id"), nullable=False, index=True)
    merchant_reference = Column(String(36), nullable=False, index=True)
    type = Column(String, nullable=False, default="Sale")
    amount = Column(String, nullable=False)  # verbatim two-decimal input
    currency = Column(String(3), nullable=False)
    network = Column(String, nullable=False)
    status = Column(String, nullable=False, default=TransactionStatus.PENDING.value)
    subject = Column(String, nullable=True)
    customer_ip = Column(String, nullable=True)
    customer_first_name = Column(String, nullable=True)
    customer_last_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    customer_address = Column(String, nullable=True)
    customer_state = Column(String(2), nullable=True)
    customer_country = Column(String(2), nullable=True)
    customer_postal_code = Column(String, nullable=True)
    notify_url = Column(String, nullable=False)
    return_url = Column(String, nullable=True)
    delivery_attempts = Column(Integer, nullable=False, default=0)
    delivery_confirmed = Column(Boolean, nullable=False, default=False)
    last_delivery_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    merchant = relationship("Merchant", back_populates="transactions")

    @property
    def transaction_status(self) -> TransactionStatus:
        return TransactionStatus(self.status)
