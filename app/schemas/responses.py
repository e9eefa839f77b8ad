from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class PaymentCreatedResponse(BaseModel):
    success: bool = True
    request_reference: str
    merchant_reference: str
    status: str


class TransactionQueryRecord(BaseModel):
    type: str
    merchant_reference: str
    request_reference: str
    status: str
    currency: str
    amount: str  # six fractional digits
    created_time: int
    completed_time: Optional[int] = None


class TransactionDetail(BaseModel):
    id: str
    request_reference: str
    merchant_reference: str
    merchant_token: Optional[str] = None
    type: str
    amount: str
    currency: str
    network: str
    status: str
    status_code: str
    subject: Optional[str] = None
    notify_url: str
    return_url: Optional[str] = None
    delivery_attempts: int
    delivery_confirmed: bool
    last_delivery_at: Optional[datetime] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class TransactionListResponse(BaseModel):
    success: bool = True
    data: List[TransactionDetail]
    pagination: Pagination


class ScenarioResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: Dict[str, Any]


class CallbackTriggerResponse(BaseModel):
    success: bool
    message: str
    transaction_id: str
    delivery_attempts: int
    delivery_confirmed: bool


class MerchantSummary(BaseModel):
    id: str
    merchant_token: str
    name: str
    active: bool
    created_at: datetime
    transaction_count: int = 0


class MerchantCreatedResponse(MerchantSummary):
    signature_secret: str


class ScheduledTaskSummary(BaseModel):
    key: str
    name: str
    fires_in_seconds: float


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[Any] = None
