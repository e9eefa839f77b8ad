import re
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, validator

from app.models import Network


AMOUNT_PATTERN = re.compile(r"^\d{1,10}\.\d{2}$")
IPV4_PATTERN = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_PATTERN = re.compile(r"^https?://\S+$")

NETWORKS_REQUIRING_ADDRESS = (Network.CREDIT_CARD, Network.ATOME)
ATOME_MINIMUM_AMOUNT = Decimal("30.00")


class PaymentRequest(BaseModel):
    merchant_reference: str = Field(..., min_length=1, max_length=36)
    currency: Literal["HKD", "USD", "CNY"]
    amount: str
    customer_ip: str
    customer_first_name: str = Field(..., max_length=255)
    customer_last_name: str = Field(..., max_length=255)
    customer_phone: str = Field(..., max_length=64)
    customer_email: str = Field(..., max_length=255)
    network: Network
    subject: str = Field(..., max_length=255)
    notify_url: str = Field(..., max_length=255)
    return_url: Optional[str] = Field(None, max_length=255)
    customer_address: Optional[str] = None
    customer_state: Optional[str] = Field(None, min_length=2, max_length=2)
    customer_country: Optional[str] = Field(None, min_length=2, max_length=2)
    customer_postal_code: Optional[str] = Field(None, max_length=64)
    sign: str = Field(..., min_length=128, max_length=128)

    @validator("amount")
    def validate_amount(cls, v):
        if not AMOUNT_PATTERN.match(v):
            raise ValueError("amount must have at most 10 integer digits and exactly two decimal places")
        return v

    @validator("customer_ip")
    def validate_ip(cls, v):
        if not IPV4_PATTERN.match(v):
            raise ValueError("customer_ip must be an IPv4 address")
        return v

    @validator("customer_email")
    def validate_email(cls, v):
        if not EMAIL_PATTERN.match(v):
            raise ValueError("customer_email must be a valid email address")
        return v

    @validator("notify_url", "return_url")
    def validate_url(cls, v):
        if v is not None and not URL_PATTERN.match(v):
            raise ValueError("must be an http(s) URL")
        return v

    def network_errors(self) -> List[str]:
        """Channel-specific rules that span several fields."""
        errors = []
        network = self.network.value
        if self.network in NETWORKS_REQUIRING_ADDRESS and not (
            self.customer_address and self.customer_country and self.customer_postal_code
        ):
            errors.append(
                f"{network} requires customer_address, customer_country, and customer_postal_code"
            )
        if self.network is Network.ATOME and Decimal(self.amount) < ATOME_MINIMUM_AMOUNT:
            errors.append("Atome requires minimum amount of 30.00")
        if self.network is not Network.CREDIT_CARD and self.currency != "HKD":
            errors.append(f"{network} only supports HKD currency")
        return errors


class QueryRequest(BaseModel):
    merchant_reference: str = Field(..., min_length=1, max_length=36)
    sign: str = Field(..., min_length=128, max_length=128)


class ScenarioRuleRequest(BaseModel):
    condition: Literal["amount_ends_with", "network", "amount_equals"]
    value: str
    outcome: Literal["SUCCESS", "FAIL"]


class ScenarioRequest(BaseModel):
    default_outcome: Optional[Literal["SUCCESS", "FAIL", "RANDOM"]] = Field(None, alias="defaultOutcome")
    callback_delay: Optional[int] = Field(None, alias="callbackDelay")
    processing_delay: Optional[int] = Field(None, alias="processingDelay")
    rules: Optional[List[ScenarioRuleRequest]] = None


class MerchantCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    merchant_token: Optional[str] = Field(None, alias="merchantToken")
    signature_secret: Optional[str] = Field(None, alias="signatureSecret")
    active: bool = True
