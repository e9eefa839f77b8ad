import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import runtime
from app.config import settings
from app.database import get_db
from app.exceptions import ConfigurationInvalid, RecordNotFound
from app.logging import get_logger
from app.schemas.requests import MerchantCreateRequest, ScenarioRequest, ScenarioRuleRequest
from app.schemas.responses import (
    CallbackTriggerResponse,
    MerchantCreatedResponse,
    MerchantSummary,
    ScenarioResponse,
    ScheduledTaskSummary,
    TransactionDetail,
    TransactionListResponse,
)
from app.services import merchants, payments
from app.services.scenario import OutcomeConfiguration, build_rules

logger = get_logger("admin_routes")


def require_api_key(x_api_key: Optional[str] = Header(None)):
    if not x_api_key or x_api_key != settings.api_key:
        logger.warning("unauthorized_admin_access")
        raise HTTPException(status_code=401, detail="Unauthorized")


router = APIRouter(dependencies=[Depends(require_api_key)])


def _rule_dicts(rules: Optional[List[ScenarioRuleRequest]]):
    if rules is None:
        return None
    return [{"condition": r.condition, "value": r.value, "outcome": r.outcome} for r in rules]


@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(page: int = 1, limit: int = 20, db: Session = Depends(get_db)):
    transactions, pagination = payments.list_transactions(db, page, limit)
    return TransactionListResponse(
        data=[payments.to_detail(txn) for txn in transactions],
        pagination=pagination,
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionDetail)
def get_transaction(transaction_id: str, db: Session = Depends(get_db)):
    try:
        txn = payments.require_transaction(db, transaction_id)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return payments.to_detail(txn)


@router.get("/scenarios", response_model=ScenarioResponse)
def get_scenario():
    return ScenarioResponse(data=runtime.scenarios.current.to_dict())


@router.post("/scenarios", response_model=ScenarioResponse)
def update_scenario(request: ScenarioRequest):
    """Merge the given fields into the current outcome configuration."""
    try:
        config = runtime.scenarios.set_scenario(
            default_outcome=request.default_outcome,
            processing_delay_ms=request.processing_delay,
            callback_delay_ms=request.callback_delay,
            rules=_rule_dicts(request.rules),
        )
    except ConfigurationInvalid as e:
        raise HTTPException(status_code=400, detail=f"Invalid scenario configuration: {e}")
    return ScenarioResponse(message="Scenario configuration updated", data=config.to_dict())


@router.put("/scenarios", response_model=ScenarioResponse)
def replace_scenario(request: ScenarioRequest):
    """Replace the whole configuration; omitted fields fall back to startup settings."""
    try:
        config = OutcomeConfiguration(
            default_outcome=request.default_outcome or settings.payment.outcome,
            processing_delay_ms=(
                request.processing_delay
                if request.processing_delay is not None
                else settings.payment.processing_delay_ms
            ),
            callback_delay_ms=(
                request.callback_delay
                if request.callback_delay is not None
                else settings.payment.callback_delay_ms
            ),
            rules=build_rules(_rule_dicts(request.rules) or []),
        )
    except ConfigurationInvalid as e:
        raise HTTPException(status_code=400, detail=f"Invalid scenario configuration: {e}")
    runtime.scenarios.replace(config)
    return ScenarioResponse(message="Scenario configuration replaced", data=config.to_dict())


@router.post("/scenarios/rules", response_model=ScenarioResponse)
def add_scenario_rule(rule: ScenarioRuleRequest):
    try:
        config = runtime.scenarios.add_rule(rule.condition, rule.value, rule.outcome)
    except ConfigurationInvalid as e:
        raise HTTPException(status_code=400, detail=f"Invalid scenario rule: {e}")
    return ScenarioResponse(message="Scenario rule added", data=config.to_dict())


@router.delete("/scenarios/rules", response_model=ScenarioResponse)
def clear_scenario_rules():
    config = runtime.scenarios.clear_rules()
    return ScenarioResponse(message="Scenario rules cleared", data=config.to_dict())


@router.post("/callbacks/{transaction_id}/trigger", response_model=CallbackTriggerResponse)
async def trigger_callback(transaction_id: str, db: Session = Depends(get_db)):
    """
    Re-deliver the webhook for a transaction now and wait for the outcome.

    Runs the normal retry cycle. The attempt counter keeps counting up.
    """
    try:
        delivered = await runtime.delivery_agent.trigger(transaction_id)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    if not delivered:
        raise HTTPException(status_code=502, detail="Callback delivery failed")

    txn = payments.get_transaction(db, transaction_id)

    logger.info("manual_callback_delivered", transaction_id=transaction_id)
    return CallbackTriggerResponse(
        success=True,
        message="Callback triggered successfully",
        transaction_id=transaction_id,
        delivery_attempts=txn.delivery_attempts if txn else 0,
        delivery_confirmed=txn.delivery_confirmed if txn else True,
    )


@router.get("/schedule", response_model=List[ScheduledTaskSummary])
async def list_scheduled_tasks():
    """Timers still waiting to fire. These are lost if the process stops."""
    now = asyncio.get_running_loop().time()
    return [
        ScheduledTaskSummary(key=task.key, name=task.name, fires_in_seconds=round(task.fires_in(now), 3))
        for task in runtime.scheduler.pending()
    ]


@router.get("/merchants", response_model=List[MerchantSummary])
def list_merchants(db: Session = Depends(get_db)):
    return merchants.list_merchants(db)


@router.post("/merchants", response_model=MerchantCreatedResponse)
def create_merchant(request: MerchantCreateRequest, db: Session = Depends(get_db)):
    try:
        merchant = merchants.create_merchant(
            db,
            name=request.name,
            merchant_token=request.merchant_token,
            signature_secret=request.signature_secret,
            active=request.active,
        )
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Merchant token already exists")

    return MerchantCreatedResponse(
        id=merchant.id,
        merchant_token=merchant.merchant_token,
        name=merchant.name,
        active=merchant.active,
        created_at=merchant.created_at,
        signature_secret=merchant.signature_secret,
    )
