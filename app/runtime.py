"""Process-wide gateway components, wired from settings."""
from app.config import settings
from app.database import SessionLocal
from app.services.delivery import DeliveryAgent
from app.services.lifecycle import LifecycleController
from app.services.scenario import OutcomeConfiguration, OutcomeEngine, ScenarioHolder
from app.services.scheduler import Scheduler


def initial_configuration() -> OutcomeConfiguration:
    return OutcomeConfiguration(
        default_outcome=settings.payment.outcome,
        processing_delay_ms=settings.payment.processing_delay_ms,
        callback_delay_ms=settings.payment.callback_delay_ms,
    )


scheduler = Scheduler()
scenarios = ScenarioHolder(initial_configuration())
outcome_engine = OutcomeEngine(scenarios)
delivery_agent = DeliveryAgent(
    SessionLocal,
    scheduler,
    max_attempts=settings.delivery.max_attempts,
    timeout=settings.delivery.timeout_seconds,
    backoff_unit=settings.delivery.backoff_seconds,
)
lifecycle = LifecycleController(SessionLocal, scenarios, outcome_engine, delivery_agent, scheduler)
