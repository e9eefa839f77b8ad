"""
Outcome policy for simulated payments.

The policy is an immutable OutcomeConfiguration held by a ScenarioHolder.
Every mutation builds and validates a new configuration, then swaps the
holder's reference, so a decision in flight sees either the old or the new
configuration in full and never a half-applied one.

Decision order:
  1. Rules in stored order; the first match wins.
  2. default_outcome: SUCCESS / FAIL directly, RANDOM is a fair coin per call.
"""
import enum
import random
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Optional, Tuple

from app.exceptions import ConfigurationInvalid
from app.logging import get_logger
from app.models import TransactionStatus

logger = get_logger("scenario")


class DefaultOutcome(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
    RANDOM = "RANDOM"


class RuleCondition(str, enum.Enum):
    AMOUNT_ENDS_WITH = "amount_ends_with"
    AMOUNT_EQUALS = "amount_equals"
    NETWORK = "network"


RULE_OUTCOMES = {
    "SUCCESS": TransactionStatus.SUCCESS,
    "FAIL": TransactionStatus.FAIL,
}


def _coerce(enum_cls, value, what: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ConfigurationInvalid(f"Invalid {what}: {value!r}")


@dataclass(frozen=True)
class ScenarioRule:
    condition: RuleCondition
    value: str
    outcome: TransactionStatus

    @classmethod
    def build(cls, condition: str, value: str, outcome: str) -> "ScenarioRule":
        if outcome not in RULE_OUTCOMES:
            raise ConfigurationInvalid(f"Invalid rule outcome: {outcome!r}")
        if not isinstance(value, str):
            raise ConfigurationInvalid("Rule value must be a string")
        return cls(
            condition=_coerce(RuleCondition, condition, "rule condition"),
            value=value,
            outcome=RULE_OUTCOMES[outcome],
        )

    def matches(self, amount: str, network: str) -> bool:
        if self.condition is RuleCondition.AMOUNT_ENDS_WITH:
            return amount.endswith(self.value)
        if self.condition is RuleCondition.AMOUNT_EQUALS:
            return amount == self.value
        if self.condition is RuleCondition.NETWORK:
            return network == self.value
        return False

    def to_dict(self) -> Dict[str, str]:
        return {
            "condition": self.condition.value,
            "value": self.value,
            "outcome": self.outcome.value,
        }


@dataclass(frozen=True)
class OutcomeConfiguration:
    default_outcome: DefaultOutcome = DefaultOutcome.SUCCESS
    processing_delay_ms: int = 1000
    callback_delay_ms: int = 3000
    rules: Tuple[ScenarioRule, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.default_outcome, DefaultOutcome):
            object.__setattr__(
                self,
                "default_outcome",
                _coerce(DefaultOutcome, self.default_outcome, "default outcome"),
            )
        for name in ("processing_delay_ms", "callback_delay_ms"):
            delay = getattr(self, name)
            if isinstance(delay, bool) or not isinstance(delay, int) or delay < 0:
                raise ConfigurationInvalid(f"{name} must be a non-negative integer, got {delay!r}")
        object.__setattr__(self, "rules", tuple(self.rules))

    @property
    def processing_delay(self) -> float:
        """Seconds from creation until PROCESSING."""
        return self.processing_delay_ms / 1000

    @property
    def terminal_delay(self) -> float:
        """Seconds from PROCESSING until the terminal state, never negative."""
        return max(0, self.callback_delay_ms - self.processing_delay_ms) / 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "defaultOutcome": self.default_outcome.value,
            "processingDelay": self.processing_delay_ms,
            "callbackDelay": self.callback_delay_ms,
            "rules": [rule.to_dict() for rule in self.rules],
        }


def build_rules(rules: Iterable[Dict[str, str]]) -> Tuple[ScenarioRule, ...]:
    built = []
    for rule in rules:
        try:
            built.append(ScenarioRule.build(rule["condition"], rule["value"], rule["outcome"]))
        except KeyError as e:
            raise ConfigurationInvalid(f"Rule is missing {e.args[0]!r}")
    return tuple(built)


class ScenarioHolder:
    """Process-wide owner of the current OutcomeConfiguration."""

    def __init__(self, config: Optional[OutcomeConfiguration] = None):
        self._config = config or OutcomeConfiguration()

    @property
    def current(self) -> OutcomeConfiguration:
        return self._config

    def replace(self, config: OutcomeConfiguration) -> OutcomeConfiguration:
        """Swap in a whole new configuration."""
        self._config = config
        logger.info("scenario_replaced", scenario=config.to_dict())
        return config

    def set_scenario(
        self,
        default_outcome: Optional[str] = None,
        processing_delay_ms: Optional[int] = None,
        callback_delay_ms: Optional[int] = None,
        rules: Optional[Iterable[Dict[str, str]]] = None,
    ) -> OutcomeConfiguration:
        """Merge the given fields over the current configuration."""
        changes: Dict[str, Any] = {}
        if default_outcome is not None:
            changes["default_outcome"] = _coerce(DefaultOutcome, default_outcome, "default outcome")
        if processing_delay_ms is not None:
            changes["processing_delay_ms"] = processing_delay_ms
        if callback_delay_ms is not None:
            changes["callback_delay_ms"] = callback_delay_ms
        if rules is not None:
            changes["rules"] = build_rules(rules)

        updated = replace(self._config, **changes)
        self._config = updated
        logger.info("scenario_updated", scenario=updated.to_dict())
        return updated

    def add_rule(self, condition: str, value: str, outcome: str) -> OutcomeConfiguration:
        rule = ScenarioRule.build(condition, value, outcome)
        updated = replace(self._config, rules=self._config.rules + (rule,))
        self._config = updated
        logger.info("scenario_rule_added", rule=rule.to_dict())
        return updated

    def clear_rules(self) -> OutcomeConfiguration:
        updated = replace(self._config, rules=())
        self._config = updated
        logger.info("scenario_rules_cleared")
        return updated


class OutcomeEngine:
    """Decides SUCCESS or FAIL for a transaction at decision time."""

    def __init__(self, scenarios: ScenarioHolder, rng: Optional[random.Random] = None):
        self._scenarios = scenarios
        self._rng = rng or random.Random()

    def decide(self, amount: str, network: str, merchant_key: str) -> TransactionStatus:
        config = self._scenarios.current

        for index, rule in enumerate(config.rules):
            if rule.matches(amount, network):
                logger.info(
                    "scenario_rule_matched",
                    rule_index=index,
                    rule=rule.to_dict(),
                    amount=amount,
                    network=network,
                    merchant=merchant_key,
                )
                return rule.outcome

        if config.default_outcome is DefaultOutcome.RANDOM:
            outcome = TransactionStatus.SUCCESS if self._rng.random() < 0.5 else TransactionStatus.FAIL
            logger.info("random_outcome_selected", outcome=outcome.value, merchant=merchant_key)
            return outcome

        outcome = RULE_OUTCOMES[config.default_outcome.value]
        logger.info("default_outcome_used", outcome=outcome.value, merchant=merchant_key)
        return outcome
