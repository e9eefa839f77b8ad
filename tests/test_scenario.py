"""
Unit tests for app/services/scenario.py.

Covers rule precedence, default fallback, RANDOM draws, delay clamping,
and that rejected configuration leaves the previous one in force.
"""
import random

import pytest

from app.exceptions import ConfigurationInvalid
from app.models import TransactionStatus
from app.services.scenario import (
    DefaultOutcome,
    OutcomeConfiguration,
    OutcomeEngine,
    RuleCondition,
    ScenarioHolder,
    ScenarioRule,
    build_rules,
)

SUCCESS = TransactionStatus.SUCCESS
FAIL = TransactionStatus.FAIL


def engine_with(default="SUCCESS", rules=(), rng=None):
    holder = ScenarioHolder(OutcomeConfiguration(default_outcome=default, rules=build_rules(rules)))
    return holder, OutcomeEngine(holder, rng=rng)


class TestRules:
    def test_amount_ends_with(self):
        rule = ScenarioRule.build("amount_ends_with", ".99", "FAIL")
        assert rule.matches("99.99", "Alipay")
        assert not rule.matches("99.98", "Alipay")

    def test_amount_equals(self):
        rule = ScenarioRule.build("amount_equals", "100.00", "FAIL")
        assert rule.matches("100.00", "CUP")
        assert not rule.matches("1100.00", "CUP")

    def test_network(self):
        rule = ScenarioRule.build("network", "CreditCard", "FAIL")
        assert rule.matches("1.00", "CreditCard")
        assert not rule.matches("1.00", "Alipay")

    def test_unknown_condition_rejected(self):
        with pytest.raises(ConfigurationInvalid):
            ScenarioRule.build("currency", "HKD", "FAIL")

    def test_unknown_outcome_rejected(self):
        with pytest.raises(ConfigurationInvalid):
            ScenarioRule.build("network", "CUP", "RANDOM")

    def test_missing_key_rejected(self):
        with pytest.raises(ConfigurationInvalid):
            build_rules([{"condition": "network", "value": "CUP"}])


class TestDecide:
    def test_first_matching_rule_wins(self):
        _, engine = engine_with(rules=[
            {"condition": "amount_ends_with", "value": ".99", "outcome": "FAIL"},
            {"condition": "amount_ends_with", "value": ".99", "outcome": "SUCCESS"},
        ])
        for _ in range(20):
            assert engine.decide("99.99", "Alipay", "m") is FAIL

    def test_later_rule_used_when_earlier_does_not_match(self):
        _, engine = engine_with(default="FAIL", rules=[
            {"condition": "network", "value": "CUP", "outcome": "FAIL"},
            {"condition": "amount_equals", "value": "10.00", "outcome": "SUCCESS"},
        ])
        assert engine.decide("10.00", "Alipay", "m") is SUCCESS

    @pytest.mark.parametrize("amount,network", [
        ("100.00", "Alipay"), ("99.99", "CUP"), ("0.01", "Atome"), ("5000.50", "CreditCard"),
    ])
    def test_default_success(self, amount, network):
        _, engine = engine_with(default="SUCCESS")
        assert engine.decide(amount, network, "m") is SUCCESS

    @pytest.mark.parametrize("amount,network", [
        ("100.00", "Alipay"), ("99.99", "CUP"), ("0.01", "WechatPay"),
    ])
    def test_default_fail(self, amount, network):
        _, engine = engine_with(default="FAIL")
        assert engine.decide(amount, network, "m") is FAIL

    def test_random_draws_both_outcomes(self):
        _, engine = engine_with(default="RANDOM", rng=random.Random(1234))
        outcomes = {engine.decide("100.00", "Alipay", "m") for _ in range(200)}
        assert outcomes == {SUCCESS, FAIL}

    def test_random_still_honours_rules(self):
        _, engine = engine_with(
            default="RANDOM",
            rules=[{"condition": "network", "value": "CUP", "outcome": "FAIL"}],
        )
        assert all(engine.decide("1.00", "CUP", "m") is FAIL for _ in range(50))

    def test_reads_configuration_at_decision_time(self):
        holder, engine = engine_with(default="SUCCESS")
        assert engine.decide("1.99", "Alipay", "m") is SUCCESS
        holder.add_rule("amount_ends_with", ".99", "FAIL")
        assert engine.decide("1.99", "Alipay", "m") is FAIL
        holder.clear_rules()
        assert engine.decide("1.99", "Alipay", "m") is SUCCESS


class TestOutcomeConfiguration:
    def test_defaults(self):
        config = OutcomeConfiguration()
        assert config.default_outcome is DefaultOutcome.SUCCESS
        assert config.processing_delay == 1.0
        assert config.terminal_delay == 2.0
        assert config.rules == ()

    def test_string_outcome_coerced(self):
        assert OutcomeConfiguration(default_outcome="RANDOM").default_outcome is DefaultOutcome.RANDOM

    def test_terminal_delay_clamped_to_zero(self):
        config = OutcomeConfiguration(processing_delay_ms=3000, callback_delay_ms=1000)
        assert config.terminal_delay == 0

    def test_negative_delay_rejected(self):
        with pytest.raises(ConfigurationInvalid):
            OutcomeConfiguration(processing_delay_ms=-1)

    def test_bad_default_outcome_rejected(self):
        with pytest.raises(ConfigurationInvalid):
            OutcomeConfiguration(default_outcome="MAYBE")

    def test_to_dict(self):
        config = OutcomeConfiguration(
            default_outcome="FAIL",
            processing_delay_ms=10,
            callback_delay_ms=20,
            rules=build_rules([{"condition": "network", "value": "CUP", "outcome": "SUCCESS"}]),
        )
        assert config.to_dict() == {
            "defaultOutcome": "FAIL",
            "processingDelay": 10,
            "callbackDelay": 20,
            "rules": [{"condition": "network", "value": "CUP", "outcome": "SUCCESS"}],
        }


class TestScenarioHolder:
    def test_set_scenario_merges(self):
        holder = ScenarioHolder(OutcomeConfiguration(processing_delay_ms=5, callback_delay_ms=10))
        holder.add_rule("network", "CUP", "FAIL")
        updated = holder.set_scenario(default_outcome="FAIL")
        assert updated.default_outcome is DefaultOutcome.FAIL
        assert updated.processing_delay_ms == 5
        assert len(updated.rules) == 1

    def test_set_scenario_replaces_rules_when_given(self):
        holder = ScenarioHolder()
        holder.add_rule("network", "CUP", "FAIL")
        holder.set_scenario(rules=[{"condition": "amount_equals", "value": "1.00", "outcome": "SUCCESS"}])
        assert [r.condition for r in holder.current.rules] == [RuleCondition.AMOUNT_EQUALS]

    def test_swap_does_not_mutate_previous_snapshot(self):
        holder = ScenarioHolder()
        before = holder.current
        holder.add_rule("network", "CUP", "FAIL")
        assert before.rules == ()
        assert holder.current is not before

    def test_invalid_update_keeps_previous_configuration(self):
        holder = ScenarioHolder(OutcomeConfiguration(default_outcome="FAIL"))
        before = holder.current
        with pytest.raises(ConfigurationInvalid):
            holder.set_scenario(default_outcome="SUCCESS", processing_delay_ms=-5)
        with pytest.raises(ConfigurationInvalid):
            holder.set_scenario(rules=[{"condition": "bogus", "value": "x", "outcome": "FAIL"}])
        with pytest.raises(ConfigurationInvalid):
            holder.add_rule("network", "CUP", "MAYBE")
        assert holder.current is before

    def test_replace(self):
        holder = ScenarioHolder()
        new = OutcomeConfiguration(default_outcome="RANDOM")
        holder.replace(new)
        assert holder.current is new
