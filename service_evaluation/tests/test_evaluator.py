"""
Unit tests for flag evaluation.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_evaluation.app.engine.evaluator import FlagEvaluator
from service_evaluation.app.engine.models import (
    Condition, ConditionOperator, EvaluationContext, EvaluationReason, FeatureFlag,
    FlagVersion, RuleOutcome, TargetingRule
)


def make_flag(rules=(), enabled=True, current_version_id="v1", extra_versions=()):
    return FeatureFlag(
        id="flag-1",
        key="new-checkout",
        tenant_id="acme",
        enabled=enabled,
        current_version_id=current_version_id,
        versions=(FlagVersion(id="v1", version=1, targeting_rules=rules),) + tuple(extra_versions)
    )


def country_rule(rule_id="us", country="US", percentage=100, enabled=True):
    return TargetingRule(
        id=rule_id,
        conditions=[Condition("country", ConditionOperator.EQUALS, country)],
        percentage=percentage,
        enabled=enabled
    )


class TestFlagEvaluator:
    """Test cases for FlagEvaluator."""

    @pytest.fixture
    def evaluator(self):
        """Create FlagEvaluator instance."""
        return FlagEvaluator()

    def test_rule_match(self, evaluator):
        result = evaluator.evaluate(make_flag([country_rule()]), EvaluationContext("u1", {"country": "US"}))

        assert result.decision is True
        assert result.reason == EvaluationReason.RULE_MATCH
        assert result.matched_rule_id == "us"
        assert result.flag_version == 1

    def test_no_match_falls_back_to_flag_state(self, evaluator):
        result = evaluator.evaluate(make_flag([country_rule()]), EvaluationContext("u1", {"country": "FR"}))

        assert result.decision is True
        assert result.reason == EvaluationReason.DEFAULT
        assert result.matched_rule_id is None
        assert result.flag_version == 1

    def test_disabled_flag_short_circuits(self, evaluator):
        flag = make_flag([country_rule()], enabled=False)

        result = evaluator.evaluate(flag, EvaluationContext("u1", {"country": "US"}))

        assert result.decision is False
        assert result.reason == EvaluationReason.FLAG_DISABLED
        assert result.trace == ()
        assert result.flag_version is None

    def test_first_matching_rule_wins(self, evaluator):
        rules = [
            country_rule("fr", "FR"),
            country_rule("us-first", "US"),
            country_rule("us-second", "US"),
        ]

        result = evaluator.evaluate(make_flag(rules), EvaluationContext("u1", {"country": "US"}))

        assert result.matched_rule_id == "us-first"
        assert [entry.rule_id for entry in result.trace] == ["fr", "us-first"]
        assert result.trace[0].outcome == RuleOutcome.CONDITION_FAILED

    def test_rule_order_changes_attribution_not_decision(self, evaluator):
        first, second = country_rule("us-first", "US"), country_rule("us-second", "US")
        context = EvaluationContext("u1", {"country": "US"})

        forward = evaluator.evaluate(make_flag([first, second]), context)
        swapped = evaluator.evaluate(make_flag([second, first]), context)

        assert forward.matched_rule_id == "us-first"
        assert swapped.matched_rule_id == "us-second"
        assert forward.decision is swapped.decision is True
        assert forward.reason == swapped.reason == EvaluationReason.RULE_MATCH

    def test_disabled_rule_is_skipped(self, evaluator):
        rules = [country_rule("off", enabled=False), country_rule("on")]

        result = evaluator.evaluate(make_flag(rules), EvaluationContext("u1", {"country": "US"}))

        assert result.matched_rule_id == "on"
        assert result.trace[0].outcome == RuleOutcome.RULE_DISABLED

    def test_zero_percent_rule_never_matches(self, evaluator):
        flag = make_flag([country_rule(percentage=0)])

        for i in range(200):
            result = evaluator.evaluate(flag, EvaluationContext(f"user-{i}", {"country": "US"}))
            assert result.reason == EvaluationReason.DEFAULT

    def test_full_rollout_matches_every_identity(self, evaluator):
        flag = make_flag([country_rule(percentage=100)])

        for i in range(200):
            result = evaluator.evaluate(flag, EvaluationContext(f"user-{i}", {"country": "US"}))
            assert result.reason == EvaluationReason.RULE_MATCH

    def test_evaluation_is_deterministic(self, evaluator):
        flag = make_flag([country_rule(percentage=40)])
        context = EvaluationContext("user-17", {"country": "US"})

        first = evaluator.evaluate(flag, context)
        assert all(evaluator.evaluate(flag, context) == first for _ in range(20))

    def test_partial_rollout_distribution(self, evaluator):
        flag = make_flag([country_rule(percentage=30)])
        total = 5000
        matched = sum(
            1 for i in range(total)
            if evaluator.evaluate(flag, EvaluationContext(f"user-{i}", {"country": "US"})).reason
            == EvaluationReason.RULE_MATCH
        )
        assert 0.26 <= matched / total <= 0.34

    def test_non_numeric_attribute_is_not_an_error(self, evaluator):
        rule = TargetingRule(
            id="adults",
            conditions=[Condition("age", ConditionOperator.GREATER_THAN, 18)]
        )

        result = evaluator.evaluate(make_flag([rule]), EvaluationContext("u1", {"age": "twenty"}))

        assert result.reason == EvaluationReason.DEFAULT
        assert result.trace[0].failed_attribute == "age"

    def test_flag_without_versions_uses_flag_state(self, evaluator):
        flag = FeatureFlag(id="flag-2", key="bare", tenant_id="acme", enabled=True)

        result = evaluator.evaluate(flag, EvaluationContext())

        assert result.decision is True
        assert result.reason == EvaluationReason.DEFAULT
        assert result.flag_version is None

    def test_dangling_version_reported_as_anomaly(self, evaluator):
        flag = make_flag(
            [country_rule("old")],
            current_version_id="missing",
            extra_versions=[FlagVersion(id="v2", version=2, targeting_rules=(country_rule("new"),))]
        )

        result = evaluator.evaluate(flag, EvaluationContext("u1", {"country": "US"}))

        assert result.matched_rule_id == "new"
        assert result.flag_version == 2
        assert len(result.anomalies) == 1

    def test_version_replay(self, evaluator):
        flag = make_flag(
            [country_rule("old")],
            current_version_id="v2",
            extra_versions=[FlagVersion(id="v2", version=2, targeting_rules=(country_rule("new"),))]
        )
        context = EvaluationContext("u1", {"country": "US"})

        assert evaluator.evaluate(flag, context).matched_rule_id == "new"
        assert evaluator.evaluate(flag, context, version=1).matched_rule_id == "old"

    def test_result_to_dict(self, evaluator):
        result = evaluator.evaluate(make_flag([country_rule()]), EvaluationContext("u1", {"country": "FR"}))

        data = result.to_dict()

        assert data["reason"] == "DEFAULT"
        assert data["trace"] == [
            {"rule_id": "us", "outcome": "CONDITION_FAILED", "failed_attribute": "country"}
        ]
