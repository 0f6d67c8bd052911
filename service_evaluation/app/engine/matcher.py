"""
Targeting rule matching.
"""

from typing import Optional

from .bucketing import RolloutBucketer
from .conditions import ConditionEvaluator
from .models import EvaluationContext, RuleOutcome, RuleTrace, TargetingRule


class RuleMatcher:
    """Applies a rule's kill switch, its conditions (AND) and its rollout gate."""

    def __init__(
        self,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        bucketer: Optional[RolloutBucketer] = None
    ):
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.bucketer = bucketer or RolloutBucketer()

    def match(self, flag_key: str, rule: TargetingRule, context: EvaluationContext) -> RuleTrace:
        """Evaluate a rule and report how far it got."""
        if not rule.enabled:
            return RuleTrace(rule.id, RuleOutcome.RULE_DISABLED)

        for condition in rule.conditions:
            if not self.condition_evaluator.evaluate(condition, context):
                return RuleTrace(rule.id, RuleOutcome.CONDITION_FAILED, failed_attribute=condition.attribute)

        if not self.bucketer.in_bucket(flag_key, rule.id, context.identity_key, rule.percentage):
            return RuleTrace(rule.id, RuleOutcome.NOT_IN_ROLLOUT)

        return RuleTrace(rule.id, RuleOutcome.MATCHED)

    def matches(self, rule: TargetingRule, context: EvaluationContext, flag_key: str) -> bool:
        return self.match(flag_key, rule, context).matched
