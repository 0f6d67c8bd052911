"""
Flag evaluation.
"""

from typing import List, Optional

from shared.logging import get_logger
from .matcher import RuleMatcher
from .models import (
    EvaluationContext, EvaluationReason, EvaluationResult, FeatureFlag, RuleTrace
)
from .versions import VersionResolver


class FlagEvaluator:
    """Decides whether a flag is on for a context.

    Rules are visited in their stored order and the first match wins. When no
    rule matches the flag's own ``enabled`` state is the decision. The
    evaluator holds no mutable state and does no I/O, so one instance can be
    shared by concurrent callers.
    """

    def __init__(
        self,
        matcher: Optional[RuleMatcher] = None,
        resolver: Optional[VersionResolver] = None
    ):
        self.logger = get_logger("evaluation.evaluator")
        self.matcher = matcher or RuleMatcher()
        self.resolver = resolver or VersionResolver()

    def evaluate(
        self,
        flag: FeatureFlag,
        context: EvaluationContext,
        version: Optional[int] = None
    ) -> EvaluationResult:
        """Evaluate ``flag`` for ``context``.

        ``version`` replays a specific version instead of the current one.
        """
        if not flag.enabled:
            return EvaluationResult(
                flag_key=flag.key,
                decision=False,
                reason=EvaluationReason.FLAG_DISABLED
            )

        resolved = self.resolver.resolve(flag, version)
        anomalies = (resolved.anomaly,) if resolved.anomaly else ()
        trace: List[RuleTrace] = []

        for rule in resolved.rules:
            rule_trace = self.matcher.match(flag.key, rule, context)
            trace.append(rule_trace)

            if rule_trace.matched:
                self.logger.debug(
                    "Rule matched",
                    flag_key=flag.key,
                    rule_id=rule.id,
                    flag_version=resolved.version
                )
                return EvaluationResult(
                    flag_key=flag.key,
                    decision=True,
                    reason=EvaluationReason.RULE_MATCH,
                    matched_rule_id=rule.id,
                    flag_version=resolved.version,
                    trace=tuple(trace),
                    anomalies=anomalies
                )

        return EvaluationResult(
            flag_key=flag.key,
            decision=flag.enabled,
            reason=EvaluationReason.DEFAULT,
            flag_version=resolved.version,
            trace=tuple(trace),
            anomalies=anomalies
        )
