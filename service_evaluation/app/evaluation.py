"""
Flag evaluation service: store lookup, engine call, metrics and tracing.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from shared.errors import FlagNotFoundError, FlagServiceException, ValidationError
from shared.logging import get_logger, set_evaluation_context
from shared.metrics import MetricsCollector
from shared.tracing import trace_operation
from .engine.evaluator import FlagEvaluator
from .engine.models import EvaluationContext, EvaluationResult

ContextInput = Union[EvaluationContext, Mapping[str, Any], None]


def build_context(context: ContextInput) -> EvaluationContext:
    """Normalize caller input into an EvaluationContext.

    Accepts an EvaluationContext, or a mapping with optional
    ``identity_key`` and ``attributes`` entries.
    """
    if isinstance(context, EvaluationContext):
        return context
    if context is None:
        return EvaluationContext()
    if not isinstance(context, Mapping):
        raise ValidationError("Evaluation context must be an object")

    identity_key = context.get("identity_key")
    if identity_key is not None and not isinstance(identity_key, str):
        raise ValidationError("identity_key must be a string", {"identity_key": repr(identity_key)})

    attributes = context.get("attributes") or {}
    if not isinstance(attributes, Mapping):
        raise ValidationError("attributes must be an object")

    return EvaluationContext(identity_key=identity_key, attributes=attributes)


class FlagEvaluationService:
    """Evaluates flags held by a flag store."""

    def __init__(
        self,
        store,
        evaluator: Optional[FlagEvaluator] = None,
        metrics: Optional[MetricsCollector] = None,
        slow_evaluation_ms: float = 10
    ):
        self.store = store
        self.evaluator = evaluator or FlagEvaluator()
        self.metrics = metrics
        self.slow_evaluation_ms = slow_evaluation_ms
        self.logger = get_logger("evaluation.service")

    async def evaluate(
        self,
        flag_key: str,
        tenant_id: str,
        context: ContextInput = None,
        version: Optional[int] = None
    ) -> EvaluationResult:
        """Evaluate one flag for one context.

        Raises FlagNotFoundError when the tenant has no such flag and
        FlagVersionNotFoundError when a replayed version does not exist.
        """
        set_evaluation_context(tenant_id=tenant_id, flag_key=flag_key)
        start_time = time.perf_counter()

        with trace_operation(
            "flag.evaluate",
            flag_key=flag_key,
            tenant_id=tenant_id,
            requested_version=version
        ) as span:
            try:
                evaluation_context = build_context(context)

                flag = await self.store.get_flag(tenant_id, flag_key)
                if flag is None:
                    raise FlagNotFoundError(flag_key, tenant_id)

                result = self.evaluator.evaluate(flag, evaluation_context, version)

            except FlagServiceException as e:
                if self.metrics:
                    self.metrics.record_evaluation_error(e.code)
                self.logger.info("Flag evaluation failed", code=e.code, error=e.message)
                raise

            duration = time.perf_counter() - start_time
            span.set_attribute("flag.decision", result.decision)
            span.set_attribute("flag.reason", result.reason.value)
            if result.flag_version is not None:
                span.set_attribute("flag.version", result.flag_version)

        if self.metrics:
            self.metrics.record_evaluation(
                result.reason.value,
                result.decision,
                duration,
                anomaly=bool(result.anomalies)
            )

        duration_ms = duration * 1000
        if duration_ms > self.slow_evaluation_ms:
            self.logger.warning(
                "Slow flag evaluation",
                duration_ms=round(duration_ms, 3),
                threshold_ms=self.slow_evaluation_ms,
                rules_visited=len(result.trace)
            )

        self.logger.debug(
            "Flag evaluated",
            decision=result.decision,
            reason=result.reason.value,
            matched_rule_id=result.matched_rule_id,
            flag_version=result.flag_version
        )
        return result

    async def bulk_evaluate(
        self,
        flag_keys: Iterable[str],
        tenant_id: str,
        context: ContextInput = None
    ) -> Dict[str, Any]:
        """Evaluate several flags for one context.

        A failing flag does not fail the batch: its error is reported under
        its key in ``errors``.
        """
        start_time = time.perf_counter()
        evaluation_context = build_context(context)

        results: Dict[str, EvaluationResult] = {}
        errors: Dict[str, Dict[str, Any]] = {}

        for flag_key in dict.fromkeys(flag_keys):
            try:
                results[flag_key] = await self.evaluate(flag_key, tenant_id, evaluation_context)
            except FlagServiceException as e:
                errors[flag_key] = {"code": e.code, "message": e.message}

        latency_ms = (time.perf_counter() - start_time) * 1000
        self.logger.info(
            "Bulk flag evaluation completed",
            tenant_id=tenant_id,
            evaluated=len(results),
            failed=len(errors),
            latency_ms=round(latency_ms, 3)
        )

        return {
            "results": results,
            "errors": errors,
            "metadata": {
                "tenant_id": tenant_id,
                "total": len(results) + len(errors),
                "latency_ms": latency_ms,
                "evaluated_at": datetime.now(timezone.utc).isoformat(),
            },
        }
