"""
Evaluation service for feature flags.
"""

from datetime import datetime, timezone
from typing import Optional

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ValidationError

from .evaluation import FlagEvaluationService
from .schemas import (
    BulkEvaluationRequest, BulkEvaluationResponse, EvaluationRequest, EvaluationResponse
)
from .store.redis_store import RedisFlagStore
from .store.snapshot import DEFAULT_FLAGS_FILE, FlagSnapshotStore

SERVICE_NAME = "evaluation"
SERVICE_PORT = 8013


class EvaluationService(BaseService):
    """Evaluation service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config)

        self.store = self._create_store()
        self.evaluation = FlagEvaluationService(
            self.store,
            metrics=self.metrics,
            slow_evaluation_ms=self.config.slow_evaluation_ms
        )

        self._setup_evaluation_routes()

    def _create_store(self):
        """Create the flag store selected by configuration."""
        source = self.config.flags_source.lower()
        if source == "redis":
            return RedisFlagStore(
                self.config.redis_url,
                cache_ttl_seconds=self.config.flag_cache_ttl_seconds,
                metrics=self.metrics
            )
        if source == "file":
            return FlagSnapshotStore(
                self.config.flags_file or DEFAULT_FLAGS_FILE,
                refresh_interval_seconds=self.config.flag_refresh_interval_seconds,
                metrics=self.metrics
            )
        raise ValueError(f"Unknown flags source: {self.config.flags_source}")

    def _setup_evaluation_routes(self):
        """Set up evaluation routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Feature Flags - Evaluation Service",
                "version": "1.0.0",
                "flags_source": self.store.source_name,
                "capabilities": ["targeting_rules", "percentage_rollout", "version_replay", "bulk_evaluation"]
            }

        @self.app.post("/evaluate", response_model=EvaluationResponse)
        async def evaluate(request: EvaluationRequest):
            """Evaluate one flag for a context."""
            result = await self.evaluation.evaluate(
                request.flag_key,
                request.tenant_id,
                request.context.model_dump(),
                version=request.version
            )
            return EvaluationResponse.from_result(result)

        @self.app.post("/evaluate/bulk", response_model=BulkEvaluationResponse)
        async def evaluate_bulk(request: BulkEvaluationRequest):
            """Evaluate several flags for one context."""
            if len(request.flag_keys) > self.config.max_bulk_flags:
                raise ValidationError(
                    "Too many flags in one request",
                    {"max_bulk_flags": self.config.max_bulk_flags, "requested": len(request.flag_keys)}
                )

            outcome = await self.evaluation.bulk_evaluate(
                request.flag_keys,
                request.tenant_id,
                request.context.model_dump()
            )
            return BulkEvaluationResponse(
                results={
                    key: EvaluationResponse.from_result(result)
                    for key, result in outcome["results"].items()
                },
                errors=outcome["errors"],
                metadata=outcome["metadata"]
            )

        @self.app.post("/flags/{tenant_id}/{flag_key}/invalidate")
        async def invalidate_flag(tenant_id: str, flag_key: str):
            """Drop a cached flag definition."""
            invalidated = await self.store.invalidate(tenant_id, flag_key)
            self.logger.info("Flag invalidation requested", tenant_id=tenant_id, flag_key=flag_key)
            return {
                "tenant_id": tenant_id,
                "flag_key": flag_key,
                "invalidated": invalidated
            }

        @self.app.get("/stats")
        async def get_stats():
            """Get flag store statistics."""
            return {
                "store": await self.store.get_stats(),
                "uptime_seconds": self._get_uptime(),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

    async def _check_dependencies(self):
        """Check evaluation service dependencies."""
        dependencies = {}

        try:
            if await self.store.health_check():
                dependencies[self.store.source_name] = "ok"
            else:
                dependencies[self.store.source_name] = "error"
        except Exception:
            dependencies[self.store.source_name] = "error"

        return dependencies

    async def start(self):
        """Start evaluation service components."""
        await self.store.start()
        self.logger.info("Evaluation service started", flags_source=self.store.source_name)

    async def stop(self):
        """Stop evaluation service components."""
        await self.store.stop()
        self.logger.info("Evaluation service stopped")


def create_app(config: Optional[ServiceConfig] = None):
    """Create evaluation service application."""
    service = EvaluationService(config)
    return service.app


if __name__ == "__main__":
    service = EvaluationService(get_config(SERVICE_NAME, SERVICE_PORT))
    service.run()
