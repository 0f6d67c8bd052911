"""
Request and response models for the Evaluation Service API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .engine.models import EvaluationResult


class EvaluationContextPayload(BaseModel):
    """Caller context for an evaluation."""
    identity_key: Optional[str] = Field(None, description="Stable identity used for percentage rollout")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Targeting attributes")


class EvaluationRequest(BaseModel):
    """Request model for a single flag evaluation."""
    flag_key: str = Field(..., min_length=1, description="Flag key")
    tenant_id: str = Field(..., min_length=1, description="Tenant ID")
    context: EvaluationContextPayload = Field(default_factory=EvaluationContextPayload)
    version: Optional[int] = Field(None, ge=0, description="Replay a specific flag version")


class BulkEvaluationRequest(BaseModel):
    """Request model for evaluating several flags with one context."""
    flag_keys: List[str] = Field(..., min_length=1, description="Flag keys")
    tenant_id: str = Field(..., min_length=1, description="Tenant ID")
    context: EvaluationContextPayload = Field(default_factory=EvaluationContextPayload)


class RuleTracePayload(BaseModel):
    rule_id: str
    outcome: str
    failed_attribute: Optional[str] = None


class EvaluationResponse(BaseModel):
    """Response model for a flag evaluation."""
    flag_key: str
    decision: bool = Field(..., description="Whether the flag is on for the context")
    reason: str = Field(..., description="FLAG_DISABLED, RULE_MATCH or DEFAULT")
    matched_rule_id: Optional[str] = None
    flag_version: Optional[int] = None
    trace: List[RuleTracePayload] = Field(default_factory=list)
    anomalies: List[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: EvaluationResult) -> "EvaluationResponse":
        return cls.model_validate(result.to_dict())


class EvaluationErrorPayload(BaseModel):
    code: str
    message: str


class BulkEvaluationResponse(BaseModel):
    """Response model for a bulk evaluation."""
    results: Dict[str, EvaluationResponse]
    errors: Dict[str, EvaluationErrorPayload] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
