"""
Flag definition codec.

Flags are published by the management API as JSON documents with camelCase
keys (``tenantId``, ``currentVersionId``, ``targetingRules``). snake_case keys
are accepted as well. Documents are validated here, at the boundary, so the
engine only ever sees well-formed snapshots.
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from shared.errors import FlagDefinitionError
from ..engine.models import (
    Condition, ConditionOperator, ConditionValue, FeatureFlag, FlagVersion, TargetingRule
)


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore"
    )


class ConditionDocument(_Document):
    """Published shape of a condition."""
    id: Optional[str] = None
    attribute: str = Field(..., min_length=1)
    operator: ConditionOperator
    value: Any = None

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("value")
    @classmethod
    def _tag_value(cls, value: Any) -> ConditionValue:
        return ConditionValue.of(value)


class TargetingRuleDocument(_Document):
    """Published shape of a targeting rule."""
    id: str = Field(..., min_length=1)
    name: str = ""
    description: Optional[str] = None
    conditions: List[ConditionDocument] = Field(default_factory=list)
    percentage: float = Field(100, ge=0, le=100)
    enabled: bool = True


class FlagVersionDocument(_Document):
    """Published shape of a flag version."""
    id: str = Field(..., min_length=1)
    version: int = Field(..., ge=0)
    targeting_rules: List[TargetingRuleDocument] = Field(default_factory=list)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FeatureFlagDocument(_Document):
    """Published shape of a feature flag with its versions."""
    id: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    enabled: bool = False
    current_version_id: Optional[str] = None
    versions: List[FlagVersionDocument] = Field(default_factory=list)
    name: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def _unique_versions(self) -> "FeatureFlagDocument":
        numbers = [v.version for v in self.versions]
        if len(numbers) != len(set(numbers)):
            raise ValueError(f"Flag {self.key}: duplicate version numbers {sorted(numbers)}")
        ids = [v.id for v in self.versions]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Flag {self.key}: duplicate version ids")
        return self


def _to_snapshot(document: FeatureFlagDocument) -> FeatureFlag:
    return FeatureFlag(
        id=document.id,
        key=document.key,
        tenant_id=document.tenant_id,
        enabled=document.enabled,
        current_version_id=document.current_version_id,
        name=document.name,
        description=document.description,
        versions=tuple(
            FlagVersion(
                id=version.id,
                version=version.version,
                created_by=version.created_by,
                updated_by=version.updated_by,
                created_at=version.created_at,
                updated_at=version.updated_at,
                targeting_rules=tuple(
                    TargetingRule(
                        id=rule.id,
                        name=rule.name,
                        description=rule.description,
                        percentage=rule.percentage,
                        enabled=rule.enabled,
                        conditions=tuple(
                            Condition(
                                id=condition.id,
                                attribute=condition.attribute,
                                operator=condition.operator,
                                value=ConditionValue.of(condition.value)
                            )
                            for condition in rule.conditions
                        )
                    )
                    for rule in version.targeting_rules
                )
            )
            for version in document.versions
        )
    )


def _error_details(exc: pydantic.ValidationError) -> Dict[str, Any]:
    return {
        "errors": [
            {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
            for error in exc.errors()
        ]
    }


def decode_flag(data: Union[Mapping[str, Any], str, bytes]) -> FeatureFlag:
    """Validate one flag document (mapping or JSON text) into a snapshot."""
    try:
        if isinstance(data, (str, bytes)):
            document = FeatureFlagDocument.model_validate_json(data)
        else:
            document = FeatureFlagDocument.model_validate(data)
    except pydantic.ValidationError as e:
        raise FlagDefinitionError("Invalid flag definition", _error_details(e)) from e

    return _to_snapshot(document)


def decode_flags(data: Union[Mapping[str, Any], Sequence[Any]]) -> List[FeatureFlag]:
    """Decode a flags file: either a list of flags or ``{"flags": [...]}``."""
    if isinstance(data, Mapping):
        data = data.get("flags", [])
    if not isinstance(data, Sequence) or isinstance(data, (str, bytes)):
        raise FlagDefinitionError("Flags document must be a list of flags")

    flags = []
    for index, item in enumerate(data):
        try:
            flags.append(decode_flag(item))
        except FlagDefinitionError as e:
            e.details["index"] = index
            raise
    return flags


def encode_flag(flag: FeatureFlag) -> Dict[str, Any]:
    """Render a snapshot in the published camelCase shape."""
    return {
        "id": flag.id,
        "key": flag.key,
        "tenantId": flag.tenant_id,
        "enabled": flag.enabled,
        "currentVersionId": flag.current_version_id,
        "name": flag.name,
        "description": flag.description,
        "versions": [
            {
                "id": version.id,
                "version": version.version,
                "createdBy": version.created_by,
                "updatedBy": version.updated_by,
                "createdAt": version.created_at.isoformat() if version.created_at else None,
                "updatedAt": version.updated_at.isoformat() if version.updated_at else None,
                "targetingRules": [
                    {
                        "id": rule.id,
                        "name": rule.name,
                        "description": rule.description,
                        "percentage": rule.percentage,
                        "enabled": rule.enabled,
                        "conditions": [
                            {
                                "id": condition.id,
                                "attribute": condition.attribute,
                                "operator": condition.operator.value,
                                "value": condition.value.to_raw()
                            }
                            for condition in rule.conditions
                        ]
                    }
                    for rule in version.targeting_rules
                ]
            }
            for version in flag.versions
        ]
    }
