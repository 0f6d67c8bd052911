"""
Flag data model for the evaluation engine.

Everything here is an immutable snapshot: flags own their versions, versions
own their rules, rules own their conditions. The engine only reads these
objects, so a snapshot can be shared by any number of concurrent evaluations.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union


class ConditionOperator(str, Enum):
    """Condition operators."""
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    CONTAINS = "CONTAINS"
    NOT_CONTAINS = "NOT_CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    GREATER_THAN_OR_EQUALS = "GREATER_THAN_OR_EQUALS"
    LESS_THAN_OR_EQUALS = "LESS_THAN_OR_EQUALS"
    IN = "IN"
    NOT_IN = "NOT_IN"
    IS_NULL = "IS_NULL"
    IS_NOT_NULL = "IS_NOT_NULL"
    IS_EMPTY = "IS_EMPTY"
    IS_NOT_EMPTY = "IS_NOT_EMPTY"


class ValueKind(str, Enum):
    """Declared type of a condition value."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    STRING_LIST = "string_list"
    NUMBER_LIST = "number_list"
    ABSENT = "absent"


Scalar = Union[str, int, float, bool]


def is_number(value: Any) -> bool:
    """True for finite ints and floats; booleans are not numbers here."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def format_number(value: Union[int, float]) -> str:
    """Render a number the way it would be written in JSON (1.0 -> "1")."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class ConditionValue:
    """Tagged condition value.

    ``kind`` tells the condition evaluator which type the context attribute
    is coerced to before comparing. Lists are stored as tuples.
    """
    kind: ValueKind
    value: Union[Scalar, Tuple[str, ...], Tuple[Union[int, float], ...], None] = None

    @classmethod
    def absent(cls) -> "ConditionValue":
        return cls(ValueKind.ABSENT)

    @classmethod
    def of(cls, raw: Any) -> "ConditionValue":
        """Classify a raw JSON-like value.

        Raises ValueError for shapes that have no kind (mappings, nested lists,
        NaN and infinities).
        """
        if raw is None:
            return cls.absent()
        if isinstance(raw, ConditionValue):
            return raw
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)
        if is_number(raw):
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, (list, tuple, set, frozenset)):
            items = list(raw)
            if items and all(is_number(item) for item in items):
                return cls(ValueKind.NUMBER_LIST, tuple(items))
            strings = []
            for item in items:
                if isinstance(item, bool):
                    strings.append("true" if item else "false")
                elif isinstance(item, str):
                    strings.append(item)
                elif is_number(item):
                    strings.append(format_number(item))
                else:
                    raise ValueError(f"Unsupported list item in condition value: {item!r}")
            return cls(ValueKind.STRING_LIST, tuple(strings))
        raise ValueError(f"Unsupported condition value: {raw!r}")

    @property
    def is_list(self) -> bool:
        return self.kind in (ValueKind.STRING_LIST, ValueKind.NUMBER_LIST)

    @property
    def element_kind(self) -> ValueKind:
        """Kind of a single member: list kinds map to their item kind."""
        if self.kind == ValueKind.STRING_LIST:
            return ValueKind.STRING
        if self.kind == ValueKind.NUMBER_LIST:
            return ValueKind.NUMBER
        return self.kind

    def members(self) -> FrozenSet[Any]:
        """The value treated as a set; a scalar is a one-element set."""
        if self.kind == ValueKind.ABSENT:
            return frozenset()
        if self.is_list:
            return frozenset(self.value)  # type: ignore[arg-type]
        return frozenset([self.value])

    def to_raw(self) -> Any:
        """Plain JSON-compatible form."""
        if self.is_list:
            return list(self.value)  # type: ignore[arg-type]
        return self.value


@dataclass(frozen=True)
class Condition:
    """Atomic attribute predicate."""
    attribute: str
    operator: ConditionOperator
    value: ConditionValue = field(default_factory=ConditionValue.absent)
    id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.value, ConditionValue):
            object.__setattr__(self, "value", ConditionValue.of(self.value))
        if not isinstance(self.operator, ConditionOperator):
            object.__setattr__(self, "operator", ConditionOperator(self.operator))


@dataclass(frozen=True)
class TargetingRule:
    """Conditional override of a flag's default state."""
    id: str
    name: str = ""
    conditions: Tuple[Condition, ...] = ()
    percentage: float = 100
    enabled: bool = True
    description: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.conditions, tuple):
            object.__setattr__(self, "conditions", tuple(self.conditions))
        if not is_number(self.percentage):
            raise ValueError(f"Rule {self.id}: percentage must be a number")
        if not 0 <= self.percentage <= 100:
            raise ValueError(f"Rule {self.id}: percentage must be between 0 and 100, got {self.percentage}")


@dataclass(frozen=True)
class FlagVersion:
    """Immutable snapshot of a flag's rule set."""
    id: str
    version: int
    targeting_rules: Tuple[TargetingRule, ...] = ()
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.targeting_rules, tuple):
            object.__setattr__(self, "targeting_rules", tuple(self.targeting_rules))


@dataclass(frozen=True)
class FeatureFlag:
    """A named on/off switch scoped to a tenant."""
    id: str
    key: str
    tenant_id: str
    enabled: bool = False
    current_version_id: Optional[str] = None
    versions: Tuple[FlagVersion, ...] = ()
    name: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.versions, tuple):
            object.__setattr__(self, "versions", tuple(self.versions))


@dataclass(frozen=True)
class EvaluationContext:
    """Caller-supplied attributes plus the identity used for bucketing."""
    identity_key: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def get(self, attribute: str) -> Any:
        """Look up an attribute; dotted names walk nested mappings.

        Returns None when the attribute is absent. An explicit null is
        treated the same as absent.
        """
        if attribute in self.attributes:
            return self.attributes[attribute]

        if "." in attribute:
            value: Any = self.attributes
            for part in attribute.split("."):
                if isinstance(value, Mapping) and part in value:
                    value = value[part]
                else:
                    return None
            return value

        return None


class EvaluationReason(str, Enum):
    """Why a decision was made."""
    FLAG_DISABLED = "FLAG_DISABLED"
    RULE_MATCH = "RULE_MATCH"
    DEFAULT = "DEFAULT"


class RuleOutcome(str, Enum):
    """What happened to one rule during an evaluation."""
    RULE_DISABLED = "RULE_DISABLED"
    CONDITION_FAILED = "CONDITION_FAILED"
    NOT_IN_ROLLOUT = "NOT_IN_ROLLOUT"
    MATCHED = "MATCHED"


@dataclass(frozen=True)
class RuleTrace:
    """Audit entry for one visited rule."""
    rule_id: str
    outcome: RuleOutcome
    failed_attribute: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.outcome == RuleOutcome.MATCHED


@dataclass(frozen=True)
class EvaluationResult:
    """Decision for one flag and one context."""
    flag_key: str
    decision: bool
    reason: EvaluationReason
    matched_rule_id: Optional[str] = None
    flag_version: Optional[int] = None
    trace: Tuple[RuleTrace, ...] = ()
    anomalies: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flag_key": self.flag_key,
            "decision": self.decision,
            "reason": self.reason.value,
            "matched_rule_id": self.matched_rule_id,
            "flag_version": self.flag_version,
            "trace": [
                {
                    "rule_id": entry.rule_id,
                    "outcome": entry.outcome.value,
                    "failed_attribute": entry.failed_attribute,
                }
                for entry in self.trace
            ],
            "anomalies": list(self.anomalies),
        }
