"""
Condition evaluation.

A condition compares one context attribute against a tagged value. The
attribute is coerced to the value's declared kind first; anything that cannot
be coerced makes the condition fail instead of raising.
"""

import re
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

from shared.logging import get_logger
from .models import (
    Condition, ConditionOperator, ConditionValue, EvaluationContext, ValueKind,
    format_number, is_number
)

_NUMBER_PATTERN = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def to_number(value: Any) -> Optional[float]:
    """Numeric view of a value; numeric strings count, booleans do not."""
    if is_number(value):
        return value
    if isinstance(value, str) and _NUMBER_PATTERN.fullmatch(value.strip()):
        return float(value)
    return None


def to_string(value: Any) -> Optional[str]:
    """String view of a scalar value."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_number(value):
        return format_number(value)
    return None


def to_boolean(value: Any) -> Optional[bool]:
    """Boolean view of a value; only booleans and "true"/"false" qualify."""
    if isinstance(value, bool):
        return value
    if value == "true":
        return True
    if value == "false":
        return False
    return None


_COERCERS: Dict[ValueKind, Callable[[Any], Any]] = {
    ValueKind.STRING: to_string,
    ValueKind.NUMBER: to_number,
    ValueKind.BOOLEAN: to_boolean,
}


def coerce(value: Any, kind: ValueKind) -> Any:
    """Coerce a scalar attribute to ``kind``; None when it cannot be done."""
    coercer = _COERCERS.get(kind)
    if coercer is None or isinstance(value, _SEQUENCE_TYPES) or isinstance(value, Mapping):
        return None
    return coercer(value)


def is_sequence(value: Any) -> bool:
    return isinstance(value, _SEQUENCE_TYPES)


class ConditionEvaluator:
    """Evaluates single conditions against an evaluation context."""

    def __init__(self):
        self.logger = get_logger("evaluation.conditions")
        self._handlers: Dict[ConditionOperator, Callable[[Any, ConditionValue], Optional[bool]]] = {
            ConditionOperator.EQUALS: self._equals,
            ConditionOperator.NOT_EQUALS: self._negate(self._equals),
            ConditionOperator.CONTAINS: self._contains,
            ConditionOperator.NOT_CONTAINS: self._negate(self._contains),
            ConditionOperator.STARTS_WITH: self._starts_with,
            ConditionOperator.ENDS_WITH: self._ends_with,
            ConditionOperator.GREATER_THAN: self._compare(lambda a, b: a > b),
            ConditionOperator.LESS_THAN: self._compare(lambda a, b: a < b),
            ConditionOperator.GREATER_THAN_OR_EQUALS: self._compare(lambda a, b: a >= b),
            ConditionOperator.LESS_THAN_OR_EQUALS: self._compare(lambda a, b: a <= b),
            ConditionOperator.IN: self._in,
            ConditionOperator.NOT_IN: self._negate(self._in),
            ConditionOperator.IS_NULL: lambda attribute, value: False,
            ConditionOperator.IS_NOT_NULL: lambda attribute, value: True,
            ConditionOperator.IS_EMPTY: lambda attribute, value: self._is_empty(attribute),
            ConditionOperator.IS_NOT_EMPTY: lambda attribute, value: not self._is_empty(attribute),
        }

    def evaluate(self, condition: Condition, context: EvaluationContext) -> bool:
        """Evaluate a single condition. Never raises."""
        try:
            attribute = context.get(condition.attribute)

            if attribute is None:
                return condition.operator in (ConditionOperator.IS_NULL, ConditionOperator.IS_EMPTY)

            handler = self._handlers.get(condition.operator)
            if handler is None:
                self.logger.warning("Unknown condition operator", operator=condition.operator)
                return False

            # None means the comparison is undefined for these types
            return handler(attribute, condition.value) is True

        except Exception as e:
            self.logger.error(
                "Error evaluating condition",
                attribute=condition.attribute,
                operator=condition.operator.value,
                error=str(e)
            )
            return False

    @staticmethod
    def _negate(handler: Callable[[Any, ConditionValue], Optional[bool]]):
        def negated(attribute: Any, value: ConditionValue) -> Optional[bool]:
            result = handler(attribute, value)
            return None if result is None else not result
        return negated

    @staticmethod
    def _equals(attribute: Any, value: ConditionValue) -> Optional[bool]:
        if value.kind == ValueKind.ABSENT:
            return None

        if value.is_list:
            if not is_sequence(attribute):
                return None
            coerced = tuple(coerce(item, value.element_kind) for item in attribute)
            if any(item is None for item in coerced):
                return None
            return coerced == value.value

        coerced = coerce(attribute, value.kind)
        if coerced is None:
            return None
        return coerced == value.value

    @staticmethod
    def _contains(attribute: Any, value: ConditionValue) -> Optional[bool]:
        if value.kind == ValueKind.ABSENT or value.is_list:
            return None

        if is_sequence(attribute):
            return any(coerce(item, value.kind) == value.value for item in attribute)

        if isinstance(attribute, str):
            needle = to_string(value.value)
            return None if needle is None else needle in attribute

        return None

    @staticmethod
    def _starts_with(attribute: Any, value: ConditionValue) -> Optional[bool]:
        if not isinstance(attribute, str) or value.is_list:
            return None
        prefix = to_string(value.value)
        return None if prefix is None else attribute.startswith(prefix)

    @staticmethod
    def _ends_with(attribute: Any, value: ConditionValue) -> Optional[bool]:
        if not isinstance(attribute, str) or value.is_list:
            return None
        suffix = to_string(value.value)
        return None if suffix is None else attribute.endswith(suffix)

    @staticmethod
    def _compare(predicate: Callable[[float, float], bool]):
        def compare(attribute: Any, value: ConditionValue) -> Optional[bool]:
            if value.kind not in (ValueKind.NUMBER, ValueKind.STRING):
                return None
            left = coerce(attribute, ValueKind.NUMBER)
            right = to_number(value.value)
            if left is None or right is None:
                return None
            return predicate(left, right)
        return compare

    @staticmethod
    def _in(attribute: Any, value: ConditionValue) -> Optional[bool]:
        if value.kind == ValueKind.ABSENT:
            return None

        members = value.members()
        kind = value.element_kind

        if is_sequence(attribute):
            coerced = [coerce(item, kind) for item in attribute]
            if any(item is None for item in coerced):
                return None
            return any(item in members for item in coerced)

        coerced = coerce(attribute, kind)
        if coerced is None:
            return None
        return coerced in members

    @staticmethod
    def _is_empty(attribute: Any) -> bool:
        if isinstance(attribute, str):
            return attribute == ""
        if is_sequence(attribute) or isinstance(attribute, Mapping):
            return len(attribute) == 0
        return False
