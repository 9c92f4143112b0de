"""
Rule objects for questionnaire schemas

Validation constraints and conditional-visibility predicates are
represented as small immutable objects, never as code strings.

ARCHITECTURAL RULE:
    Rules are structure only.
    Evaluation belongs in the validation engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class RuleType(Enum):
    """
    Validation rule kinds, in the vocabulary of the wire format.

    The order in which a question declares its rules is significant:
    the first failing rule's message wins.
    """

    REQUIRED = "required"
    MIN_LENGTH = "minLength"
    MAX_LENGTH = "maxLength"
    PATTERN = "pattern"
    MIN = "min"
    MAX = "max"
    EMAIL = "email"
    URL = "url"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ValidationRule:
    """
    A single declared validation constraint.

    Properties:
        type: RuleType enum
        value: Rule parameter (length, bound, or regex source), if any
        message: Override for the default error message
        custom_validator: Name of a registered callable (CUSTOM rules only)

    Example:
        ValidationRule(RuleType.MIN_LENGTH, 3, "Too short")
    """

    type: RuleType
    value: Optional[Union[int, float, str]] = None
    message: Optional[str] = None
    custom_validator: Optional[str] = None


class ConditionOperator(Enum):
    """
    Operators usable in a conditional-visibility rule.

    Each compares the referenced field's literal value against the
    rule's value. Keep this list closed.
    """

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"


@dataclass(frozen=True)
class ConditionalRule:
    """
    Predicate over another field's value controlling visibility.

    Example:
        "Show q_budget_detail only when q_has_budget equals 'yes'"

    Becomes:
        ConditionalRule(
            field="q_has_budget",
            operator=ConditionOperator.EQUALS,
            value="yes",
        )

    IMPORTANT:
        This object does NOT check that `field` exists.
        A dangling reference is a schema defect, reported by
        schema_check and tolerated at validation time.
    """

    field: str
    operator: ConditionOperator
    value: Union[str, int, float, bool]
