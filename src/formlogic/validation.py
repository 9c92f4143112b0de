"""
Validation Engine for formlogic schemas.

Pure evaluation: one schema, one answer map, no side effects.

Order of checks for a single field:
    1. Unknown question id        -> structural error
    2. Conditional rule is false  -> hidden, never validated
    3. Required and empty         -> required error
    4. Empty and optional         -> valid
    5. Declared rules, in order   -> first failure wins
    6. Type-specific checks       -> dispatch on QuestionType

IMPORTANT: A malformed schema never crashes validation. Schema defects
(dangling conditionals, broken patterns, bad date bounds) degrade to
"visible / no error" and are logged.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlsplit

from formlogic.clock import parse_timestamp
from formlogic.model import FormSchema, Question, QuestionType, is_number, value_kind
from formlogic.rules import ConditionalRule, ConditionOperator, RuleType, ValidationRule

logger = logging.getLogger(__name__)

CustomValidator = Callable[[Any, Mapping[str, Any]], Optional[str]]

REQUIRED_MESSAGE = "This field is required"
QUESTION_NOT_FOUND = "Question not found"
SECTION_NOT_FOUND = "Section not found"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass
class FieldError:
    """One failed check. `type` is "validation" or "section"."""
    field_id: str
    message: str
    type: str = "validation"


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[FieldError] = field(default_factory=list)
    warnings: List[FieldError] = field(default_factory=list)

    def as_error_map(self) -> Dict[str, str]:
        """Errors keyed by field id; the first error per field wins."""
        error_map: Dict[str, str] = {}
        for error in self.errors:
            error_map.setdefault(error.field_id, error.message)
        return error_map


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return len(value.strip()) == 0
    if isinstance(value, list):
        return len(value) == 0
    return False


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))


def is_valid_url(value: str) -> bool:
    if any(ch.isspace() for ch in value):
        return False
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.netloc or parts.path)


def _fmt(number: Any) -> str:
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return str(number)


@lru_cache(maxsize=256)
def _compile_pattern(source: str) -> Optional[re.Pattern]:
    try:
        return re.compile(source)
    except re.error as exc:
        logger.warning("Ignoring uncompilable validation pattern %r: %s", source, exc)
        return None


def _strict_equals(left: Any, right: Any) -> bool:
    return value_kind(left) == value_kind(right) and left == right


def evaluate_condition(rule: ConditionalRule, answers: Mapping[str, Any]) -> bool:
    """Evaluate a conditional rule against the referenced field's value."""
    field_value = answers.get(rule.field)
    expected = rule.value
    op = rule.operator

    if op == ConditionOperator.EQUALS:
        return _strict_equals(field_value, expected)
    if op == ConditionOperator.NOT_EQUALS:
        return not _strict_equals(field_value, expected)
    if op in (ConditionOperator.CONTAINS, ConditionOperator.NOT_CONTAINS):
        if isinstance(field_value, str) and isinstance(expected, str):
            found = expected in field_value
        elif isinstance(field_value, list):
            found = any(_strict_equals(item, expected) for item in field_value)
        else:
            return False
        return found if op == ConditionOperator.CONTAINS else not found
    if op == ConditionOperator.GREATER_THAN:
        return is_number(field_value) and is_number(expected) and field_value > expected
    if op == ConditionOperator.LESS_THAN:
        return is_number(field_value) and is_number(expected) and field_value < expected
    return True


# =========================================================================
# TYPE-SPECIFIC CHECKS
# =========================================================================

def _bound(question: Question, name: str, bound: Any) -> Optional[Any]:
    """A numeric config value, or None when it is unset or not a number."""
    if bound is None:
        return None
    if not is_number(bound):
        logger.debug("Question %s has non-numeric %s %r; ignoring it", question.id, name, bound)
        return None
    return bound


def _check_text(question: Question, value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return "Value must be a string"
    max_length = _bound(question, "max_length", question.max_length)
    if max_length and len(value) > max_length:
        return f"Maximum length is {_fmt(max_length)}"
    return None


def _check_select(question: Question, value: Any) -> Optional[str]:
    if value not in question.option_values():
        return "Invalid selection"
    return None


def _check_multiselect(question: Question, value: Any) -> Optional[str]:
    if not isinstance(value, list):
        return "Value must be an array"
    valid = question.option_values()
    if any(item not in valid for item in value):
        return "Invalid selections"
    max_selections = _bound(question, "max_selections", question.max_selections)
    if max_selections and len(value) > max_selections:
        return f"Maximum {_fmt(max_selections)} selections allowed"
    return None


def _check_scale(question: Question, value: Any) -> Optional[str]:
    if not is_number(value):
        return "Value must be a number"
    scale = question.scale
    if scale is None:
        return None
    low = _bound(question, "scale.min", scale.min)
    high = _bound(question, "scale.max", scale.max)
    if low is None or high is None:
        return None
    if value < low or value > high:
        return f"Value must be between {_fmt(low)} and {_fmt(high)}"
    return None


def _check_number(question: Question, value: Any) -> Optional[str]:
    if not is_number(value):
        return "Value must be a number"
    min_value = _bound(question, "min_value", question.min_value)
    if min_value is not None and value < min_value:
        return f"Minimum value is {_fmt(min_value)}"
    max_value = _bound(question, "max_value", question.max_value)
    if max_value is not None and value > max_value:
        return f"Maximum value is {_fmt(max_value)}"
    return None


def _check_date(question: Question, value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return "Value must be a date string"
    moment = parse_timestamp(value)
    if moment is None:
        return "Invalid date format"
    if question.min_date:
        lower = parse_timestamp(question.min_date)
        if lower is None:
            logger.debug("Question %s has unparseable min_date %r", question.id, question.min_date)
        elif moment < lower:
            return f"Date must be after {question.min_date}"
    if question.max_date:
        upper = parse_timestamp(question.max_date)
        if upper is None:
            logger.debug("Question %s has unparseable max_date %r", question.id, question.max_date)
        elif moment > upper:
            return f"Date must be before {question.max_date}"
    return None


def _check_email(question: Question, value: Any) -> Optional[str]:
    if isinstance(value, str) and not is_valid_email(value):
        return "Invalid email format"
    return None


def _check_url(question: Question, value: Any) -> Optional[str]:
    if isinstance(value, str) and not is_valid_url(value):
        return "Invalid URL format"
    return None


TYPE_CHECKS: Dict[QuestionType, Callable[[Question, Any], Optional[str]]] = {
    QuestionType.TEXT: _check_text,
    QuestionType.TEXTAREA: _check_text,
    QuestionType.SELECT: _check_select,
    QuestionType.MULTISELECT: _check_multiselect,
    QuestionType.SCALE: _check_scale,
    QuestionType.NUMBER: _check_number,
    QuestionType.DATE: _check_date,
    QuestionType.EMAIL: _check_email,
    QuestionType.URL: _check_url,
}


class ValidationEngine:
    """
    Evaluates one FormSchema against answer maps.

    Args:
        schema: The published FormSchema
        custom_validators: Registry for CUSTOM rules, name -> callable
            taking (value, answers) and returning a message or None
    """

    def __init__(
        self,
        schema: FormSchema,
        custom_validators: Optional[Mapping[str, CustomValidator]] = None,
    ) -> None:
        self.schema = schema
        self.custom_validators: Dict[str, CustomValidator] = dict(custom_validators or {})

    def is_visible(self, question: Question, answers: Mapping[str, Any]) -> bool:
        """Whether the question's conditional rule lets it be shown."""
        rule = question.conditional
        if rule is None:
            return True
        if self.schema.get_question(rule.field) is None:
            logger.debug(
                "Question %s is conditional on unknown field %s; treating as visible",
                question.id, rule.field,
            )
            return True
        return evaluate_condition(rule, answers)

    def validate_field(
        self,
        question_id: str,
        value: Any,
        answers: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        """
        Validate a single field.

        Returns:
            An error message, or None when the value is acceptable
            (or the question is hidden).
        """
        answers = answers if answers is not None else {}
        question = self.schema.get_question(question_id)
        if question is None:
            return QUESTION_NOT_FOUND

        if not self.is_visible(question, answers):
            return None

        required_rule = next((r for r in question.validation if r.type == RuleType.REQUIRED), None)
        if is_empty(value):
            if question.required or required_rule is not None:
                if required_rule is not None and required_rule.message:
                    return required_rule.message
                return REQUIRED_MESSAGE
            return None

        for rule in question.validation:
            error = self._validate_rule(rule, value, question, answers)
            if error:
                return error

        return TYPE_CHECKS[question.type](question, value)

    def validate_section(self, section_id: str, answers: Mapping[str, Any]) -> ValidationResult:
        section = self.schema.get_section(section_id)
        if section is None:
            return ValidationResult(
                is_valid=False,
                errors=[FieldError(section_id, SECTION_NOT_FOUND, "section")],
            )

        errors: List[FieldError] = []
        for question in section.questions:
            message = self.validate_field(question.id, answers.get(question.id), answers)
            if message:
                errors.append(FieldError(question.id, message))
        return ValidationResult(is_valid=not errors, errors=errors)

    def validate_form(self, answers: Mapping[str, Any]) -> ValidationResult:
        errors: List[FieldError] = []
        warnings: List[FieldError] = []
        for section in self.schema.sections:
            result = self.validate_section(section.id, answers)
            errors.extend(result.errors)
            warnings.extend(result.warnings)
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def _validate_rule(
        self,
        rule: ValidationRule,
        value: Any,
        question: Question,
        answers: Mapping[str, Any],
    ) -> Optional[str]:
        kind = rule.type

        if kind == RuleType.REQUIRED:
            if is_empty(value):
                return rule.message or REQUIRED_MESSAGE

        elif kind == RuleType.MIN_LENGTH:
            if isinstance(value, str) and is_number(rule.value) and len(value) < rule.value:
                return rule.message or f"Minimum length is {_fmt(rule.value)}"

        elif kind == RuleType.MAX_LENGTH:
            if isinstance(value, str) and is_number(rule.value) and len(value) > rule.value:
                return rule.message or f"Maximum length is {_fmt(rule.value)}"

        elif kind == RuleType.PATTERN:
            if isinstance(value, str) and isinstance(rule.value, str) and rule.value:
                pattern = _compile_pattern(rule.value)
                if pattern is not None and not pattern.search(value):
                    return rule.message or "Invalid format"

        elif kind == RuleType.MIN:
            if is_number(value) and is_number(rule.value) and value < rule.value:
                return rule.message or f"Minimum value is {_fmt(rule.value)}"

        elif kind == RuleType.MAX:
            if is_number(value) and is_number(rule.value) and value > rule.value:
                return rule.message or f"Maximum value is {_fmt(rule.value)}"

        elif kind == RuleType.EMAIL:
            if isinstance(value, str) and not is_valid_email(value):
                return rule.message or "Invalid email format"

        elif kind == RuleType.URL:
            if isinstance(value, str) and not is_valid_url(value):
                return rule.message or "Invalid URL format"

        elif kind == RuleType.CUSTOM:
            return self._run_custom(rule, value, question, answers)

        return None

    def _run_custom(
        self,
        rule: ValidationRule,
        value: Any,
        question: Question,
        answers: Mapping[str, Any],
    ) -> Optional[str]:
        name = rule.custom_validator
        validator = self.custom_validators.get(name) if name else None
        if validator is None:
            logger.warning("No custom validator registered as %r (question %s)", name, question.id)
            return None
        try:
            message = validator(value, answers)
        except Exception:
            logger.exception("Custom validator %r failed on question %s", name, question.id)
            return rule.message or "Validation failed"
        if message:
            return rule.message or message
        return None


def create_validation_engine(
    schema: FormSchema,
    custom_validators: Optional[Mapping[str, CustomValidator]] = None,
) -> ValidationEngine:
    return ValidationEngine(schema, custom_validators)


def validate_form_data(schema: FormSchema, answers: Mapping[str, Any]) -> ValidationResult:
    """Validate a whole answer map against a schema."""
    return ValidationEngine(schema).validate_form(answers)


def validate_field(
    schema: FormSchema,
    question_id: str,
    value: Any,
    answers: Optional[Mapping[str, Any]] = None,
) -> Optional[str]:
    """Validate a single field against a schema."""
    return ValidationEngine(schema).validate_field(question_id, value, answers)
