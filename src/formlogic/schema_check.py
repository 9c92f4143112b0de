"""
Schema Checks — structural diagnostics for FormSchema objects.

This module provides read-only analysis of a schema before it is
handed to a controller:
    - Inventory counts
    - Duplicate question and section ids
    - Conditionals pointing at unknown or self fields
    - Type config problems (missing options, inverted bounds)
    - Broken validation patterns

IMPORTANT: This does NOT modify the schema. Loaders call check_schema()
in strict mode; at validation time the same defects merely degrade.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Set

from formlogic.clock import parse_timestamp
from formlogic.model import FormSchema, Question, QuestionType, is_number
from formlogic.rules import RuleType


class SchemaError(Exception):
    """Raised when a schema is malformed. `issues` lists every problem found."""

    def __init__(self, message: str, issues: List[str] | None = None) -> None:
        super().__init__(message)
        self.issues: List[str] = list(issues or [message])


@dataclass
class SchemaReport:
    """Analysis report for a form schema."""

    form_id: str
    total_sections: int = 0
    total_questions: int = 0
    required_questions: int = 0
    conditional_questions: int = 0

    question_types: Dict[str, int] = field(default_factory=dict)
    duplicate_question_ids: Set[str] = field(default_factory=set)
    duplicate_section_ids: Set[str] = field(default_factory=set)
    unknown_conditional_refs: Dict[str, str] = field(default_factory=dict)
    self_referencing: Set[str] = field(default_factory=set)
    empty_sections: List[str] = field(default_factory=list)

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        if msg not in self.errors:
            self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        if msg not in self.warnings:
            self.warnings.append(msg)


NUMERIC_RULES = (RuleType.MIN_LENGTH, RuleType.MAX_LENGTH, RuleType.MIN, RuleType.MAX)


def _check_question_config(question: Question, report: SchemaReport) -> None:
    qid = question.id

    if question.type in (QuestionType.SELECT, QuestionType.MULTISELECT) and not question.options:
        report.add_error(f"Question {qid}: {question.type.value} questions require options")

    numeric = [
        ("min_value", question.min_value),
        ("max_value", question.max_value),
        ("step", question.step),
        ("max_length", question.max_length),
        ("max_selections", question.max_selections),
        ("rows", question.rows),
    ]
    if question.scale is not None:
        numeric += [
            ("scale.min", question.scale.min),
            ("scale.max", question.scale.max),
            ("scale.step", question.scale.step),
        ]
    for label, bound in numeric:
        if bound is not None and not is_number(bound):
            report.add_error(f"Question {qid}: {label} must be a number, got {bound!r}")

    if question.type == QuestionType.SCALE and question.scale is not None:
        low, high = question.scale.min, question.scale.max
        if is_number(low) and is_number(high) and low >= high:
            report.add_error(f"Question {qid}: scale minimum must be less than maximum")

    low, high = question.min_value, question.max_value
    if is_number(low) and is_number(high) and low > high:
        report.add_error(f"Question {qid}: min_value is greater than max_value")

    for label, bound in (("min_date", question.min_date), ("max_date", question.max_date)):
        if bound and parse_timestamp(bound) is None:
            report.add_warning(f"Question {qid}: {label} {bound!r} is not an ISO date")

    lower, upper = parse_timestamp(question.min_date), parse_timestamp(question.max_date)
    if lower is not None and upper is not None and lower > upper:
        report.add_error(f"Question {qid}: min_date is after max_date")

    for rule in question.validation:
        if rule.type in NUMERIC_RULES and not is_number(rule.value):
            report.add_error(f"Question {qid}: {rule.type.value} rule needs a numeric value, got {rule.value!r}")
        if rule.type == RuleType.PATTERN and isinstance(rule.value, str):
            try:
                re.compile(rule.value)
            except re.error as exc:
                report.add_error(f"Question {qid}: invalid pattern {rule.value!r} ({exc})")
        if rule.type == RuleType.CUSTOM and not rule.custom_validator:
            report.add_warning(f"Question {qid}: custom rule without a validator name")


def analyze_schema(schema: FormSchema) -> SchemaReport:
    """
    Perform structural analysis of a FormSchema.

    Returns a SchemaReport; errors make the schema unpublishable,
    warnings are advisory.
    """
    report = SchemaReport(form_id=schema.id)
    report.total_sections = len(schema.sections)

    questions = list(schema.iter_questions())
    report.total_questions = len(questions)
    report.required_questions = sum(1 for q in questions if q.required)
    report.conditional_questions = sum(1 for q in questions if q.conditional is not None)
    report.question_types = dict(Counter(q.type.value for q in questions))

    # =========================================================================
    # 1. IDENTITY
    # =========================================================================

    question_counts = Counter(q.id for q in questions)
    report.duplicate_question_ids = {qid for qid, n in question_counts.items() if n > 1}

    section_counts = Counter(s.id for s in schema.sections)
    report.duplicate_section_ids = {sid for sid, n in section_counts.items() if n > 1}

    for section in schema.sections:
        if not section.questions:
            report.empty_sections.append(section.id)

    # =========================================================================
    # 2. CONDITIONAL REFERENCES
    # =========================================================================

    known_ids = set(question_counts)
    for question in questions:
        rule = question.conditional
        if rule is None:
            continue
        if rule.field == question.id:
            report.self_referencing.add(question.id)
        elif rule.field not in known_ids:
            report.unknown_conditional_refs[question.id] = rule.field

    # =========================================================================
    # 3. TYPE CONFIG
    # =========================================================================

    for question in questions:
        _check_question_config(question, report)

    # =========================================================================
    # 4. FLAGS
    # =========================================================================

    if not schema.id:
        report.add_error("Form ID is required")

    if not schema.sections:
        report.add_error("At least one section is required")

    if report.duplicate_question_ids:
        report.add_error(
            f"Duplicate question ids: {', '.join(sorted(report.duplicate_question_ids))}"
        )

    if report.duplicate_section_ids:
        report.add_error(
            f"Duplicate section ids: {', '.join(sorted(report.duplicate_section_ids))}"
        )

    for qid, target in sorted(report.unknown_conditional_refs.items()):
        report.add_error(f"Question {qid}: conditional references unknown field {target}")

    for qid in sorted(report.self_referencing):
        report.add_error(f"Question {qid}: conditional references itself")

    if report.empty_sections:
        report.add_warning(f"Sections without questions: {', '.join(report.empty_sections)}")

    if not is_number(schema.settings.autosave_interval):
        report.add_error(
            f"Autosave interval must be a number, got {schema.settings.autosave_interval!r}"
        )
    elif schema.settings.autosave_interval < 1000:
        report.add_warning(
            f"Autosave interval {schema.settings.autosave_interval}ms is below 1000ms"
        )

    return report


def check_schema(schema: FormSchema) -> SchemaReport:
    """
    Analyze a schema and raise if it has errors.

    Raises:
        SchemaError: listing every error found
    """
    report = analyze_schema(schema)
    if report.errors:
        raise SchemaError(
            f"Schema {schema.id!r} has {len(report.errors)} error(s): {report.errors[0]}",
            report.errors,
        )
    return report
