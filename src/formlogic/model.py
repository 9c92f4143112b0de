"""
Core Questionnaire Model Objects

Defines the fundamental data structures of a questionnaire:
    - Questions (typed input slots)
    - Sections (ordered groups of questions)
    - FormSchema (root container, immutable once published)
    - FormState (a snapshot of answers and progress)

ARCHITECTURAL RULE:
    Schema objects:
        - Know nothing about rendering or transport
        - Are immutable (frozen)
        - Are fully serializable
        - Represent structure, not behavior
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .rules import ConditionalRule, ValidationRule


AnswerValue = Union[str, int, float, bool, list, dict, None]

DEFAULT_STATE_VERSION = "1.0.0"


class QuestionType(Enum):
    """
    Closed set of question types.

    Adding a member here requires a matching type checker in the
    validation engine; the test suite asserts the dispatch table is
    exhaustive.
    """

    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    MULTISELECT = "multiselect"
    SCALE = "scale"
    NUMBER = "number"
    DATE = "date"
    EMAIL = "email"
    URL = "url"


@dataclass(frozen=True)
class Option:
    """A selectable choice for select/multiselect questions."""

    value: str
    label: str
    disabled: bool = False


@dataclass(frozen=True)
class ScaleConfig:
    """Bounds and labels of a scale question."""

    min: int = 1
    max: int = 5
    step: int = 1
    min_label: Optional[str] = None
    max_label: Optional[str] = None


@dataclass(frozen=True)
class Question:
    """
    A single questionnaire question.

    Properties:
        id:
            Unique identifier within the schema (stable across versions)

        label:
            Human-readable question text

        type:
            QuestionType tag; selects which config fields apply

        required:
            Whether an empty answer is an error (when visible)

        validation:
            Ordered ValidationRule tuple; first failure wins

        conditional:
            Optional ConditionalRule; when it evaluates false the
            question is hidden and never validated

    Type-specific config:
        options          select, multiselect
        max_selections   multiselect
        scale            scale
        min_value, max_value, step   number
        min_date, max_date           date (ISO-8601 strings)
        max_length, rows             text, textarea

    ARCHITECTURAL RULE:
        - conditional is about showing the question
        - validation is about accepting the answer
        - These are separate concerns
    """

    id: str
    label: str
    type: QuestionType = QuestionType.TEXT
    required: bool = False
    validation: Tuple[ValidationRule, ...] = ()
    conditional: Optional[ConditionalRule] = None
    options: Tuple[Option, ...] = ()
    scale: Optional[ScaleConfig] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    step: Optional[float] = None
    min_date: Optional[str] = None
    max_date: Optional[str] = None
    max_length: Optional[int] = None
    max_selections: Optional[int] = None
    rows: Optional[int] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False)

    def option_values(self) -> List[str]:
        return [opt.value for opt in self.options]


@dataclass(frozen=True)
class Section:
    """
    An ordered group of questions.

    Properties:
        id: Section identifier
        title: Display title
        questions: Ordered Question tuple
        is_required: Whether the section must be completed
        is_collapsible: Display hint for the rendering layer
    """

    id: str
    title: str
    questions: Tuple[Question, ...] = ()
    description: Optional[str] = None
    is_required: bool = True
    is_collapsible: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False)

    def get_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None


@dataclass(frozen=True)
class FormSettings:
    """
    Form-level behaviour settings.

    autosave_interval is in milliseconds.
    """

    allow_save_progress: bool = True
    autosave_interval: int = 2000
    show_progress: bool = True
    allow_section_jump: bool = True
    submit_button_text: str = "Submit"
    save_button_text: str = "Save Progress"
    theme: str = "auto"


@dataclass(frozen=True)
class FormSchema:
    """
    Root container for a questionnaire definition.

    This is THE primary artifact. It loads once per session and is
    shared read-only between the validation engine and the controller.

    INVARIANTS:
        - Question ids are unique across all sections
        - Section ids are unique
        - Conditionals reference declared questions
        (checked by schema_check.analyze_schema)
    """

    id: str
    title: str
    sections: Tuple[Section, ...] = ()
    settings: FormSettings = field(default_factory=FormSettings)
    description: Optional[str] = None
    version: str = DEFAULT_STATE_VERSION
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False)

    def get_section(self, section_id: str) -> Optional[Section]:
        """
        Retrieve a section by ID.

        Returns:
            Section object or None if not found
        """
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def get_question(self, question_id: str) -> Optional[Question]:
        """
        Retrieve a question by ID, searching sections in order.

        Returns:
            Question object or None if not found
        """
        for section in self.sections:
            question = section.get_question(question_id)
            if question is not None:
                return question
        return None

    def iter_questions(self) -> Iterator[Question]:
        for section in self.sections:
            yield from section.questions

    def section_ids(self) -> List[str]:
        return [section.id for section in self.sections]

    def section_index(self, section_id: str) -> int:
        """Position of a section in schema order, or -1."""
        for index, section in enumerate(self.sections):
            if section.id == section_id:
                return index
        return -1


@dataclass(frozen=True)
class FormProgress:
    """Completed sections and overall percentage (0-100)."""

    completed_sections: Tuple[str, ...] = ()
    overall_progress: int = 0


@dataclass(frozen=True)
class FormState:
    """
    A snapshot of one form session.

    Properties:
        form_id: Identifier of the FormSchema this state belongs to
        current_section: Section the respondent is on
        answers: Answer values keyed by question id; keys outside the
            schema are tolerated and never validated
        progress: FormProgress
        last_saved: ISO-8601 timestamp carried by the snapshot
        version: Schema/state version string

    IMPORTANT:
        The dataclass is frozen, but `answers` is a plain dict so it
        serializes directly. Producers hand out deep copies.
    """

    form_id: str
    current_section: Optional[str] = None
    answers: Dict[str, AnswerValue] = field(default_factory=dict, hash=False)
    progress: FormProgress = field(default_factory=FormProgress)
    last_saved: Optional[str] = None
    version: str = DEFAULT_STATE_VERSION


def create_empty_form_state(form_id: str) -> FormState:
    return FormState(form_id=form_id)


def value_kind(value: Any) -> str:
    """
    Runtime kind of an answer value.

    One of "null", "boolean", "number", "string", "object".
    Lists and dicts are both "object". Booleans are never numbers.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def is_number(value: Any) -> bool:
    return value_kind(value) == "number"
