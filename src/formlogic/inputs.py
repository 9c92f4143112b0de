"""
Input capability registry.

Maps each canonical question type to what a rendering layer needs to
know about it. Unknown type strings resolve to one declared fallback;
there is no fuzzy matching of type names.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Union

from formlogic.model import QuestionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InputCapability:
    """
    Properties:
        widget: Suggested widget name for the UI layer
        value_kind: Kind of answer the input produces
            ("string", "number", "array")
        uses_options: Whether the question's options apply
        multiple: Whether several values can be chosen
    """
    widget: str
    value_kind: str
    uses_options: bool = False
    multiple: bool = False


INPUT_CAPABILITIES: Dict[QuestionType, InputCapability] = {
    QuestionType.TEXT: InputCapability("text-input", "string"),
    QuestionType.TEXTAREA: InputCapability("text-area", "string"),
    QuestionType.SELECT: InputCapability("radio-group", "string", uses_options=True),
    QuestionType.MULTISELECT: InputCapability("checkbox-group", "array", uses_options=True, multiple=True),
    QuestionType.SCALE: InputCapability("slider", "number"),
    QuestionType.NUMBER: InputCapability("number-input", "number"),
    QuestionType.DATE: InputCapability("date-picker", "string"),
    QuestionType.EMAIL: InputCapability("email-input", "string"),
    QuestionType.URL: InputCapability("url-input", "string"),
}

FALLBACK_TYPE = QuestionType.TEXT


def resolve_input(type_tag: Union[str, QuestionType]) -> InputCapability:
    """Capability for a type tag, or the fallback for unknown tags."""
    if isinstance(type_tag, QuestionType):
        return INPUT_CAPABILITIES[type_tag]
    try:
        question_type = QuestionType(type_tag.strip().lower())
    except (ValueError, AttributeError):
        logger.info("Unknown input type %r; using %s", type_tag, FALLBACK_TYPE.value)
        return INPUT_CAPABILITIES[FALLBACK_TYPE]
    return INPUT_CAPABILITIES[question_type]
