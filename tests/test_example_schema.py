"""
Test the example learning-program intake form.

Validates that the example builder produces a well-formed schema and
that a realistic answer set passes, section by section.
"""

from formlogic.examples import build_example_intake_schema
from formlogic.schema_check import check_schema
from formlogic.validation import validate_form_data


COMPLETE_ANSWERS = {
    "full_name": "Ada Lovelace",
    "email": "ada@example.com",
    "website": "https://example.com",
    "role": "designer",
    "topics": ["onboarding", "leadership"],
    "experience": 3,
    "has_budget": "yes",
    "budget_amount": 12000,
    "start_date": "2025-03-01",
    "notes": "Blended delivery preferred.",
}


def test_example_intake_structure():
    schema = build_example_intake_schema(form_id="intake-2025", autosave_interval=5000)
    assert schema.id == "intake-2025"
    assert schema.settings.autosave_interval == 5000
    assert schema.section_ids() == ["profile", "goals", "timeline"]
    assert not schema.get_section("timeline").is_required

    report = check_schema(schema)
    assert report.conditional_questions == 1


def test_complete_answers_are_valid():
    result = validate_form_data(build_example_intake_schema(), COMPLETE_ANSWERS)
    assert result.is_valid
    assert result.errors == []


def test_budget_only_required_when_declared():
    answers = dict(COMPLETE_ANSWERS, has_budget="no")
    del answers["budget_amount"]
    assert validate_form_data(build_example_intake_schema(), answers).is_valid

    answers["has_budget"] = "yes"
    result = validate_form_data(build_example_intake_schema(), answers)
    assert result.as_error_map() == {"budget_amount": "This field is required"}


def test_notes_message_override():
    answers = dict(COMPLETE_ANSWERS, notes="x" * 501)
    result = validate_form_data(build_example_intake_schema(), answers)
    assert result.as_error_map() == {"notes": "Please keep notes under 500 characters"}
