"""
Tests for serialization and deserialization of formlogic objects.

These tests ensure lossless JSON/YAML round-trip of schemas and form
states using the explicit functions in `formlogic.serialization`, and
that malformed input is rejected with SchemaError.
"""

import json

import pytest

from formlogic.aggregator import AnswerAggregator, MergeStrategy, ResolutionStrategy
from formlogic.examples import build_example_intake_schema
from formlogic.model import FormProgress, FormState, QuestionType
from formlogic.rules import ConditionOperator, RuleType
from formlogic.schema_check import SchemaError
from formlogic.serialization import (
    aggregation_result_to_dict,
    aggregator_options_from_dict,
    aggregator_options_from_yaml,
    schema_from_dict,
    schema_from_json,
    schema_from_yaml,
    schema_to_dict,
    schema_to_json,
    schema_to_yaml,
    state_from_dict,
    state_from_json,
    state_from_yaml,
    state_to_dict,
    state_to_json,
    state_to_yaml,
)
from formlogic.validation import ValidationEngine


def minimal_schema_dict(**overrides):
    d = {
        "id": "feedback",
        "title": "Feedback",
        "sections": [
            {
                "id": "main",
                "title": "Main",
                "questions": [
                    {"id": "q1", "label": "Name", "type": "text", "required": True},
                ],
            }
        ],
    }
    d.update(overrides)
    return d


def test_json_roundtrip():
    schema = build_example_intake_schema()
    before = schema_to_dict(schema)
    restored = schema_from_json(schema_to_json(schema))
    assert schema_to_dict(restored) == before
    assert restored == schema


def test_yaml_roundtrip():
    schema = build_example_intake_schema()
    before = schema_to_dict(schema)
    restored = schema_from_yaml(schema_to_yaml(schema))
    assert schema_to_dict(restored) == before


def test_wire_keys_are_camel_case():
    d = schema_to_dict(build_example_intake_schema())
    assert d["settings"]["autoSaveInterval"] == 2000
    goals = d["sections"][1]
    experience = next(q for q in goals["questions"] if q["id"] == "experience")
    assert experience["scaleConfig"]["minLabel"] == "New"
    budget = next(q for q in goals["questions"] if q["id"] == "budget_amount")
    assert budget["conditional"] == {"field": "has_budget", "operator": "equals", "value": "yes"}
    assert budget["min"] == 0


def test_minimal_schema_gets_defaults():
    schema = schema_from_dict(minimal_schema_dict())
    q = schema.get_question("q1")
    assert q.type == QuestionType.TEXT
    assert q.required
    assert schema.settings.autosave_interval == 2000
    assert schema.version == "1.0.0"


def test_rules_and_conditionals_parse():
    d = minimal_schema_dict()
    d["sections"][0]["questions"].append({
        "id": "q2",
        "label": "Code",
        "validation": [{"type": "pattern", "value": "^[A-Z]{3}$", "message": "Three capitals"}],
        "conditional": {"field": "q1", "operator": "notEquals", "value": ""},
    })
    q2 = schema_from_dict(d).get_question("q2")
    assert q2.validation[0].type == RuleType.PATTERN
    assert q2.validation[0].message == "Three capitals"
    assert q2.conditional.operator == ConditionOperator.NOT_EQUALS


class TestMalformedSchemas:
    """Malformed schema input raises SchemaError."""

    def test_missing_form_id(self):
        with pytest.raises(SchemaError, match="missing 'id'"):
            schema_from_dict(minimal_schema_dict(id=""))

    def test_missing_question_id(self):
        d = minimal_schema_dict()
        d["sections"][0]["questions"].append({"label": "No id"})
        with pytest.raises(SchemaError):
            schema_from_dict(d)

    def test_unknown_question_type(self):
        d = minimal_schema_dict()
        d["sections"][0]["questions"][0]["type"] = "signature"
        with pytest.raises(SchemaError, match="signature"):
            schema_from_dict(d)

    def test_unknown_operator(self):
        d = minimal_schema_dict()
        d["sections"][0]["questions"].append({
            "id": "q2",
            "conditional": {"field": "q1", "operator": "matches", "value": "x"},
        })
        with pytest.raises(SchemaError):
            schema_from_dict(d)

    def test_not_a_mapping(self):
        with pytest.raises(SchemaError, match="expected a mapping"):
            schema_from_dict(["not", "a", "schema"])

    def test_string_number_bound_strict(self):
        d = minimal_schema_dict()
        d["sections"][0]["questions"].append({"id": "n", "type": "number", "min": "0"})
        with pytest.raises(SchemaError, match="min_value must be a number"):
            schema_from_dict(d)

    @pytest.mark.parametrize("config", [
        {"type": "text", "maxLength": "80"},
        {"type": "multiselect", "options": [{"value": "a"}], "maxSelections": "2"},
        {"type": "scale", "scaleConfig": {"min": "1", "max": 5}},
        {"type": "text", "validation": [{"type": "minLength", "value": "2"}]},
    ])
    def test_string_config_strict(self, config):
        d = minimal_schema_dict()
        d["sections"][0]["questions"].append(dict(config, id="q2"))
        with pytest.raises(SchemaError):
            schema_from_dict(d)

    def test_string_number_bound_lenient_validates(self):
        d = minimal_schema_dict()
        d["sections"][0]["questions"].append({"id": "n", "type": "number", "min": "0"})
        with pytest.warns(UserWarning, match="min_value must be a number"):
            schema = schema_from_dict(d, strict=False)
        assert ValidationEngine(schema).validate_field("n", 5, {}) is None

    def test_duplicate_ids_strict(self):
        d = minimal_schema_dict()
        d["sections"][0]["questions"].append({"id": "q1", "label": "Again"})
        with pytest.raises(SchemaError) as exc_info:
            schema_from_dict(d)
        assert "Duplicate question ids: q1" in exc_info.value.issues

    def test_duplicate_ids_lenient_warns(self):
        d = minimal_schema_dict()
        d["sections"][0]["questions"].append({"id": "q1", "label": "Again"})
        with pytest.warns(UserWarning, match="Duplicate question ids"):
            schema = schema_from_dict(d, strict=False)
        assert len(schema.sections[0].questions) == 2


class TestFormState:
    """FormState round-trip and clamping."""

    def build_state(self):
        return FormState(
            form_id="learning-intake",
            current_section="goals",
            answers={"full_name": "Ada", "topics": ["sales", "compliance"], "experience": 4},
            progress=FormProgress(("profile",), 33),
            last_saved="2024-05-01T10:00:00Z",
        )

    def test_json_roundtrip(self):
        state = self.build_state()
        assert state_from_json(state_to_json(state)) == state

    def test_yaml_roundtrip(self):
        state = self.build_state()
        assert state_from_yaml(state_to_yaml(state)) == state

    def test_dict_keys(self):
        d = state_to_dict(self.build_state())
        assert d["formId"] == "learning-intake"
        assert d["progress"] == {"completedSections": ["profile"], "overallProgress": 33}
        assert d["lastSaved"] == "2024-05-01T10:00:00Z"

    def test_json_is_deterministic(self):
        state = self.build_state()
        assert json.loads(state_to_json(state)) == state_to_dict(state)
        assert state_to_json(state) == state_to_json(self.build_state())

    def test_progress_is_clamped(self):
        state = state_from_dict({"formId": "f", "progress": {"overallProgress": 140}})
        assert state.progress.overall_progress == 100
        state = state_from_dict({"formId": "f", "progress": {"overallProgress": -5}})
        assert state.progress.overall_progress == 0

    def test_sparse_dict(self):
        state = state_from_dict({"formId": "f"})
        assert state == FormState(form_id="f")


class TestAggregatorConfig:
    """Aggregator options and result export."""

    def test_options_from_dict(self):
        options = aggregator_options_from_dict({
            "conflictResolutionStrategy": "priority",
            "conflictThreshold": 1000,
            "mergeStrategy": "value-based",
            "sourcePriority": {"server": 10},
        })
        assert options.conflict_resolution_strategy == ResolutionStrategy.PRIORITY
        assert options.conflict_threshold == 1000
        assert options.merge_strategy == MergeStrategy.VALUE_BASED
        assert options.source_priority == {"server": 10}
        assert options.auto_resolve_conflicts

    def test_options_from_yaml(self):
        options = aggregator_options_from_yaml(
            "conflictResolutionStrategy: manual\nautoResolveConflicts: false\n"
        )
        assert options.conflict_resolution_strategy == ResolutionStrategy.MANUAL
        assert not options.auto_resolve_conflicts

    def test_empty_yaml_gives_defaults(self):
        options = aggregator_options_from_yaml("")
        assert options.conflict_resolution_strategy == ResolutionStrategy.TIMESTAMP
        assert options.conflict_threshold == 5000

    @pytest.mark.parametrize("bad", [
        {"conflictResolutionStrategy": "coin-flip"},
        {"mergeStrategy": "newest"},
        {"conflictThreshold": "soon"},
    ])
    def test_invalid_options(self, bad):
        with pytest.raises(ValueError, match="Invalid aggregator options"):
            aggregator_options_from_dict(bad)

    def test_aggregation_result_to_dict(self):
        laptop = FormState(form_id="a", answers={"role": "designer"}, last_saved="2024-05-01T10:00:00Z")
        phone = FormState(form_id="b", answers={"role": "manager"}, last_saved="2024-05-01T10:00:01Z")
        result = AnswerAggregator().aggregate_answers([laptop, phone])

        d = aggregation_result_to_dict(result)
        assert d["aggregatedData"] == {"role": "manager"}
        assert d["conflicts"][0]["fieldId"] == "role"
        assert d["conflicts"][0]["sources"] == [0, 1]
        assert d["resolution"][0]["resolution"] == "timestamp"
        assert d["resolution"][0]["resolvedValue"] == "manager"
        json.dumps(d)
