"""
Serialization helpers for formlogic objects (FormSchema, FormState, ...).

Provides JSON/YAML round-trip via an intermediate dict representation.
Dicts use the camelCase wire format shared with the UI and storage
layers (formId, lastSaved, scaleConfig, ...). Keep the structure stable
and explicit.
"""
from __future__ import annotations

import json
import warnings
from typing import Any, Dict, List

import yaml

from formlogic.aggregator import (
    AggregationResult,
    AggregatorOptions,
    MergeStrategy,
    ResolutionStrategy,
)
from formlogic.model import (
    FormProgress,
    FormSchema,
    FormSettings,
    FormState,
    Option,
    Question,
    QuestionType,
    ScaleConfig,
    Section,
)
from formlogic.rules import ConditionalRule, ConditionOperator, RuleType, ValidationRule
from formlogic.schema_check import SchemaError, analyze_schema


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def _require(d: Any, key: str, where: str) -> Any:
    if not isinstance(d, dict):
        raise SchemaError(f"{where}: expected a mapping, got {type(d).__name__}")
    if key not in d or d[key] in (None, ""):
        raise SchemaError(f"{where}: missing '{key}'")
    return d[key]


def _enum(enum_cls, raw: Any, where: str):
    try:
        return enum_cls(raw)
    except ValueError:
        raise SchemaError(f"{where}: unsupported {enum_cls.__name__} {raw!r}") from None


# =========================================================================
# RULES
# =========================================================================

def rule_to_dict(r: ValidationRule) -> Dict[str, Any]:
    return _drop_none({
        "type": r.type.value,
        "value": r.value,
        "message": r.message,
        "customValidator": r.custom_validator,
    })


def rule_from_dict(d: Dict[str, Any], where: str = "rule") -> ValidationRule:
    return ValidationRule(
        type=_enum(RuleType, _require(d, "type", where), where),
        value=d.get("value"),
        message=d.get("message"),
        custom_validator=d.get("customValidator"),
    )


def conditional_to_dict(c: ConditionalRule | None) -> Dict[str, Any] | None:
    if c is None:
        return None
    return {"field": c.field, "operator": c.operator.value, "value": c.value}


def conditional_from_dict(d: Dict[str, Any] | None, where: str = "conditional") -> ConditionalRule | None:
    if d is None:
        return None
    return ConditionalRule(
        field=_require(d, "field", where),
        operator=_enum(ConditionOperator, _require(d, "operator", where), where),
        value=d.get("value"),
    )


# =========================================================================
# SCHEMA
# =========================================================================

def option_to_dict(o: Option) -> Dict[str, Any]:
    return {"value": o.value, "label": o.label, "disabled": o.disabled}


def option_from_dict(d: Dict[str, Any], where: str = "option") -> Option:
    value = _require(d, "value", where)
    return Option(value=value, label=d.get("label", value), disabled=d.get("disabled", False))


def scale_to_dict(s: ScaleConfig | None) -> Dict[str, Any] | None:
    if s is None:
        return None
    return _drop_none({
        "min": s.min,
        "max": s.max,
        "step": s.step,
        "minLabel": s.min_label,
        "maxLabel": s.max_label,
    })


def scale_from_dict(d: Dict[str, Any] | None) -> ScaleConfig | None:
    if d is None:
        return None
    return ScaleConfig(
        min=d.get("min", 1),
        max=d.get("max", 5),
        step=d.get("step", 1),
        min_label=d.get("minLabel"),
        max_label=d.get("maxLabel"),
    )


def question_to_dict(q: Question) -> Dict[str, Any]:
    d = {
        "id": q.id,
        "label": q.label,
        "type": q.type.value,
        "required": q.required,
        "validation": [rule_to_dict(r) for r in q.validation],
        "conditional": conditional_to_dict(q.conditional),
        "options": [option_to_dict(o) for o in q.options] or None,
        "scaleConfig": scale_to_dict(q.scale),
        "min": q.min_value,
        "max": q.max_value,
        "step": q.step,
        "minDate": q.min_date,
        "maxDate": q.max_date,
        "maxLength": q.max_length,
        "maxSelections": q.max_selections,
        "rows": q.rows,
        "placeholder": q.placeholder,
        "helpText": q.help_text,
        "metadata": q.metadata or None,
    }
    return _drop_none(d)


def question_from_dict(d: Dict[str, Any]) -> Question:
    qid = _require(d, "id", "question")
    where = f"question {qid}"
    return Question(
        id=qid,
        label=d.get("label", ""),
        type=_enum(QuestionType, d.get("type", "text"), where),
        required=bool(d.get("required", False)),
        validation=tuple(rule_from_dict(r, where) for r in d.get("validation") or []),
        conditional=conditional_from_dict(d.get("conditional"), where),
        options=tuple(option_from_dict(o, where) for o in d.get("options") or []),
        scale=scale_from_dict(d.get("scaleConfig")),
        min_value=d.get("min"),
        max_value=d.get("max"),
        step=d.get("step"),
        min_date=d.get("minDate"),
        max_date=d.get("maxDate"),
        max_length=d.get("maxLength"),
        max_selections=d.get("maxSelections"),
        rows=d.get("rows"),
        placeholder=d.get("placeholder"),
        help_text=d.get("helpText"),
        metadata=d.get("metadata") or {},
    )


def section_to_dict(s: Section) -> Dict[str, Any]:
    return _drop_none({
        "id": s.id,
        "title": s.title,
        "description": s.description,
        "questions": [question_to_dict(q) for q in s.questions],
        "isRequired": s.is_required,
        "isCollapsible": s.is_collapsible,
        "metadata": s.metadata or None,
    })


def section_from_dict(d: Dict[str, Any]) -> Section:
    sid = _require(d, "id", "section")
    return Section(
        id=sid,
        title=d.get("title", sid),
        description=d.get("description"),
        questions=tuple(question_from_dict(q) for q in d.get("questions") or []),
        is_required=d.get("isRequired", True),
        is_collapsible=d.get("isCollapsible", True),
        metadata=d.get("metadata") or {},
    )


def settings_to_dict(s: FormSettings) -> Dict[str, Any]:
    return {
        "allowSaveProgress": s.allow_save_progress,
        "autoSaveInterval": s.autosave_interval,
        "showProgress": s.show_progress,
        "allowSectionJump": s.allow_section_jump,
        "submitButtonText": s.submit_button_text,
        "saveButtonText": s.save_button_text,
        "theme": s.theme,
    }


def settings_from_dict(d: Dict[str, Any] | None) -> FormSettings:
    d = d or {}
    defaults = FormSettings()
    return FormSettings(
        allow_save_progress=d.get("allowSaveProgress", defaults.allow_save_progress),
        autosave_interval=d.get("autoSaveInterval", defaults.autosave_interval),
        show_progress=d.get("showProgress", defaults.show_progress),
        allow_section_jump=d.get("allowSectionJump", defaults.allow_section_jump),
        submit_button_text=d.get("submitButtonText", defaults.submit_button_text),
        save_button_text=d.get("saveButtonText", defaults.save_button_text),
        theme=d.get("theme", defaults.theme),
    )


def schema_to_dict(s: FormSchema) -> Dict[str, Any]:
    return _drop_none({
        "id": s.id,
        "title": s.title,
        "description": s.description,
        "version": s.version,
        "sections": [section_to_dict(sec) for sec in s.sections],
        "settings": settings_to_dict(s.settings),
        "metadata": s.metadata or None,
    })


def schema_from_dict(d: Dict[str, Any], strict: bool = True) -> FormSchema:
    """
    Build a FormSchema from its wire dict.

    Args:
        d: Parsed schema mapping
        strict: Raise SchemaError on structural errors (duplicate ids,
            dangling conditionals, ...). When False they are reported
            as UserWarnings instead.

    Raises:
        SchemaError: On malformed input, or structural errors in strict mode
    """
    form_id = _require(d, "id", "form")
    schema = FormSchema(
        id=form_id,
        title=d.get("title", form_id),
        description=d.get("description"),
        version=str(d.get("version", "1.0.0")),
        sections=tuple(section_from_dict(sec) for sec in d.get("sections") or []),
        settings=settings_from_dict(d.get("settings")),
        metadata=d.get("metadata") or {},
    )

    report = analyze_schema(schema)
    if report.errors:
        if strict:
            raise SchemaError(f"Schema {form_id!r} is malformed: {report.errors[0]}", report.errors)
        for error in report.errors:
            warnings.warn(f"Schema {form_id}: {error}", UserWarning)
    return schema


def schema_to_json(s: FormSchema) -> str:
    return json.dumps(schema_to_dict(s), sort_keys=True)


def schema_from_json(s: str, strict: bool = True) -> FormSchema:
    return schema_from_dict(json.loads(s), strict=strict)


def schema_to_yaml(s: FormSchema) -> str:
    return yaml.safe_dump(schema_to_dict(s), sort_keys=False)


def schema_from_yaml(s: str, strict: bool = True) -> FormSchema:
    return schema_from_dict(yaml.safe_load(s), strict=strict)


# =========================================================================
# STATE
# =========================================================================

def state_to_dict(s: FormState) -> Dict[str, Any]:
    return {
        "formId": s.form_id,
        "currentSection": s.current_section,
        "answers": s.answers,
        "progress": {
            "completedSections": list(s.progress.completed_sections),
            "overallProgress": s.progress.overall_progress,
        },
        "lastSaved": s.last_saved,
        "version": s.version,
    }


def state_from_dict(d: Dict[str, Any]) -> FormState:
    progress = d.get("progress") or {}
    overall = progress.get("overallProgress", 0)
    return FormState(
        form_id=d.get("formId", ""),
        current_section=d.get("currentSection"),
        answers=dict(d.get("answers") or {}),
        progress=FormProgress(
            completed_sections=tuple(progress.get("completedSections") or ()),
            overall_progress=max(0, min(100, int(overall))),
        ),
        last_saved=d.get("lastSaved"),
        version=str(d.get("version", "1.0.0")),
    )


def state_to_json(s: FormState) -> str:
    return json.dumps(state_to_dict(s), sort_keys=True)


def state_from_json(s: str) -> FormState:
    return state_from_dict(json.loads(s))


def state_to_yaml(s: FormState) -> str:
    return yaml.safe_dump(state_to_dict(s))


def state_from_yaml(s: str) -> FormState:
    return state_from_dict(yaml.safe_load(s))


# =========================================================================
# AGGREGATION
# =========================================================================

def aggregation_result_to_dict(r: AggregationResult) -> Dict[str, Any]:
    """Plain-data view of an aggregation, for audit tooling."""
    conflicts: List[Dict[str, Any]] = [
        {
            "fieldId": c.field_id,
            "currentValue": c.current_value,
            "incomingValue": c.incoming_value,
            "timestamp": c.timestamp,
            "conflictType": c.conflict_type.value,
            "severity": c.severity.value,
            "sources": [c.current_source, c.incoming_source],
        }
        for c in r.conflicts
    ]
    resolutions: List[Dict[str, Any]] = [
        _drop_none({
            "fieldId": res.field_id,
            "resolvedValue": res.resolved_value,
            "resolution": res.strategy.value,
            "timestamp": res.timestamp,
            "resolvedBy": res.resolved_by,
            "requiresReview": res.requires_review,
        })
        for res in r.resolutions
    ]
    return {
        "aggregatedData": r.aggregated_data,
        "conflicts": conflicts,
        "resolution": resolutions,
    }


def aggregator_options_from_dict(d: Dict[str, Any] | None) -> AggregatorOptions:
    """Read aggregator options from config keys (camelCase)."""
    d = d or {}
    defaults = AggregatorOptions()
    try:
        return AggregatorOptions(
            conflict_resolution_strategy=ResolutionStrategy(
                d.get("conflictResolutionStrategy", defaults.conflict_resolution_strategy.value)
            ),
            auto_resolve_conflicts=bool(d.get("autoResolveConflicts", defaults.auto_resolve_conflicts)),
            conflict_threshold=float(d.get("conflictThreshold", defaults.conflict_threshold)),
            merge_strategy=MergeStrategy(d.get("mergeStrategy", defaults.merge_strategy.value)),
            source_priority=dict(d.get("sourcePriority") or {}),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid aggregator options: {exc}") from exc


def aggregator_options_from_yaml(s: str) -> AggregatorOptions:
    return aggregator_options_from_dict(yaml.safe_load(s))
