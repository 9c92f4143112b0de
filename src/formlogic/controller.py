"""
Form State Controller: owns the live state of one form session.

One controller per session; there is no shared global store. The
controller:
    - Writes answers and re-validates incrementally
    - Moves the current-section pointer along schema order
    - Tracks explicit section completion and overall progress
    - Produces immutable FormState snapshots for persistence and
      aggregation, and takes merged answers back

Every operation is synchronous. Before initialize_form() each call is a
no-op returning an empty result.
"""
from __future__ import annotations

import copy
import inspect
import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from formlogic.aggregator import AggregationResult
from formlogic.clock import Clock, elapsed_ms, parse_timestamp, to_iso, utc_now
from formlogic.model import FormProgress, FormSchema, FormState, is_number
from formlogic.persistence import FormStore
from formlogic.serialization import state_to_dict
from formlogic.validation import CustomValidator, ValidationEngine, ValidationResult

logger = logging.getLogger(__name__)


def _content_key(state: FormState) -> str:
    """Serialized snapshot without lastSaved, which changes on every write."""
    content = state_to_dict(state)
    content.pop("lastSaved", None)
    return json.dumps(content, sort_keys=True, default=repr)


class SaveStatus(Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class FormStateController:
    """
    Mediates every mutation of a form session's state.

    Args:
        clock: Callable returning an aware datetime; stamps snapshots
            and drives the autosave interval
        custom_validators: Passed to the ValidationEngine for CUSTOM rules
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        custom_validators: Optional[Mapping[str, CustomValidator]] = None,
    ) -> None:
        self.clock: Clock = clock or utc_now
        self.custom_validators = dict(custom_validators or {})

        self._schema: Optional[FormSchema] = None
        self._engine: Optional[ValidationEngine] = None
        self._answers: Dict[str, Any] = {}
        self._current_section: str = ""
        self._completed: List[str] = []
        self._overall_progress: int = 0
        self._errors: Dict[str, str] = {}
        self._is_valid: bool = False

        self._last_modified: Optional[datetime] = None
        self._loaded_last_saved: Optional[str] = None
        self._has_unsaved_changes: bool = False
        self._save_status: SaveStatus = SaveStatus.IDLE
        self._last_saved_payload: Optional[str] = None
        self._last_save_attempt: Optional[datetime] = None

    # =========================================================================
    # READ ACCESS
    # =========================================================================

    @property
    def schema(self) -> Optional[FormSchema]:
        return self._schema

    @property
    def is_initialized(self) -> bool:
        return self._schema is not None

    @property
    def answers(self) -> Dict[str, Any]:
        return copy.deepcopy(self._answers)

    @property
    def current_section(self) -> str:
        return self._current_section

    @property
    def completed_sections(self) -> Tuple[str, ...]:
        return tuple(self._completed)

    @property
    def overall_progress(self) -> int:
        return self._overall_progress

    @property
    def errors(self) -> Dict[str, str]:
        return dict(self._errors)

    @property
    def is_valid(self) -> bool:
        return self._is_valid

    @property
    def has_unsaved_changes(self) -> bool:
        return self._has_unsaved_changes

    @property
    def save_status(self) -> SaveStatus:
        return self._save_status

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def initialize_form(self, schema: FormSchema, initial_data: Optional[Mapping[str, Any]] = None) -> None:
        """Bind a (pre-validated) schema and start a fresh session."""
        self._schema = schema
        self._engine = ValidationEngine(schema, self.custom_validators)
        self._answers = copy.deepcopy(dict(initial_data or {}))
        self._current_section = schema.sections[0].id if schema.sections else ""
        self._completed = []
        self._overall_progress = 0
        self._errors = {}
        self._is_valid = False
        self._last_modified = None
        self._loaded_last_saved = None
        self._has_unsaved_changes = False
        self._save_status = SaveStatus.IDLE
        self._last_saved_payload = None
        self._last_save_attempt = self.clock()
        logger.debug("Initialized form %s with %d answers", schema.id, len(self._answers))

    def reset_form(self) -> None:
        if self._schema is None:
            return
        self._answers = {}
        self._current_section = self._schema.sections[0].id if self._schema.sections else ""
        self._completed = []
        self._overall_progress = 0
        self._errors = {}
        self._is_valid = False
        self._last_modified = None
        self._loaded_last_saved = None
        self._has_unsaved_changes = False
        self._save_status = SaveStatus.IDLE
        self._last_saved_payload = None

    def clear_form(self, store: Optional[FormStore] = None) -> None:
        if store is not None:
            store.clear()
        self.reset_form()

    def _touch(self) -> None:
        self._last_modified = self.clock()
        self._has_unsaved_changes = True

    # =========================================================================
    # ANSWERS
    # =========================================================================

    def set_field_value(self, field_id: str, value: Any) -> Optional[str]:
        """
        Write one answer and re-validate only that field.

        Questions whose conditional depends on this field lose their
        error when the new answer hides them.

        Returns:
            The field's error message, or None
        """
        if self._engine is None:
            return None

        self._answers[field_id] = value
        self._touch()

        # keys outside the schema are stored but never validated
        if self._schema.get_question(field_id) is None:
            return None

        error = self._engine.validate_field(field_id, value, self._answers)
        if error:
            self._errors[field_id] = error
        else:
            self._errors.pop(field_id, None)

        # dependents hidden by this answer drop their stale errors
        for question in self._schema.iter_questions():
            rule = question.conditional
            if rule is not None and rule.field == field_id and question.id in self._errors:
                if not self._engine.is_visible(question, self._answers):
                    self._errors.pop(question.id, None)
        return error

    def set_form_data(self, data: Mapping[str, Any]) -> ValidationResult:
        """Replace all answers, then run a full validation pass."""
        if self._engine is None:
            return ValidationResult(is_valid=False)
        self._answers = copy.deepcopy(dict(data))
        self._touch()
        return self.validate_form()

    def update_form_data(self, updates: Mapping[str, Any]) -> ValidationResult:
        """Merge several answers, then run a full validation pass."""
        if self._engine is None:
            return ValidationResult(is_valid=False)
        self._answers.update(copy.deepcopy(dict(updates)))
        self._touch()
        return self.validate_form()

    # =========================================================================
    # NAVIGATION AND PROGRESS
    # =========================================================================

    def set_current_section(self, section_id: str) -> bool:
        if self._schema is None or self._schema.get_section(section_id) is None:
            return False
        self._current_section = section_id
        return True

    def next_section(self) -> str:
        if self._schema is None:
            return ""
        index = self._schema.section_index(self._current_section)
        if index < len(self._schema.sections) - 1:
            self._current_section = self._schema.sections[index + 1].id
        return self._current_section

    def previous_section(self) -> str:
        if self._schema is None:
            return ""
        index = self._schema.section_index(self._current_section)
        if index > 0:
            self._current_section = self._schema.sections[index - 1].id
        return self._current_section

    def mark_section_complete(self, section_id: str) -> int:
        """Completion is explicit; it does not look at validation results."""
        if self._schema is None or self._schema.get_section(section_id) is None:
            return self._overall_progress
        if section_id not in self._completed:
            self._completed.append(section_id)
            self._recompute_progress()
            self._touch()
        return self._overall_progress

    def mark_section_incomplete(self, section_id: str) -> int:
        if self._schema is None or section_id not in self._completed:
            return self._overall_progress
        self._completed.remove(section_id)
        self._recompute_progress()
        self._touch()
        return self._overall_progress

    def _recompute_progress(self) -> None:
        total = len(self._schema.sections)
        if total == 0:
            self._overall_progress = 0
            return
        known = set(self._schema.section_ids())
        done = sum(1 for sid in self._completed if sid in known)
        self._overall_progress = max(0, min(100, round(100 * done / total)))

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate_field(self, field_id: str, value: Any) -> Optional[str]:
        if self._engine is None:
            return None
        return self._engine.validate_field(field_id, value, self._answers)

    def validate_section(self, section_id: str) -> ValidationResult:
        if self._engine is None:
            return ValidationResult(is_valid=False)
        return self._engine.validate_section(section_id, self._answers)

    def validate_form(self) -> ValidationResult:
        """Full pass; replaces the error map wholesale."""
        if self._engine is None:
            return ValidationResult(is_valid=False)
        result = self._engine.validate_form(self._answers)
        self._errors = result.as_error_map()
        self._is_valid = result.is_valid
        return result

    def clear_errors(self, field_id: Optional[str] = None) -> None:
        if field_id is None:
            self._errors = {}
        else:
            self._errors.pop(field_id, None)

    def can_submit(self) -> bool:
        """Submission is blocked while the form is invalid."""
        return self.validate_form().is_valid

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def get_form_state(self) -> FormState:
        """
        Immutable snapshot for persistence or aggregation.

        last_saved is the time of the latest mutation, falling back to
        the timestamp of the snapshot this session was loaded from.
        """
        if self._schema is None:
            return FormState(form_id="")
        if self._last_modified is not None:
            stamp: Optional[str] = to_iso(self._last_modified)
        else:
            stamp = self._loaded_last_saved
        return FormState(
            form_id=self._schema.id,
            current_section=self._current_section,
            answers=copy.deepcopy(self._answers),
            progress=FormProgress(
                completed_sections=tuple(self._completed),
                overall_progress=self._overall_progress,
            ),
            last_saved=stamp,
            version=self._schema.version,
        )

    def load_form(self, state: FormState) -> None:
        """Adopt a prior snapshot as the live state."""
        if self._schema is None:
            return
        if state.form_id and state.form_id != self._schema.id:
            logger.warning("Loading state for form %s into form %s", state.form_id, self._schema.id)

        self._answers = copy.deepcopy(dict(state.answers))
        if state.current_section and self._schema.get_section(state.current_section) is not None:
            self._current_section = state.current_section
        elif self._schema.sections:
            self._current_section = self._schema.sections[0].id
        self._completed = list(dict.fromkeys(state.progress.completed_sections))
        self._overall_progress = max(0, min(100, int(state.progress.overall_progress)))
        self._errors = {}
        self._is_valid = False
        self._last_modified = None
        parsed = parse_timestamp(state.last_saved)
        self._loaded_last_saved = to_iso(parsed) if parsed is not None else None
        self._has_unsaved_changes = False

    def apply_aggregation(self, result: AggregationResult) -> ValidationResult:
        """Take merged answers from the aggregator and re-validate."""
        if self._engine is None:
            return ValidationResult(is_valid=False)
        if result.pending_reviews:
            logger.info(
                "Applying aggregation with %d field(s) awaiting manual review",
                len(result.pending_reviews),
            )
        return self.set_form_data(result.aggregated_data)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def should_autosave(self, now: Optional[datetime] = None) -> bool:
        """
        Periodic autosave check, driven by the caller's event loop.

        True only with unsaved changes, autosave enabled, no save in
        flight, and the autosave interval elapsed since the last attempt.
        """
        if self._schema is None or not self._schema.settings.allow_save_progress:
            return False
        if not self._has_unsaved_changes or self._save_status == SaveStatus.SAVING:
            return False
        if self._last_save_attempt is None:
            return True
        interval = self._schema.settings.autosave_interval
        if not is_number(interval):
            return False
        now = now or self.clock()
        return elapsed_ms(self._last_save_attempt, now) >= interval

    def _begin_save(self) -> Optional[Tuple[FormState, str]]:
        if self._schema is None:
            return None
        state = self.get_form_state()
        payload = _content_key(state)
        if payload == self._last_saved_payload:
            logger.debug("Skipping save of form %s: content unchanged", self._schema.id)
            self._has_unsaved_changes = False
            return None
        self._save_status = SaveStatus.SAVING
        self._last_save_attempt = self.clock()
        return state, payload

    def _finish_save(self, payload: str) -> None:
        self._last_saved_payload = payload
        self._has_unsaved_changes = False
        self._save_status = SaveStatus.SAVED
        logger.debug("Saved form %s", self._schema.id)

    def save(self, store: FormStore) -> bool:
        """
        Persist the current snapshot.

        Returns:
            True if a write happened; False when skipped or failed
            (failures set save_status to ERROR)
        """
        pending = self._begin_save()
        if pending is None:
            return False
        state, payload = pending
        try:
            store.save(state)
        except Exception:
            logger.exception("Form save failed for %s", self._schema.id)
            self._save_status = SaveStatus.ERROR
            return False
        self._finish_save(payload)
        return True

    async def save_async(self, store: Any) -> bool:
        """Like save(), for stores whose save() is a coroutine."""
        pending = self._begin_save()
        if pending is None:
            return False
        state, payload = pending
        try:
            outcome = store.save(state)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Form save failed for %s", self._schema.id)
            self._save_status = SaveStatus.ERROR
            return False
        self._finish_save(payload)
        return True

    def load(self, store: FormStore) -> Optional[FormState]:
        """Load the stored snapshot, if any, into this session."""
        if self._schema is None:
            return None
        state = store.load()
        if state is None:
            return None
        self.load_form(state)
        self._last_saved_payload = _content_key(self.get_form_state())
        self._save_status = SaveStatus.SAVED
        return state
