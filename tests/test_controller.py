"""
Tests for the Form State Controller.

These tests verify:
    - No-op behaviour before initialization
    - Incremental per-field validation and full-form validation
    - Section navigation and explicit completion/progress
    - Immutable snapshots, loading and applying aggregation output
    - Autosave timing, deduplicated saves and the save status machine
"""

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone

import pytest

from formlogic.aggregator import AnswerAggregator
from formlogic.controller import FormStateController, SaveStatus
from formlogic.examples import build_example_intake_schema
from formlogic.model import FormProgress, FormState
from formlogic.persistence import FormStore, InMemoryFormStore


VALID_ANSWERS = {
    "full_name": "Ada Lovelace",
    "email": "ada@example.com",
    "role": "manager",
    "experience": 4,
}


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now = self.now + timedelta(milliseconds=ms)


class FailingStore(FormStore):
    def load(self):
        return None

    def save(self, state):
        raise IOError("disk full")


class AsyncStore:
    def __init__(self):
        self.saved = []

    async def save(self, state):
        self.saved.append(state)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def controller(clock):
    c = FormStateController(clock=clock)
    c.initialize_form(build_example_intake_schema())
    return c


class TestBeforeInitialization:
    """Every operation is a no-op before a schema is bound."""

    def test_operations_are_noops(self):
        c = FormStateController()
        assert c.set_field_value("email", "x") is None
        assert c.answers == {}
        assert c.next_section() == ""
        assert c.previous_section() == ""
        assert c.mark_section_complete("profile") == 0
        assert not c.validate_form().is_valid
        assert not c.validate_section("profile").is_valid
        assert c.validate_field("email", "x") is None
        assert c.get_form_state() == FormState(form_id="")
        assert not c.should_autosave()

    def test_save_does_nothing(self):
        store = InMemoryFormStore()
        assert FormStateController().save(store) is False
        assert store.history == []


class TestInitialization:
    """initialize_form binds the schema and starts clean."""

    def test_initial_state(self, controller):
        assert controller.is_initialized
        assert controller.current_section == "profile"
        assert controller.errors == {}
        assert controller.completed_sections == ()
        assert controller.overall_progress == 0
        assert not controller.has_unsaved_changes
        assert controller.save_status == SaveStatus.IDLE

    def test_initial_data(self, clock):
        c = FormStateController(clock=clock)
        c.initialize_form(build_example_intake_schema(), {"full_name": "Ada"})
        assert c.answers == {"full_name": "Ada"}


class TestFieldEdits:
    """set_field_value re-validates only the edited field."""

    def test_error_map_updates_incrementally(self, controller):
        assert controller.set_field_value("email", "bad") == "Invalid email format"
        assert controller.errors == {"email": "Invalid email format"}

        assert controller.set_field_value("email", "ada@example.com") is None
        assert controller.errors == {}
        assert controller.has_unsaved_changes

    def test_unknown_keys_are_stored_not_validated(self, controller):
        assert controller.set_field_value("utm_source", "newsletter") is None
        assert controller.answers["utm_source"] == "newsletter"
        assert controller.errors == {}

    def test_conditional_uses_live_answers(self, controller):
        controller.set_field_value("has_budget", "yes")
        assert controller.set_field_value("budget_amount", None) == "This field is required"
        controller.set_field_value("has_budget", "no")
        assert controller.validate_field("budget_amount", None) is None

    def test_hiding_a_field_clears_its_error(self, controller):
        controller.set_field_value("has_budget", "yes")
        controller.set_field_value("budget_amount", -5)
        assert controller.errors == {"budget_amount": "Minimum value is 0"}

        controller.set_field_value("has_budget", "no")
        assert controller.errors == {}

    def test_showing_a_field_does_not_flag_it(self, controller):
        controller.set_field_value("has_budget", "yes")
        assert "budget_amount" not in controller.errors

    def test_validate_form_replaces_error_map(self, controller):
        controller.set_field_value("utm_source", "x")
        controller.set_field_value("email", "bad")
        result = controller.validate_form()
        assert not result.is_valid
        assert set(controller.errors) == {"full_name", "email", "role", "experience"}

        controller.update_form_data(VALID_ANSWERS)
        assert controller.errors == {}
        assert controller.is_valid

    def test_can_submit(self, controller):
        assert not controller.can_submit()
        controller.update_form_data(VALID_ANSWERS)
        assert controller.can_submit()

    def test_clear_errors(self, controller):
        controller.validate_form()
        controller.clear_errors("email")
        assert "email" not in controller.errors
        controller.clear_errors()
        assert controller.errors == {}


class TestNavigation:
    """Section pointer moves along schema order."""

    def test_next_and_previous(self, controller):
        assert controller.next_section() == "goals"
        assert controller.next_section() == "timeline"
        assert controller.next_section() == "timeline"
        assert controller.previous_section() == "goals"
        assert controller.previous_section() == "profile"
        assert controller.previous_section() == "profile"

    def test_set_current_section(self, controller):
        assert controller.set_current_section("timeline")
        assert controller.current_section == "timeline"
        assert not controller.set_current_section("nope")
        assert controller.current_section == "timeline"


class TestProgress:
    """Completion is explicit and independent of validation."""

    def test_mark_complete_and_incomplete(self, controller):
        assert controller.mark_section_complete("profile") == 33
        assert controller.mark_section_complete("goals") == 67
        assert controller.mark_section_complete("goals") == 67
        assert controller.mark_section_complete("timeline") == 100
        assert controller.mark_section_incomplete("goals") == 67
        assert controller.completed_sections == ("profile", "timeline")

    def test_unknown_section_is_ignored(self, controller):
        assert controller.mark_section_complete("nope") == 0
        assert controller.completed_sections == ()

    def test_complete_with_empty_fields(self, controller):
        controller.mark_section_complete("timeline")
        assert "timeline" in controller.completed_sections

    def test_validation_failure_does_not_unmark(self, controller):
        controller.mark_section_complete("profile")
        assert not controller.validate_form().is_valid
        assert controller.validate_section("profile").is_valid is False
        assert controller.completed_sections == ("profile",)
        assert controller.overall_progress == 33


class TestSnapshots:
    """get_form_state, load_form and apply_aggregation."""

    def test_snapshot_contents(self, controller, clock):
        controller.set_field_value("full_name", "Ada")
        controller.mark_section_complete("profile")
        state = controller.get_form_state()
        assert state.form_id == "learning-intake"
        assert state.current_section == "profile"
        assert state.answers == {"full_name": "Ada"}
        assert state.progress == FormProgress(("profile",), 33)
        assert state.last_saved == "2024-05-01T10:00:00Z"
        assert state.version == "1.0.0"

    def test_snapshot_is_detached(self, controller):
        controller.set_field_value("topics", ["sales"])
        state = controller.get_form_state()
        state.answers["topics"].append("compliance")
        assert controller.answers["topics"] == ["sales"]
        with pytest.raises(dataclasses.FrozenInstanceError):
            state.form_id = "other"

    def test_last_saved_tracks_latest_edit(self, controller, clock):
        controller.set_field_value("full_name", "Ada")
        clock.advance(1500)
        controller.set_field_value("email", "ada@example.com")
        assert controller.get_form_state().last_saved == "2024-05-01T10:00:01.500000Z"

    def test_load_form(self, controller):
        state = FormState(
            form_id="learning-intake",
            current_section="goals",
            answers={"full_name": "Grace"},
            progress=FormProgress(("profile",), 33),
            last_saved="2024-04-30T08:00:00Z",
        )
        controller.load_form(state)
        assert controller.answers == {"full_name": "Grace"}
        assert controller.current_section == "goals"
        assert controller.completed_sections == ("profile",)
        assert controller.overall_progress == 33
        assert not controller.has_unsaved_changes
        assert controller.get_form_state().last_saved == "2024-04-30T08:00:00Z"

    def test_load_form_with_unknown_section(self, controller):
        controller.load_form(FormState(form_id="learning-intake", current_section="gone"))
        assert controller.current_section == "profile"

    def test_apply_aggregation(self, controller):
        laptop = FormState(form_id="learning-intake", answers={"role": "designer"}, last_saved="2024-05-01T09:00:00Z")
        phone = FormState(form_id="learning-intake", answers={"role": "manager", "email": "bad"}, last_saved="2024-05-01T09:00:02Z")
        result = AnswerAggregator().aggregate_answers([laptop, phone])

        validation = controller.apply_aggregation(result)
        assert controller.answers == {"role": "manager", "email": "bad"}
        assert not validation.is_valid
        assert controller.errors["email"] == "Invalid email format"
        assert controller.has_unsaved_changes


class TestAutosave:
    """Caller-driven autosave and the save status machine."""

    def test_should_autosave_needs_changes_and_interval(self, controller, clock):
        assert not controller.should_autosave()
        controller.set_field_value("full_name", "Ada")
        clock.advance(1000)
        assert not controller.should_autosave()
        clock.advance(1000)
        assert controller.should_autosave()

    def test_save_and_skip_unchanged(self, controller, clock):
        store = InMemoryFormStore()
        controller.set_field_value("full_name", "Ada")
        assert controller.save(store) is True
        assert controller.save_status == SaveStatus.SAVED
        assert not controller.has_unsaved_changes
        assert len(store.history) == 1

        clock.advance(5000)
        assert not controller.should_autosave()
        assert controller.save(store) is False
        assert len(store.history) == 1

    def test_rewriting_same_value_skips_save(self, controller, clock):
        store = InMemoryFormStore()
        controller.set_field_value("full_name", "Ada")
        assert controller.save(store) is True

        clock.advance(3000)
        controller.set_field_value("full_name", "Ada")
        assert controller.has_unsaved_changes
        assert controller.save(store) is False
        assert len(store.history) == 1
        assert not controller.has_unsaved_changes

        controller.set_field_value("full_name", "Ada L")
        assert controller.save(store) is True
        assert len(store.history) == 2

    def test_autosave_interval_restarts_after_save(self, controller, clock):
        store = InMemoryFormStore()
        controller.set_field_value("full_name", "Ada")
        clock.advance(2000)
        controller.save(store)
        controller.set_field_value("full_name", "Ada L")
        clock.advance(500)
        assert not controller.should_autosave()
        clock.advance(1500)
        assert controller.should_autosave()

    def test_save_failure_sets_error(self, controller):
        controller.set_field_value("full_name", "Ada")
        assert controller.save(FailingStore()) is False
        assert controller.save_status == SaveStatus.ERROR
        assert controller.has_unsaved_changes

    def test_save_async(self, controller):
        store = AsyncStore()
        controller.set_field_value("full_name", "Ada")
        assert asyncio.run(controller.save_async(store)) is True
        assert len(store.saved) == 1
        assert controller.save_status == SaveStatus.SAVED

    def test_autosave_disabled(self, clock):
        schema = build_example_intake_schema()
        schema = dataclasses.replace(
            schema, settings=dataclasses.replace(schema.settings, allow_save_progress=False)
        )
        c = FormStateController(clock=clock)
        c.initialize_form(schema)
        c.set_field_value("full_name", "Ada")
        clock.advance(10000)
        assert not c.should_autosave()

    def test_load_from_store_then_save_is_skipped(self, controller):
        stored = FormState(
            form_id="learning-intake",
            current_section="goals",
            answers={"full_name": "Grace"},
            last_saved="2024-04-30T08:00:00Z",
        )
        store = InMemoryFormStore(stored)
        assert controller.load(store) == stored
        assert controller.answers == {"full_name": "Grace"}
        assert controller.save(store) is False
        assert len(store.history) == 1

    def test_load_from_empty_store(self, controller):
        assert controller.load(InMemoryFormStore()) is None

    def test_clear_form(self, controller):
        store = InMemoryFormStore()
        controller.set_field_value("full_name", "Ada")
        controller.save(store)
        controller.clear_form(store)
        assert store.history == []
        assert controller.answers == {}
        assert controller.save_status == SaveStatus.IDLE
