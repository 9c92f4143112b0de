#!/usr/bin/env python3
"""
Resume Session Demo: Schema → Answers → Two Devices → Merge → Save

Shows the full workflow:
1. Load and check the example intake schema
2. Fill in answers on a "laptop" session
3. Edit the same form concurrently on a "phone" session
4. Aggregate both snapshots and review conflicts
5. Apply the merged answers and save to a YAML file
"""

import logging
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from formlogic.aggregator import AnswerAggregator
from formlogic.controller import FormStateController
from formlogic.examples import build_example_intake_schema
from formlogic.persistence import FileFormStore
from formlogic.schema_check import check_schema
from formlogic.serialization import schema_from_yaml, schema_to_yaml


def fixed_clock(start):
    moments = {"now": start}

    def clock():
        return moments["now"]

    def advance(seconds):
        moments["now"] = moments["now"] + timedelta(seconds=seconds)

    return clock, advance


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 80)
    print("RESUME SESSION DEMO: Schema → Two Devices → Merge → Save")
    print("=" * 80)

    # =========================================================================
    # STEP 1: Schema
    # =========================================================================
    print("\n1. LOADING SCHEMA...")
    schema = schema_from_yaml(schema_to_yaml(build_example_intake_schema()))
    report = check_schema(schema)
    print(f"   ✓ Form: {schema.title} ({schema.id})")
    print(f"   ✓ Sections: {report.total_sections}")
    print(f"   ✓ Questions: {report.total_questions} ({report.required_questions} required)")

    # =========================================================================
    # STEP 2: Laptop session
    # =========================================================================
    print("\n2. LAPTOP SESSION...")
    clock, advance = fixed_clock(datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc))
    laptop = FormStateController(clock=clock)
    laptop.initialize_form(schema)
    for field_id, value in [
        ("full_name", "Ada Lovelace"),
        ("email", "ada@example"),
        ("role", "designer"),
        ("experience", 3),
    ]:
        error = laptop.set_field_value(field_id, value)
        print(f"   {field_id:<12} = {value!r:<20} {error or 'ok'}")
    laptop.set_field_value("email", "ada@example.com")
    print(f"   ✓ Progress after marking profile: {laptop.mark_section_complete('profile')}%")
    laptop_state = laptop.get_form_state()

    # =========================================================================
    # STEP 3: Phone session, two seconds later
    # =========================================================================
    print("\n3. PHONE SESSION...")
    advance(2)
    phone = FormStateController(clock=clock)
    phone.initialize_form(schema)
    phone.update_form_data({
        "full_name": "Ada Lovelace",
        "role": "manager",
        "has_budget": "yes",
        "budget_amount": 12000,
    })
    phone_state = phone.get_form_state()
    print(f"   ✓ Errors on phone: {phone.errors}")

    # =========================================================================
    # STEP 4: Aggregate
    # =========================================================================
    print("\n4. AGGREGATING...")
    aggregator = AnswerAggregator(clock=clock)
    result = aggregator.aggregate_answers([laptop_state, phone_state])
    for conflict in result.conflicts:
        print(
            f"   ! {conflict.field_id}: {conflict.current_value!r} vs "
            f"{conflict.incoming_value!r} ({conflict.severity.value})"
        )
    for resolution in result.resolutions:
        print(f"   ✓ {resolution.field_id} -> {resolution.resolved_value!r} via {resolution.strategy.value}")

    # =========================================================================
    # STEP 5: Apply and save
    # =========================================================================
    print("\n5. APPLYING AND SAVING...")
    validation = laptop.apply_aggregation(result)
    print(f"   ✓ Merged form valid: {validation.is_valid}")

    with tempfile.TemporaryDirectory() as tmp:
        store = FileFormStore(str(Path(tmp) / "intake.yaml"))
        print(f"   ✓ Saved: {laptop.save(store)}")
        print(f"   ✓ Second save skipped: {not laptop.save(store)}")
        print("-" * 80)
        print(Path(store.path).read_text(encoding="utf-8"))

    print("=" * 80)
    print("✓ DEMO COMPLETE")
    print("=" * 80)


if __name__ == "__main__":
    main()
