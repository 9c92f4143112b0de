"""
formlogic: schema-driven questionnaire logic

This package validates multi-section questionnaires described by a
declarative FormSchema, and reconciles answer snapshots coming from
several sources (parallel sessions, autosaves, server copies).

ARCHITECTURAL GUARANTEE:
------------------------
This package contains ZERO knowledge of:
    - Widget rendering
    - Network or storage transport
    - Navigation UI

The schema describes QUESTIONNAIRE STRUCTURE only.
Evaluation lives in the validation engine, reconciliation in the
aggregator, and session ownership in the controller.
"""

__version__ = "0.1.0"
