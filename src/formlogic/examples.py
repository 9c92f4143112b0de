"""
Example questionnaire for demos and tests.

Builds a three-section learning-program intake form that exercises
every question type, a conditional question and several rule kinds.
"""
from formlogic.model import (
    FormSchema,
    FormSettings,
    Option,
    Question,
    QuestionType,
    ScaleConfig,
    Section,
)
from formlogic.rules import ConditionalRule, ConditionOperator, RuleType, ValidationRule


def build_example_intake_schema(form_id: str = "learning-intake", autosave_interval: int = 2000) -> FormSchema:
    profile = Section(
        id="profile",
        title="About you",
        questions=(
            Question(
                id="full_name",
                label="Your name",
                type=QuestionType.TEXT,
                required=True,
                validation=(ValidationRule(RuleType.MIN_LENGTH, 2),),
                max_length=80,
            ),
            Question(
                id="email",
                label="Work email",
                type=QuestionType.EMAIL,
                required=True,
                validation=(ValidationRule(RuleType.EMAIL),),
            ),
            Question(
                id="website",
                label="Company website",
                type=QuestionType.URL,
            ),
        ),
    )

    # budget_amount is only asked when has_budget == "yes"
    goals = Section(
        id="goals",
        title="Goals",
        questions=(
            Question(
                id="role",
                label="Which best describes your role?",
                type=QuestionType.SELECT,
                required=True,
                options=(
                    Option("designer", "Instructional designer"),
                    Option("manager", "L&D manager"),
                    Option("sme", "Subject-matter expert"),
                ),
            ),
            Question(
                id="topics",
                label="Topics of interest",
                type=QuestionType.MULTISELECT,
                options=(
                    Option("onboarding", "Onboarding"),
                    Option("compliance", "Compliance"),
                    Option("leadership", "Leadership"),
                    Option("sales", "Sales enablement"),
                ),
                max_selections=3,
            ),
            Question(
                id="experience",
                label="How experienced is your team?",
                type=QuestionType.SCALE,
                required=True,
                scale=ScaleConfig(min=1, max=5, min_label="New", max_label="Expert"),
            ),
            Question(
                id="has_budget",
                label="Do you have an approved budget?",
                type=QuestionType.SELECT,
                options=(Option("yes", "Yes"), Option("no", "No")),
            ),
            Question(
                id="budget_amount",
                label="Approved budget (USD)",
                type=QuestionType.NUMBER,
                required=True,
                min_value=0,
                conditional=ConditionalRule("has_budget", ConditionOperator.EQUALS, "yes"),
            ),
        ),
    )

    timeline = Section(
        id="timeline",
        title="Timeline",
        is_required=False,
        questions=(
            Question(
                id="start_date",
                label="Preferred start date",
                type=QuestionType.DATE,
                min_date="2024-01-01",
                max_date="2030-12-31",
            ),
            Question(
                id="notes",
                label="Anything else?",
                type=QuestionType.TEXTAREA,
                rows=4,
                validation=(ValidationRule(RuleType.MAX_LENGTH, 500, "Please keep notes under 500 characters"),),
            ),
        ),
    )

    return FormSchema(
        id=form_id,
        title="Learning program intake",
        sections=(profile, goals, timeline),
        settings=FormSettings(autosave_interval=autosave_interval),
    )
