"""
Test Template Catalog - loading, validation and prompt rendering
"""

import json

import pytest

from survey_engine.config import TemplateDefaults
from survey_engine.contracts import ACTION_FILL, SlotUpdate
from survey_engine.core.slot_schema import SlotSpec
from survey_engine.core.slot_state import SlotState
from survey_engine.core.template_catalog import (
    QuestionTemplate,
    TemplateCatalog,
    build_summary,
    render_prompt,
)
from survey_engine.exceptions import SchemaViolation

from conftest import make_schema, make_template


@pytest.fixture
def schema():
    return make_schema(
        SlotSpec("Problem", "p", priority="critical"),
        SlotSpec("Process", "c", priority="important"),
        SlotSpec("People", "s", priority="important", kind="list"),
    )


def test_from_dict_applies_defaults_and_scope_alias(schema):
    catalog = TemplateCatalog.from_dict({"templates": [
        {"id": "t1", "prompt": "Problem?", "slot_targets": ["Problem"], "scope": "broad"},
    ]}, schema, defaults=TemplateDefaults(priority=4, cooldown_turns=1, max_asks_per_slot=3))

    template = catalog.get("t1")
    assert template.topic == "broad"
    assert template.priority == 4.0
    assert template.cooldown_turns == 1
    assert template.max_asks_per_slot == 3
    assert template.dependencies == ()
    assert "t1" in catalog
    assert len(catalog) == 1


def test_from_dict_accepts_bare_list(schema):
    catalog = TemplateCatalog.from_dict([
        {"id": "t1", "prompt": "Problem?", "slot_targets": ["Problem"], "max_asks_per_slot": None},
    ], schema)
    assert catalog.get("t1").max_asks_per_slot is None


def test_validation_collects_every_problem(schema):
    templates = [
        make_template("t1", ["Budget"]),
        make_template("t1", ["Problem"], dependencies=("Problem",)),
        make_template("t2", [], prompt="Anything?"),
        make_template("t3", ["Process"], ask_if={"filled": "Budget"}),
        make_template("t4", ["Process"], prompt="About {Budget}?"),
        make_template("t5", ["Process"], cooldown_turns=-1, max_asks_per_slot=0),
    ]

    with pytest.raises(SchemaViolation) as exc_info:
        TemplateCatalog(templates, schema)

    errors = exc_info.value.errors
    assert "template 't1' targets unknown slot 'Budget'" in errors
    assert "Duplicate template id 't1'" in errors
    assert "template 't1' depends on its own target 'Problem'" in errors
    assert "template 't2' has no slot_targets" in errors
    assert any("t3" in e and "Budget" in e for e in errors)
    assert "template 't4' prompt references unknown slot '{Budget}'" in errors
    assert "template 't5' has negative cooldown_turns" in errors
    assert "template 't5' has max_asks_per_slot < 1" in errors


def test_unknown_dependency_rejected(schema):
    with pytest.raises(SchemaViolation, match="depends on unknown slot"):
        TemplateCatalog([make_template("t1", ["Problem"], dependencies=("Budget",))], schema)


def test_empty_catalog_rejected(schema):
    with pytest.raises(SchemaViolation, match="no templates"):
        TemplateCatalog([], schema)


def test_malformed_entries_rejected(schema):
    with pytest.raises(SchemaViolation) as exc_info:
        TemplateCatalog.from_dict({"templates": ["nope", {"prompt": "No id?"}]}, schema)
    assert len(exc_info.value.errors) == 2


def test_targeted_slots_in_catalog_order(schema):
    catalog = TemplateCatalog([
        make_template("t1", ["Process", "Problem"]),
        make_template("t2", ["Problem"]),
    ], schema)
    assert catalog.targeted_slots() == ["Process", "Problem"]


def test_from_file(tmp_path, schema):
    path = tmp_path / "templates.json"
    path.write_text(json.dumps({"templates": [{"id": "t1", "prompt": "Q?", "slot_targets": ["People"]}]}))

    catalog = TemplateCatalog.from_file(str(path), schema)
    assert [t.id for t in catalog] == ["t1"]

    with pytest.raises(FileNotFoundError):
        TemplateCatalog.from_file(str(tmp_path / "missing.json"), schema)


def test_templates_are_immutable():
    template = make_template("t1", ["Problem"])
    with pytest.raises(Exception):
        template.priority = 9.0


def test_to_dict_round_trip():
    template = make_template("t1", ["Problem"], topic="broad", ask_if={"needs_question": "Problem"})
    assert QuestionTemplate.from_dict(template.to_dict()) == template


def test_default_catalog_loads(business_catalog, business_schema):
    assert len(business_catalog) == 13
    assert set(business_catalog.targeted_slots()) == set(business_schema)
    summary = business_catalog.get("confirmation_summary")
    assert summary.max_asks_per_slot == 1
    assert summary.topic == "confirm"


class TestRenderPrompt:

    def test_slot_placeholders(self, schema):
        state = SlotState(schema)
        state.apply_update(SlotUpdate("People", ["PMs", "QA"], 0.9, 0.0, ACTION_FILL))
        template = make_template("t1", ["Process"], prompt="How do {People} handle {Process}?")

        assert render_prompt(template, state) == "How do PMs, QA handle ?"

    def test_summary_placeholder(self, schema):
        state = SlotState(schema)
        template = make_template("t1", ["Process"], prompt="So far: {summary}.")
        assert render_prompt(template, state) == "So far: nothing confirmed yet."

        state.apply_update(SlotUpdate("Problem", "Manual exports", 0.9, 0.0, ACTION_FILL))
        assert render_prompt(template, state) == "So far: Problem: Manual exports."

    def test_summary_truncates_long_values(self, schema):
        state = SlotState(schema)
        state.apply_update(SlotUpdate("Problem", "x" * 200, 0.9, 0.0, ACTION_FILL))
        summary = build_summary(state)
        assert summary.endswith("...")
        assert len(summary) == len("Problem: ") + 80
