"""
Test Slot State - coverage queries, update operations and snapshots
"""

import json

import pytest

from survey_engine.config import SurveyType
from survey_engine.contracts import ACTION_FILL, ACTION_MERGE, SlotUpdate
from survey_engine.core.slot_schema import SlotSpec
from survey_engine.core.slot_state import SlotState
from survey_engine.exceptions import SchemaViolation

from conftest import make_schema


def fill(state, slot_name, value, confidence, action=ACTION_FILL):
    previous = state.slots[slot_name].confidence
    state.apply_update(SlotUpdate(slot_name, value, confidence, previous, action, question_id="q"))


@pytest.fixture
def schema():
    return make_schema(
        SlotSpec("Problem", "p", priority="critical", min_confidence=0.6),
        SlotSpec("People", "s", priority="important", min_confidence=0.5, kind="list"),
        SlotSpec("Risks", "r", priority="optional", required=False),
    )


def test_new_state_needs_every_slot(schema):
    state = SlotState(schema, session_id="s1")
    assert all(state.needs_question(name) for name in schema)
    assert state.get_ready_slots() == {}
    assert state.coverage() == 0.0
    assert state.turn == 0
    assert state.total_questions == 0


def test_needs_question_tracks_threshold(schema):
    state = SlotState(schema)
    fill(state, "Problem", "Reports are manual", 0.59)
    assert state.needs_question("Problem")

    fill(state, "Problem", "Reports are manual", 0.6, ACTION_MERGE)
    assert not state.needs_question("Problem")
    assert state.get_ready_slots() == {"Problem": "Reports are manual"}


def test_unknown_slot_raises(schema):
    state = SlotState(schema)
    with pytest.raises(KeyError):
        state.needs_question("Budget")


def test_coverage_counts_required_slots_only(schema):
    state = SlotState(schema)
    fill(state, "Risks", ["Vendor lock-in"], 0.9)
    assert state.coverage() == 0.0

    fill(state, "Problem", "Reports are manual", 0.8)
    assert state.coverage() == 0.5
    assert state.weighted_coverage() == pytest.approx(3.0 / 5.0)


def test_completion_summary(schema):
    state = SlotState(schema)
    fill(state, "Problem", "Reports are manual", 0.8)

    summary = state.get_completion_summary()
    assert summary['completed'] == 1
    assert summary['total'] == 3
    assert summary['ready_slots'] == ["Problem"]
    assert summary['missing_slots'] == ["People", "Risks"]
    assert summary['slots']['Problem']['filled'] is True
    assert summary['slots']['People']['threshold'] == 0.5


def test_apply_update_rejects_regression(schema):
    state = SlotState(schema)
    fill(state, "Problem", "Reports are manual", 0.8)
    with pytest.raises(ValueError, match="regress"):
        fill(state, "Problem", "Something else", 0.4)


def test_apply_update_records_provenance(schema):
    state = SlotState(schema)
    state.turn = 3
    fill(state, "Problem", "Reports are manual", 0.8)

    slot = state.slots["Problem"]
    assert slot.last_updated_turn == 3
    assert slot.provenance == [{
        'question_id': 'q', 'turn': 3, 'action': ACTION_FILL,
        'reported_confidence': 0.0, 'confidence': 0.8,
    }]


def test_ready_slots_are_copies(schema):
    state = SlotState(schema)
    fill(state, "People", ["PMs", "QA"], 0.9)
    ready = state.get_ready_slots()
    ready["People"].append("Mutated")
    assert state.slots["People"].value == ["PMs", "QA"]


def test_record_question_asked_advances_turn(schema):
    state = SlotState(schema)
    state.record_question_asked("t1", "broad", "Question one?", embedding=[1.0, 0.0], slot_targets=["Problem"])

    assert state.turn == 1
    assert state.total_questions == 1
    assert state.template_history["t1"].count == 1
    assert state.template_history["t1"].last_turn == 0
    assert state.topic_history.to_list() == ["broad"]
    assert state.pending_question['id'] == "t1"
    assert state.pending_question['slot_targets'] == ["Problem"]

    state.record_question_asked("t1", "broad", "Question one again?")
    assert state.turn == 2
    assert state.template_history["t1"].count == 2
    assert state.template_history["t1"].last_turn == 1


def test_history_buffers_are_bounded(schema):
    state = SlotState(schema, asked_questions_capacity=5, topic_history_capacity=5)
    for i in range(8):
        state.record_question_asked(f"t{i}", f"topic{i}", f"Question {i}?")

    assert len(state.asked_questions) == 5
    assert [q.text for q in state.asked_questions] == [f"Question {i}?" for i in range(3, 8)]
    assert state.topic_history.to_list() == [f"topic{i}" for i in range(3, 8)]


def test_low_confidence_streak(schema):
    state = SlotState(schema)
    state.register_answer_confidence(False)
    state.register_answer_confidence(False)
    assert state.low_conf_streak == 2
    state.register_answer_confidence(True)
    assert state.low_conf_streak == 0


def test_record_answer_appends_history(schema):
    state = SlotState(schema)
    state.record_answer("t1", "Question?", "Answer.", timestamp="2024-01-01T00:00:00+00:00")
    state.record_answer("t2", "Question 2?", "Answer 2.")

    assert len(state.conversation_history) == 2
    assert state.conversation_history[0]['timestamp'] == "2024-01-01T00:00:00+00:00"
    assert state.conversation_history[1]['timestamp']


def test_snapshot_round_trip_is_lossless(schema):
    state = SlotState(schema, session_id="s1", survey_type=SurveyType.FEEDBACK)
    state.record_question_asked("t1", "broad", "Question one?", embedding=[0.5, 0.5])
    state.record_answer("t1", "Question one?", "Manual reporting.")
    fill(state, "Problem", "Reports are manual", 0.8)
    fill(state, "People", ["PMs"], 0.4)
    state.register_answer_confidence(True)
    state.debug = {'top_candidate_eig': 0.4}
    state.record_error('extraction', RuntimeError("boom"), slot="Risks")

    snapshot = state.snapshot_state()
    json.dumps(snapshot)

    restored = SlotState.from_snapshot(snapshot, schema)
    assert restored.snapshot_state() == snapshot
    assert restored.survey_type is SurveyType.FEEDBACK
    assert restored.asked_questions.to_list()[0].embedding == [0.5, 0.5]
    assert restored.template_history["t1"].last_turn == 0


def test_snapshot_schema_mismatch(schema):
    state = SlotState(schema)
    other = make_schema(SlotSpec("Problem", "p"), SlotSpec("Budget", "b"))

    with pytest.raises(SchemaViolation):
        SlotState.from_snapshot(state.snapshot_state(), other)


def test_copy_is_independent(schema):
    state = SlotState(schema, session_id="s1")
    fill(state, "People", ["PMs"], 0.6)

    clone = state.copy()
    clone.slots["People"].value.append("QA")
    clone.record_question_asked("t1", None, "Q?")

    assert state.slots["People"].value == ["PMs"]
    assert state.turn == 0
    assert clone.turn == 1
