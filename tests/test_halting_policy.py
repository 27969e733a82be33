"""
Test Halting Policy - rule order and completion checks
"""

import pytest

from survey_engine.config import HaltingConfig, SurveyType
from survey_engine.contracts import ACTION_FILL, SlotUpdate
from survey_engine.core.halting_policy import HaltDecision, HaltingPolicy, HaltReason
from survey_engine.core.slot_schema import SlotSpec
from survey_engine.core.slot_state import SlotState

from conftest import make_schema


def fill(state, slot_name, value="Filled value", confidence=0.95):
    state.apply_update(SlotUpdate(slot_name, value, confidence, 0.0, ACTION_FILL))


@pytest.fixture
def flat_schema():
    """No depth slots: A critical, B important, C optional (all required)"""
    return make_schema(
        SlotSpec("A", "a", priority="critical"),
        SlotSpec("B", "b", priority="important"),
        SlotSpec("C", "c", priority="optional"),
    )


@pytest.fixture
def depth_schema():
    return make_schema(
        SlotSpec("A", "a", priority="critical"),
        SlotSpec("Process", "p", priority="important", depth=True, min_chars=30),
    )


@pytest.fixture
def policy():
    return HaltingPolicy()


def test_fresh_state_continues(policy, flat_schema):
    decision = policy.evaluate(SlotState(flat_schema), top_eig=1.0, fatigue=0.0)
    assert decision == HaltDecision.proceed()
    assert not decision.halt


def test_max_questions_reached(flat_schema):
    policy = HaltingPolicy(HaltingConfig(max_turns=2))
    state = SlotState(flat_schema)
    state.record_question_asked("t1", None, "Q1?")
    assert not policy.evaluate(state, 1.0, 0.0).halt

    state.record_question_asked("t2", None, "Q2?")
    assert policy.evaluate(state, 1.0, 0.0) == HaltDecision.stop(HaltReason.MAX_QUESTIONS_REACHED)


def test_low_confidence_streak(policy, flat_schema):
    state = SlotState(flat_schema)
    state.register_answer_confidence(False)
    assert not policy.evaluate(state, 1.0, 0.0).halt

    state.register_answer_confidence(False)
    assert policy.evaluate(state, 1.0, 0.0).reason is HaltReason.LOW_CONFIDENCE_STREAK


def test_max_questions_checked_before_streak(flat_schema):
    policy = HaltingPolicy(HaltingConfig(max_turns=1))
    state = SlotState(flat_schema)
    state.record_question_asked("t1", None, "Q1?")
    state.register_answer_confidence(False)
    state.register_answer_confidence(False)

    assert policy.evaluate(state, 1.0, 0.0).reason is HaltReason.MAX_QUESTIONS_REACHED


def test_sufficient_coverage(policy, flat_schema):
    state = SlotState(flat_schema)
    fill(state, "A")
    assert not policy.can_complete(state, fatigue=0.0, top_eig=1.0)

    fill(state, "B")
    assert policy.can_complete(state, fatigue=0.0, top_eig=1.0)
    assert policy.evaluate(state, 1.0, 0.0).reason is HaltReason.SUFFICIENT_COVERAGE


def test_critical_slots_required(policy, flat_schema):
    state = SlotState(flat_schema)
    fill(state, "B")
    fill(state, "C")
    assert not policy.can_complete(state, fatigue=0.0, top_eig=1.0)


def test_feedback_surveys_need_higher_coverage(policy, flat_schema):
    state = SlotState(flat_schema, survey_type=SurveyType.FEEDBACK)
    fill(state, "A")
    fill(state, "B")

    assert state.weighted_coverage() == pytest.approx(5 / 6)
    assert not policy.can_complete(state, fatigue=0.0, top_eig=1.0)

    fill(state, "C")
    assert policy.can_complete(state, fatigue=0.0, top_eig=1.0)


def test_depth_requirement(policy, depth_schema):
    state = SlotState(depth_schema)
    fill(state, "A")
    fill(state, "Process", value="Manual")

    assert not policy.has_depth(state)
    assert not policy.can_complete(state, fatigue=0.0, top_eig=1.0)
    assert policy.can_complete(state, fatigue=0.0, top_eig=0.05)
    assert policy.can_complete(state, fatigue=0.7, top_eig=1.0)

    state = SlotState(depth_schema)
    fill(state, "A")
    fill(state, "Process", value="Exports are pulled by hand every Monday morning")
    assert policy.has_depth(state)
    assert policy.can_complete(state, fatigue=0.0, top_eig=1.0)


def test_feedback_depth_escape_needs_high_fatigue(policy, depth_schema):
    state = SlotState(depth_schema, survey_type=SurveyType.COURSE_FEEDBACK)
    fill(state, "A")
    fill(state, "Process", value="Manual")

    assert not policy.can_complete(state, fatigue=0.7, top_eig=0.0)
    assert policy.can_complete(state, fatigue=0.85, top_eig=1.0)


def test_low_eig_high_fatigue(policy, flat_schema):
    state = SlotState(flat_schema)
    assert policy.evaluate(state, top_eig=0.1, fatigue=0.7).reason is HaltReason.LOW_EIG_HIGH_FATIGUE
    assert not policy.evaluate(state, top_eig=0.1, fatigue=0.5).halt
    assert not policy.evaluate(state, top_eig=0.5, fatigue=0.9).halt


def test_halt_reason_values():
    assert {reason.value for reason in HaltReason} == {
        "max_questions_reached",
        "low_confidence_streak",
        "sufficient_coverage",
        "low_eig_high_fatigue",
        "no_suitable_questions",
    }
