"""
Test Confidence Calibration - fill, merge, overwrite and rejection rules
"""

import pytest

from survey_engine.config import CalibrationConfig
from survey_engine.contracts import (
    ACTION_FILL,
    ACTION_MERGE,
    ACTION_OVERWRITE,
    ExtractionResult,
    SlotUpdate,
)
from survey_engine.core.confidence_calibration import (
    ConfidenceCalibrator,
    token_overlap,
    union_dedup,
)
from survey_engine.core.slot_schema import SlotSpec
from survey_engine.core.slot_state import SlotState

from conftest import make_schema


@pytest.fixture
def state():
    schema = make_schema(
        SlotSpec("Problem", "p", priority="critical", min_confidence=0.85),
        SlotSpec("People", "s", priority="important", kind="list"),
        SlotSpec("ROI", "r", priority="important", no_inference=True),
    )
    return SlotState(schema)


@pytest.fixture
def calibrator():
    return ConfidenceCalibrator()


def seed(state, slot_name, value, confidence):
    state.apply_update(SlotUpdate(slot_name, value, confidence, 0.0, ACTION_FILL))


def test_fill_empty_slot(state, calibrator):
    update = calibrator.calibrate("Problem", ExtractionResult("Manual exports", 0.7), "answer", "q1", state)

    assert update.action == ACTION_FILL
    assert update.value == "Manual exports"
    assert update.confidence == 0.7
    assert update.previous_confidence == 0.0
    assert update.question_id == "q1"


def test_low_reported_confidence_rejected(state, calibrator):
    assert calibrator.calibrate("Problem", ExtractionResult("Manual exports", 0.3), "a", "q1", state) is None
    assert calibrator.calibrate("Problem", ExtractionResult(None, 0.0), "a", "q1", state) is None


def test_agreement_merges_with_boosted_confidence(state, calibrator):
    seed(state, "Problem", "Manual exports every week", 0.6)
    update = calibrator.calibrate(
        "Problem", ExtractionResult("manual exports each week", 0.8), "a", "q2", state
    )

    assert update.action == ACTION_MERGE
    assert update.confidence == pytest.approx(0.76)
    assert update.value == "manual exports each week"


def test_agreement_from_weaker_sample_keeps_value(state, calibrator):
    seed(state, "Problem", "Manual exports every week", 0.8)
    update = calibrator.calibrate(
        "Problem", ExtractionResult("manual exports weekly", 0.5), "a", "q2", state
    )

    assert update.action == ACTION_MERGE
    assert update.value == "Manual exports every week"
    assert update.confidence == pytest.approx(0.8 + 0.2 * 0.5 * 0.5)


def test_stronger_contradiction_overwrites_with_small_gain(state, calibrator):
    seed(state, "Problem", "Manual exports", 0.5)
    update = calibrator.calibrate(
        "Problem", ExtractionResult("Vendor API is missing", 0.9), "a", "q2", state
    )

    assert update.action == ACTION_OVERWRITE
    assert update.value == "Vendor API is missing"
    assert update.confidence == pytest.approx(0.5675)


def test_weaker_contradiction_discarded(state, calibrator):
    seed(state, "Problem", "Manual exports", 0.8)
    update = calibrator.calibrate(
        "Problem", ExtractionResult("Vendor API is missing", 0.7), "a", "q2", state
    )
    assert update is None


def test_list_slot_unions_case_insensitively(state, calibrator):
    seed(state, "People", ["Product managers", "QA"], 0.6)
    update = calibrator.calibrate(
        "People", ExtractionResult(["qa", "Support team"], 0.7), "a", "q2", state
    )

    assert update.action == ACTION_MERGE
    assert update.value == ["Product managers", "QA", "Support team"]
    assert update.confidence == 0.7


def test_list_slot_no_change_returns_none(state, calibrator):
    seed(state, "People", ["QA"], 0.8)
    update = calibrator.calibrate("People", ExtractionResult(["qa"], 0.6), "a", "q2", state)
    assert update is None


def test_list_slot_accepts_scalar_value(state, calibrator):
    update = calibrator.calibrate("People", ExtractionResult("Finance team", 0.9), "a", "q1", state)
    assert update.value == ["Finance team"]
    assert update.action == ACTION_FILL


def test_no_inference_slot_requires_targeting(state, calibrator):
    extraction = ExtractionResult("Saves 10 hours a week", 0.9)
    assert calibrator.calibrate("ROI", extraction, "a", "q1", state) is None

    state.mark_asked_this_turn(["ROI"])
    update = calibrator.calibrate("ROI", extraction, "a", "q1", state)
    assert update.value == "Saves 10 hours a week"


def test_confidence_never_decreases(state, calibrator):
    seed(state, "Problem", "Manual exports", 0.9)
    for reported in (0.31, 0.5, 0.9, 1.0):
        update = calibrator.calibrate("Problem", ExtractionResult("manual exports", reported), "a", "q", state)
        assert update is None or update.confidence >= 0.9


def test_calibration_is_pure(state, calibrator):
    before = state.snapshot_state()
    calibrator.calibrate("Problem", ExtractionResult("Manual exports", 0.9), "a", "q1", state)
    assert state.snapshot_state() == before


def test_gain_ordering_enforced():
    with pytest.raises(ValueError):
        ConfidenceCalibrator(CalibrationConfig(agreement_gain=0.1, contradiction_gain=0.2))


def test_token_overlap():
    assert token_overlap("Manual exports", "manual EXPORTS") == 1.0
    assert token_overlap("", "anything") == 0.0
    assert token_overlap("a b", "b c") == pytest.approx(1 / 3)


def test_union_dedup_keeps_order():
    assert union_dedup(["A", "b"], ["B", "c", "C"]) == ["A", "b", "c"]
