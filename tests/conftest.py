"""
Shared fixtures and fakes for survey engine tests

Fakes:
- FakeEmbedder: deterministic vectors (explicit mapping, else seeded by text)
- ScriptedExtractor: answers -> per-slot (value, confidence), with failure injection
- EagerExtractor: fills whatever the question targeted with high confidence
"""

import os
import sys
import zlib

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from survey_engine.contracts import ExtractionResult
from survey_engine.core.slot_schema import SlotSchema, SlotSpec, load_schema
from survey_engine.core.template_catalog import QuestionTemplate, TemplateCatalog
from survey_engine.exceptions import ExtractionFailure

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DATA_DIR = os.path.join(ROOT_DIR, "data")

EMBED_DIM = 64

ORIGINAL_QUESTION = "What problem are you solving?"
PARAPHRASED_QUESTION = "What problem are you trying to solve?"

DETAILED_ANSWER = (
    "We spend 3 hours every week on manual exports because the tool has no API. "
    "It is slow. Errors are common."
)


class FakeEmbedder:
    """Deterministic embedding service"""

    def __init__(self, vectors=None, fail=False):
        self.vectors = dict(vectors or {})
        self.fail = fail
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding service down")
        if text in self.vectors:
            return np.asarray(self.vectors[text], dtype=float)
        rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
        return rng.normal(size=EMBED_DIM)


def near_duplicate_embedder():
    """Embedder where the original and paraphrased question are ~0.999 similar"""
    base = np.random.default_rng(7).normal(size=EMBED_DIM)
    noise = np.random.default_rng(8).normal(size=EMBED_DIM) * 0.05
    return FakeEmbedder({
        ORIGINAL_QUESTION: base,
        PARAPHRASED_QUESTION: base + noise,
    })


class ScriptedExtractor:
    """
    Extraction service driven by a script.

    script: {answer_text: {slot_name: (value, confidence)}}
    Slots in fail_slots raise ExtractionFailure, slots in timeout_slots
    raise TimeoutError.
    """

    def __init__(self, script=None, fail_slots=(), timeout_slots=()):
        self.script = script or {}
        self.fail_slots = set(fail_slots)
        self.timeout_slots = set(timeout_slots)
        self.calls = []

    def extract(self, slot_description, answer_text, context):
        slot_name = context['slot_name']
        self.calls.append((slot_name, answer_text))

        if slot_name in self.fail_slots:
            raise ExtractionFailure(f"scripted failure for {slot_name}")
        if slot_name in self.timeout_slots:
            raise TimeoutError(f"scripted timeout for {slot_name}")

        entry = self.script.get(answer_text, {}).get(slot_name)
        if entry is None:
            return ExtractionResult.empty()
        value, confidence = entry
        return ExtractionResult(value=value, confidence=confidence)


class EagerExtractor:
    """Fills every targeted slot with a substantive, high-confidence value"""

    def __init__(self, confidence=0.95):
        self.confidence = confidence

    def extract(self, slot_description, answer_text, context):
        if not context.get('targeted'):
            return ExtractionResult.empty()
        if context['slot_kind'] == 'list':
            value = [f"{context['slot_name']} item one", f"{context['slot_name']} item two"]
        else:
            value = f"{context['slot_name']}: {answer_text}"
        return ExtractionResult(value=value, confidence=self.confidence)


def make_schema(*specs, name="test"):
    return SlotSchema(list(specs), name=name)


def make_template(template_id, targets, **kwargs):
    kwargs.setdefault("prompt", f"Tell me about {', '.join(targets)}?")
    return QuestionTemplate(id=template_id, slot_targets=tuple(targets), **kwargs)


@pytest.fixture
def two_slot_schema():
    """ProblemStatement (critical, .6) and Stakeholders (important, .5)"""
    return make_schema(
        SlotSpec("ProblemStatement", "Core problem", priority="critical", min_confidence=0.6),
        SlotSpec("Stakeholders", "People affected", priority="important", min_confidence=0.5),
    )


@pytest.fixture
def two_slot_catalog(two_slot_schema):
    templates = [
        make_template("ask_problem", ["ProblemStatement"],
                      prompt="What problem are you trying to solve?", cooldown_turns=0),
        make_template("ask_stakeholders", ["Stakeholders"],
                      prompt="Who is affected by this problem?", cooldown_turns=0),
    ]
    return TemplateCatalog(templates, two_slot_schema)


@pytest.fixture
def business_schema():
    return load_schema(os.path.join(DATA_DIR, "slot_schema.json"))


@pytest.fixture
def business_catalog(business_schema):
    return TemplateCatalog.from_file(os.path.join(DATA_DIR, "question_templates.json"), business_schema)
