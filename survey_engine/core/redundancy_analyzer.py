"""
Redundancy & Fatigue Analyzer - semantic repetition and disengagement signals

Responsibilities:
- Compare a candidate question with recently asked ones (cosine similarity)
- Score answer quality from surface features of the text
- Estimate respondent fatigue from recent answer quality and pacing

Design principles:
- Embedding failures degrade the signal (no penalty), never fail the turn
- Prompt embeddings are cached per text; the embedder is deterministic
- Fatigue is bounded to [0, 1] and is 0 for an empty history

Fatigue formula:
    fatigue = (1 - mean quality) + trend_weight * quality decline
              + latency_weight * pacing slowdown, clipped to [0, 1]
"""

import logging
import re
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from survey_engine.config import FatigueConfig, RedundancyConfig
from survey_engine.contracts import RedundancyResult
from survey_engine.exceptions import EmbeddingFailure
from survey_engine.utils.timeouts import call_with_timeout
from survey_engine.utils.vector_math import as_vector, max_similarity

logger = logging.getLogger(__name__)

# Hedging / non-answers
UNSURE_PATTERN = re.compile(r"(^|\b)(i don'?t know|unsure|not sure|n/a|no idea)(\b|$)", re.IGNORECASE)

# Explanatory language
DETAIL_PATTERN = re.compile(r"\b(because|since|due to|specifically|example|such as)\b", re.IGNORECASE)

SENTENCE_SPLIT = re.compile(r"[.!?]")

MAX_CACHE_ENTRIES = 512


def answer_quality(answer: Optional[str]) -> float:
    """
    Heuristic quality of one answer in [0, 1].

    Longer, multi-sentence answers with numbers or explanations score
    higher; hedging and very short answers are penalised.
    """
    if not answer or not isinstance(answer, str):
        return 0.0

    text = answer.strip()
    length = len(text)
    sentences = len([s for s in SENTENCE_SPLIT.split(text) if s.strip()])

    quality = 0.0

    if length > 100:
        quality += 0.4
    elif length > 50:
        quality += 0.3
    elif length > 20:
        quality += 0.2
    elif length > 5:
        quality += 0.1

    if sentences > 2:
        quality += 0.3
    elif sentences > 1:
        quality += 0.2

    if re.search(r"\d", text):
        quality += 0.2
    if DETAIL_PATTERN.search(text):
        quality += 0.2

    if UNSURE_PATTERN.search(text):
        quality -= 0.6
    if length < 10:
        quality -= 0.3

    return max(0.0, min(1.0, quality))


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _pacing_slowdown(entries: List[Dict[str, Any]], ceiling_s: float) -> float:
    """Growth of the latest answer gap over the earlier ones, as a fraction of ceiling"""
    times = [_parse_timestamp(entry.get('timestamp')) for entry in entries]
    if len(times) < 3 or any(t is None for t in times):
        return 0.0

    try:
        gaps = [(later - earlier).total_seconds() for earlier, later in zip(times, times[1:])]
    except TypeError:
        # Mixed naive/aware timestamps
        return 0.0

    earlier_mean = sum(gaps[:-1]) / len(gaps[:-1])
    slowdown = max(0.0, gaps[-1] - earlier_mean)
    return min(1.0, slowdown / ceiling_s) if ceiling_s > 0 else 0.0


def fatigue_score(history: List[Dict[str, Any]], config: Optional[FatigueConfig] = None,
                  lookback: Optional[int] = None) -> float:
    """
    Estimate fatigue from the last `lookback` answers.

    Args:
        history: Conversation history entries with 'answer' (and 'timestamp')
        config: Fatigue tuning (defaults if None)
        lookback: Overrides config.lookback

    Returns:
        float in [0, 1] (0.0 for empty history)
    """
    config = config or FatigueConfig()
    lookback = config.lookback if lookback is None else lookback

    if not history or lookback <= 0:
        return 0.0

    recent = history[-lookback:]
    qualities = [answer_quality(entry.get('answer') or '') for entry in recent]
    mean_quality = sum(qualities) / len(qualities)

    trend = 0.0
    if len(qualities) >= 2:
        latest = sum(qualities[-2:]) / 2
        earlier = sum(qualities[:-1]) / (len(qualities) - 1)
        trend = max(0.0, earlier - latest)

    fatigue = (1.0 - mean_quality) + trend * config.trend_weight
    fatigue += config.latency_weight * _pacing_slowdown(recent, config.latency_ceiling_s)

    return max(0.0, min(1.0, fatigue))


class RedundancyAnalyzer:
    """Semantic redundancy check backed by an embedding service"""

    def __init__(self, embedder=None, config: Optional[RedundancyConfig] = None):
        """
        Args:
            embedder: Object with embed(text) -> sequence of floats.
                      None disables the check.
            config: Redundancy tuning

        Raises:
            TypeError: If embedder has no embed() method
        """
        if embedder is not None and not callable(getattr(embedder, 'embed', None)):
            raise TypeError("embedder must provide embed(text)")

        self.embedder = embedder
        self.config = config or RedundancyConfig()
        self._cache: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled and self.embedder is not None

    def embed(self, text: str) -> Optional[List[float]]:
        """
        Embed text, using the cache.

        Returns:
            Embedding as a list of floats, or None if the service failed
        """
        with self._lock:
            if text in self._cache:
                return self._cache[text]

        try:
            raw = call_with_timeout(
                self.embedder.embed, text,
                timeout=self.config.embedding_timeout_s,
                failure=EmbeddingFailure,
            )
        except EmbeddingFailure as e:
            logger.warning(f"Embedding unavailable, skipping redundancy check: {e}")
            return None

        vector = [float(x) for x in as_vector(raw)]
        with self._lock:
            if len(self._cache) >= MAX_CACHE_ENTRIES:
                self._cache.pop(next(iter(self._cache)))
            self._cache[text] = vector
        return vector

    def check(self, text: str, asked_questions) -> RedundancyResult:
        """
        Compare a candidate question with recently asked questions.

        Args:
            text: Rendered candidate prompt
            asked_questions: Iterable of AskedQuestion (text + optional embedding)

        Returns:
            RedundancyResult (reject at similarity >= reject_threshold)
        """
        asked = list(asked_questions)
        if not self.enabled or not asked:
            return RedundancyResult(reject=False, penalty=0.0)

        candidate = self.embed(text)
        if candidate is None:
            return RedundancyResult(reject=False, penalty=0.0, degraded=True)

        previous = []
        for question in asked:
            embedding = question.embedding
            if embedding is None:
                embedding = self.embed(question.text)
            if embedding is not None:
                previous.append(embedding)

        similarity = max(0.0, max_similarity(candidate, previous))
        reject = similarity >= self.config.reject_threshold

        if reject:
            logger.debug(f"Redundant question (similarity {similarity:.3f}): {text[:60]!r}")

        return RedundancyResult(reject=reject, penalty=similarity, similarity=similarity)
