"""
Error taxonomy for the adaptive survey engine.

Only SchemaViolation is fatal. ExtractionFailure and EmbeddingFailure are
raised by the external-call wrappers and recovered inside the turn: the
affected signal degrades (confidence 0, no redundancy penalty) and the
turn proceeds.

"No eligible template" is deliberately NOT an exception. The scoring engine
returns None and the orchestrator halts with reason 'no_suitable_questions'.
"""


class SurveyEngineError(Exception):
    """Base exception for the survey engine"""
    pass


class SchemaViolation(SurveyEngineError):
    """
    Schema/catalog inconsistency detected at load time.

    Raised when a template references an unknown slot, a template is
    malformed, or a persisted Slot State does not match its schema.
    """

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        message = "Schema validation failed:\n  - " + "\n  - ".join(self.errors)
        super().__init__(message)


class ExtractionFailure(SurveyEngineError):
    """Extraction service errored, timed out, or returned unparseable output"""
    pass


class EmbeddingFailure(SurveyEngineError):
    """Embedding service errored or timed out"""
    pass
