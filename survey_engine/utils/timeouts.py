"""
Deadline wrapper for calls to external services (extraction, embeddings).

A call that exceeds its deadline, or raises, is reported as the given
failure type so callers can degrade that one signal and carry on.

Each deadline call runs on its own daemon thread. A hung call keeps its
thread until it returns but never delays calls from other sessions, and
never blocks interpreter shutdown.
"""

import logging
import queue
import threading
from typing import Any, Callable, Optional, Tuple, Type

from survey_engine.exceptions import SurveyEngineError

logger = logging.getLogger(__name__)


def call_with_timeout(
    fn: Callable[..., Any],
    *args,
    timeout: Optional[float] = None,
    failure: Type[SurveyEngineError] = SurveyEngineError,
    **kwargs
) -> Any:
    """
    Run fn(*args, **kwargs) with a deadline.

    Args:
        fn: Callable to run
        timeout: Seconds to wait (None = no deadline, run inline)
        failure: Exception type raised on timeout or error

    Returns:
        Whatever fn returns

    Raises:
        failure: On timeout, or wrapping any exception fn raised
    """
    name = getattr(fn, "__qualname__", repr(fn))

    if timeout is None:
        try:
            return fn(*args, **kwargs)
        except failure:
            raise
        except Exception as e:
            raise failure(f"{name} failed: {e}") from e

    results: "queue.Queue[Tuple[bool, Any]]" = queue.Queue(maxsize=1)

    def _runner() -> None:
        try:
            results.put((True, fn(*args, **kwargs)))
        except Exception as exc:
            results.put((False, exc))

    worker = threading.Thread(target=_runner, name=f"survey-call-{name}", daemon=True)
    worker.start()
    worker.join(timeout=max(0.0, timeout))

    if worker.is_alive():
        logger.warning(f"{name} exceeded {timeout:.1f}s deadline")
        raise failure(f"{name} timed out after {timeout:.1f}s")

    ok, payload = results.get_nowait()
    if ok:
        return payload
    if isinstance(payload, failure):
        raise payload
    raise failure(f"{name} failed: {payload}") from payload
