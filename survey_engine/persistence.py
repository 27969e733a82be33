"""
Turn-based session persistence.

Append-only JSON files for audit trail and restart resilience.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from survey_engine.core.slot_schema import SlotSchema
from survey_engine.core.slot_state import SlotState

logger = logging.getLogger(__name__)


class SessionPersistence:
    """
    Manages turn-by-turn JSON persistence.

    Layout:
        outputs/sessions/SESSION-abc123/
            SESSION-abc123_TURN-000.json
            SESSION-abc123_TURN-001.json
            ...

    The turn number is the count of answers recorded in the state, so
    saving the same answer twice is detected as a double-submit.
    """

    def __init__(self, base_dir: str = "outputs/sessions"):
        """
        Initialize persistence layer.

        Args:
            base_dir: Base directory for all sessions
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"SessionPersistence initialized: {self.base_dir}")

    def _session_dir(self, session_id: str) -> Path:
        return self.base_dir / f"SESSION-{session_id}"

    def save_turn(self, state: SlotState) -> str:
        """
        Save state snapshot to an append-only file.

        Args:
            state: Session state (session_id must be set)

        Returns:
            str: Absolute path to saved file

        Raises:
            ValueError: If the state has no session id
            FileExistsError: If turn file already exists (double-submit)
        """
        if not state.session_id:
            raise ValueError("Cannot persist a state without session_id")

        session_dir = self._session_dir(state.session_id)
        session_dir.mkdir(exist_ok=True)

        turn_number = len(state.conversation_history)
        filename = f"SESSION-{state.session_id}_TURN-{turn_number:03d}.json"
        filepath = session_dir / filename

        if filepath.exists():
            raise FileExistsError(
                f"Turn file already exists: {filepath}. "
                f"This indicates a double-submit or turn-count error."
            )

        with open(filepath, 'w') as f:
            json.dump(state.snapshot_state(), f, indent=2, ensure_ascii=False)

        logger.info(f"Saved turn {turn_number} for {state.session_id}: {filename}")
        return str(filepath.absolute())

    def load_latest(self, session_id: str, schema: SlotSchema) -> Optional[SlotState]:
        """
        Load latest turn for a session.

        Args:
            session_id: Session identifier
            schema: Schema the session was started with

        Returns:
            SlotState if the session exists, None otherwise

        Raises:
            SchemaViolation: If the snapshot does not match the schema
        """
        session_dir = self._session_dir(session_id)

        if not session_dir.exists():
            logger.warning(f"Session directory not found: {session_id}")
            return None

        turn_files = list(session_dir.glob(f"SESSION-{session_id}_TURN-*.json"))
        if not turn_files:
            logger.warning(f"No turn files found for {session_id}")
            return None

        latest_file = max(turn_files, key=lambda p: p.name)
        logger.info(f"Loading latest turn for {session_id}: {latest_file.name}")

        with open(latest_file, 'r') as f:
            data = json.load(f)

        return SlotState.from_snapshot(data, schema)

    def session_exists(self, session_id: str) -> bool:
        session_dir = self._session_dir(session_id)
        return session_dir.exists() and any(session_dir.glob("*.json"))

    def get_turn_count(self, session_id: str) -> int:
        """Number of saved turns (0 if session doesn't exist)"""
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return 0
        return len(list(session_dir.glob(f"SESSION-{session_id}_TURN-*.json")))
