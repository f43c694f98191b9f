"""
Session state persistence for study sessions.

Enables save/resume so a learner can interrupt and continue a session.
Sessions are stored as JSON files named {session_id}.json under the
configured session directory (UAMS_SESSION_DIR, default data/sessions).

The domain dataclasses are serialized with a pydantic TypeAdapter, so the
stored file round-trips to an equal UnifiedSessionState.
"""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from config import get_settings
from uams.core.exceptions import SessionNotFoundError
from uams.core.models import UnifiedSessionState


SESSION_ADAPTER = TypeAdapter(UnifiedSessionState)


class JsonSessionStore:
    """
    Manages session persistence.

    Usage:
        store = JsonSessionStore(Path("data/sessions"))
        store.save(state)
        state = store.load(state.session_id)
    """

    def __init__(self, session_dir: Optional[Path] = None):
        self.session_dir = Path(session_dir or get_settings().session_dir)
        self.session_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        return self.session_dir / f"{session_id}.json"

    def save(self, state: UnifiedSessionState) -> Path:
        """Save session state to disk."""
        filepath = self._path(state.session_id)
        filepath.write_bytes(SESSION_ADAPTER.dump_json(state, indent=2))
        logger.debug(f"Saved session {state.session_id} to {filepath}")
        return filepath

    def load(self, session_id: str) -> UnifiedSessionState:
        """
        Load a specific session by ID.

        Raises:
            SessionNotFoundError: If no readable session file exists
        """
        filepath = self._path(session_id)
        if not filepath.exists():
            raise SessionNotFoundError(session_id)

        try:
            return SESSION_ADAPTER.validate_json(filepath.read_bytes())
        except ValidationError as e:
            logger.warning(f"Session file {filepath} is corrupt: {e.error_count()} errors")
            raise SessionNotFoundError(session_id) from e

    def delete(self, session_id: str) -> bool:
        """Delete a session file."""
        filepath = self._path(session_id)
        if filepath.exists():
            filepath.unlink()
            return True
        return False

    def list_sessions(self, user_id: Optional[str] = None) -> list[UnifiedSessionState]:
        """All readable sessions, most recently started first."""
        sessions = []
        for filepath in self.session_dir.glob("*.json"):
            try:
                state = SESSION_ADAPTER.validate_json(filepath.read_bytes())
            except ValidationError:
                logger.warning(f"Skipping corrupt session file {filepath}")
                continue
            if user_id is None or state.user_id == user_id:
                sessions.append(state)

        return sorted(sessions, key=lambda s: s.session_start_time, reverse=True)

    def get_latest(self, user_id: Optional[str] = None) -> Optional[UnifiedSessionState]:
        sessions = self.list_sessions(user_id)
        return sessions[0] if sessions else None

    def cleanup_older_than(self, cutoff: datetime) -> int:
        """Remove sessions started before ``cutoff``."""
        removed = 0
        for state in self.list_sessions():
            if state.session_start_time < cutoff and self.delete(state.session_id):
                removed += 1
        return removed
