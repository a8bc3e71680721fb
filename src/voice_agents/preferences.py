"""Persisted user toggles.

The push-to-talk mode, audio playback enablement and the event pane state
survive restarts. They are stored as a small JSON document next to the user's
other settings; a missing or unreadable file falls back to defaults.
"""

import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class Preferences(BaseModel):
    """User toggles persisted between runs."""

    push_to_talk: bool = False
    audio_playback_enabled: bool = True
    logs_expanded: bool = True


class PreferenceStore:
    """Load/save `Preferences` to a JSON file.

    A store without a path keeps preferences in memory only.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._prefs = self._load()

    @property
    def current(self) -> Preferences:
        return self._prefs

    def update(self, **changes: bool) -> Preferences:
        """Apply changes and persist them.

        Args:
            **changes: Preference fields to change

        Returns:
            Updated preferences

        Raises:
            ValueError: If a field name is unknown
        """
        unknown = set(changes) - set(Preferences.model_fields)
        if unknown:
            raise ValueError(f"Unknown preference(s): {sorted(unknown)}")

        self._prefs = self._prefs.model_copy(update=changes)
        self._save()
        return self._prefs

    def _load(self) -> Preferences:
        if self._path is None or not self._path.exists():
            return Preferences()

        try:
            return Preferences.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(
                "Ignoring unreadable preferences file",
                extra={"path": str(self._path), "error": str(e)},
            )
            return Preferences()

    def _save(self) -> None:
        if self._path is None:
            return

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(self._prefs.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning(
                "Failed to persist preferences",
                extra={"path": str(self._path), "error": str(e)},
            )
