"""
Per-stream sync cursors.

One timestamp watermark per stream, persisted as a single JSON object in the
settings store so cursors survive restarts. A missing cursor means "full
history". Only the owning unit advances its cursor, and only after a fully
successful round trip.
"""

import enum
import logging
from datetime import datetime
from typing import Optional

from timewellspent.storage.settings_store import SettingsStore
from timewellspent.sync.clock import parse_timestamp, to_iso

logger = logging.getLogger(__name__)

STATE_KEY = "sync_state"
LAST_SYNC_KEY = "last_sync"


class Stream(str, enum.Enum):
    ledger = "ledger"
    library = "library"
    consumption = "consumption"
    rollups = "rollups"
    achievements = "achievements"
    housekeeping = "housekeeping"


class CursorStore:
    def __init__(self, storage: SettingsStore):
        self._storage = storage

    def _state(self) -> dict:
        state = self._storage.get_json(STATE_KEY, {})
        return state if isinstance(state, dict) else {}

    def _write(self, state: dict) -> None:
        self._storage.set_json(STATE_KEY, state)

    def get(self, stream: Stream) -> Optional[datetime]:
        return parse_timestamp(self._state().get(stream.value))

    def advance(self, stream: Stream, value: Optional[datetime]) -> None:
        state = self._state()
        if value is None:
            state.pop(stream.value, None)
        else:
            state[stream.value] = to_iso(value)
        self._write(state)
        logger.debug("Cursor %s -> %s", stream.value, state.get(stream.value))

    def clear(self, stream: Optional[Stream] = None) -> None:
        """Forget one cursor, or every cursor (full resync) when no stream is given."""
        if stream is None:
            self._write({})
            return
        self.advance(stream, None)

    @property
    def last_sync_at(self) -> Optional[datetime]:
        return parse_timestamp(self._state().get(LAST_SYNC_KEY))

    def mark_synced(self, at: datetime) -> None:
        state = self._state()
        state[LAST_SYNC_KEY] = to_iso(at)
        self._write(state)

    def snapshot(self) -> dict:
        return dict(self._state())
