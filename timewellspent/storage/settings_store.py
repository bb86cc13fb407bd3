"""
Key/value settings persisted as JSON in the local database.

Holds device identity, sync cursors, the cached auth session, and small
display values such as the friends count.
"""

import json
import logging
from typing import Any, Optional

from sqlalchemy.orm import sessionmaker

from timewellspent.models.settings import Setting
from timewellspent.storage.database import SessionLocal, session_scope

logger = logging.getLogger(__name__)


class SettingsStore:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def get_json(self, key: str, default: Any = None) -> Any:
        with session_scope(self._session_factory) as db:
            row = db.get(Setting, key)
            if row is None:
                return default
            raw = row.value
        try:
            value = json.loads(raw)
        except ValueError:
            logger.error("Failed to parse setting %s", key)
            return default
        return default if value is None else value

    def set_json(self, key: str, value: Any) -> None:
        with session_scope(self._session_factory) as db:
            db.merge(Setting(key=key, value=json.dumps(value)))

    def remove(self, key: str) -> None:
        with session_scope(self._session_factory) as db:
            row = db.get(Setting, key)
            if row is not None:
                db.delete(row)
