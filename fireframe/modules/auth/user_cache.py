"""File-backed stand-in for browser local storage.

Only the user profile is persisted, under a fixed key, in the same
``{"state": {...}}`` envelope the web client used. Sessions are never written
here; the auth provider owns session persistence.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from fireframe.modules.users.schemas import User

logger = logging.getLogger(__name__)


class UserCache:
    def __init__(self, path: str, key: str = "auth-storage"):
        self.path = Path(path)
        self.key = key

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable local storage at {self.path}: {e}")
            return {}

    def load(self) -> Optional[User]:
        entry = self._read_all().get(self.key) or {}
        user = (entry.get("state") or {}).get("user")
        if not user:
            return None
        try:
            return User.model_validate(user)
        except ValueError as e:
            logger.warning(f"Discarding cached user under {self.key}: {e}")
            return None

    def save(self, user: Optional[User]) -> None:
        data = self._read_all()
        data[self.key] = {
            "state": {"user": user.model_dump() if user else None},
            "version": 0,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
