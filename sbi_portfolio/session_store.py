"""Persisted Playwright storage_state (cookies + localStorage) between runs."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class SessionStore:
    """Opaque JSON session blob at a fixed path. Presence means "try restore"."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> dict[str, Any] | None:
        """Return the stored blob, or None if absent or unreadable.

        A corrupt file is quarantined next to the original so the next run logs in fresh.
        """
        if not self.exists():
            return None
        try:
            state = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Session blob %s unreadable, quarantining (%s)", self.path, e)
            self._quarantine()
            return None
        if not isinstance(state, dict):
            logger.warning("Session blob %s is not a JSON object, quarantining", self.path)
            self._quarantine()
            return None
        return state

    def save(self, state: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(state, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)
        logger.info("Session saved to %s", self.path)

    def clear(self) -> None:
        if self.exists():
            self.path.unlink()
            logger.info("Session blob %s removed", self.path)

    def _quarantine(self) -> None:
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        target = self.path.with_name(f"{self.path.name}.{stamp}.corrupt")
        try:
            self.path.rename(target)
        except OSError:
            logger.exception("Could not quarantine %s", self.path)
