"""Persistence for the remote-state snapshot.

The only durable state the engine owns is ``RemoteState`` (the local
side is always rebuilt by scanning) plus the watermark of the last
completed sync.  Both live in one JSON file, ``remote_state.json``,
inside the configured state directory.

Writes are atomic: ``save()`` writes a temp file in the same directory
and then calls ``os.replace()`` so readers never see partial data.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

STATE_FILENAME = "remote_state.json"


class StateStore:
    """Load and save the persisted sync record.

    Args:
        state_dir: Directory holding the state file (created on save).
    """

    def __init__(self, state_dir: str | Path) -> None:
        self._state_dir = Path(state_dir).expanduser()

    @property
    def path(self) -> Path:
        return self._state_dir / STATE_FILENAME

    def load(self) -> dict[str, Any] | None:
        """Return the stored record, or ``None`` if there is none.

        An unreadable or non-JSON file is logged and treated as absent.
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error("Failed to read state file %s: %s", self.path, exc)
            return None
        if not isinstance(data, dict):
            logger.error("State file %s has a non-object root", self.path)
            return None
        return data

    def save(self, record: dict[str, Any]) -> None:
        """Persist *record* atomically, stamping ``saved_at`` (UTC ISO 8601)."""
        self._state_dir.mkdir(parents=True, exist_ok=True)
        record = {**record, "saved_at": datetime.now(timezone.utc).isoformat()}

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(record, fh, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
