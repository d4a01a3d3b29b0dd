"""Stored API credentials (``<data_dir>/credentials``, owner read/write only)."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from quantscope.config import settings

logger = logging.getLogger(__name__)

CREDENTIALS_FILENAME = "credentials"


class CredentialStore:
    def __init__(self, data_dir: Path | str | None = None) -> None:
        self._dir = Path(data_dir) if data_dir else settings.data_dir
        self._path = self._dir / CREDENTIALS_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> str | None:
        """Return the stored key, or None if absent or unreadable."""
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.debug("Ignoring unreadable credentials file: %s", e)
            return None
        key = data.get("api_key") if isinstance(data, dict) else None
        return key or None

    def save(self, api_key: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._write({"api_key": api_key, "created_at": now, "validated_at": now})

    def touch_validated(self) -> None:
        """Refresh ``validated_at``; failures are logged and otherwise ignored."""
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            data["validated_at"] = datetime.now(timezone.utc).isoformat()
            self._write(data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Could not update credential timestamp: %s", e)

    def clear(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not delete credentials file %s: %s", self._path, e)

    def _write(self, data: dict[str, str]) -> None:
        self._dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.chmod(self._path, 0o600)


def resolve_api_key(explicit: str | None, store: CredentialStore) -> tuple[str | None, str]:
    """Pick an API key: explicit parameter, then environment, then stored file.

    Returns ``(key, source)`` where source is ``param``, ``env``, ``stored`` or
    ``none``.
    """
    if explicit:
        return explicit, "param"
    env_key = settings.env_api_key()
    if env_key:
        return env_key, "env"
    stored = store.load()
    if stored:
        return stored, "stored"
    return None, "none"
