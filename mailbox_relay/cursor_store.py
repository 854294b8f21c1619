"""Durable storage for the history cursor.

The whole state is one small JSON document. Saves write a temporary file
next to the target and ``os.replace`` it into place, so a crash leaves
either the previous or the new document, never a torn one. File I/O runs
in a worker thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import tempfile
from pathlib import Path

import structlog
from pydantic import ValidationError

from .config import CursorConfig
from .models import CursorState

logger = structlog.get_logger()


class CursorStore:
    """Single owner of the persisted :class:`CursorState`."""

    def __init__(self, config: CursorConfig) -> None:
        self._path = Path(config.state_path)

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> CursorState:
        """Return the persisted state, or an empty one if missing or unreadable."""
        return await asyncio.to_thread(self._load_sync)

    async def save(self, state: CursorState) -> bool:
        """Overwrite the persisted state. Failures are logged, not raised."""
        return await asyncio.to_thread(self._save_sync, state)

    async def advance(self, position: str | None) -> CursorState:
        """Move the persisted cursor forward to *position* (never backwards)."""
        current = await self.load()
        updated = current.advance(position)
        if updated.history_id != current.history_id:
            await self.save(updated)
        return updated

    # ------------------------------------------------------------------
    # Synchronous helpers (run in thread)
    # ------------------------------------------------------------------

    def _load_sync(self) -> CursorState:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return CursorState()
        except OSError as exc:
            logger.warning("cursor_load_failed", path=str(self._path), error=str(exc))
            return CursorState()

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("cursor state is not a JSON object")
            return CursorState.model_validate(data)
        except (ValueError, ValidationError) as exc:
            logger.warning("cursor_state_corrupt", path=str(self._path), error=str(exc))
            return CursorState()

    def _save_sync(self, state: CursorState) -> bool:
        document = json.dumps(state.model_dump(by_alias=True, exclude_none=True), indent=2)
        directory = self._path.parent
        tmp_name: str | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(document)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except OSError as exc:
            logger.error("cursor_save_failed", path=str(self._path), error=str(exc))
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            return False

        logger.debug("cursor_saved", path=str(self._path), history_id=state.history_id)
        return True
