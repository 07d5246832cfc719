"""Undo history for the care plan wizard.

One snapshot is pushed per autosave cycle (i.e. per debounce window),
holding the record as it was *before* that cycle's changes.  Undo pops
the newest snapshot.  There is no redo.
"""

from __future__ import annotations

import copy
from collections import deque
from typing import Any


class UndoStack:
    def __init__(self, limit: int | None = None):
        # limit=None keeps every snapshot; otherwise the oldest fall off
        self._snapshots: deque[dict[str, Any]] = deque(maxlen=limit)

    def push(self, snapshot: dict[str, Any]) -> None:
        self._snapshots.append(copy.deepcopy(snapshot))

    def pop(self) -> dict[str, Any] | None:
        if not self._snapshots:
            return None
        return self._snapshots.pop()

    def can_undo(self) -> bool:
        return bool(self._snapshots)

    def clear(self) -> None:
        self._snapshots.clear()

    def __len__(self) -> int:
        return len(self._snapshots)
