# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/observers/jsonfile.py

from __future__ import annotations
import json
import threading
from pathlib import Path
from typing import Iterable, Optional
from .interface import Observer
from .events import BaseEvent


class JsonFileObserver(Observer):
    """
    Append one JSON line per event to the run's `.events.jsonl` audit file.

    `include` restricts the file to the named event types, e.g.
    ``{"ActionFailed", "ApplySummary"}``; by default everything is kept.
    """

    def __init__(self, path: str | Path, include: Optional[Iterable[str]] = None):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.include = frozenset(include) if include is not None else None
        self._lock = threading.Lock()

    def notify(self, event: BaseEvent) -> None:
        name = event.__class__.__name__
        if self.include is not None and name not in self.include:
            return
        line = json.dumps({"type": name, **event.dict()}, default=str)
        # workers finish concurrently; keep lines whole
        with self._lock, self.path.open("a") as f:
            f.write(line + "\n")
