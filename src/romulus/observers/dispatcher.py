# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/observers/dispatcher.py
from __future__ import annotations
import logging
import threading
from typing import List
from .events import BaseEvent

log = logging.getLogger("romulus")


class EventBus:
    def __init__(self, observers: List = None):
        self._observers = observers or []
        # parallel tiers emit from worker threads
        self._lock = threading.Lock()

    def emit(self, event: BaseEvent) -> None:
        with self._lock:
            for ob in self._observers:
                try:
                    ob.notify(event)
                except Exception as e:
                    # observers must not break an apply
                    log.debug(f"observer {ob.__class__.__name__} failed on {event.__class__.__name__}: {e}")
