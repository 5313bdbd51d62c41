# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/observers/interface.py

from __future__ import annotations
from typing import Protocol
from .events import BaseEvent


class Observer(Protocol):
    """
    Receives every planner, executor and inventory event of a run.

    `notify` is called from executor worker threads as actions finish, so
    implementations must tolerate concurrent calls. Exceptions raised here
    are logged by the EventBus and never reach the reconciliation.
    """

    def notify(self, event: BaseEvent) -> None: ...
