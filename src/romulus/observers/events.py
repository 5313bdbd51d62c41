# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single invocation
    env: str          # cluster name
    context: Optional[str]  # backend connection URI

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(env: str, context: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "context": context,
    }


# ---------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    actions: List[str]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ApplyStarted(BaseEvent):
    total: int
    mode: str
    dry_run: bool

@dataclass(frozen=True)
class ActionStarted(BaseEvent):
    action: str       # create | update | destroy
    kind: str
    name: str

@dataclass(frozen=True)
class ActionSucceeded(BaseEvent):
    action: str
    kind: str
    name: str
    duration_ms: int

@dataclass(frozen=True)
class ActionFailed(BaseEvent):
    action: str
    kind: str
    name: str
    error: str

@dataclass(frozen=True)
class ActionSkipped(BaseEvent):
    action: str
    kind: str
    name: str
    reason: str


# ---------------------------------------------------------------------
# Rollback & Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RollbackStarted(BaseEvent):
    kind: str
    name: str

@dataclass(frozen=True)
class RollbackResult(BaseEvent):
    kind: str
    name: str
    status: str       # "ROLLED_BACK" | "FAILED"
    error: Optional[str] = None

@dataclass(frozen=True)
class ApplySummary(BaseEvent):
    status: str
    succeeded: int
    failed: int
    skipped: int
    rolled_back: int


# ---------------------------------------------------------------------
# Node readiness
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NodeReachable(BaseEvent):
    name: str
    address: str
    attempts: int

@dataclass(frozen=True)
class NodeUnreachable(BaseEvent):
    name: str
    address: str
    error: str
