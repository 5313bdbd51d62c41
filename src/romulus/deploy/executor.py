# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/deploy/executor.py

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from ..backend.interface import Backend
from ..config.models import RomulusConfig
from ..errors import BackendUnavailableError, PlanValidationError
from ..state.resources import KIND_ORDER, RESOURCE_TYPES, Domain, ResourceKind
from .actions import Action, ActionType, Plan

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    new_ctx,
    ApplyStarted,
    ActionStarted,
    ActionSucceeded,
    ActionFailed,
    ActionSkipped,
    RollbackStarted,
    RollbackResult,
    ApplySummary,
)

log = logging.getLogger("romulus")

MODES = ("serial", "parallel")
ON_ERROR = ("halt", "continue")


@dataclass
class ExecutorOptions:
    mode: str = "serial"            # "serial" | "parallel"
    dry_run: bool = False
    on_error: str = "halt"          # "halt" | "continue"
    rollback_on_error: bool = False
    max_concurrency: int = 4

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got '{self.mode}'")
        if self.on_error not in ON_ERROR:
            raise ValueError(f"on_error must be one of {ON_ERROR}, got '{self.on_error}'")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")


class ApplyStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    DRY_RUN = "dry_run"


@dataclass
class ActionOutcome:
    action: Action
    status: str                 # "OK" | "FAILED" | "SKIPPED" | "PLANNED"
    error: Optional[str] = None
    duration_ms: int = 0
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "action": self.action.type.value,
            "kind": self.action.kind.value,
            "name": self.action.name,
            "status": self.status,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "message": self.message,
        }


@dataclass
class ApplyReport:
    status: ApplyStatus = ApplyStatus.SUCCESS
    outcomes: List[ActionOutcome] = field(default_factory=list)
    error: Optional[Exception] = None
    rollback_attempted: bool = False
    rolled_back: List[Action] = field(default_factory=list)
    rollback_errors: List[str] = field(default_factory=list)
    duration: float = 0.0

    def _with(self, status: str) -> List[ActionOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> List[ActionOutcome]:
        return self._with("OK")

    @property
    def failed(self) -> List[ActionOutcome]:
        return self._with("FAILED")

    @property
    def skipped(self) -> List[ActionOutcome]:
        return self._with("SKIPPED")

    @property
    def ok(self) -> bool:
        return self.status in (ApplyStatus.SUCCESS, ApplyStatus.DRY_RUN)

    def summary(self) -> str:
        return (
            f"OK={len(self.succeeded)} FAILED={len(self.failed)} "
            f"SKIPPED={len(self.skipped)} ROLLED_BACK={len(self.rolled_back)}"
        )

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "total": len(self.outcomes),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "duration": round(self.duration, 3),
            "error": str(self.error) if self.error else None,
            "rollback_attempted": self.rollback_attempted,
            "rolled_back": [a.describe() for a in self.rolled_back],
            "rollback_errors": list(self.rollback_errors),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


Tier = List[Tuple[int, Action]]


def build_tiers(plan: Plan) -> List[Tier]:
    """
    Group plan positions into tiers that can run concurrently:
    creates/updates per kind in forward order, destroys per kind in reverse.
    Volumes cloned from a volume created by the same plan go one tier later.
    """
    depth: Dict[str, int] = {}
    created_volumes = {
        a.name: a for a in plan
        if a.type is ActionType.CREATE and a.kind is ResourceKind.VOLUME
    }

    def volume_depth(name: str, seen: Tuple[str, ...] = ()) -> int:
        if name in depth:
            return depth[name]
        base = created_volumes[name].resource.base_volume
        if base in created_volumes and base not in seen:
            d = volume_depth(base, seen + (name,)) + 1
        else:
            d = 0
        depth[name] = d
        return d

    groups: Dict[Tuple[int, int, int], Tier] = {}
    for i, a in enumerate(plan):
        if a.type is ActionType.DESTROY:
            key = (1, -a.kind.priority, 0)
        elif a.type is ActionType.CREATE and a.kind is ResourceKind.VOLUME:
            key = (0, a.kind.priority, volume_depth(a.name))
        else:
            key = (0, a.kind.priority, 0)
        groups.setdefault(key, []).append((i, a))
    return [groups[k] for k in sorted(groups)]


def _exhaustive(table: Dict[ResourceKind, Callable], what: str) -> Dict[ResourceKind, Callable]:
    missing = set(KIND_ORDER) - set(table)
    if missing:
        raise RuntimeError(f"no {what} handler for {sorted(k.value for k in missing)}")
    return table


class Executor:
    """
    Applies a plan through an injected Backend.
    Emits observer events for every action if observers are provided.
    """

    def __init__(
        self,
        backend: Backend,
        payloads=None,
        config: Optional[RomulusConfig] = None,
        options: Optional[ExecutorOptions] = None,
        observers: Optional[List] = None,
        run_ctx: Optional[dict] = None,
    ):
        self.backend = backend
        self.payloads = payloads
        self.config = config
        self.options = options or ExecutorOptions()
        self.bus = EventBus(observers or [])
        env = config.cluster.name if config else "romulus"
        self.run_ctx = run_ctx or new_ctx(env=env, context=getattr(backend, "uri", None))

        self._creates = _exhaustive({
            ResourceKind.POOL: backend.create_pool,
            ResourceKind.NETWORK: backend.create_network,
            ResourceKind.VOLUME: backend.create_volume,
            ResourceKind.DOMAIN: self._create_domain,
        }, "create")
        self._updates = _exhaustive({
            ResourceKind.POOL: backend.update_pool,
            ResourceKind.NETWORK: backend.update_network,
            ResourceKind.VOLUME: backend.update_volume,
            ResourceKind.DOMAIN: backend.update_domain,
        }, "update")
        self._destroys = _exhaustive({
            ResourceKind.POOL: lambda r: backend.delete_pool(r.name),
            ResourceKind.NETWORK: lambda r: backend.delete_network(r.name),
            ResourceKind.VOLUME: lambda r: backend.delete_volume(r.name, r.pool),
            ResourceKind.DOMAIN: lambda r: backend.delete_domain(r.name),
        }, "destroy")

        self._guard = threading.Lock()
        self._locks: Dict[Tuple[ResourceKind, str], threading.Lock] = {}
        self._stop = threading.Event()
        self._unavailable: Optional[BackendUnavailableError] = None
        self._first_error: Optional[Exception] = None
        self._applied: List[Action] = []

    # ------------------------- internal helpers -------------------------

    def _lock_for(self, key: Tuple[ResourceKind, str]) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def _validate_structure(self, plan: Plan) -> None:
        for a in plan:
            if not isinstance(a, Action):
                raise PlanValidationError(f"not an action: {a!r}")
            if not isinstance(a.type, ActionType):
                raise PlanValidationError(f"unknown action type {a.type!r}")
            expected = RESOURCE_TYPES.get(getattr(a.resource, "kind", None))
            if expected is None or not isinstance(a.resource, expected):
                raise PlanValidationError(f"unsupported resource {a.resource!r}")
            if not a.name:
                raise PlanValidationError(f"{a.type.value} {a.kind.value} without a name")

    def _create_domain(self, domain: Domain) -> None:
        if self.payloads is not None and self.config is not None and domain.role and domain.bootstrap_volume:
            payload = self.payloads.generate_node_payload(domain.role, domain.index, self.config)
            self.backend.write_bootstrap_payload(domain.bootstrap_volume, domain.pool, payload)
        else:
            log.debug(f"domain {domain.name}: no bootstrap payload to write")
        self.backend.create_domain(domain)

    def _dispatch(self, action: Action) -> None:
        table = {
            ActionType.CREATE: self._creates,
            ActionType.UPDATE: self._updates,
            ActionType.DESTROY: self._destroys,
        }[action.type]
        table[action.kind](action.resource)

    def _skip(self, action: Action, reason: str) -> ActionOutcome:
        self.bus.emit(ActionSkipped(
            action=action.type.value, kind=action.kind.value, name=action.name, reason=reason, **self.run_ctx
        ))
        return ActionOutcome(action=action, status="SKIPPED", message=reason)

    def _run_action(self, action: Action) -> ActionOutcome:
        if self._stop.is_set():
            return self._skip(action, "halted after an earlier failure")

        ev = dict(action=action.type.value, kind=action.kind.value, name=action.name)
        self.bus.emit(ActionStarted(**ev, **self.run_ctx))
        log.info(f"{action.describe()}: {action.reason}")
        t0 = time.time()
        try:
            with self._lock_for(action.key):
                self._dispatch(action)
        except Exception as e:
            duration_ms = int((time.time() - t0) * 1000)
            with self._guard:
                if self._first_error is None:
                    self._first_error = e
                if isinstance(e, BackendUnavailableError):
                    self._unavailable = e
                    self._stop.set()
                elif self.options.on_error == "halt":
                    self._stop.set()
            log.error(f"{action.describe()} failed: {e}")
            self.bus.emit(ActionFailed(**ev, error=str(e), **self.run_ctx))
            return ActionOutcome(action=action, status="FAILED", error=str(e), duration_ms=duration_ms)

        duration_ms = int((time.time() - t0) * 1000)
        if action.type is ActionType.CREATE:
            with self._guard:
                self._applied.append(action)
        self.bus.emit(ActionSucceeded(**ev, duration_ms=duration_ms, **self.run_ctx))
        return ActionOutcome(action=action, status="OK", duration_ms=duration_ms)

    def _run_tier(self, tier: Tier, slots: List[Optional[ActionOutcome]]) -> None:
        if self.options.mode == "serial" or len(tier) == 1:
            for i, action in tier:
                slots[i] = self._run_action(action)
            return

        workers = min(self.options.max_concurrency, len(tier))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="romulus") as pool:
            futures = [(i, pool.submit(self._run_action, action)) for i, action in tier]
            for i, fut in futures:
                slots[i] = fut.result()

    def _rollback(self, report: ApplyReport) -> None:
        report.rollback_attempted = True
        for action in reversed(self._applied):
            res = action.resource
            self.bus.emit(RollbackStarted(kind=action.kind.value, name=action.name, **self.run_ctx))
            try:
                self._destroys[action.kind](res)
            except Exception as e:
                report.rollback_errors.append(f"{action.kind.value} {action.name}: {e}")
                self.bus.emit(RollbackResult(
                    kind=action.kind.value, name=action.name, status="FAILED", error=str(e), **self.run_ctx
                ))
                continue
            report.rolled_back.append(action)
            self.bus.emit(RollbackResult(
                kind=action.kind.value, name=action.name, status="ROLLED_BACK", error=None, **self.run_ctx
            ))

    def _finish(self, report: ApplyReport, t0: float) -> ApplyReport:
        report.duration = time.time() - t0
        self.bus.emit(ApplySummary(
            status=report.status.value,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            skipped=len(report.skipped),
            rolled_back=len(report.rolled_back),
            **self.run_ctx,
        ))
        log.info(f"apply {report.status.value}: {report.summary()}")
        return report

    # ------------------------- public API -------------------------

    def apply(self, plan: Plan) -> ApplyReport:
        """
        Run every action tier by tier. Per-action failures end up in the
        report; only a malformed plan raises.
        """
        self._validate_structure(plan)
        self._stop.clear()
        self._unavailable = None
        self._first_error = None
        self._applied = []

        t0 = time.time()
        report = ApplyReport()
        opts = self.options
        self.bus.emit(ApplyStarted(total=len(plan), mode=opts.mode, dry_run=opts.dry_run, **self.run_ctx))

        if opts.dry_run:
            report.status = ApplyStatus.DRY_RUN
            report.outcomes = [
                ActionOutcome(action=a, status="PLANNED", message=f"would {a.describe()}") for a in plan
            ]
            return self._finish(report, t0)

        if not plan:
            return self._finish(report, t0)

        try:
            self.backend.ping()
        except BackendUnavailableError as e:
            log.error(f"backend unavailable: {e}")
            report.status = ApplyStatus.FAILED
            report.error = e
            report.outcomes = [self._skip(a, "backend unavailable") for a in plan]
            return self._finish(report, t0)

        slots: List[Optional[ActionOutcome]] = [None] * len(plan)
        for tier in build_tiers(plan):
            if self._stop.is_set():
                for i, action in tier:
                    slots[i] = self._skip(action, "halted after an earlier failure")
                continue
            self._run_tier(tier, slots)
        report.outcomes = [o for o in slots if o is not None]

        if self._unavailable is not None:
            report.status = ApplyStatus.FAILED
            report.error = self._unavailable
        elif self._first_error is not None:
            report.error = self._first_error
            if opts.on_error == "halt":
                report.status = ApplyStatus.FAILED
                if opts.rollback_on_error and self._applied:
                    self._rollback(report)
            else:
                # partial means some actions landed; none landing is a failure
                report.status = ApplyStatus.PARTIAL if report.succeeded else ApplyStatus.FAILED
        return self._finish(report, t0)
