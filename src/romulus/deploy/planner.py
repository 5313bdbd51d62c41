# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/deploy/planner.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from ..errors import PlanOrderingError, ReferentialIntegrityError, UnnamedResourceError
from ..state.resources import KIND_ORDER, ResourceKind, changed_fields, describe
from ..state.state import State, validate_references
from .actions import Action, ActionType, Plan

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, new_ctx

log = logging.getLogger("romulus")

# rough minutes per action, used only for the plan summary
_ESTIMATES: Dict[Tuple[ActionType, ResourceKind], float] = {
    (ActionType.CREATE, ResourceKind.POOL): 1,
    (ActionType.CREATE, ResourceKind.NETWORK): 1,
    (ActionType.CREATE, ResourceKind.VOLUME): 5,
    (ActionType.CREATE, ResourceKind.DOMAIN): 3,
    (ActionType.UPDATE, ResourceKind.POOL): 1,
    (ActionType.UPDATE, ResourceKind.NETWORK): 1,
    (ActionType.UPDATE, ResourceKind.VOLUME): 1,
    (ActionType.UPDATE, ResourceKind.DOMAIN): 1,
    (ActionType.DESTROY, ResourceKind.POOL): 1,
    (ActionType.DESTROY, ResourceKind.NETWORK): 1,
    (ActionType.DESTROY, ResourceKind.VOLUME): 2,
    (ActionType.DESTROY, ResourceKind.DOMAIN): 2,
}
_PARALLEL_FACTOR = 0.6


def _title(kind: ResourceKind) -> str:
    return kind.value.capitalize()


def _reject_unnamed(state: State) -> None:
    for r in state.all_resources():
        if not r.name:
            raise UnnamedResourceError(f"{r.kind.value} without a name: {r!r}")


def _without_deferred(kind: ResourceKind, have: dict, want: dict, deferred: Set[str]) -> dict:
    """
    Volumes in an inactive pool were not listed, so they cannot be diffed
    until the pool runs again; new domains on such a pool wait with them.
    """
    kept = {}
    for name, res in want.items():
        if res.pool in deferred and (kind is ResourceKind.VOLUME or name not in have):
            log.info(f"{describe(res)}: deferred until pool {res.pool} is active")
            continue
        kept[name] = res
    return kept


def sort_key(action: Action) -> Tuple[int, int, int]:
    """Creates/updates by kind forward, then destroys by kind in reverse."""
    if action.type is ActionType.DESTROY:
        return (1, -action.kind.priority, 0)
    return (0, action.kind.priority, 0 if action.type is ActionType.CREATE else 1)


def _update_for(current, desired) -> Optional[Action]:
    kind = desired.kind
    changes = changed_fields(current, desired)
    if changes:
        return Action(
            ActionType.UPDATE,
            desired,
            reason=f"{_title(kind)} configuration changed: {', '.join(changes)}",
            changes=changes,
        )
    if kind in (ResourceKind.POOL, ResourceKind.NETWORK) and current.active is False:
        return Action(
            ActionType.UPDATE,
            desired,
            reason=f"{_title(kind)} not in desired state",
            changes=("active",),
        )
    return None


def diff(
    current: State,
    desired: State,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
    inventory: Optional[State] = None,
) -> Plan:
    """
    Compute the actions that turn `current` into `desired`.
    References resolve against `inventory` (the whole host) when `current`
    is only the managed part of it.
    Creates and updates come kind by kind (pool, network, volume, domain);
    all destroys follow in the reverse kind order.
    Emits PlanComputed / PlanFailed if an EventBus is provided.
    """
    ctx = run_ctx or new_ctx(env="romulus", context=None)
    try:
        _reject_unnamed(current)
        _reject_unnamed(desired)
        validate_references((inventory if inventory is not None else current).union(desired))

        deferred = set(current.unlisted_pools)
        forward: Plan = []
        destroys: Plan = []
        for kind in KIND_ORDER:
            have = current.by_name(kind)
            want = desired.by_name(kind)
            if deferred and kind in (ResourceKind.VOLUME, ResourceKind.DOMAIN):
                want = _without_deferred(kind, have, want, deferred)

            for name, res in want.items():
                if name not in have:
                    forward.append(Action(ActionType.CREATE, res, reason=f"{_title(kind)} does not exist"))
            for name, res in want.items():
                if name in have:
                    update = _update_for(have[name], res)
                    if update is not None:
                        forward.append(update)
            for name, res in have.items():
                if name not in want:
                    destroys.append(Action(ActionType.DESTROY, res, reason=f"{_title(kind)} not in desired state"))

        destroys.sort(key=sort_key)
        actions = forward + destroys

        if bus:
            bus.emit(PlanComputed(actions=[a.describe() for a in actions], **ctx))
        return actions

    except Exception as e:
        if bus:
            bus.emit(PlanFailed(error=str(e), **ctx))
        raise


def validate(actions: Plan, current: Optional[State] = None) -> Plan:
    """
    Reject plans that cannot run: nameless resources, volumes created in a pool
    that neither exists nor is created, and dependency-violating order.
    Returns the plan unchanged when it is valid.
    """
    current = current or State.empty()

    for a in actions:
        if not a.name:
            raise UnnamedResourceError(f"{a.type.value} {a.kind.value} without a name")

    position: Dict[Tuple[ActionType, ResourceKind, str], int] = {}
    for i, a in enumerate(actions):
        position.setdefault((a.type, a.kind, a.name), i)

    def created_at(kind: ResourceKind, name: Optional[str]) -> Optional[int]:
        return position.get((ActionType.CREATE, kind, name)) if name else None

    def destroyed_at(kind: ResourceKind, name: Optional[str]) -> Optional[int]:
        return position.get((ActionType.DESTROY, kind, name)) if name else None

    existing_pools: Set[str] = current.names(ResourceKind.POOL)

    for i, a in enumerate(actions):
        res = a.resource
        if a.type is ActionType.CREATE and a.kind is ResourceKind.VOLUME:
            if not res.pool:
                raise ReferentialIntegrityError(describe(res), "pool", f"{describe(res)} has no pool to be created in")
            if created_at(ResourceKind.POOL, res.pool) is None and res.pool not in existing_pools:
                raise ReferentialIntegrityError(describe(res), f"pool {res.pool}")
            deps = [(ResourceKind.POOL, res.pool), (ResourceKind.VOLUME, res.base_volume)]
            _check_before(a, i, [(k, n, created_at(k, n)) for k, n in deps])

        elif a.type is ActionType.CREATE and a.kind is ResourceKind.DOMAIN:
            deps = [
                (ResourceKind.POOL, res.pool),
                (ResourceKind.NETWORK, res.network),
                (ResourceKind.VOLUME, res.disk_volume),
                (ResourceKind.VOLUME, res.bootstrap_volume),
            ]
            _check_before(a, i, [(k, n, created_at(k, n)) for k, n in deps])

        elif a.type is ActionType.DESTROY and a.kind in (ResourceKind.POOL, ResourceKind.NETWORK, ResourceKind.VOLUME):
            dependants = []
            for other in actions:
                if other.type is not ActionType.DESTROY:
                    continue
                o = other.resource
                uses = (
                    (a.kind is ResourceKind.POOL and other.kind in (ResourceKind.VOLUME, ResourceKind.DOMAIN) and o.pool == a.name)
                    or (a.kind is ResourceKind.NETWORK and other.kind is ResourceKind.DOMAIN and o.network == a.name)
                    or (a.kind is ResourceKind.VOLUME and other.kind is ResourceKind.DOMAIN
                        and a.name in (o.disk_volume, o.bootstrap_volume))
                )
                if uses:
                    dependants.append((other.kind, other.name, destroyed_at(other.kind, other.name)))
            for kind, name, j in dependants:
                if j is not None and j > i:
                    raise PlanOrderingError(
                        f"{a.describe()} runs before destroy {kind.value} {name} which depends on it",
                        resource=describe(res),
                    )
    return actions


def _check_before(action: Action, index: int, deps) -> None:
    for kind, name, j in deps:
        if j is not None and j > index:
            raise PlanOrderingError(
                f"{action.describe()} runs before create {kind.value} {name}",
                resource=describe(action.resource),
            )


def optimize(actions: Plan) -> Plan:
    """Drop create/destroy pairs on the same resource, then restore tier order."""
    creates = {a.key for a in actions if a.type is ActionType.CREATE}
    destroys = {a.key for a in actions if a.type is ActionType.DESTROY}
    cancelled = creates & destroys

    kept = [
        a for a in actions
        if not (a.key in cancelled and a.type in (ActionType.CREATE, ActionType.DESTROY))
    ]
    return sorted(kept, key=sort_key)


@dataclass
class PlanStatistics:
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    by_kind: Dict[str, int] = field(default_factory=dict)
    estimated_duration_minutes: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "by_type": dict(self.by_type),
            "by_kind": dict(self.by_kind),
            "estimated_duration_minutes": self.estimated_duration_minutes,
        }


def statistics(actions: Plan) -> PlanStatistics:
    stats = PlanStatistics(
        total=len(actions),
        by_type={t.value: 0 for t in ActionType},
        by_kind={k.value: 0 for k in KIND_ORDER},
    )
    minutes = 0.0
    for a in actions:
        stats.by_type[a.type.value] += 1
        stats.by_kind[a.kind.value] += 1
        minutes += _ESTIMATES[(a.type, a.kind)]
    if actions:
        stats.estimated_duration_minutes = round(max(minutes * _PARALLEL_FACTOR, 1.0), 1)
    return stats


def format_plan(actions: Plan) -> str:
    if not actions:
        return "Infrastructure is up to date. No changes needed."

    lines = ["Plan Summary:", "=" * 60]
    for action_type, title in (
        (ActionType.CREATE, "To create:"),
        (ActionType.UPDATE, "To update:"),
        (ActionType.DESTROY, "To destroy:"),
    ):
        group = [a for a in actions if a.type is action_type]
        if not group:
            continue
        lines.append("")
        lines.append(title)
        for a in group:
            line = f"  [{a.kind.value}] {a.name}"
            if a.changes and action_type is ActionType.UPDATE:
                line += f" ({', '.join(a.changes)})"
            lines.append(line)

    lines.append("")
    lines.append(f"Total: {len(actions)} change(s)")
    return "\n".join(lines)
