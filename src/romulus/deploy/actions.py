# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/deploy/actions.py

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Tuple

from ..state.resources import Resource, ResourceKind, resource_dict


class ActionType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"


@dataclass(frozen=True)
class Action:
    type: ActionType
    resource: Resource
    reason: str = ""
    changes: Tuple[str, ...] = ()

    @property
    def kind(self) -> ResourceKind:
        return self.resource.kind

    @property
    def name(self) -> str:
        return self.resource.name

    @property
    def key(self) -> Tuple[ResourceKind, str]:
        return (self.kind, self.name)

    def describe(self) -> str:
        return f"{self.type.value} {self.kind.value} {self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.type.value,
            "kind": self.kind.value,
            "name": self.name,
            "reason": self.reason,
            "changes": list(self.changes),
            "resource": resource_dict(self.resource),
        }


Plan = List[Action]
