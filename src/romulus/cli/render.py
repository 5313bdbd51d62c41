# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/cli/render.py

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from ..deploy.actions import Plan
from ..deploy.executor import ApplyReport
from ..deploy.planner import format_plan, statistics
from ..errors import RomulusError
from ..state.resources import KIND_ORDER
from ..state.state import State


def to_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, sort_keys=False, default=str)


def plan_text(plan: Plan) -> str:
    text = format_plan(plan)
    if not plan:
        return text
    stats = statistics(plan)
    return f"{text}\nEstimated duration: ~{stats.estimated_duration_minutes} min"


def plan_json(plan: Plan) -> str:
    return to_json({
        "actions": [a.to_dict() for a in plan],
        "statistics": statistics(plan).to_dict(),
    })


def report_text(report: ApplyReport) -> str:
    lines = []
    for o in report.outcomes:
        line = f"  {o.status:<8} {o.action.describe()}"
        if o.error:
            line += f": {o.error}"
        elif o.message and o.status != "OK":
            line += f" ({o.message})"
        lines.append(line)
    lines.append("")
    lines.append(f"Status: {report.status.value}  {report.summary()}  ({report.duration:.1f}s)")
    if report.rollback_attempted:
        lines.append(f"Rollback: {len(report.rolled_back)} resource(s) removed")
        for err in report.rollback_errors:
            lines.append(f"  rollback failed: {err}")
    return "\n".join(lines)


def report_json(report: ApplyReport) -> str:
    return to_json(report.to_dict())


def state_text(state: State) -> str:
    lines = []
    for kind in KIND_ORDER:
        items = state.resources(kind)
        lines.append(f"{kind.value}s ({len(items)}):")
        for r in items:
            extra = ""
            if kind.value == "domain":
                extra = f" state={r.state} memory={r.memory}MiB vcpu={r.vcpu}"
            elif kind.value == "volume":
                extra = f" pool={r.pool} size={r.size}"
            elif getattr(r, "active", None) is not None:
                extra = f" active={r.active}"
            lines.append(f"  - {r.name}{extra}")
    return "\n".join(lines)


def error_json(error: RomulusError, extra: Optional[Dict[str, Any]] = None) -> str:
    return to_json({"error": {**error.to_dict(), **(extra or {})}})
