# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/observers/console.py
import typer

from .events import BaseEvent

_STYLES = {
    "ActionSucceeded": typer.colors.GREEN,
    "ActionFailed": typer.colors.RED,
    "ActionSkipped": typer.colors.YELLOW,
    "RollbackStarted": typer.colors.MAGENTA,
}


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        data = ", ".join(f"{x}={y}" for x, y in d.items() if x not in ("ts", "run_id", "env", "context"))
        typer.secho(f"[{d['ts']}] {k} {data}", fg=_STYLES.get(k))
