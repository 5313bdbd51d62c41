# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

import typer

from romulus.backend.virsh import DEFAULT_URI, VirshBackend
from romulus.cli import render
from romulus.cloudinit.renderer import CloudInitRenderer
from romulus.config.loader import DEFAULT_CONFIG_PATH, load_config
from romulus.config.models import RomulusConfig
from romulus.deploy.actions import Plan
from romulus.deploy.executor import Executor, ExecutorOptions
from romulus.deploy.planner import diff, validate
from romulus.errors import RomulusError
from romulus.inventory.probe import SSHProbe, private_key_for
from romulus.logging.log import init_logging
from romulus.observers.console import ConsoleObserver
from romulus.observers.dispatcher import EventBus
from romulus.observers.events import new_ctx
from romulus.observers.jsonfile import JsonFileObserver
from romulus.observers.logger import LoggerObserver
from romulus.state.resources import ResourceKind
from romulus.state.state import State, managed_subset


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Romulus: stateless libvirt reconciliation for Kubernetes nodes")

FORMATS = ("text", "json")

ConfigOpt = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Cluster definition YAML")
UriOpt = typer.Option(DEFAULT_URI, "--uri", help="libvirt connection URI")
FormatOpt = typer.Option("text", "--format", help="Output format: text or json")
VerboseOpt = typer.Option(False, "--verbose", "-v", help="Debug logging on the console")
WatchOpt = typer.Option(False, "--watch", help="Print engine events as they happen")
AllOpt = typer.Option(
    False,
    "--all",
    help="Reconcile the whole host inventory, not just resources this config owns",
)


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _check_format(fmt: str) -> str:
    if fmt not in FORMATS:
        raise typer.BadParameter(f"--format must be one of {', '.join(FORMATS)}")
    return fmt


def _session(fmt: str, verbose: bool, watch: bool) -> Tuple[str, List]:
    """Logging plus observers shared by every command."""
    logger, run_id, log_path = init_logging(verbose=verbose, quiet=(fmt == "json"))
    observers: List = [
        LoggerObserver(logger),
        JsonFileObserver(log_path.with_suffix(".events.jsonl")),
    ]
    if watch and fmt == "text":
        observers.append(ConsoleObserver())
    return run_id, observers


def _fail(error: RomulusError, fmt: str) -> None:
    if fmt == "json":
        typer.echo(render.error_json(error))
    else:
        typer.secho(f"Error: {error.detail}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _compute_plan(
    cfg: RomulusConfig,
    backend: VirshBackend,
    everything: bool,
    bus: EventBus,
    run_ctx: dict,
) -> Tuple[State, State, Plan]:
    desired = State.from_config(cfg)
    current = State.fetch_current(backend)
    scoped = current if everything else managed_subset(current, desired)
    plan = diff(scoped, desired, bus=bus, run_ctx=run_ctx, inventory=current)
    validate(plan, current=current)
    return scoped, desired, plan


def _executor_options(
    dry_run: bool,
    parallel: bool,
    max_concurrency: int,
    continue_on_error: bool,
    rollback: bool,
) -> ExecutorOptions:
    try:
        return ExecutorOptions(
            mode="parallel" if parallel else "serial",
            dry_run=dry_run,
            on_error="continue" if continue_on_error else "halt",
            rollback_on_error=rollback,
            max_concurrency=max_concurrency,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _wait_for_nodes(cfg: RomulusConfig, desired: State, observers: List, run_ctx: dict, attempts: int) -> bool:
    probe = SSHProbe(
        user=cfg.ssh.user,
        key_path=private_key_for(cfg.ssh.public_key_path),
        attempts=attempts,
        observers=observers,
        run_ctx=run_ctx,
    )
    results = probe.wait_all(desired.domains)
    for r in results.values():
        mark = "ok" if r.reachable else "UNREACHABLE"
        typer.echo(f"  {r.name:<16} {r.address or '-':<16} {mark}")
    return all(r.reachable for r in results.values())


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def plan(
    config: Path = ConfigOpt,
    uri: str = UriOpt,
    fmt: str = FormatOpt,
    everything: bool = AllOpt,
    verbose: bool = VerboseOpt,
):
    """Show what apply would change."""
    _check_format(fmt)
    run_id, observers = _session(fmt, verbose, watch=False)
    try:
        cfg = load_config(config)
        run_ctx = new_ctx(env=cfg.cluster.name, context=uri, run_id=run_id)
        _, _, actions = _compute_plan(cfg, VirshBackend(uri=uri), everything, EventBus(observers), run_ctx)
    except RomulusError as e:
        _fail(e, fmt)

    typer.echo(render.plan_json(actions) if fmt == "json" else render.plan_text(actions))


@app.command()
def apply(
    config: Path = ConfigOpt,
    uri: str = UriOpt,
    fmt: str = FormatOpt,
    auto_approve: bool = typer.Option(False, "--auto-approve", "-y", help="Skip confirmation"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would run, touch nothing"),
    parallel: bool = typer.Option(False, "--parallel", help="Run each tier concurrently"),
    max_concurrency: int = typer.Option(4, "--max-concurrency", help="Workers per tier in parallel mode"),
    continue_on_error: bool = typer.Option(False, "--continue-on-error", help="Keep going after a failed action"),
    rollback: bool = typer.Option(False, "--rollback", help="Undo this run's creates when halting on error"),
    wait_ssh: bool = typer.Option(False, "--wait-ssh", help="Wait for every node to accept SSH afterwards"),
    ssh_attempts: int = typer.Option(30, "--ssh-attempts", help="SSH probe attempts per node"),
    everything: bool = AllOpt,
    verbose: bool = VerboseOpt,
    watch: bool = WatchOpt,
):
    """Reconcile the host with the configuration."""
    _check_format(fmt)
    options = _executor_options(dry_run, parallel, max_concurrency, continue_on_error, rollback)
    run_id, observers = _session(fmt, verbose, watch)

    try:
        cfg = load_config(config)
        run_ctx = new_ctx(env=cfg.cluster.name, context=uri, run_id=run_id)
        backend = VirshBackend(uri=uri)
        _, desired, actions = _compute_plan(cfg, backend, everything, EventBus(observers), run_ctx)
    except RomulusError as e:
        _fail(e, fmt)

    if not actions:
        if fmt == "json":
            typer.echo(render.plan_json(actions))
        else:
            typer.echo(render.plan_text(actions))
    else:
        if fmt == "text":
            typer.echo(render.plan_text(actions))
            typer.echo("")
        if not (auto_approve or dry_run):
            if not typer.confirm("Do you want to apply these changes?"):
                typer.echo("Apply cancelled.")
                raise typer.Exit(code=0)

        executor = Executor(
            backend,
            payloads=CloudInitRenderer(),
            config=cfg,
            options=options,
            observers=observers,
            run_ctx=run_ctx,
        )
        report = executor.apply(actions)
        typer.echo(render.report_json(report) if fmt == "json" else render.report_text(report))
        if not report.ok:
            raise typer.Exit(code=1)

    if wait_ssh and not dry_run:
        if fmt == "text":
            typer.echo("\nWaiting for nodes to accept SSH...")
        if not _wait_for_nodes(cfg, desired, observers, run_ctx, ssh_attempts):
            raise typer.Exit(code=1)


@app.command()
def destroy(
    config: Path = ConfigOpt,
    uri: str = UriOpt,
    fmt: str = FormatOpt,
    auto_approve: bool = typer.Option(False, "--auto-approve", "-y", help="Skip confirmation"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation with a warning"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would run, touch nothing"),
    continue_on_error: bool = typer.Option(False, "--continue-on-error", help="Keep going after a failed action"),
    everything: bool = AllOpt,
    verbose: bool = VerboseOpt,
    watch: bool = WatchOpt,
):
    """Remove the resources this configuration owns (or everything with --all)."""
    _check_format(fmt)
    options = _executor_options(dry_run, False, 1, continue_on_error, False)
    run_id, observers = _session(fmt, verbose, watch)

    try:
        cfg = load_config(config)
        run_ctx = new_ctx(env=cfg.cluster.name, context=uri, run_id=run_id)
        backend = VirshBackend(uri=uri)
        current = State.fetch_current(backend)
        targets = current if everything else managed_subset(current, State.from_config(cfg))
        teardown = diff(targets, State.empty(), bus=EventBus(observers), run_ctx=run_ctx, inventory=current)
        actions = validate(teardown, current=current)
    except RomulusError as e:
        _fail(e, fmt)

    if not actions:
        typer.echo(render.plan_json(actions) if fmt == "json" else "No infrastructure to destroy.")
        return

    if fmt == "text":
        typer.echo(render.plan_text(actions))
        typer.echo("")
    if force:
        typer.secho("WARNING: Force mode enabled - skipping confirmation", fg=typer.colors.YELLOW, err=True)
    elif not (auto_approve or dry_run):
        typer.secho(f"WARNING: This will destroy {len(actions)} resource(s)!", fg=typer.colors.RED, err=True)
        if not typer.confirm("This action cannot be undone. Proceed?"):
            typer.echo("Destroy cancelled.")
            raise typer.Exit(code=0)

    report = Executor(backend, config=cfg, options=options, observers=observers, run_ctx=run_ctx).apply(actions)
    typer.echo(render.report_json(report) if fmt == "json" else render.report_text(report))
    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def state(
    uri: str = UriOpt,
    fmt: str = FormatOpt,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the JSON export to a file"),
    verbose: bool = VerboseOpt,
):
    """Export the current host inventory."""
    _check_format(fmt)
    _session(fmt, verbose, watch=False)
    try:
        current = State.fetch_current(VirshBackend(uri=uri))
    except RomulusError as e:
        _fail(e, fmt)

    if output is not None:
        output.write_text(render.to_json(current.to_dict()) + "\n")
        typer.echo(f"State exported to {output}")
        return
    typer.echo(render.to_json(current.to_dict()) if fmt == "json" else render.state_text(current))


@app.command()
def exists(
    kind: ResourceKind = typer.Argument(..., help="pool, network, volume or domain"),
    name: str = typer.Argument(..., help="Resource name"),
    uri: str = UriOpt,
):
    """Exit 0 if the resource exists on the host, 1 otherwise."""
    found = VirshBackend(uri=uri).exists(kind, name)
    typer.echo(f"{kind.value} {name}: {'present' if found else 'absent'}")
    if not found:
        raise typer.Exit(code=1)


@app.command("render-cloudinit")
def render_cloudinit(
    role: str = typer.Argument(..., help="master or worker"),
    index: int = typer.Argument(..., min=1, help="Node index, starting at 1"),
    config: Path = ConfigOpt,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Directory to write the documents into"),
):
    """Render the cloud-init documents for one node."""
    try:
        cfg = load_config(config)
        payload = CloudInitRenderer().generate_node_payload(role, index, cfg)
    except RomulusError as e:
        _fail(e, "text")

    docs = {
        "user-data": payload.user_data,
        "network-config": payload.network_config,
        "meta-data": payload.meta_data,
    }
    if output is not None:
        output.mkdir(parents=True, exist_ok=True)
        for fname, text in docs.items():
            (output / fname).write_text(text)
        typer.echo(f"Wrote {', '.join(docs)} to {output}")
        return
    for fname, text in docs.items():
        typer.secho(f"# --- {fname} ---", bold=True)
        typer.echo(text)


@app.command()
def wait(
    config: Path = ConfigOpt,
    attempts: int = typer.Option(30, "--attempts", help="SSH probe attempts per node"),
    verbose: bool = VerboseOpt,
):
    """Wait until every configured node accepts SSH."""
    run_id, observers = _session("text", verbose, watch=False)
    try:
        cfg = load_config(config)
        desired = State.from_config(cfg)
    except RomulusError as e:
        _fail(e, "text")

    run_ctx = new_ctx(env=cfg.cluster.name, context=None, run_id=run_id)
    if not _wait_for_nodes(cfg, desired, observers, run_ctx, attempts):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
