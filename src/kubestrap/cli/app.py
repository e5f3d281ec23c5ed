# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/cli/app.py
from __future__ import annotations

import json
import os
import signal
import threading
from functools import partial
from pathlib import Path
from typing import List, Optional

import typer

from kubestrap.bootstrap.asset_loader import render_kubeadm_config, setup_script
from kubestrap.bootstrap.errors import BootstrapCancelled, InvalidTopologyError
from kubestrap.bootstrap.orchestrator import ClusterBootstrapOrchestrator
from kubestrap.config.loader import load_config
from kubestrap.config.models import BootstrapConfig
from kubestrap.k8s.client import KubeNodeLister
from kubestrap.logging.log import init_logging
from kubestrap.observers.console import ConsoleObserver
from kubestrap.observers.dispatcher import EventBus
from kubestrap.observers.events import new_ctx
from kubestrap.observers.jsonfile import JsonFileObserver
from kubestrap.observers.logger import LoggerObserver
from kubestrap.observers.transcript import TranscriptObserver
from kubestrap.remote.deployer import Script, ScriptDeployer
from kubestrap.remote.errors import RemoteCommandError
from kubestrap.remote.session import RemoteSession
from kubestrap.utils.retry import RetryError


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="kubestrap: bootstrap kubeadm clusters over SSH")


def _install_sigint(cancel: threading.Event) -> None:
    # first Ctrl-C cancels cooperatively, the second one kills
    def _handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        typer.secho("\nCancelling, waiting for running host operations...", fg=typer.colors.YELLOW)
        cancel.set()

    signal.signal(signal.SIGINT, _handler)


def _load(config: Path) -> BootstrapConfig:
    try:
        return load_config(config)
    except (OSError, ValueError) as exc:
        typer.secho(f"Invalid config {config}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)


def build_orchestrator(
    cfg: BootstrapConfig,
    *,
    bus: EventBus,
    run_ctx: dict,
) -> ClusterBootstrapOrchestrator:
    settings = cfg.connection_settings()
    init_config = render_kubeadm_config(
        kubernetes_version=cfg.kubeadm.kubernetes_version,
        pod_subnet=cfg.kubeadm.pod_subnet,
        service_subnet=cfg.kubeadm.service_subnet,
        control_plane_endpoint=cfg.kubeadm.control_plane_endpoint,
        template=cfg.kubeadm.template,
    )
    return ClusterBootstrapOrchestrator(
        session_factory=partial(RemoteSession.for_host, settings=settings),
        node_lister=KubeNodeLister(context=cfg.verification.context),
        setup_script=setup_script(cfg.assets.setup_script),
        setup_args=(cfg.kubeadm.minor_version, cfg.assets.cri_dockerd_version),
        init_config=init_config,
        policy=cfg.retry_policy(),
        max_workers=cfg.concurrency.max_workers,
        settle_delay=cfg.verification.settle_delay,
        bus=bus,
        run_ctx=run_ctx,
    )


# ------------------------------------------------------------------------------
# bootstrap
# ------------------------------------------------------------------------------

@app.command()
def bootstrap(
    config: Path = typer.Argument(..., help="Cluster definition YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    report: Optional[Path] = typer.Option(None, "--report", help="Write the JSON report here"),
    events: Optional[Path] = typer.Option(None, "--events", help="Event log (JSON lines)"),
    transcripts: Optional[Path] = typer.Option(
        None, "--transcripts", help="Directory for per-operation transcripts",
    ),
):
    """
    Prepare every host, initialize the primary, join the rest and verify.
    """
    logger, run_id, log_path = init_logging(verbose=verbose)
    cfg = _load(config)

    typer.echo("")
    typer.secho("kubestrap bootstrap started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo(f"  Hosts    : {len(cfg.hosts)}")
    typer.echo("")

    observers = [
        LoggerObserver(logger),
        JsonFileObserver(events or Path.home() / ".kubestrap/logs" / f"{run_id}.jsonl"),
    ]
    if verbose:
        observers.append(ConsoleObserver())
    if transcripts:
        observers.append(TranscriptObserver(transcripts))
    bus = EventBus(observers=observers)

    run_ctx = new_ctx(env=cfg.environment, context=cfg.cluster_name, run_id=run_id)
    orchestrator = build_orchestrator(cfg, bus=bus, run_ctx=run_ctx)

    cancel = threading.Event()
    _install_sigint(cancel)

    try:
        result = orchestrator.run(cfg.to_hosts(), cancel=cancel)
    except InvalidTopologyError as exc:
        typer.secho(f"Invalid host topology: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    except BootstrapCancelled as exc:
        typer.secho(str(exc), fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=130)

    if report:
        report.parent.mkdir(parents=True, exist_ok=True)
        report.write_text(json.dumps(result.to_dict(), indent=2))
        typer.echo(f"Report written to {report}")

    typer.echo("")
    for w in result.warnings:
        typer.secho(f"  WARN {type(w).__name__}: {w}", fg=typer.colors.YELLOW)
    for n in result.nodes:
        typer.echo(f"  {n.name:<24} {n.status:<9} {','.join(n.roles):<16} {n.version:<12} {n.internal_ip}")

    if not result.success:
        typer.secho(f"Bootstrap failed: {result.error}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    typer.secho(
        f"Bootstrap complete ({len(result.warnings)} warning(s))",
        fg=typer.colors.GREEN if not result.warnings else typer.colors.YELLOW,
        bold=True,
    )


# ------------------------------------------------------------------------------
# nodes
# ------------------------------------------------------------------------------

@app.command()
def nodes(
    kubeconfig: Path = typer.Option(
        Path(os.environ.get("KUBECONFIG", "~/.kube/config")),
        "--kubeconfig",
        help="Admin kubeconfig of the cluster",
    ),
    context: Optional[str] = typer.Option(None, "--context"),
    output: str = typer.Option("table", "--output", "-o", help="table or json"),
):
    """List cluster nodes with readiness, roles, version and internal IP."""
    init_logging()
    try:
        text = kubeconfig.expanduser().read_text()
        found = KubeNodeLister(context=context).list_nodes(text)
    except (OSError, RetryError) as exc:
        cause = exc.__cause__ or exc
        typer.secho(f"Cannot list nodes: {cause}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    if output == "json":
        typer.echo(json.dumps([n.dict() for n in found], indent=2))
        return

    typer.echo(f"{'NAME':<24} {'STATUS':<9} {'ROLES':<16} {'VERSION':<12} INTERNAL-IP")
    for n in found:
        typer.echo(f"{n.name:<24} {n.status:<9} {','.join(n.roles):<16} {n.version:<12} {n.internal_ip}")


# ------------------------------------------------------------------------------
# run
# ------------------------------------------------------------------------------

@app.command()
def run(
    config: Path = typer.Argument(..., help="Cluster definition YAML"),
    host: str = typer.Argument(..., help="Host name from the config"),
    script: Path = typer.Argument(..., help="Local script to upload and run"),
    args: Optional[List[str]] = typer.Argument(None, help="Positional script arguments"),
    no_sudo: bool = typer.Option(False, "--no-sudo", help="Run without sudo"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Upload a script to one host, run it with retries and stream its output."""
    init_logging(verbose=verbose)
    cfg = _load(config)

    try:
        target = cfg.host(host)
    except KeyError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    cancel = threading.Event()
    _install_sigint(cancel)

    deployer = ScriptDeployer(cfg.retry_policy())
    result = deployer.deploy_with_retry(
        partial(RemoteSession.for_host, settings=cfg.connection_settings()),
        target,
        Script.from_path(script),
        args or [],
        use_elevated=not no_sudo,
        on_output=lambda chunk: typer.echo(chunk.data, nl=False, err=chunk.stream == "stderr"),
        cancel=cancel,
    )

    try:
        result.raise_for_status()
    except RemoteCommandError as exc:
        failed = exc.result
        typer.secho(f"\n{failed.message}", fg=typer.colors.RED, err=True)
        if failed.timed_out:
            typer.secho("Hint: raise retry.attempt_timeout for long-running scripts", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=failed.exit_code if failed.exit_code > 0 else 1)
    typer.secho(f"\n{script.name} finished on {target.name} (attempts={result.attempts})", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
