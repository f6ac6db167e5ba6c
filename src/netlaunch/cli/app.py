# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/cli/app.py

import json
import os
import shlex
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer

from netlaunch.config.loader import load_config
from netlaunch.config.models import DEFAULT_LOG_FILTER, LauncherConfig

from netlaunch.launch.command import default_node_path, describe_plan, node_version
from netlaunch.launch.contacts import ContactRegistry
from netlaunch.launch.coordinator import BootstrapCoordinator
from netlaunch.launch.errors import ConfigurationError, SpawnError
from netlaunch.launch.join import JoinCoordinator
from netlaunch.launch.models import (
    CONTACTS_FILENAME,
    BootstrapResult,
    BootstrapStatus,
    LaunchPlan,
    NodeStatus,
    SocketAddress,
)
from netlaunch.launch.portmap import NullPortMapper, UpnpcPortMapper
from netlaunch.launch.readiness import ReadinessParser

from netlaunch.logging.log import init_logging
from netlaunch.observers.console import ConsoleObserver
from netlaunch.observers.jsonfile import JsonFileObserver
from netlaunch.observers.logger import LoggerObserver


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Launch nodes to form a local test network")
contacts_cli = typer.Typer(help="Inspect contacts files")
app.add_typer(contacts_cli, name="contacts")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_PARTIAL = 3
EXIT_CANCELLED = 130


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def resolve_node_path(node_path: Optional[Path], cfg: LauncherConfig) -> Path:
    """--node-path / SN_NODE_PATH, then the config file, then ~/.safe/node."""
    if node_path is not None:
        return node_path
    if cfg.node.path is not None:
        return cfg.node.path
    return default_node_path()


def resolve_log_filter(rust_log: Optional[str], cfg: LauncherConfig) -> str:
    if rust_log:
        return rust_log
    if cfg.node.log_filter:
        return cfg.node.log_filter
    return os.environ.get(cfg.node.log_filter_env) or DEFAULT_LOG_FILTER


def exit_code_for(result: BootstrapResult) -> int:
    return {
        BootstrapStatus.COMPLETE: EXIT_OK,
        BootstrapStatus.PARTIAL: EXIT_PARTIAL,
        BootstrapStatus.FAILED: EXIT_FAILED,
        BootstrapStatus.CANCELLED: EXIT_CANCELLED,
    }[result.status]


@contextmanager
def cancel_on_interrupt():
    """Turn Ctrl-C into a cancel token so nodes already up are left alone."""
    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def _handler(signum, frame):
        typer.echo("\nInterrupted: stopping after the current step...", err=True)
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def echo_result(result: BootstrapResult) -> None:
    typer.echo("")
    for o in result.outcomes:
        line = f"  #{o.index:<3} {o.role.value:<10} {o.status.value:<9}"
        if o.address:
            line += f" {o.address}"
        if o.error:
            line += f" {o.error}"
        typer.echo(line)
        if o.status == NodeStatus.FAILED and o.log_path:
            typer.echo(f"       log: {o.log_path}")
        for d in o.diagnostics:
            typer.echo(f"       note: {d}")

    colour = {
        BootstrapStatus.COMPLETE: typer.colors.GREEN,
        BootstrapStatus.PARTIAL: typer.colors.YELLOW,
    }.get(result.status, typer.colors.RED)
    typer.echo("")
    typer.secho(f"Launch {result.status.value}: {result.summary()}", fg=colour, bold=True)
    if result.registry is not None:
        typer.echo(f"  Network key : {result.registry.network_key or '-'}")
        typer.echo(f"  Contacts    : {result.contacts_file}")


def build_plan(
    *,
    cfg: LauncherConfig,
    node_path: Optional[Path],
    nodes_dir: Optional[Path],
    node_count: Optional[int],
    interval: Optional[float],
    ip: Optional[str],
    local: bool,
    contacts_file: Optional[Path],
    join_contacts: Optional[Path],
    common_args: List[str],
    nodes_verbosity: int,
    rust_log: Optional[str],
    readiness_timeout: Optional[float],
    max_peer_failures: Optional[int],
) -> LaunchPlan:
    nodes_dir = nodes_dir or cfg.nodes_dir
    plan = LaunchPlan(
        executable=resolve_node_path(node_path, cfg),
        nodes_dir=nodes_dir,
        node_count=node_count if node_count is not None else cfg.node_count,
        interval=interval if interval is not None else cfg.interval_seconds,
        local=local,
        ip=ip,
        contacts_file=contacts_file or cfg.contacts_file,
        join_contacts=join_contacts,
        common_args=tuple(common_args) + tuple(cfg.node.extra_args),
        verbosity=nodes_verbosity or cfg.node.verbosity,
        env=((cfg.node.log_filter_env, resolve_log_filter(rust_log, cfg)),),
        readiness_timeout=readiness_timeout if readiness_timeout is not None else cfg.readiness.timeout_seconds,
        max_peer_failures=max_peer_failures if max_peer_failures is not None else cfg.max_peer_failures,
    )
    plan.validate()
    return plan


def run_plan(plan: LaunchPlan, cfg: LauncherConfig, *, debug: bool, registry: Optional[ContactRegistry] = None) -> int:
    logger, run_id, log_path = init_logging(verbose=debug)

    typer.echo("")
    typer.secho("netlaunch started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Mode     : {plan.mode}")
    typer.echo(f"  Nodes    : {plan.node_count} -> {plan.nodes_dir}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    try:
        version = node_version(plan.executable)
    except SpawnError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        return EXIT_FAILED
    typer.echo(f"Using node @ {version or '?'} from {plan.executable}")
    logger.info("Using RUST_LOG-style filter %s", dict(plan.env))

    observers = [
        LoggerObserver(logger),
        JsonFileObserver(log_path.with_suffix(".jsonl")),
    ]
    if debug:
        observers.append(ConsoleObserver())
    if plan.local:
        port_mapper = NullPortMapper()
    else:
        pm = cfg.port_mapping
        port_mapper = UpnpcPortMapper(
            command=pm.command,
            protocol=pm.protocol,
            description=pm.description,
            timeout=pm.timeout_seconds,
        )
    parser = ReadinessParser(cfg.readiness.address_patterns, cfg.readiness.key_patterns)

    with cancel_on_interrupt() as cancel:
        shared = dict(
            parser=parser,
            port_mapper=port_mapper,
            observers=observers,
            cancel=cancel,
            run_id=run_id,
        )
        if registry is not None:
            result = JoinCoordinator(**shared).run(plan, registry)
        else:
            result = BootstrapCoordinator(**shared).run(plan)

    echo_result(result)
    return exit_code_for(result)


def _fail_config(exc: Exception) -> None:
    typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(EXIT_CONFIG_ERROR)


def _echo_dry_run(plan: LaunchPlan) -> None:
    typer.echo(f"Dry run: {plan.mode} launch of {plan.node_count} node(s), {plan.interval:g}s apart")
    for k, v in plan.env:
        typer.echo(f"  env {k}={v}")
    for spec in describe_plan(plan):
        typer.echo(f"  #{spec.index} {spec.role.value}: {shlex.join(spec.argv)}")


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def launch(
    node_path: Optional[Path] = typer.Option(
        None, "--node-path", "-p", envvar="SN_NODE_PATH",
        help="Path to the node binary. SN_NODE_PATH can also be used",
    ),
    nodes_dir: Optional[Path] = typer.Option(None, "--nodes-dir", "-d", help="Where node directories are written"),
    num_nodes: Optional[int] = typer.Option(
        None, "--num-nodes", "-n", envvar="NODE_COUNT",
        help="Number of nodes to spawn, the first one being the genesis",
    ),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Seconds between node launches"),
    idle_timeout_msec: Optional[int] = typer.Option(None, "--idle-timeout-msec", min=1),
    keep_alive_interval_msec: Optional[int] = typer.Option(None, "--keep-alive-interval-msec", min=1),
    ip: Optional[str] = typer.Option(None, "--ip", help="IP the genesis node listens on"),
    local: bool = typer.Option(False, "--local", help="Local-only network: no port mapping"),
    add: bool = typer.Option(False, "--add", help="Add nodes to the network in the contacts file"),
    contacts_file: Optional[Path] = typer.Option(None, "--contacts-file", help="Contacts file to write (and read with --add)"),
    readiness_timeout: Optional[float] = typer.Option(None, "--readiness-timeout", help="Seconds to wait for each node"),
    max_peer_failures: Optional[int] = typer.Option(
        None, "--max-peer-failures", help="Stop after more than this many nodes fail (default: never)",
    ),
    nodes_verbosity: int = typer.Option(0, "--nodes-verbosity", "-y", count=True, help="Extra verbosity for node logs"),
    rust_log: Optional[str] = typer.Option(None, "--rust-log", "-l", help="RUST_LOG value to launch the nodes with"),
    config: Optional[Path] = typer.Option(None, "--config", help="netlaunch YAML config"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print node commands without running them"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Launch a network: genesis first, then the rest one at a time."""
    try:
        cfg = load_config(config)
        base_dir = nodes_dir or cfg.nodes_dir
        join_contacts = None
        if add:
            join_contacts = contacts_file or cfg.contacts_file or base_dir / CONTACTS_FILENAME

        if idle_timeout_msec is None:
            idle_timeout_msec = cfg.node.idle_timeout_msec
        if keep_alive_interval_msec is None:
            keep_alive_interval_msec = cfg.node.keep_alive_interval_msec
        common = [
            "--idle-timeout-msec", str(idle_timeout_msec),
            "--keep-alive-interval-msec", str(keep_alive_interval_msec),
        ]
        plan = build_plan(
            cfg=cfg,
            node_path=node_path,
            nodes_dir=nodes_dir,
            node_count=num_nodes,
            interval=interval,
            ip=ip,
            local=local,
            contacts_file=contacts_file,
            join_contacts=join_contacts,
            common_args=common,
            nodes_verbosity=nodes_verbosity,
            rust_log=rust_log,
            readiness_timeout=readiness_timeout,
            max_peer_failures=max_peer_failures,
        )
    except ConfigurationError as exc:
        _fail_config(exc)

    if dry_run:
        _echo_dry_run(plan)
        raise typer.Exit(EXIT_OK)

    try:
        code = run_plan(plan, cfg, debug=debug)
    except ConfigurationError as exc:
        _fail_config(exc)
    raise typer.Exit(code)


@app.command()
def join(
    contact: List[str] = typer.Option([], "--contact", help="Address of a node to join through (repeatable)"),
    contacts_file: Optional[Path] = typer.Option(None, "--contacts-file", help="Contacts file of the network to join"),
    count: int = typer.Option(1, "--count", "-c", help="Number of nodes to add"),
    node_path: Optional[Path] = typer.Option(None, "--node-path", "-p", envvar="SN_NODE_PATH"),
    nodes_dir: Optional[Path] = typer.Option(None, "--nodes-dir", "-d"),
    interval: Optional[float] = typer.Option(None, "--interval", "-i"),
    max_capacity: Optional[int] = typer.Option(None, "--max-capacity", help="Max storage for each node"),
    local_addr: Optional[str] = typer.Option(None, "--local-addr", help="Local address, e.g. 192.168.1.100:12000"),
    public_addr: Optional[str] = typer.Option(None, "--public-addr", help="Public address of the node"),
    clear_data: bool = typer.Option(False, "--clear-data", help="Clear data left by a previous node run"),
    local: bool = typer.Option(False, "--local", help="Local-only network: no port mapping"),
    readiness_timeout: Optional[float] = typer.Option(None, "--readiness-timeout"),
    max_peer_failures: Optional[int] = typer.Option(None, "--max-peer-failures"),
    nodes_verbosity: int = typer.Option(0, "--nodes-verbosity", "-y", count=True),
    rust_log: Optional[str] = typer.Option(None, "--rust-log", "-l"),
    config: Optional[Path] = typer.Option(None, "--config"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Add nodes to a running network."""
    try:
        cfg = load_config(config)
        base_dir = nodes_dir or cfg.nodes_dir
        source = contacts_file or cfg.contacts_file or base_dir / CONTACTS_FILENAME

        registry = ContactRegistry.load(source) if source.is_file() else ContactRegistry()
        for c in contact:
            try:
                registry.append(SocketAddress.parse(c))
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc
        if not registry.contacts():
            raise ConfigurationError(f"No contact nodes provided (no --contact and no usable {source})")

        common: List[str] = []
        if max_capacity is not None:
            common += ["--max-capacity", str(max_capacity)]
        if local_addr:
            common += ["--local-addr", local_addr]
        if public_addr:
            common += ["--public-addr", public_addr]
        if clear_data:
            common.append("--clear-data")

        plan = build_plan(
            cfg=cfg,
            node_path=node_path,
            nodes_dir=nodes_dir,
            node_count=count,
            interval=interval,
            ip=None,
            local=local,
            contacts_file=contacts_file,
            join_contacts=source,
            common_args=common,
            nodes_verbosity=nodes_verbosity,
            rust_log=rust_log,
            readiness_timeout=readiness_timeout,
            max_peer_failures=max_peer_failures,
        )
    except ConfigurationError as exc:
        _fail_config(exc)

    if dry_run:
        _echo_dry_run(plan)
        raise typer.Exit(EXIT_OK)

    try:
        code = run_plan(plan, cfg, debug=debug, registry=registry)
    except ConfigurationError as exc:
        _fail_config(exc)
    raise typer.Exit(code)


@contacts_cli.command("show")
def contacts_show(
    path: Path = typer.Argument(..., help="Contacts file"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw JSON form"),
):
    """Print a contacts file."""
    try:
        registry = ContactRegistry.load(path)
    except ConfigurationError as exc:
        _fail_config(exc)

    snap = registry.snapshot()
    if as_json:
        typer.echo(json.dumps(snap.to_dict(), indent=2))
        return

    typer.echo(f"Network key : {snap.network_key or '-'}")
    typer.echo(f"Genesis     : {snap.genesis or '-'}")
    typer.echo(f"Peers       : {len(snap.peers)}")
    for p in snap.peers:
        typer.echo(f"  {p}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
