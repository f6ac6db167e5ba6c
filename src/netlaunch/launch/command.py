# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/launch/command.py

from __future__ import annotations

import json
import logging
import re
import subprocess
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Sequence

from .errors import SpawnError
from .models import LaunchPlan, NodeLaunchSpec, NodeRole, SocketAddress

log = logging.getLogger("netlaunch")

NODE_EXECUTABLE = "sn_node.exe" if sys.platform == "win32" else "sn_node"
NODE_DIR_PREFIX = "sn-node-"
GENESIS_DIR_NAME = f"{NODE_DIR_PREFIX}genesis"

_NODE_DIR_RX = re.compile(rf"^{re.escape(NODE_DIR_PREFIX)}(?:genesis|(?P<index>\d+))$")


def default_node_path() -> Path:
    return Path.home() / ".safe" / "node" / NODE_EXECUTABLE


def verbosity_flag(level: int) -> str:
    # genesis logs its contact info at INFO, so never go below -vv
    return "-" + "v" * (2 + level)


def node_dir_name(role: NodeRole, index: int) -> str:
    if role == NodeRole.GENESIS:
        return GENESIS_DIR_NAME
    return f"{NODE_DIR_PREFIX}{index}"


def highest_node_index(nodes_dir: Path) -> int:
    """Largest node index in use under ``nodes_dir``; genesis counts as 1."""
    if not nodes_dir.is_dir():
        return 0
    highest = 0
    for p in nodes_dir.iterdir():
        m = _NODE_DIR_RX.match(p.name)
        if p.is_dir() and m:
            highest = max(highest, int(m.group("index") or 1))
    return highest


def next_node_index(nodes_dir: Path) -> int:
    # index 1 always belongs to genesis, even when it lives elsewhere
    return max(highest_node_index(nodes_dir), 1) + 1


def contacts_arg(contacts: Sequence[SocketAddress]) -> str:
    return json.dumps([str(c) for c in contacts])


def build_spec(
    plan: LaunchPlan,
    role: NodeRole,
    index: int,
    contacts: Sequence[SocketAddress] = (),
) -> NodeLaunchSpec:
    """
    Assemble the command line for one node.

    Order: verbosity, common args, role args, directories, contacts.
    """
    name = node_dir_name(role, index)
    node_dir = plan.nodes_dir / name

    args: List[str] = [verbosity_flag(plan.verbosity), *plan.common_args]
    if role == NodeRole.GENESIS:
        args += ["--first", f"{plan.genesis_ip}:0"]
    args += ["--root-dir", str(node_dir), "--log-dir", str(node_dir)]
    if contacts:
        args += ["--hard-coded-contacts", contacts_arg(contacts)]

    return NodeLaunchSpec(
        executable=plan.executable,
        args=tuple(args),
        node_dir=node_dir,
        log_path=node_dir / f"{name}.log",
        role=role,
        index=index,
        env=plan.env,
    )


def describe_plan(plan: LaunchPlan) -> List[NodeLaunchSpec]:
    """
    The specs a run would spawn, without spawning anything.

    Contacts are unknown until nodes report in, so joining nodes are shown
    with a ``<contacts>`` placeholder.
    """
    specs: List[NodeLaunchSpec] = []

    if plan.join_mode:
        start = plan.start_index or next_node_index(plan.nodes_dir)
        indices = range(start, start + plan.node_count)
        role = NodeRole.ADDITIONAL
    else:
        specs.append(build_spec(plan, NodeRole.GENESIS, 1))
        indices = range(2, plan.node_count + 1)
        role = NodeRole.JOINING

    for i in indices:
        spec = build_spec(plan, role, i)
        specs.append(replace(spec, args=spec.args + ("--hard-coded-contacts", "<contacts>")))
    return specs


def node_version(executable: Path, timeout: float = 10.0) -> str:
    """Run ``<executable> -V`` and return what it prints."""
    argv = [str(executable), "-V"]
    try:
        cp = subprocess.run(argv, check=False, text=True, capture_output=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise SpawnError(1, f"Failed to run '{executable}' with args {argv[1:]}: {exc}") from exc

    if cp.returncode != 0:
        raise SpawnError(
            1,
            f"Failed to run '{executable}' with args {argv[1:]}: "
            f"exited with status {cp.returncode} (stderr: {(cp.stderr or '').strip()})",
        )

    version = (cp.stdout or "").strip()
    log.debug("Using node @ %s from %s", version, executable)
    return version
