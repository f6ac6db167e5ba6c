# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/observers/events.py

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
    run_id: str       # correlates all events in a single launcher invocation
    mode: str         # fresh/join
    nodes_dir: str

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(mode: str, nodes_dir: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "mode": mode,
        "nodes_dir": nodes_dir,
    }


# ---------------------------------------------------------------------
# Plan and registry
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanAccepted(BaseEvent):
    node_count: int
    interval_s: float
    local: bool

@dataclass(frozen=True)
class RegistryLoaded(BaseEvent):
    path: str
    network_key: Optional[str]
    contacts: int

@dataclass(frozen=True)
class RegistryPersisted(BaseEvent):
    path: str
    peers: int


# ---------------------------------------------------------------------
# Node lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NodeSpawned(BaseEvent):
    index: int
    role: str
    pid: int
    argv: List[str]

@dataclass(frozen=True)
class NodeReady(BaseEvent):
    index: int
    role: str
    address: str
    network_key: Optional[str] = None
    duration_ms: int = 0

@dataclass(frozen=True)
class NodeFailed(BaseEvent):
    index: int
    role: str
    kind: str         # "spawn" | "timeout" | "died" | "persist"
    error: str

@dataclass(frozen=True)
class NodeSkipped(BaseEvent):
    index: int
    reason: str

@dataclass(frozen=True)
class PortMappingAttempted(BaseEvent):
    index: int
    port: int
    ok: bool
    reason: Optional[str] = None


# ---------------------------------------------------------------------
# Run summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunCancelled(BaseEvent):
    index: Optional[int]

@dataclass(frozen=True)
class BootstrapSummary(BaseEvent):
    status: str       # "complete" | "partial" | "failed" | "cancelled"
    ready: int
    failed: int
    skipped: int
