# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/config/models.py

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..launch.readiness import DEFAULT_ADDRESS_PATTERNS, DEFAULT_KEY_PATTERNS

DEFAULT_LOG_FILTER = "safe_network=debug"


class NodeSettings(BaseModel):
    """How each node process is invoked."""

    path: Optional[Path] = None                  # falls back to SN_NODE_PATH, then ~/.safe/node
    verbosity: int = Field(0, ge=0)              # extra -v on top of -vv
    log_filter: Optional[str] = None             # value exported to children as log_filter_env
    log_filter_env: str = "RUST_LOG"
    extra_args: List[str] = Field(default_factory=list)
    idle_timeout_msec: int = Field(5500, gt=0)
    keep_alive_interval_msec: int = Field(4000, gt=0)


class ReadinessSettings(BaseModel):
    timeout_seconds: float = Field(30.0, gt=0)
    address_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_ADDRESS_PATTERNS))
    key_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_KEY_PATTERNS))


class PortMappingSettings(BaseModel):
    command: str = "upnpc"
    protocol: Literal["TCP", "UDP"] = "UDP"
    description: str = "netlaunch"
    timeout_seconds: float = Field(10.0, gt=0)


class LauncherConfig(BaseModel):
    nodes_dir: Path = Path("./nodes")
    node_count: int = Field(11, ge=1)
    interval_seconds: float = Field(1.0, ge=0)
    contacts_file: Optional[Path] = None         # defaults to <nodes_dir>/contacts.json
    max_peer_failures: Optional[int] = Field(None, ge=0)
    node: NodeSettings = Field(default_factory=NodeSettings)
    readiness: ReadinessSettings = Field(default_factory=ReadinessSettings)
    port_mapping: PortMappingSettings = Field(default_factory=PortMappingSettings)
