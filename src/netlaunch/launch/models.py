# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/launch/models.py

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, TYPE_CHECKING

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .contacts import ContactRegistry


DEFAULT_GENESIS_IP = "127.0.0.1"
CONTACTS_FILENAME = "contacts.json"


@dataclass(frozen=True, order=True)
class SocketAddress:
    """
    An IP + port pair as announced by a node.

    Renders as ``a.b.c.d:port`` or ``[v6]:port`` and parses the same forms.
    """

    ip: str
    port: int

    @classmethod
    def parse(cls, text: str) -> "SocketAddress":
        raw = text.strip()
        if raw.startswith("["):
            host, sep, port = raw[1:].partition("]:")
        else:
            host, sep, port = raw.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"not a socket address: {text!r}")

        ip = ipaddress.ip_address(host)
        if raw.startswith("[") and ip.version != 6:
            raise ValueError(f"bracketed address must be IPv6: {text!r}")
        if not raw.startswith("[") and ip.version == 6:
            raise ValueError(f"IPv6 address must be bracketed: {text!r}")

        port_no = int(port)
        if not 0 < port_no < 65536:
            raise ValueError(f"port out of range: {text!r}")
        return cls(ip=str(ip), port=port_no)

    def __str__(self) -> str:
        if ":" in self.ip:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


class NodeRole(str, Enum):
    GENESIS = "genesis"
    JOINING = "joining"
    ADDITIONAL = "additional"


@dataclass(frozen=True)
class NodeLaunchSpec:
    """
    Everything needed to start one node. Built right before the spawn.
    """

    executable: Path
    args: Tuple[str, ...]
    node_dir: Path
    log_path: Path
    role: NodeRole
    index: int                                  # 1-based, genesis = 1
    env: Tuple[Tuple[str, str], ...] = ()

    @property
    def argv(self) -> List[str]:
        return [str(self.executable), *self.args]

    @property
    def name(self) -> str:
        return self.node_dir.name


@dataclass(frozen=True)
class ReadinessEvent:
    """
    Fact extracted from a node's output. A single line may carry only part
    of it (genesis announces its address and key on separate lines).
    """

    index: int = 0
    address: Optional[SocketAddress] = None
    network_key: Optional[str] = None

    @property
    def is_genesis(self) -> bool:
        return self.network_key is not None

    def is_complete(self, require_key: bool) -> bool:
        if self.address is None:
            return False
        return self.network_key is not None or not require_key


@dataclass(frozen=True)
class LaunchPlan:
    """
    Resolved configuration of one bootstrap run.

    Join mode iff ``join_contacts`` is set; otherwise a genesis node is
    launched first.
    """

    executable: Path
    nodes_dir: Path
    node_count: int
    interval: float = 1.0                       # seconds between spawns
    local: bool = True
    ip: Optional[str] = None
    contacts_file: Optional[Path] = None
    join_contacts: Optional[Path] = None
    common_args: Tuple[str, ...] = ()
    verbosity: int = 0
    env: Tuple[Tuple[str, str], ...] = ()
    readiness_timeout: float = 30.0
    max_peer_failures: Optional[int] = None     # None = continue best effort
    start_index: Optional[int] = None

    @property
    def join_mode(self) -> bool:
        return self.join_contacts is not None

    @property
    def mode(self) -> str:
        return "join" if self.join_mode else "fresh"

    @property
    def contacts_path(self) -> Path:
        return self.contacts_file or (self.nodes_dir / CONTACTS_FILENAME)

    @property
    def genesis_ip(self) -> str:
        return self.ip or DEFAULT_GENESIS_IP

    def validate(self) -> None:
        if self.node_count < 1:
            raise ConfigurationError(f"node count must be at least 1 (got {self.node_count})")
        if self.interval < 0:
            raise ConfigurationError(f"launch interval must not be negative (got {self.interval})")
        if self.readiness_timeout <= 0:
            raise ConfigurationError(
                f"readiness timeout must be positive (got {self.readiness_timeout})"
            )
        if self.max_peer_failures is not None and self.max_peer_failures < 0:
            raise ConfigurationError(
                f"max peer failures must not be negative (got {self.max_peer_failures})"
            )
        if self.verbosity < 0:
            raise ConfigurationError(f"verbosity must not be negative (got {self.verbosity})")
        if self.start_index is not None:
            if not self.join_mode:
                raise ConfigurationError("a start index only applies when joining a network")
            if self.start_index < 2:
                raise ConfigurationError("index 1 is reserved for the genesis node")
        if self.ip is not None:
            try:
                ipaddress.ip_address(self.ip)
            except ValueError as exc:
                raise ConfigurationError(f"invalid IP address {self.ip!r}") from exc


class NodeStatus(str, Enum):
    READY = "READY"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"


@dataclass
class NodeOutcome:
    index: int
    role: NodeRole
    status: NodeStatus
    address: Optional[SocketAddress] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    pid: Optional[int] = None
    log_path: Optional[Path] = None
    diagnostics: List[str] = field(default_factory=list)


class BootstrapStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class BootstrapResult:
    mode: str
    status: BootstrapStatus = BootstrapStatus.COMPLETE
    registry: Optional["ContactRegistry"] = None
    contacts_file: Optional[Path] = None
    outcomes: List[NodeOutcome] = field(default_factory=list)
    error: Optional[str] = None

    def add(self, outcome: NodeOutcome) -> None:
        self.outcomes.append(outcome)

    def count(self, status: NodeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def failed_indices(self) -> List[int]:
        return [o.index for o in self.outcomes if o.status == NodeStatus.FAILED]

    def summary(self) -> str:
        return (
            f"READY={self.count(NodeStatus.READY)} "
            f"FAILED={self.count(NodeStatus.FAILED)} "
            f"SKIPPED={self.count(NodeStatus.SKIPPED)}"
        )
