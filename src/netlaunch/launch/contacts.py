# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/launch/contacts.py

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import ConfigurationError, PersistenceError, RegistryConflictError
from .models import SocketAddress

log = logging.getLogger("netlaunch")


@dataclass(frozen=True)
class RegistrySnapshot:
    network_key: Optional[str]
    genesis: Optional[SocketAddress]
    peers: Tuple[SocketAddress, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_key": self.network_key,
            "genesis": str(self.genesis) if self.genesis else None,
            "peers": [str(p) for p in self.peers],
        }


class ContactRegistry:
    """
    Bootstrap contacts of one network: the genesis network key, the
    genesis node's own address, and every other node that came up.

    Membership is append-only and duplicate free. Order is kept so the
    file reads in launch order.
    """

    def __init__(
        self,
        network_key: Optional[str] = None,
        genesis: Optional[SocketAddress] = None,
        peers: Iterable[SocketAddress] = (),
    ):
        self._network_key = network_key.lower() if network_key else None
        self._genesis = genesis
        self._peers: List[SocketAddress] = []
        for p in peers:
            self.append(p)

    # ------------------------- accessors -------------------------

    @property
    def network_key(self) -> Optional[str]:
        return self._network_key

    @property
    def genesis(self) -> Optional[SocketAddress]:
        return self._genesis

    @property
    def peers(self) -> Tuple[SocketAddress, ...]:
        return tuple(self._peers)

    def contacts(self) -> List[SocketAddress]:
        """Addresses a joining node should be given, genesis first."""
        head = [self._genesis] if self._genesis else []
        return head + list(self._peers)

    def __contains__(self, address: object) -> bool:
        return address == self._genesis or address in self._peers

    def __len__(self) -> int:
        return len(self._peers)

    # ------------------------- mutation -------------------------

    def set_network_key(self, key: str) -> None:
        key = key.lower()
        if self._network_key is None:
            self._network_key = key
        elif self._network_key != key:
            raise RegistryConflictError(
                f"network key already set to {self._network_key}, refusing {key}"
            )

    def set_genesis(self, address: SocketAddress) -> None:
        if self._genesis is not None and self._genesis != address:
            raise RegistryConflictError(
                f"genesis address already set to {self._genesis}, refusing {address}"
            )
        self._genesis = address
        if address in self._peers:
            self._peers.remove(address)

    def append(self, address: SocketAddress) -> bool:
        """Add a peer; returns False when it was already known."""
        if address in self:
            return False
        self._peers.append(address)
        return True

    # ------------------------- persistence -------------------------

    def snapshot(self) -> RegistrySnapshot:
        return RegistrySnapshot(
            network_key=self._network_key,
            genesis=self._genesis,
            peers=tuple(self._peers),
        )

    def persist(self, destination: str | Path) -> Path:
        """
        Write the full registry to ``destination``.

        The content goes to a temporary file in the same directory which is
        then renamed over the destination, so readers see either the old or
        the new file, never a partial one.
        """
        dest = Path(destination)
        payload = json.dumps(self.snapshot().to_dict(), indent=2) + "\n"
        tmp_name = None
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=dest.parent,
                prefix=f".{dest.name}.",
                suffix=".tmp",
                delete=False,
            ) as tf:
                tmp_name = tf.name
                tf.write(payload)
                tf.flush()
                os.fsync(tf.fileno())
            os.replace(tmp_name, dest)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Failed to write contacts file '{dest}': {exc}") from exc

        log.debug("contacts written to %s (%d peers)", dest, len(self._peers))
        return dest

    @classmethod
    def load(cls, source: str | Path) -> "ContactRegistry":
        """
        Read a contacts file.

        Accepts the object form written by :meth:`persist` and a bare JSON
        list of addresses, which is read as peers only.
        """
        path = Path(source)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigurationError(f"Failed to open contacts file at '{path}': {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Failed to parse contacts file at '{path}': {exc}") from exc

        try:
            if isinstance(data, list):
                return cls(peers=[SocketAddress.parse(str(a)) for a in data])
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object or list")

            genesis = data.get("genesis")
            key = data.get("network_key")
            peers = data.get("peers")
            if key is not None and not isinstance(key, str):
                raise ValueError("network_key must be a string")
            if genesis is not None and not isinstance(genesis, str):
                raise ValueError("genesis must be an address string")
            if peers is not None and not isinstance(peers, list):
                raise ValueError("peers must be a list of addresses")
            return cls(
                network_key=key,
                genesis=SocketAddress.parse(str(genesis)) if genesis else None,
                peers=[SocketAddress.parse(str(a)) for a in peers or []],
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid contacts file at '{path}': {exc}") from exc
