# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/launch/errors.py

from __future__ import annotations

from typing import Optional


class BootstrapError(RuntimeError):
    """Base class for network bootstrap failures."""


class ConfigurationError(BootstrapError):
    """Raised for an invalid launch plan or contacts source, before anything is spawned."""


class NodeLaunchError(BootstrapError):
    """A single node could not be brought up."""

    kind = "launch"

    def __init__(self, index: int, message: str):
        super().__init__(f"node #{index}: {message}")
        self.index = index


class SpawnError(NodeLaunchError):
    """The node executable could not be started."""

    kind = "spawn"


class ReadinessTimeout(NodeLaunchError):
    kind = "timeout"

    def __init__(self, index: int, timeout_s: float):
        super().__init__(index, f"no readiness announcement within {timeout_s:g}s")
        self.timeout_s = timeout_s


class ProcessDiedEarly(NodeLaunchError):
    kind = "died"

    def __init__(self, index: int, returncode: Optional[int]):
        super().__init__(index, f"process exited before becoming ready (status: {returncode})")
        self.returncode = returncode


class PersistenceError(BootstrapError):
    """The contacts file could not be written."""


class RegistryConflictError(BootstrapError):
    """A second, different network key was offered to a registry."""


class BootstrapCancelled(BootstrapError):
    """Cancellation was requested while the sequence was running."""
