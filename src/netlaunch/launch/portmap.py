# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/launch/portmap.py

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Protocol

log = logging.getLogger("netlaunch")

_FAILURE_RX = re.compile(r"failed|no igd|no valid upnp", re.IGNORECASE)


@dataclass(frozen=True)
class PortMappingResult:
    port: int
    ok: bool
    reason: Optional[str] = None


class PortMapper(Protocol):
    def request_mapping(self, port: int) -> PortMappingResult: ...


class NullPortMapper:
    """Used for local-only networks: nothing to map."""

    def request_mapping(self, port: int) -> PortMappingResult:
        return PortMappingResult(port=port, ok=True, reason="port mapping disabled")


class UpnpcPortMapper:
    """
    Asks the gateway for a port forward through the miniupnpc ``upnpc`` client.
    - Every failure comes back as a result, never as an exception.
    - Testable by mocking subprocess.run.
    """

    def __init__(
        self,
        command: str = "upnpc",
        protocol: str = "UDP",
        description: str = "netlaunch",
        timeout: float = 10.0,
    ):
        self.command = command
        self.protocol = protocol.upper()
        self.description = description
        self.timeout = timeout

    def _argv(self, port: int) -> List[str]:
        return [self.command, "-e", self.description, "-r", str(port), self.protocol]

    def request_mapping(self, port: int) -> PortMappingResult:
        argv = self._argv(port)
        log.debug("requesting port mapping: %s", " ".join(argv))
        try:
            cp = subprocess.run(
                argv,
                check=False,
                text=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return PortMappingResult(port, False, f"'{self.command}' not found")
        except subprocess.TimeoutExpired:
            return PortMappingResult(port, False, f"'{self.command}' timed out after {self.timeout:g}s")
        except OSError as exc:
            return PortMappingResult(port, False, str(exc))

        output = f"{cp.stdout or ''}\n{cp.stderr or ''}"
        if cp.returncode != 0:
            return PortMappingResult(port, False, f"{self.command} exited with rc={cp.returncode}: {output.strip()}")

        # upnpc reports AddPortMapping errors on stdout with rc=0
        m = _FAILURE_RX.search(output)
        if m:
            line = next((ln for ln in output.splitlines() if _FAILURE_RX.search(ln)), m.group(0))
            return PortMappingResult(port, False, line.strip())

        return PortMappingResult(port, True)
