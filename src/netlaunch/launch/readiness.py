# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/launch/readiness.py

from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable, List, Optional, Pattern

from .models import ReadinessEvent, SocketAddress

_ADDR = r"(?P<addr>\[[0-9A-Fa-f:.]+\]:\d{1,5}|(?<![\d.])\d{1,3}(?:\.\d{1,3}){3}:\d{1,5})(?!\d)"

DEFAULT_ADDRESS_PATTERNS: List[str] = [
    r"(?i)\b(?:listening|connection\s+info|our\s+address|local\s+address|bound\s+to)\b.*?" + _ADDR,
]

DEFAULT_KEY_PATTERNS: List[str] = [
    r"(?i)\b(?:network|genesis|section)[\s_-]*(?:key|id|identifier)\b\W*?"
    r"(?:PublicKey\()?(?P<key>[0-9A-Fa-f]{16,})\b",
]


def _compile(patterns: Iterable[str], group: str) -> List[Pattern[str]]:
    compiled = []
    for p in patterns:
        rx = re.compile(p)
        if group not in rx.groupindex:
            raise ValueError(f"readiness pattern {p!r} has no (?P<{group}>...) group")
        compiled.append(rx)
    return compiled


class ReadinessParser:
    """
    Pulls node announcements out of free-form log lines.

    Stateless: each call looks at one line only. Unrelated or malformed
    lines yield ``None``; the node's log format is not a contract, so a
    near-miss is never an error.
    """

    def __init__(
        self,
        address_patterns: Optional[Iterable[str]] = None,
        key_patterns: Optional[Iterable[str]] = None,
    ):
        self._address_rx = _compile(address_patterns or DEFAULT_ADDRESS_PATTERNS, "addr")
        self._key_rx = _compile(key_patterns or DEFAULT_KEY_PATTERNS, "key")

    def parse(self, line: str, index: int = 0) -> Optional[ReadinessEvent]:
        address = self._find_address(line)
        key = self._find_key(line)
        if address is None and key is None:
            return None
        return ReadinessEvent(index=index, address=address, network_key=key)

    def _find_address(self, line: str) -> Optional[SocketAddress]:
        for rx in self._address_rx:
            for m in rx.finditer(line):
                try:
                    return SocketAddress.parse(m.group("addr"))
                except ValueError:
                    continue
        return None

    def _find_key(self, line: str) -> Optional[str]:
        for rx in self._key_rx:
            m = rx.search(line)
            if m:
                return m.group("key").lower()
        return None


class ReadinessWatcher:
    """
    Accumulates partial events for one node until its readiness rule holds:
    an address for every node, plus the network key for genesis.
    """

    def __init__(self, parser: ReadinessParser, index: int, require_key: bool = False):
        self.parser = parser
        self.require_key = require_key
        self._seen = ReadinessEvent(index=index)

    @property
    def seen(self) -> ReadinessEvent:
        return self._seen

    def feed(self, line: str) -> Optional[ReadinessEvent]:
        event = self.parser.parse(line, index=self._seen.index)
        if event is None:
            return None

        # first announcement wins; nodes repeat their address in later lines
        if self._seen.address is None and event.address is not None:
            self._seen = replace(self._seen, address=event.address)
        if self.require_key and self._seen.network_key is None and event.network_key:
            self._seen = replace(self._seen, network_key=event.network_key)

        if self._seen.is_complete(self.require_key):
            return self._seen
        return None
