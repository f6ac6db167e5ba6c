# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/launch/process.py

from __future__ import annotations

import logging
import os
import subprocess
import sys
import time
from enum import Enum
from typing import BinaryIO, Optional, Union

from .errors import SpawnError
from .models import NodeLaunchSpec

log = logging.getLogger("netlaunch")

READ_CHUNK_BYTES = 65536
MAX_LINE_BYTES = 65536


class ProcessState(str, Enum):
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"
    TERMINATED = "terminated"


class _EndOfStream:
    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()

Line = Union[str, None, _EndOfStream]


class ProcessHandle:
    """
    One spawned node process.

    The child's stdout and stderr go to the node's log file; lines are read
    back by tailing that file. The process does not depend on the launcher
    to drain its output, so a released handle leaves a node that keeps
    running and logging after the launcher exits.
    """

    def __init__(
        self,
        spec: NodeLaunchSpec,
        proc: subprocess.Popen,
        reader: BinaryIO,
        poll_interval: float = 0.05,
    ):
        self.spec = spec
        self.state = ProcessState.RUNNING
        self.poll_interval = poll_interval
        self._proc = proc
        self._reader: Optional[BinaryIO] = reader
        self._buffer = b""
        self._scanned = 0

    @classmethod
    def spawn(cls, spec: NodeLaunchSpec, poll_interval: float = 0.05) -> "ProcessHandle":
        log.debug("Running '%s' with args %s ...", spec.executable, list(spec.args))

        env = dict(os.environ)
        env.update(dict(spec.env))

        kwargs = {}
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # keep Ctrl-C aimed at the launcher away from the nodes
            kwargs["start_new_session"] = True

        try:
            spec.node_dir.mkdir(parents=True, exist_ok=True)
            # only output written by this process counts, not an earlier run's
            offset = spec.log_path.stat().st_size if spec.log_path.exists() else 0
            with open(spec.log_path, "ab") as out:
                proc = subprocess.Popen(
                    spec.argv,
                    cwd=str(spec.node_dir),
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=subprocess.STDOUT,
                    **kwargs,
                )
        except OSError as exc:
            raise SpawnError(
                spec.index, f"failed to start '{spec.executable}' with args {list(spec.args)}: {exc}"
            ) from exc

        try:
            reader = open(spec.log_path, "rb")
            reader.seek(offset)
        except OSError as exc:
            # no handle will own the child, so it must not outlive this call
            proc.kill()
            proc.wait()
            raise SpawnError(spec.index, f"cannot read node log '{spec.log_path}': {exc}") from exc

        return cls(spec, proc, reader, poll_interval=poll_interval)

    # ------------------------- introspection -------------------------

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.poll()

    def is_running(self) -> bool:
        return self._proc.poll() is None

    # ------------------------- output -------------------------

    def _take_line(self) -> Optional[str]:
        nl = self._buffer.find(b"\n", self._scanned)
        if nl < 0:
            if len(self._buffer) < MAX_LINE_BYTES:
                self._scanned = len(self._buffer)
                return None
            # overlong line: hand it out in pieces so the buffer stays bounded
            raw, self._buffer = self._buffer[:MAX_LINE_BYTES], self._buffer[MAX_LINE_BYTES:]
            self._scanned = 0
            return raw.decode("utf-8", "replace")
        raw, self._buffer = self._buffer[:nl], self._buffer[nl + 1:]
        self._scanned = 0
        return raw.decode("utf-8", "replace").rstrip("\r")

    def _read_more(self) -> bool:
        if self._reader is None:
            return False
        chunk = self._reader.read(READ_CHUNK_BYTES)
        if chunk:
            self._buffer += chunk
            return True
        return False

    def next_line(self, timeout: float) -> Line:
        """
        Next output line, waiting at most ``timeout`` seconds.

        Returns ``None`` when nothing arrived in time and ``END_OF_STREAM``
        once the process has exited and everything it wrote was consumed.
        Lines longer than MAX_LINE_BYTES come back split into pieces.
        """
        deadline = time.monotonic() + timeout
        while True:
            line = self._take_line()
            if line is not None:
                return line
            if self._read_more():
                if time.monotonic() >= deadline:
                    return None
                continue

            if self._reader is None or self._proc.poll() is not None:
                # the process may have written its last bytes right before exiting
                if self._read_more():
                    continue
                if self._buffer:
                    rest, self._buffer = self._buffer, b""
                    return rest.decode("utf-8", "replace").rstrip("\r")
                return END_OF_STREAM

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(self.poll_interval, remaining))

    # ------------------------- lifecycle -------------------------

    def mark_ready(self) -> None:
        self.state = ProcessState.READY

    def mark_failed(self) -> None:
        self.state = ProcessState.FAILED

    def release(self) -> None:
        """Stop reading; the process keeps running on its own."""
        self._close_reader()

    def terminate(self, grace: float = 5.0) -> None:
        if self._proc.poll() is None:
            log.debug("terminating %s (pid %s)", self.spec.name, self._proc.pid)
            self._proc.terminate()
            try:
                self._proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                self._proc.kill()
                self._proc.wait(timeout=grace)
        self._close_reader()
        self.state = ProcessState.TERMINATED

    def _close_reader(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
