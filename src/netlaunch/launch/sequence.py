# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/launch/sequence.py

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional, Sequence, Tuple

from .command import build_spec
from .contacts import ContactRegistry
from .errors import (
    BootstrapCancelled,
    NodeLaunchError,
    PersistenceError,
    ProcessDiedEarly,
    ReadinessTimeout,
)
from .models import (
    BootstrapResult,
    BootstrapStatus,
    LaunchPlan,
    NodeLaunchSpec,
    NodeOutcome,
    NodeRole,
    NodeStatus,
    ReadinessEvent,
)
from .portmap import NullPortMapper, PortMapper
from .process import END_OF_STREAM, ProcessHandle
from .readiness import ReadinessParser, ReadinessWatcher

from ..observers.dispatcher import EventBus
from ..observers.events import (
    new_ctx,
    NodeFailed,
    NodeReady,
    NodeSkipped,
    NodeSpawned,
    PortMappingAttempted,
    RegistryPersisted,
    RunCancelled,
    BootstrapSummary,
)

log = logging.getLogger("netlaunch")

Spawner = Callable[[NodeLaunchSpec], ProcessHandle]


class LaunchSequence:
    """
    The per-node launch / observe / append loop shared by the fresh and
    join coordinators.

    Strictly sequential: one node is spawned and watched at a time, and the
    registry has exactly one writer.
    """

    def __init__(
        self,
        *,
        spawner: Optional[Spawner] = None,
        parser: Optional[ReadinessParser] = None,
        port_mapper: Optional[PortMapper] = None,
        observers: Optional[List] = None,
        cancel: Optional[threading.Event] = None,
        run_id: Optional[str] = None,
        poll_interval: float = 0.25,
    ):
        self.spawner = spawner or ProcessHandle.spawn
        self.parser = parser or ReadinessParser()
        self.port_mapper = port_mapper or NullPortMapper()
        self.observers = observers or []
        self.cancel = cancel or threading.Event()
        self.run_id = run_id
        self.poll_interval = poll_interval
        self.bus = EventBus(self.observers)
        self.last_spawn = 0.0
        self._ctx: dict = {}

    # ------------------------- run context -------------------------

    def _begin(self, plan: LaunchPlan) -> None:
        self._ctx = new_ctx(mode=plan.mode, nodes_dir=str(plan.nodes_dir), run_id=self.run_id)

    def _emit(self, event_cls, **data) -> None:
        self.bus.emit(event_cls(**data, **self._ctx))

    # ------------------------- waiting -------------------------

    def _pause_until(self, deadline: float) -> None:
        delay = deadline - time.monotonic()
        if delay > 0 and self.cancel.wait(delay):
            raise BootstrapCancelled("cancelled while waiting to launch the next node")
        if self.cancel.is_set():
            raise BootstrapCancelled("cancelled before launching the next node")

    def _await_readiness(self, handle: ProcessHandle, spec: NodeLaunchSpec, timeout: float) -> ReadinessEvent:
        watcher = ReadinessWatcher(
            self.parser,
            spec.index,
            require_key=spec.role == NodeRole.GENESIS,
        )
        deadline = time.monotonic() + timeout
        while True:
            if self.cancel.is_set():
                raise BootstrapCancelled(f"cancelled while waiting for node #{spec.index}")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReadinessTimeout(spec.index, timeout)

            line = handle.next_line(timeout=min(remaining, self.poll_interval))
            if line is END_OF_STREAM:
                raise ProcessDiedEarly(spec.index, handle.returncode)
            if line is None:
                continue

            event = watcher.feed(line)
            if event is not None:
                return event

    # ------------------------- one node -------------------------

    def launch_node(
        self, plan: LaunchPlan, spec: NodeLaunchSpec
    ) -> Tuple[NodeOutcome, Optional[ReadinessEvent]]:
        """
        Spawn one node and wait for its announcement.

        Returns ``(outcome, event)``; ``event`` is None when the node failed.
        Raises BootstrapCancelled after terminating the node being watched.
        """
        outcome = NodeOutcome(index=spec.index, role=spec.role, status=NodeStatus.FAILED, log_path=spec.log_path)
        log.info("Launching %s node #%d...", spec.role.value, spec.index)

        try:
            handle = self.spawner(spec)
        except NodeLaunchError as exc:
            return self._node_failed(outcome, exc), None
        finally:
            self.last_spawn = time.monotonic()

        outcome.pid = handle.pid
        self._emit(NodeSpawned, index=spec.index, role=spec.role.value, pid=handle.pid, argv=spec.argv)

        t0 = time.monotonic()
        try:
            event = self._await_readiness(handle, spec, plan.readiness_timeout)
        except BootstrapCancelled:
            handle.terminate()
            raise
        except NodeLaunchError as exc:
            handle.mark_failed()
            handle.terminate()
            return self._node_failed(outcome, exc), None

        handle.mark_ready()
        handle.release()
        duration_ms = int((time.monotonic() - t0) * 1000)

        outcome.status = NodeStatus.READY
        outcome.address = event.address
        log.info("Node #%d is up at %s", spec.index, event.address)
        self._emit(
            NodeReady,
            index=spec.index,
            role=spec.role.value,
            address=str(event.address),
            network_key=event.network_key,
            duration_ms=duration_ms,
        )

        if not plan.local:
            self._map_port(spec, outcome)
        return outcome, event

    def _node_failed(self, outcome: NodeOutcome, exc: NodeLaunchError) -> NodeOutcome:
        outcome.status = NodeStatus.FAILED
        outcome.error_kind = exc.kind
        outcome.error = str(exc)
        log.error("Node #%d failed: %s (log: %s)", outcome.index, exc, outcome.log_path)
        self._emit(NodeFailed, index=outcome.index, role=outcome.role.value, kind=exc.kind, error=str(exc))
        return outcome

    def _map_port(self, spec: NodeLaunchSpec, outcome: NodeOutcome) -> None:
        port = outcome.address.port
        result = self.port_mapper.request_mapping(port)
        self._emit(PortMappingAttempted, index=spec.index, port=port, ok=result.ok, reason=result.reason)
        if not result.ok:
            log.warning("Port mapping for node #%d (port %d) failed: %s", spec.index, port, result.reason)
            outcome.diagnostics.append(f"port mapping failed: {result.reason}")

    # ------------------------- registry -------------------------

    def persist(self, plan: LaunchPlan, registry: ContactRegistry) -> None:
        path = registry.persist(plan.contacts_path)
        self._emit(RegistryPersisted, path=str(path), peers=len(registry))

    # ------------------------- peers -------------------------

    def launch_peers(
        self,
        plan: LaunchPlan,
        registry: ContactRegistry,
        role: NodeRole,
        indices: Sequence[int],
        result: BootstrapResult,
        not_before: float,
    ) -> None:
        """
        Launch ``indices`` one after the other, each given the registry's
        contacts as they stand at its spawn.

        Node i+1 is never spawned earlier than ``plan.interval`` after node i.
        A failed node is recorded and the loop goes on until the failure
        threshold is exceeded. PersistenceError and BootstrapCancelled
        propagate; the caller records the remaining indices.
        """
        failures = 0
        for pos, index in enumerate(indices):
            self._pause_until(not_before)

            spec = build_spec(plan, role, index, registry.contacts())
            try:
                outcome, event = self.launch_node(plan, spec)
            except BootstrapCancelled:
                self.record_cancelled(spec, result)
                raise
            not_before = self.last_spawn + plan.interval
            result.add(outcome)

            if event is None:
                failures += 1
                if plan.max_peer_failures is not None and failures > plan.max_peer_failures:
                    log.error(
                        "%d node(s) failed, more than the allowed %d; not launching further nodes",
                        failures, plan.max_peer_failures,
                    )
                    self.skip(indices[pos + 1:], role, result, "failure threshold exceeded")
                    return
                continue

            if not registry.append(event.address):
                log.warning("Node #%d reported already known address %s", index, event.address)
            try:
                self.persist(plan, registry)
            except PersistenceError as exc:
                outcome.diagnostics.append(str(exc))
                self._emit(NodeFailed, index=index, role=role.value, kind="persist", error=str(exc))
                self.skip(indices[pos + 1:], role, result, "contacts file could not be written")
                raise

    def record_cancelled(self, spec: NodeLaunchSpec, result: BootstrapResult) -> None:
        result.add(NodeOutcome(
            index=spec.index,
            role=spec.role,
            status=NodeStatus.CANCELLED,
            error="cancelled",
            log_path=spec.log_path,
        ))

    def skip(self, indices: Sequence[int], role: NodeRole, result: BootstrapResult, reason: str) -> None:
        for index in indices:
            result.add(NodeOutcome(index=index, role=role, status=NodeStatus.SKIPPED, error=reason))
            self._emit(NodeSkipped, index=index, reason=reason)

    # ------------------------- wrap up -------------------------

    def cancelled(self, result: BootstrapResult, remaining: Sequence[int], role: NodeRole) -> BootstrapResult:
        log.warning("Launch cancelled; nodes already up keep running")
        done = {o.index for o in result.outcomes}
        self.skip([i for i in remaining if i not in done], role, result, "cancelled")
        in_flight = next((o.index for o in result.outcomes if o.status == NodeStatus.CANCELLED), None)
        self._emit(RunCancelled, index=in_flight)
        result.status = BootstrapStatus.CANCELLED
        result.error = "cancelled"
        return result

    def finish(self, result: BootstrapResult) -> BootstrapResult:
        ready = result.count(NodeStatus.READY)
        failed = result.count(NodeStatus.FAILED)
        skipped = result.count(NodeStatus.SKIPPED)
        self._emit(
            BootstrapSummary,
            status=result.status.value,
            ready=ready,
            failed=failed,
            skipped=skipped,
        )
        log.info("Launch %s: %s", result.status.value, result.summary())
        return result
