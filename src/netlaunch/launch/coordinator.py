# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/launch/coordinator.py

from __future__ import annotations

import logging
import time

from .command import build_spec
from .contacts import ContactRegistry
from .errors import BootstrapCancelled, PersistenceError
from .join import JoinCoordinator
from .models import BootstrapResult, BootstrapStatus, LaunchPlan, NodeRole, NodeStatus
from .sequence import LaunchSequence

from ..observers.events import NodeFailed, PlanAccepted

log = logging.getLogger("netlaunch")


class BootstrapCoordinator(LaunchSequence):
    """
    Brings up a fresh network: genesis first, then the remaining nodes one
    by one, each joining through the contacts gathered so far.

    Join plans are handed to JoinCoordinator with the same collaborators.
    """

    def run(self, plan: LaunchPlan) -> BootstrapResult:
        plan.validate()

        if plan.join_mode:
            return JoinCoordinator(
                spawner=self.spawner,
                parser=self.parser,
                port_mapper=self.port_mapper,
                observers=self.observers,
                cancel=self.cancel,
                run_id=self.run_id,
                poll_interval=self.poll_interval,
            ).run(plan)

        self._begin(plan)
        self._emit(PlanAccepted, node_count=plan.node_count, interval_s=plan.interval, local=plan.local)
        log.debug("Network size: %d nodes", plan.node_count)

        result = BootstrapResult(mode=plan.mode, contacts_file=plan.contacts_path)
        peer_indices = list(range(2, plan.node_count + 1))

        # 1) Genesis
        genesis = build_spec(plan, NodeRole.GENESIS, 1)
        try:
            outcome, event = self.launch_node(plan, genesis)
        except BootstrapCancelled:
            self.record_cancelled(genesis, result)
            return self.finish(self.cancelled(result, peer_indices, NodeRole.JOINING))
        result.add(outcome)

        if event is None:
            self.skip(peer_indices, NodeRole.JOINING, result, "genesis node failed")
            result.status = BootstrapStatus.FAILED
            result.error = outcome.error
            return self.finish(result)

        registry = ContactRegistry(network_key=event.network_key, genesis=event.address)
        try:
            self.persist(plan, registry)
        except PersistenceError as exc:
            self._emit(NodeFailed, index=1, role=NodeRole.GENESIS.value, kind="persist", error=str(exc))
            self.skip(peer_indices, NodeRole.JOINING, result, "contacts file could not be written")
            result.status = BootstrapStatus.FAILED
            result.error = str(exc)
            return self.finish(result)

        log.info("Genesis network key: %s", registry.network_key)
        result.registry = registry

        # 2) Everyone else
        try:
            self.launch_peers(
                plan,
                registry,
                NodeRole.JOINING,
                peer_indices,
                result,
                not_before=time.monotonic() + plan.interval,
            )
        except BootstrapCancelled:
            return self.finish(self.cancelled(result, peer_indices, NodeRole.JOINING))
        except PersistenceError as exc:
            result.status = BootstrapStatus.FAILED
            result.error = str(exc)
            return self.finish(result)

        result.status = (
            BootstrapStatus.COMPLETE
            if all(o.status == NodeStatus.READY for o in result.outcomes)
            else BootstrapStatus.PARTIAL
        )
        return self.finish(result)

