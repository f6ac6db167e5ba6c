# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netlaunch/launch/join.py

from __future__ import annotations

import logging
import time
from typing import Optional

from .command import next_node_index
from .contacts import ContactRegistry
from .errors import BootstrapCancelled, ConfigurationError, PersistenceError
from .models import BootstrapResult, BootstrapStatus, LaunchPlan, NodeRole, NodeStatus
from .sequence import LaunchSequence

from ..observers.events import PlanAccepted, RegistryLoaded

log = logging.getLogger("netlaunch")


class JoinCoordinator(LaunchSequence):
    """
    Adds nodes to a network that is already running, described by a
    persisted contacts file. Genesis is never launched here.
    """

    def run(self, plan: LaunchPlan, registry: Optional[ContactRegistry] = None) -> BootstrapResult:
        plan.validate()
        if registry is None:
            if plan.join_contacts is None:
                raise ConfigurationError("joining a network needs a contacts file")
            registry = ContactRegistry.load(plan.join_contacts)

        if not registry.contacts():
            raise ConfigurationError("No contact nodes provided; cannot join a network")

        self._begin(plan)
        self._emit(PlanAccepted, node_count=plan.node_count, interval_s=plan.interval, local=plan.local)
        self._emit(
            RegistryLoaded,
            path=str(plan.join_contacts) if plan.join_contacts else "",
            network_key=registry.network_key,
            contacts=len(registry.contacts()),
        )
        log.debug("Nodes to be started with contact(s): %s", [str(c) for c in registry.contacts()])

        start = plan.start_index or next_node_index(plan.nodes_dir)
        indices = list(range(start, start + plan.node_count))
        log.info("Adding %d node(s) starting at #%d", plan.node_count, start)

        result = BootstrapResult(mode=plan.mode, registry=registry, contacts_file=plan.contacts_path)
        try:
            self.launch_peers(
                plan,
                registry,
                NodeRole.ADDITIONAL,
                indices,
                result,
                not_before=time.monotonic(),
            )
        except BootstrapCancelled:
            return self.finish(self.cancelled(result, indices, NodeRole.ADDITIONAL))
        except PersistenceError as exc:
            result.status = BootstrapStatus.FAILED
            result.error = str(exc)
            return self.finish(result)

        ready = result.count(NodeStatus.READY)
        if ready == len(indices):
            result.status = BootstrapStatus.COMPLETE
        elif ready:
            result.status = BootstrapStatus.PARTIAL
        else:
            result.status = BootstrapStatus.FAILED
            result.error = "none of the additional nodes came up"
        return self.finish(result)
