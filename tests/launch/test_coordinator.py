import json
import os
import threading
from pathlib import Path

import pytest

from netlaunch.launch.coordinator import BootstrapCoordinator
from netlaunch.launch.contacts import ContactRegistry
from netlaunch.launch.models import (
    BootstrapStatus,
    LaunchPlan,
    NodeRole,
    NodeStatus,
    SocketAddress,
)
from netlaunch.launch.portmap import PortMappingResult

KEY = "5f1e9a7c3b2d4e6f8a0b1c2d3e4f5a6b"


def _plan(tmp_path: Path, **kw):
    base = dict(
        executable=Path("/opt/sn_node"),
        nodes_dir=tmp_path / "nodes",
        node_count=3,
        interval=0,
        readiness_timeout=5,
    )
    base.update(kw)
    return LaunchPlan(**base)


def _coordinator(spawner, capture, **kw):
    return BootstrapCoordinator(spawner=spawner, observers=[capture], poll_interval=0.02, **kw)


def _addr(index):
    return SocketAddress("127.0.0.1", 12000 + index)


def _statuses(result):
    return {o.index: o.status for o in result.outcomes}


def test_single_node_network_is_just_genesis(tmp_path, capture, spawner_factory):
    sp = spawner_factory()
    plan = _plan(tmp_path, node_count=1)
    result = _coordinator(sp, capture).run(plan)

    assert result.status == BootstrapStatus.COMPLETE
    assert sp.indices == [1]
    assert sp.specs[0].role == NodeRole.GENESIS
    assert "--first" in sp.specs[0].args
    assert result.registry.network_key == KEY
    assert result.registry.genesis == _addr(1)
    assert len(result.registry) == 0

    data = json.loads(plan.contacts_path.read_text())
    assert data == {"network_key": KEY, "genesis": "127.0.0.1:12001", "peers": []}
    assert sp.handles[1].released
    assert not sp.handles[1].terminated


def test_nodes_join_in_order_with_growing_contacts(tmp_path, capture, spawner_factory):
    sp = spawner_factory()
    plan = _plan(tmp_path, node_count=4)
    result = _coordinator(sp, capture).run(plan)

    assert result.status == BootstrapStatus.COMPLETE
    assert result.summary() == "READY=4 FAILED=0 SKIPPED=0"
    assert sp.indices == [1, 2, 3, 4]
    assert [s.role for s in sp.specs] == [NodeRole.GENESIS] + [NodeRole.JOINING] * 3

    def contacts_of(spec):
        i = spec.args.index("--hard-coded-contacts")
        return json.loads(spec.args[i + 1])

    assert "--hard-coded-contacts" not in sp.specs[0].args
    assert contacts_of(sp.specs[1]) == ["127.0.0.1:12001"]
    assert contacts_of(sp.specs[2]) == ["127.0.0.1:12001", "127.0.0.1:12002"]
    assert contacts_of(sp.specs[3]) == ["127.0.0.1:12001", "127.0.0.1:12002", "127.0.0.1:12003"]

    assert result.registry.peers == (_addr(2), _addr(3), _addr(4))
    on_disk = ContactRegistry.load(plan.contacts_path)
    assert on_disk.snapshot() == result.registry.snapshot()


def test_spawns_are_spaced_by_interval(tmp_path, capture, spawner_factory):
    sp = spawner_factory()
    plan = _plan(tmp_path, node_count=3, interval=0.1)
    result = _coordinator(sp, capture).run(plan)

    assert result.status == BootstrapStatus.COMPLETE
    gaps = [b - a for a, b in zip(sp.times, sp.times[1:])]
    assert len(gaps) == 2
    assert all(g >= 0.095 for g in gaps)
    assert sp.times[-1] - sp.times[0] >= 0.19


def test_events_bracket_the_run(tmp_path, capture, spawner_factory):
    _coordinator(spawner_factory(), capture, run_id="run-1").run(_plan(tmp_path, node_count=2))

    names = [e.__class__.__name__ for e in capture.events]
    assert names[0] == "PlanAccepted"
    assert names[-1] == "BootstrapSummary"
    assert names.count("NodeSpawned") == 2
    assert names.count("NodeReady") == 2
    assert names.count("RegistryPersisted") == 2
    assert {e.run_id for e in capture.events} == {"run-1"}

    ready = capture.of("NodeReady")
    assert ready[0].network_key == KEY
    assert ready[1].address == "127.0.0.1:12002"
    summary = capture.of("BootstrapSummary")[0]
    assert (summary.status, summary.ready, summary.failed, summary.skipped) == ("complete", 2, 0, 0)


def test_failed_peer_does_not_stop_the_others(tmp_path, capture, spawner_factory):
    sp = spawner_factory({2: "hang"})
    plan = _plan(tmp_path, node_count=4, readiness_timeout=0.3)
    result = _coordinator(sp, capture).run(plan)

    assert result.status == BootstrapStatus.PARTIAL
    assert _statuses(result) == {
        1: NodeStatus.READY, 2: NodeStatus.FAILED, 3: NodeStatus.READY, 4: NodeStatus.READY,
    }
    failed = next(o for o in result.outcomes if o.index == 2)
    assert failed.error_kind == "timeout"
    assert failed.log_path == tmp_path / "nodes" / "sn-node-2" / "sn-node-2.log"
    assert sp.handles[2].terminated

    assert _addr(2) not in result.registry
    assert result.registry.peers == (_addr(3), _addr(4))
    assert [e.kind for e in capture.of("NodeFailed")] == ["timeout"]


def test_failure_threshold_skips_remaining_nodes(tmp_path, capture, spawner_factory):
    sp = spawner_factory({2: "die"})
    plan = _plan(tmp_path, node_count=4, max_peer_failures=0)
    result = _coordinator(sp, capture).run(plan)

    assert result.status == BootstrapStatus.PARTIAL
    assert sp.indices == [1, 2]
    assert _statuses(result) == {
        1: NodeStatus.READY, 2: NodeStatus.FAILED, 3: NodeStatus.SKIPPED, 4: NodeStatus.SKIPPED,
    }
    assert next(o for o in result.outcomes if o.index == 2).error_kind == "died"
    assert [e.index for e in capture.of("NodeSkipped")] == [3, 4]


def test_genesis_failure_fails_the_run(tmp_path, capture, spawner_factory):
    sp = spawner_factory({1: "die"})
    plan = _plan(tmp_path, node_count=3)
    result = _coordinator(sp, capture).run(plan)

    assert result.status == BootstrapStatus.FAILED
    assert result.registry is None
    assert sp.indices == [1]
    assert _statuses(result) == {1: NodeStatus.FAILED, 2: NodeStatus.SKIPPED, 3: NodeStatus.SKIPPED}
    assert "status: 101" in result.error
    assert not plan.contacts_path.exists()


def test_genesis_without_network_key_times_out(tmp_path, capture, spawner_factory):
    sp = spawner_factory({1: ["Node connection info: 127.0.0.1:12001"]})
    plan = _plan(tmp_path, node_count=2, readiness_timeout=0.3)
    result = _coordinator(sp, capture).run(plan)

    assert result.status == BootstrapStatus.FAILED
    assert result.outcomes[0].error_kind == "timeout"
    assert sp.handles[1].terminated


def test_genesis_spawn_error(tmp_path, capture, spawner_factory):
    result = _coordinator(spawner_factory({1: "spawn"}), capture).run(_plan(tmp_path))
    assert result.status == BootstrapStatus.FAILED
    assert result.outcomes[0].error_kind == "spawn"
    assert capture.of("NodeSpawned") == []


def test_contacts_write_failure_after_genesis_fails_the_run(tmp_path, capture, spawner_factory):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file where a directory should be")
    sp = spawner_factory()
    plan = _plan(tmp_path, contacts_file=blocker / "contacts.json")
    result = _coordinator(sp, capture).run(plan)

    assert result.status == BootstrapStatus.FAILED
    assert result.registry is None
    assert sp.indices == [1]
    assert _statuses(result) == {1: NodeStatus.READY, 2: NodeStatus.SKIPPED, 3: NodeStatus.SKIPPED}
    assert [e.kind for e in capture.of("NodeFailed")] == ["persist"]
    # genesis is up; it is not torn down
    assert not sp.handles[1].terminated


def test_cancel_while_waiting_for_a_node(tmp_path, capture, spawner_factory):
    cancel = threading.Event()

    def on_spawn(spec):
        if spec.index == 2:
            cancel.set()

    sp = spawner_factory({2: "hang"}, on_spawn=on_spawn)
    plan = _plan(tmp_path, node_count=3)
    result = _coordinator(sp, capture, cancel=cancel).run(plan)

    assert result.status == BootstrapStatus.CANCELLED
    assert sp.indices == [1, 2]
    assert _statuses(result) == {1: NodeStatus.READY, 2: NodeStatus.CANCELLED, 3: NodeStatus.SKIPPED}
    assert sp.handles[2].terminated
    assert not sp.handles[1].terminated
    assert capture.of("RunCancelled")[0].index == 2
    assert capture.of("BootstrapSummary")[0].status == "cancelled"
    # the registry on disk still describes the nodes that are up
    assert ContactRegistry.load(plan.contacts_path).genesis == _addr(1)


def test_cancel_during_interval_wait(tmp_path, capture, spawner_factory):
    cancel = threading.Event()

    def on_spawn(spec):
        if spec.index == 1:
            threading.Timer(0.05, cancel.set).start()

    sp = spawner_factory(on_spawn=on_spawn)
    result = _coordinator(sp, capture, cancel=cancel).run(_plan(tmp_path, node_count=3, interval=5))

    assert result.status == BootstrapStatus.CANCELLED
    assert sp.indices == [1]
    assert _statuses(result) == {1: NodeStatus.READY, 2: NodeStatus.SKIPPED, 3: NodeStatus.SKIPPED}
    assert capture.of("RunCancelled")[0].index is None


class FailingMapper:
    def __init__(self): self.ports = []

    def request_mapping(self, port):
        self.ports.append(port)
        return PortMappingResult(port, False, "No IGD UPnP Device found")


def test_port_mapping_failure_is_a_diagnostic(tmp_path, capture, spawner_factory):
    mapper = FailingMapper()
    plan = _plan(tmp_path, node_count=2, local=False)
    result = _coordinator(spawner_factory(), capture, port_mapper=mapper).run(plan)

    assert result.status == BootstrapStatus.COMPLETE
    assert mapper.ports == [12001, 12002]
    assert all("port mapping failed" in o.diagnostics[0] for o in result.outcomes)
    assert [e.ok for e in capture.of("PortMappingAttempted")] == [False, False]


def test_local_network_skips_port_mapping(tmp_path, capture, spawner_factory):
    mapper = FailingMapper()
    _coordinator(spawner_factory(), capture, port_mapper=mapper).run(_plan(tmp_path, node_count=2))
    assert mapper.ports == []
    assert capture.of("PortMappingAttempted") == []


def test_join_plan_is_delegated(tmp_path, capture, spawner_factory):
    contacts = tmp_path / "contacts.json"
    ContactRegistry(network_key=KEY, genesis=_addr(1)).persist(contacts)

    sp = spawner_factory()
    plan = _plan(tmp_path, node_count=1, join_contacts=contacts, contacts_file=contacts)
    result = _coordinator(sp, capture).run(plan)

    assert result.mode == "join"
    assert result.status == BootstrapStatus.COMPLETE
    assert [s.role for s in sp.specs] == [NodeRole.ADDITIONAL]


@pytest.mark.parametrize("threshold, peers", [(None, 1), (0, 0)])
def test_second_node_timeout_with_and_without_threshold(tmp_path, capture, spawner_factory, threshold, peers):
    sp = spawner_factory({2: "hang"})
    plan = _plan(tmp_path, node_count=3, readiness_timeout=0.2, max_peer_failures=threshold)
    result = _coordinator(sp, capture).run(plan)

    assert result.status == BootstrapStatus.PARTIAL
    assert len(result.registry) == peers
    assert len(ContactRegistry.load(plan.contacts_path)) == peers
    assert result.registry.network_key == KEY


def test_contacts_write_failure_after_a_peer_fails_the_run(tmp_path, capture, spawner_factory, monkeypatch):
    def refuse(src, dst):
        raise PermissionError(13, "Permission denied", str(dst))

    def on_spawn(spec):
        if spec.index == 2:
            monkeypatch.setattr(os, "replace", refuse)

    sp = spawner_factory(on_spawn=on_spawn)
    plan = _plan(tmp_path, node_count=3)
    result = _coordinator(sp, capture).run(plan)

    assert result.status == BootstrapStatus.FAILED
    assert "Failed to write contacts file" in result.error
    assert sp.indices == [1, 2]
    assert _statuses(result) == {1: NodeStatus.READY, 2: NodeStatus.READY, 3: NodeStatus.SKIPPED}
    node2 = next(o for o in result.outcomes if o.index == 2)
    assert any("contacts file" in d for d in node2.diagnostics)
    assert [(e.index, e.kind) for e in capture.of("NodeFailed")] == [(2, "persist")]
    assert capture.of("BootstrapSummary")[0].status == "failed"

    # the file still holds what was last written successfully
    on_disk = ContactRegistry.load(plan.contacts_path)
    assert on_disk.genesis == _addr(1)
    assert len(on_disk) == 0
    assert os.listdir(plan.contacts_path.parent) == ["contacts.json"]
