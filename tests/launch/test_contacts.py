import json
import os
from pathlib import Path

import pytest

from netlaunch.launch.contacts import ContactRegistry
from netlaunch.launch.errors import ConfigurationError, PersistenceError, RegistryConflictError
from netlaunch.launch.models import SocketAddress

KEY = "0123456789abcdef0123456789abcdef"
G = SocketAddress("127.0.0.1", 10000)
P1 = SocketAddress("127.0.0.1", 10001)
P2 = SocketAddress("127.0.0.1", 10002)


def test_append_is_idempotent_and_ordered():
    reg = ContactRegistry(network_key=KEY, genesis=G)
    assert reg.append(P2)
    assert reg.append(P1)
    assert not reg.append(P2)
    assert reg.peers == (P2, P1)
    assert len(reg) == 2
    assert reg.contacts() == [G, P2, P1]


def test_genesis_is_not_a_peer():
    reg = ContactRegistry(network_key=KEY, genesis=G)
    assert not reg.append(G)
    assert G in reg
    assert len(reg) == 0


def test_set_genesis_moves_address_out_of_peers():
    reg = ContactRegistry(peers=[G, P1])
    reg.set_genesis(G)
    assert reg.peers == (P1,)
    with pytest.raises(RegistryConflictError):
        reg.set_genesis(P2)


def test_network_key_conflict():
    reg = ContactRegistry(network_key=KEY.upper())
    assert reg.network_key == KEY
    reg.set_network_key(KEY)
    with pytest.raises(RegistryConflictError):
        reg.set_network_key("f" * 32)


def test_persist_and_load_round_trip(tmp_path: Path):
    reg = ContactRegistry(network_key=KEY, genesis=G, peers=[P1, P2])
    dest = tmp_path / "sub" / "contacts.json"
    assert reg.persist(dest) == dest

    data = json.loads(dest.read_text())
    assert data == {
        "network_key": KEY,
        "genesis": "127.0.0.1:10000",
        "peers": ["127.0.0.1:10001", "127.0.0.1:10002"],
    }

    loaded = ContactRegistry.load(dest)
    assert loaded.snapshot() == reg.snapshot()


def test_persist_replaces_whole_file_and_leaves_no_temp(tmp_path: Path):
    dest = tmp_path / "contacts.json"
    dest.write_text("garbage that is longer than the new content " * 50)

    reg = ContactRegistry(network_key=KEY, genesis=G)
    reg.persist(dest)
    reg.append(P1)
    reg.persist(dest)

    assert json.loads(dest.read_text())["peers"] == ["127.0.0.1:10001"]
    assert os.listdir(tmp_path) == ["contacts.json"]


def test_persist_failure_raises_persistence_error(tmp_path: Path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    reg = ContactRegistry(network_key=KEY, genesis=G)
    with pytest.raises(PersistenceError):
        reg.persist(blocker / "contacts.json")


def test_load_bare_list_as_peers(tmp_path: Path):
    f = tmp_path / "contacts.json"
    f.write_text('["127.0.0.1:10001", "[::1]:10002"]')
    reg = ContactRegistry.load(f)
    assert reg.network_key is None
    assert reg.genesis is None
    assert reg.contacts() == [P1, SocketAddress("::1", 10002)]


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        '"just a string"',
        '{"peers": ["nonsense"]}',
        '{"network_key": 5, "peers": []}',
        '{"peers": 5}',
        '{"peers": true}',
        '{"peers": "127.0.0.1:10001"}',
        '{"genesis": ["127.0.0.1:10000"]}',
    ],
)
def test_load_rejects_bad_files(tmp_path: Path, content):
    f = tmp_path / "contacts.json"
    f.write_text(content)
    with pytest.raises(ConfigurationError):
        ContactRegistry.load(f)


def test_load_missing_file(tmp_path: Path):
    with pytest.raises(ConfigurationError):
        ContactRegistry.load(tmp_path / "nope.json")
