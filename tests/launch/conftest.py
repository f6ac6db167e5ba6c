import time

import pytest

from netlaunch.launch.errors import SpawnError
from netlaunch.launch.models import NodeRole
from netlaunch.launch.process import END_OF_STREAM

KEY = "5f1e9a7c3b2d4e6f8a0b1c2d3e4f5a6b"


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def of(self, name):
        return [e for e in self.events if e.__class__.__name__ == name]


# ----------------- Fakes for node processes -----------------

class FakeHandle:
    """
    Plays back scripted output lines, then either exits (END_OF_STREAM)
    or goes quiet until terminated.
    """

    def __init__(self, spec, lines, exits=False):
        self.spec = spec
        self.pid = 1000 + spec.index
        self.returncode = None
        self.state = "running"
        self.released = False
        self.terminated = False
        self._lines = list(lines)
        self._exits = exits

    def next_line(self, timeout):
        if self._lines:
            return self._lines.pop(0)
        if self._exits:
            self.returncode = 101
            return END_OF_STREAM
        time.sleep(timeout)
        return None

    def mark_ready(self): self.state = "ready"
    def mark_failed(self): self.state = "failed"
    def release(self): self.released = True

    def terminate(self, grace=5.0):
        self.terminated = True
        self.state = "terminated"


class FakeSpawner:
    """
    Behaviour per node index:
      "ready"   - announces 127.0.0.1:<12000+index> (and the key for genesis)
      "hang"    - prints something unrelated and never becomes ready
      "die"     - exits before announcing anything
      "spawn"   - the executable cannot be started
      [lines]   - exact output, then stays quiet
    ``on_spawn`` is called with each spec before the handle is returned.
    """

    def __init__(self, behaviours=None, on_spawn=None):
        self.behaviours = behaviours or {}
        self.on_spawn = on_spawn
        self.specs = []
        self.times = []
        self.handles = {}

    def __call__(self, spec):
        self.specs.append(spec)
        self.times.append(time.monotonic())
        if self.on_spawn:
            self.on_spawn(spec)

        b = self.behaviours.get(spec.index, "ready")
        if b == "spawn":
            raise SpawnError(spec.index, f"failed to start '{spec.executable}': No such file or directory")
        if b == "ready":
            lines = [f"Node connection info: 127.0.0.1:{12000 + spec.index}"]
            if spec.role == NodeRole.GENESIS:
                lines.append(f"Genesis network key: PublicKey({KEY})")
            h = FakeHandle(spec, lines)
        elif b == "hang":
            h = FakeHandle(spec, ["starting..."])
        elif b == "die":
            h = FakeHandle(spec, ["thread 'main' panicked"], exits=True)
        else:
            h = FakeHandle(spec, b)
        self.handles[spec.index] = h
        return h

    @property
    def indices(self):
        return [s.index for s in self.specs]


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def spawner_factory():
    return FakeSpawner
