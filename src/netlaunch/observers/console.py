# src/netlaunch/observers/console.py
from .events import BaseEvent

_CTX_FIELDS = ("ts", "run_id", "mode", "nodes_dir")


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        print(f"[{d['ts']}] {k} mode={d['mode']} data={{"
              + ", ".join(f"{x}={y}" for x, y in d.items() if x not in _CTX_FIELDS) + "}")
