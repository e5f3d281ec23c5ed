# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/observers/console.py
from .events import BaseEvent

_HIDDEN = ('ts', 'run_id', 'env', 'context', 'stdout', 'stderr', 'sensitive')

class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        print(f"[{d['ts']}] {k} run={d['run_id']} ctx={d['context']} data={{"
              + ", ".join(f"{x}={y}" for x,y in d.items() if x not in _HIDDEN) + "}}")
