# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/observers/dispatcher.py
from __future__ import annotations
import threading
from typing import List
from .events import BaseEvent

class EventBus:
    def __init__(self, observers: List = None):
        self._observers = observers or []
        # host tasks emit from worker threads
        self._lock = threading.Lock()

    def emit(self, event: BaseEvent) -> None:
        with self._lock:
            for ob in self._observers:
                try:
                    ob.notify(event)
                except Exception:
                    pass  # observers must not break a bootstrap
