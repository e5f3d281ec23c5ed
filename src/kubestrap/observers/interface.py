# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/observers/interface.py
from __future__ import annotations
from typing import Protocol
from .events import BaseEvent


class Observer(Protocol):
    """
    Receives every bootstrap event.

    notify() runs on host worker threads, one call at a time (the bus
    serializes them). Events flagged sensitive carry no command output and
    must not be enriched with any.
    """

    def notify(self, event: BaseEvent) -> None: ...
