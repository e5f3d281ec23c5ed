# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single bootstrap invocation
    env: str          # free-form environment label (dev/staging/prod)
    context: Optional[str]  # cluster name

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(env: str, context: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": now_ts(),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "context": context,
    }


# ---------------------------------------------------------------------
# Bootstrap lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootstrapStarted(BaseEvent):
    primary: str
    hosts: List[str]

@dataclass(frozen=True)
class StateChanged(BaseEvent):
    previous: str
    current: str

@dataclass(frozen=True)
class BootstrapWarning(BaseEvent):
    kind: str
    message: str

@dataclass(frozen=True)
class BootstrapAborted(BaseEvent):
    phase: str
    error: str

@dataclass(frozen=True)
class BootstrapSummary(BaseEvent):
    state: str
    success: bool
    warnings: int


# ---------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PhaseStarted(BaseEvent):
    phase: str
    hosts: List[str]

@dataclass(frozen=True)
class PhaseCompleted(BaseEvent):
    phase: str
    succeeded: List[str]
    failed: List[str]


# ---------------------------------------------------------------------
# Per-host remote operations
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HostOperationAttempt(BaseEvent):
    phase: str
    host: str
    operation: str
    attempt: int
    success: bool
    message: str

@dataclass(frozen=True)
class HostOperationFinished(BaseEvent):
    phase: str
    host: str
    address: str
    operation: str
    command: Optional[str]
    success: bool
    attempts: int
    message: str
    stdout: str = ""
    stderr: str = ""
    sensitive: bool = False     # output withheld from persistent sinks
