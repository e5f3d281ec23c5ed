# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/bootstrap/models.py

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from kubestrap.remote.models import Credential, ExecutionResult


class Role(str, Enum):
    PRIMARY = "primary"
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


@dataclass(frozen=True)
class HostDescriptor:
    """
    A freshly provisioned server to drive through the bootstrap.
    """
    name: str                     # unique key for per-host results
    address: str                  # IP or DNS to SSH into
    role: Role
    credential: Credential
    port: int = 22
    username: Optional[str] = None   # falls back to ConnectionSettings.default_username


@dataclass(frozen=True)
class JoinArtifacts:
    worker_join_command: Optional[str] = field(default=None, repr=False)
    control_plane_join_command: Optional[str] = field(default=None, repr=False)
    admin_credentials: Optional[str] = field(default=None, repr=False)

    def redacted(self) -> Dict[str, bool]:
        return {
            "worker_join_command": self.worker_join_command is not None,
            "control_plane_join_command": self.control_plane_join_command is not None,
            "admin_credentials": self.admin_credentials is not None,
        }

    def __repr__(self) -> str:
        present = ", ".join(k for k, v in self.redacted().items() if v) or "none"
        return f"JoinArtifacts(present={present})"


class BootstrapState(str, Enum):
    NOT_STARTED = "NotStarted"
    PREPARING = "Preparing"
    INITIALIZING = "Initializing"
    TOKENS_EXTRACTED = "TokensExtracted"
    JOINING = "Joining"
    VERIFYING = "Verifying"
    COMPLETE = "Complete"
    FAILED = "Failed"


_FORWARD = [
    BootstrapState.NOT_STARTED,
    BootstrapState.PREPARING,
    BootstrapState.INITIALIZING,
    BootstrapState.TOKENS_EXTRACTED,
    BootstrapState.JOINING,
    BootstrapState.VERIFYING,
    BootstrapState.COMPLETE,
]


class InvalidStateTransition(RuntimeError):
    pass


def check_transition(current: BootstrapState, target: BootstrapState) -> None:
    """States only move one step forward, or into Failed from Preparing/Initializing."""
    if target is BootstrapState.FAILED:
        if current in (BootstrapState.PREPARING, BootstrapState.INITIALIZING):
            return
    elif current in _FORWARD and _FORWARD.index(target) == _FORWARD.index(current) + 1:
        return
    raise InvalidStateTransition(f"{current.value} -> {target.value}")


@dataclass
class PhaseOutcome:
    phase: str
    results: Dict[str, ExecutionResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return all(r.success for r in self.results.values())

    @property
    def failed_hosts(self) -> List[str]:
        return [name for name, r in self.results.items() if not r.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "succeeded": self.succeeded,
            "hosts": {
                name: {
                    "success": r.success,
                    "exit_code": r.exit_code,
                    "failure": r.failure,
                    "attempts": r.attempts,
                    "message": r.message,
                }
                for name, r in self.results.items()
            },
        }


@dataclass(frozen=True)
class NodeStatus:
    name: str
    status: str               # Ready | NotReady
    roles: List[str]
    version: str
    internal_ip: str

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BootstrapReport:
    state: BootstrapState = BootstrapState.NOT_STARTED
    artifacts: JoinArtifacts = field(default_factory=JoinArtifacts)
    phases: Dict[str, PhaseOutcome] = field(default_factory=dict)
    warnings: List[Any] = field(default_factory=list)     # PartialSuccessWarning instances
    error: Optional[Exception] = None                      # PhaseAbortError when aborted
    nodes: List[NodeStatus] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state is BootstrapState.COMPLETE

    def warnings_of(self, kind: type) -> List[Any]:
        return [w for w in self.warnings if isinstance(w, kind)]

    def raise_for_error(self) -> "BootstrapReport":
        if self.error is not None:
            raise self.error
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "success": self.success,
            "artifacts": self.artifacts.redacted(),
            "phases": {name: p.to_dict() for name, p in self.phases.items()},
            "warnings": [{"type": type(w).__name__, "message": str(w)} for w in self.warnings],
            "error": None if self.error is None else {"type": type(self.error).__name__, "message": str(self.error)},
            "nodes": [n.dict() for n in self.nodes],
        }
