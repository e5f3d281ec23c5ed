# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/remote/models.py

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

# Connection constants for slow cloud-init hosts.
DEFAULT_SSH_PORT = 22
DEFAULT_USERNAME = "ubuntu"
DEFAULT_CONNECT_TIMEOUT = 60.0
DEFAULT_KEEPALIVE_INTERVAL = 10
DEFAULT_COMMAND_TIMEOUT = 300.0


@dataclass(frozen=True)
class Credential:
    """
    How to authenticate against one host.

    Exactly one source is used. When several are given the priority is
    key_material > key_path > password.
    """
    key_material: Optional[str] = field(default=None, repr=False)
    key_path: Optional[Path] = None
    password: Optional[str] = field(default=None, repr=False)
    passphrase: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        if not (self.key_material or self.key_path or self.password):
            raise ValueError("credential needs key material, a key path or a password")

    @property
    def kind(self) -> str:
        if self.key_material:
            return "key"
        if self.key_path:
            return "key_path"
        return "password"

    def __repr__(self) -> str:
        # Only the source kind and the (non-secret) key path are shown.
        if self.kind == "key_path":
            return f"Credential(kind=key_path, key_path={str(self.key_path)!r})"
        return f"Credential(kind={self.kind})"


@dataclass(frozen=True)
class ConnectionSettings:
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    keepalive_interval: int = DEFAULT_KEEPALIVE_INTERVAL
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    default_username: str = DEFAULT_USERNAME


@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome of one remote operation.

    failure tags why an unsuccessful result failed:
      exit | timeout | transport | auth | connect | upload | closed | cancelled | skipped
    """
    success: bool
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    message: str = ""
    failure: Optional[str] = None
    attempts: int = 1

    @classmethod
    def ok(cls, stdout: str = "", stderr: str = "", message: str = "ok") -> "ExecutionResult":
        return cls(success=True, exit_code=0, stdout=stdout, stderr=stderr, message=message)

    @classmethod
    def failed(
        cls,
        message: str,
        *,
        failure: str,
        exit_code: int = -1,
        stdout: str = "",
        stderr: str = "",
        attempts: int = 1,
    ) -> "ExecutionResult":
        return cls(
            success=False,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            message=message,
            failure=failure,
            attempts=attempts,
        )

    @property
    def timed_out(self) -> bool:
        return self.failure == "timeout"

    def with_attempts(self, attempts: int) -> "ExecutionResult":
        return replace(self, attempts=attempts)

    def raise_for_status(self) -> "ExecutionResult":
        if not self.success:
            from .errors import RemoteCommandError
            raise RemoteCommandError(self)
        return self


@dataclass(frozen=True)
class OutputChunk:
    stream: str        # "stdout" | "stderr"
    data: str


@dataclass(frozen=True)
class StreamEnd:
    """Terminates an output stream; always the last item yielded."""
    result: ExecutionResult
