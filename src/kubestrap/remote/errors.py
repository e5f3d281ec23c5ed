# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/remote/errors.py
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ExecutionResult


class RemoteError(RuntimeError):
    """Base class for remote execution failures."""


class TransportError(RemoteError):
    """Raised when a host cannot be reached or rejects authentication.

    kind is one of: auth, connect, stream.
    """

    def __init__(self, kind: str, address: str, detail: str):
        super().__init__(f"{kind} error for {address}: {detail}")
        self.kind = kind
        self.address = address
        self.detail = detail


class SessionClosedError(RemoteError):
    """Raised when a session is used outside its Ready state. Not retryable."""


class UploadError(RemoteError):
    """Raised when content cannot be written to the remote host."""


class RemoteCommandError(RemoteError):
    """Raised by ExecutionResult.raise_for_status() for a failed command."""

    def __init__(self, result: "ExecutionResult"):
        super().__init__(result.message)
        self.result = result
