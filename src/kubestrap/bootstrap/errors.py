# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/bootstrap/errors.py
from __future__ import annotations

from typing import Dict, List


class BootstrapError(RuntimeError):
    """Base class for bootstrap failures."""


class InvalidTopologyError(BootstrapError, ValueError):
    """Raised before any remote call when the host list is unusable."""


class BootstrapCancelled(BootstrapError):
    """Raised when the caller's cancel event is set mid-run."""


class PhaseAbortError(BootstrapError):
    """Fatal: halts the pipeline."""


class PreparationFailed(PhaseAbortError):
    def __init__(self, failures: Dict[str, str]):
        self.failures = dict(failures)
        detail = "; ".join(f"{h}: {m}" for h, m in self.failures.items())
        super().__init__(f"preparation failed on {len(self.failures)} host(s): {detail}")

    @property
    def hosts(self) -> List[str]:
        return list(self.failures)


class InitializationFailed(PhaseAbortError):
    def __init__(self, host: str, error: str, failure: str = "exit"):
        self.host = host
        self.error = error
        # failure tag of the step that broke (connect, upload, timeout, ...)
        self.failure = failure
        super().__init__(f"initialization failed on {host}: {error}")


class PartialSuccessWarning:
    """Non-fatal: the phase is less complete but the pipeline continues."""

    def __init__(self, message: str):
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class TokenExtractionDegraded(PartialSuccessWarning):
    def __init__(self, host: str, warning: str):
        self.host = host
        self.warning = warning
        super().__init__(f"{host}: {warning}")


class JoinFailed(PartialSuccessWarning):
    def __init__(self, group: str, failures: Dict[str, str]):
        self.group = group
        self.failures = dict(failures)
        detail = "; ".join(f"{h}: {m}" for h, m in self.failures.items())
        super().__init__(f"{group} join failed on {len(self.failures)} host(s): {detail}")

    @property
    def hosts(self) -> List[str]:
        return list(self.failures)


class VerificationMismatch(PartialSuccessWarning):
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"expected {expected} nodes, cluster reports {actual}")


class VerificationUnavailable(PartialSuccessWarning):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"cluster membership not verified: {reason}")
