# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/utils/retry.py

from __future__ import annotations

import functools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from kubestrap.remote.errors import SessionClosedError, TransportError
from kubestrap.remote.models import ExecutionResult

log = logging.getLogger("kubestrap")


class RetryError(RuntimeError):
    pass


def retry(
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
):
    """
    Retry decorator for idempotent operations that raise on failure.

    retries: number of attempts
    delay: seconds between attempts
    retry_on: exception types to retry
    on_retry: callback(attempt, exception)
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            last_exc = None
            for attempt in range(1, retries + 1):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    last_exc = exc
                    if on_retry:
                        on_retry(attempt, exc)
                    if attempt == retries:
                        break
                    time.sleep(delay)
            raise RetryError(f"{fn.__name__} failed after {retries} retries") from last_exc
        return wrapper
    return decorator


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    attempt_timeout: float = 300.0
    delay: float = 2.0
    # False stops at the first authentication failure instead of spending
    # the remaining attempts on it.
    retry_on_auth_failure: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay < 0 or self.attempt_timeout <= 0:
            raise ValueError("delay must be >= 0 and attempt_timeout > 0")


class RetryExecutor:
    """
    Runs a zero-argument operation producing an ExecutionResult until it
    succeeds or the policy's attempts are spent.

    Every attempt re-runs the whole operation, so operations must be safe
    to repeat from scratch.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        label: str = "operation",
        sleep: Optional[Callable[[float], None]] = None,
        on_attempt: Optional[Callable[[int, ExecutionResult], None]] = None,
    ):
        self.policy = policy or RetryPolicy()
        self.label = label
        self._sleep = sleep
        self._on_attempt = on_attempt

    def _wait(self, cancel: Optional[threading.Event]) -> None:
        if self._sleep is not None:
            self._sleep(self.policy.delay)
        elif cancel is not None:
            cancel.wait(self.policy.delay)
        else:
            time.sleep(self.policy.delay)

    def _attempt(self, operation: Callable[[], ExecutionResult]) -> ExecutionResult:
        try:
            return operation()
        except SessionClosedError:
            raise
        except TransportError as exc:
            return ExecutionResult.failed(str(exc), failure=exc.kind)
        except Exception as exc:
            return ExecutionResult.failed(f"{type(exc).__name__}: {exc}", failure="transport")

    def run(
        self,
        operation: Callable[[], ExecutionResult],
        cancel: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        policy = self.policy
        last: Optional[ExecutionResult] = None

        for attempt in range(1, policy.max_attempts + 1):
            if cancel is not None and cancel.is_set():
                return ExecutionResult.failed(
                    f"{self.label} cancelled before attempt {attempt}",
                    failure="cancelled",
                    attempts=attempt - 1,
                )

            result = self._attempt(operation)
            if self._on_attempt:
                self._on_attempt(attempt, result)

            if result.success:
                return result.with_attempts(attempt)

            last = result
            if result.failure == "cancelled":
                return result.with_attempts(attempt)
            if result.failure == "auth" and not policy.retry_on_auth_failure:
                log.warning("[%s] authentication rejected, not retrying: %s", self.label, result.message)
                return result.with_attempts(attempt)

            if attempt < policy.max_attempts:
                log.warning(
                    "[%s] attempt %d/%d failed: %s; retrying in %gs",
                    self.label, attempt, policy.max_attempts, result.message, policy.delay,
                )
                self._wait(cancel)

        return ExecutionResult.failed(
            f"{self.label} failed after {policy.max_attempts} attempts: {last.message}",
            failure=last.failure or "exit",
            exit_code=last.exit_code,
            stdout=last.stdout,
            stderr=last.stderr,
            attempts=policy.max_attempts,
        )
