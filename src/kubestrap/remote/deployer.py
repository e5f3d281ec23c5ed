# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/remote/deployer.py

from __future__ import annotations

import itertools
import logging
import posixpath
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from kubestrap.utils.retry import RetryExecutor, RetryPolicy

from .models import ExecutionResult, OutputChunk
from .session import RemoteSession

log = logging.getLogger("kubestrap")

# unique suffix for concurrent runs of the same script on one host
_counter = itertools.count(1)


@dataclass(frozen=True)
class Script:
    name: str
    body: str = field(repr=False)

    @classmethod
    def from_path(cls, path: str | Path) -> "Script":
        path = Path(path)
        return cls(name=path.name, body=path.read_text(encoding="utf-8"))


class ScriptDeployer:
    """
    Uploads a script to a collision-free temp path, runs it and removes it.

    Upload and execution are one logical operation so a RetryExecutor can
    repeat them together.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        temp_dir: str = "/tmp",
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.policy = policy or RetryPolicy()
        self.temp_dir = temp_dir
        self._sleep = sleep

    def remote_path(self, script: Script) -> str:
        base = posixpath.basename(script.name)
        if base.endswith(".sh"):
            base = base[:-3]
        return posixpath.join(self.temp_dir, f"{base}.{time.time_ns()}.{next(_counter)}.sh")

    def deploy(
        self,
        session: RemoteSession,
        script: Script,
        args: Sequence[str] = (),
        *,
        use_elevated: bool = True,
        on_output: Optional[Callable[[OutputChunk], None]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        remote_path = self.remote_path(script)
        log.debug("[%s] running %s as %s", session.address, script.name, remote_path)
        return session.deliver_and_run(
            script.body,
            remote_path,
            mode=0o755,
            use_elevated=use_elevated,
            args=args,
            timeout=self.policy.attempt_timeout,
            on_output=on_output,
            cancel=cancel,
        )

    def deploy_with_retry(
        self,
        session_factory: Callable[[object], RemoteSession],
        host,
        script: Script,
        args: Sequence[str] = (),
        *,
        use_elevated: bool = True,
        on_output: Optional[Callable[[OutputChunk], None]] = None,
        on_attempt: Optional[Callable[[int, ExecutionResult], None]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        """Connect, upload and run; every attempt uses a fresh connection."""

        def _once() -> ExecutionResult:
            with session_factory(host) as session:
                return self.deploy(
                    session, script, args,
                    use_elevated=use_elevated, on_output=on_output, cancel=cancel,
                )

        executor = RetryExecutor(
            self.policy,
            label=f"{script.name} on {host.name}",
            sleep=self._sleep,
            on_attempt=on_attempt,
        )
        return executor.run(_once, cancel=cancel)
