# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/bootstrap/orchestrator.py

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from kubestrap.k8s.client import NodeLister
from kubestrap.observers.dispatcher import EventBus
from kubestrap.observers.events import (
    new_ctx,
    now_ts,
    BootstrapStarted,
    StateChanged,
    BootstrapWarning,
    BootstrapAborted,
    BootstrapSummary,
    PhaseStarted,
    PhaseCompleted,
    HostOperationAttempt,
    HostOperationFinished,
)
from kubestrap.remote.deployer import Script, ScriptDeployer
from kubestrap.remote.errors import TransportError, UploadError
from kubestrap.remote.models import ExecutionResult
from kubestrap.remote.session import RemoteSession, script_command
from kubestrap.utils.retry import RetryExecutor, RetryPolicy

from .commands import (
    CREATE_TOKEN_COMMAND,
    INIT_COMMAND,
    INIT_CONFIG_PATH,
    UPLOAD_CERTS_COMMAND,
    control_plane_join_command,
    fetch_admin_credentials,
    parse_certificate_key,
    parse_join_command,
    redact_join_secrets,
    rewrite_join_command,
)
from .errors import (
    BootstrapCancelled,
    InitializationFailed,
    InvalidTopologyError,
    JoinFailed,
    PartialSuccessWarning,
    PreparationFailed,
    TokenExtractionDegraded,
    VerificationMismatch,
    VerificationUnavailable,
)
from .models import (
    BootstrapReport,
    BootstrapState,
    HostDescriptor,
    JoinArtifacts,
    PhaseOutcome,
    Role,
    check_transition,
    InvalidStateTransition,
)

log = logging.getLogger("kubestrap")

PREPARATION = "preparation"
INITIALIZATION = "initialization"
JOIN = "join"
VERIFICATION = "verification"

CONTROL_PLANE_GROUP = "control-plane"
WORKER_GROUP = "worker"


def validate_hosts(
    hosts: Sequence[HostDescriptor],
) -> Tuple[HostDescriptor, List[HostDescriptor], List[HostDescriptor]]:
    """Split hosts into (primary, additional control planes, workers)."""
    if not hosts:
        raise InvalidTopologyError("no hosts given")

    names = [h.name for h in hosts]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise InvalidTopologyError(f"duplicate host names: {', '.join(dupes)}")

    primaries = [h for h in hosts if h.role is Role.PRIMARY]
    if len(primaries) != 1:
        found = ", ".join(h.name for h in primaries) or "none"
        raise InvalidTopologyError(f"exactly one primary host is required, found {len(primaries)} ({found})")

    control_planes = [h for h in hosts if h.role is Role.CONTROL_PLANE]
    workers = [h for h in hosts if h.role is Role.WORKER]
    return primaries[0], control_planes, workers


class ClusterBootstrapOrchestrator:
    """
    Drives hosts through Preparation -> Initialization -> Join -> Verification.

    Phases are barriers: every host task in a phase settles before the
    next phase starts. Only a failed Preparation or a failed init command
    aborts the run; everything after init degrades into warnings.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[HostDescriptor], RemoteSession],
        node_lister: NodeLister,
        setup_script: Script,
        init_config: str,
        setup_args: Sequence[str] = (),
        policy: Optional[RetryPolicy] = None,
        max_workers: int = 16,
        settle_delay: float = 30.0,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.session_factory = session_factory
        self.node_lister = node_lister
        self.setup_script = setup_script
        self.setup_args = tuple(setup_args)
        self.init_config = init_config
        self.policy = policy or RetryPolicy()
        self.max_workers = max_workers
        self.settle_delay = settle_delay
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(env="default", context=None)
        self._sleep = sleep
        self.deployer = ScriptDeployer(self.policy, sleep=sleep)

    # ------------------ helpers ------------------

    def _ctx(self) -> dict:
        return {**self.run_ctx, "ts": now_ts()}

    def _advance(self, report: BootstrapReport, target: BootstrapState) -> None:
        check_transition(report.state, target)
        previous, report.state = report.state, target
        log.debug("state %s -> %s", previous.value, target.value)
        self.bus.emit(StateChanged(previous=previous.value, current=target.value, **self._ctx()))

    def _warn(self, report: BootstrapReport, warning: PartialSuccessWarning) -> None:
        log.warning("%s: %s", type(warning).__name__, warning)
        report.warnings.append(warning)
        self.bus.emit(BootstrapWarning(kind=type(warning).__name__, message=str(warning), **self._ctx()))

    def _abort(self, report: BootstrapReport, phase: str, error: Exception) -> BootstrapReport:
        log.error("[%s] aborting bootstrap: %s", phase, error)
        report.error = error
        self._advance(report, BootstrapState.FAILED)
        self.bus.emit(BootstrapAborted(phase=phase, error=str(error), **self._ctx()))
        return report

    def _check_cancel(self, report: BootstrapReport, phase: str, cancel: Optional[threading.Event]) -> None:
        if cancel is None or not cancel.is_set():
            return
        error = BootstrapCancelled(f"bootstrap cancelled during {phase}")
        if report.state in (BootstrapState.PREPARING, BootstrapState.INITIALIZING):
            report.error = error
            self._advance(report, BootstrapState.FAILED)
        self.bus.emit(BootstrapAborted(phase=phase, error=str(error), **self._ctx()))
        raise error

    def _wait(self, seconds: float, cancel: Optional[threading.Event]) -> None:
        if seconds <= 0:
            return
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            time.sleep(seconds)

    def _attempt_hook(self, phase: str, host: HostDescriptor, operation: str):
        def _hook(attempt: int, result: ExecutionResult) -> None:
            self.bus.emit(HostOperationAttempt(
                phase=phase, host=host.name, operation=operation, attempt=attempt,
                success=result.success, message=redact_join_secrets(result.message), **self._ctx(),
            ))
        return _hook

    def _finished(
        self,
        phase: str,
        host: HostDescriptor,
        operation: str,
        command: Optional[str],
        result: ExecutionResult,
        *,
        sensitive: bool = False,
    ) -> ExecutionResult:
        if result.success:
            log.info("[%s] %s: %s ok (attempts=%d)", phase, host.name, operation, result.attempts)
        else:
            log.warning("[%s] %s: %s failed: %s", phase, host.name, operation, redact_join_secrets(result.message))
        self.bus.emit(HostOperationFinished(
            phase=phase,
            host=host.name,
            address=host.address,
            operation=operation,
            command=command,
            success=result.success,
            attempts=result.attempts,
            message=redact_join_secrets(result.message),
            stdout="" if sensitive else redact_join_secrets(result.stdout),
            stderr="" if sensitive else redact_join_secrets(result.stderr),
            sensitive=sensitive,
            **self._ctx(),
        ))
        return result

    def _fan_out(
        self,
        phase: str,
        tasks: Dict[str, Callable[[], ExecutionResult]],
        cancel: Optional[threading.Event] = None,
    ) -> PhaseOutcome:
        """Run one task per host and wait for all of them (phase barrier)."""
        outcome = PhaseOutcome(phase=phase)
        if not tasks:
            return outcome

        self.bus.emit(PhaseStarted(phase=phase, hosts=list(tasks), **self._ctx()))
        settled: Dict[str, ExecutionResult] = {}
        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(tasks)),
            thread_name_prefix=f"kubestrap-{phase}",
        ) as executor:
            future_to_host = {executor.submit(fn): name for name, fn in tasks.items()}
            for future in as_completed(future_to_host):
                name = future_to_host[future]
                if cancel is not None and cancel.is_set():
                    for pending in future_to_host:
                        pending.cancel()
                if future.cancelled():
                    settled[name] = ExecutionResult.failed(
                        f"{phase} cancelled before {name} started", failure="cancelled", attempts=0,
                    )
                    continue
                try:
                    settled[name] = future.result()
                except Exception as exc:
                    settled[name] = ExecutionResult.failed(
                        f"{type(exc).__name__}: {exc}", failure="transport",
                    )
                    log.error("[%s] %s: unexpected error: %s", phase, name, exc)

        # disjoint slots, reported in input order
        outcome.results = {name: settled[name] for name in tasks}
        self.bus.emit(PhaseCompleted(
            phase=phase,
            succeeded=[n for n, r in outcome.results.items() if r.success],
            failed=outcome.failed_hosts,
            **self._ctx(),
        ))
        return outcome

    # ------------------ public API ------------------

    def run(self, hosts: Sequence[HostDescriptor], cancel: Optional[threading.Event] = None) -> BootstrapReport:
        primary, control_planes, workers = validate_hosts(hosts)
        report = BootstrapReport()

        self.bus.emit(BootstrapStarted(primary=primary.name, hosts=[h.name for h in hosts], **self._ctx()))
        log.info(
            "bootstrapping %d host(s): primary=%s control-plane=%d worker=%d",
            len(hosts), primary.name, len(control_planes), len(workers),
        )

        try:
            # 1) Preparation
            self._advance(report, BootstrapState.PREPARING)
            prep = self.prepare(hosts, cancel)
            report.phases[PREPARATION] = prep
            self._check_cancel(report, PREPARATION, cancel)
            if not prep.succeeded:
                return self._abort(report, PREPARATION, PreparationFailed(
                    {name: prep.results[name].message for name in prep.failed_hosts}
                ))

            # 2) Initialization
            self._advance(report, BootstrapState.INITIALIZING)
            try:
                init_outcome, artifacts, warnings = self.initialize(primary, cancel)
            except InitializationFailed as exc:
                self._check_cancel(report, INITIALIZATION, cancel)
                report.phases[INITIALIZATION] = PhaseOutcome(
                    phase=INITIALIZATION,
                    results={primary.name: ExecutionResult.failed(exc.error, failure=exc.failure)},
                )
                return self._abort(report, INITIALIZATION, exc)
            report.phases[INITIALIZATION] = init_outcome
            self._check_cancel(report, INITIALIZATION, cancel)
            report.artifacts = artifacts
            for w in warnings:
                self._warn(report, w)
            self._advance(report, BootstrapState.TOKENS_EXTRACTED)

            # 3) Join
            self._advance(report, BootstrapState.JOINING)
            join_outcome, join_warnings = self.join(report, control_planes, workers, cancel)
            report.phases[JOIN] = join_outcome
            for w in join_warnings:
                self._warn(report, w)
            self._check_cancel(report, JOIN, cancel)

            # 4) Verification
            self._advance(report, BootstrapState.VERIFYING)
            self.verify(report, expected=len(hosts), cancel=cancel)
            self._advance(report, BootstrapState.COMPLETE)
            return report
        finally:
            self.bus.emit(BootstrapSummary(
                state=report.state.value,
                success=report.success,
                warnings=len(report.warnings),
                **self._ctx(),
            ))

    # ------------------ phase 1: preparation ------------------

    def _prepare_host(self, host: HostDescriptor, cancel: Optional[threading.Event]) -> ExecutionResult:
        result = self.deployer.deploy_with_retry(
            self.session_factory,
            host,
            self.setup_script,
            self.setup_args,
            on_attempt=self._attempt_hook(PREPARATION, host, "setup"),
            cancel=cancel,
        )
        command = script_command(self.setup_script.name, self.setup_args)
        return self._finished(PREPARATION, host, "setup", command, result)

    def prepare(self, hosts: Sequence[HostDescriptor], cancel: Optional[threading.Event] = None) -> PhaseOutcome:
        log.info("[%s] running %s on %d host(s)", PREPARATION, self.setup_script.name, len(hosts))
        return self._fan_out(
            PREPARATION,
            {h.name: (lambda h=h: self._prepare_host(h, cancel)) for h in hosts},
            cancel,
        )

    # ------------------ phase 2: initialization ------------------

    def initialize(
        self,
        primary: HostDescriptor,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[PhaseOutcome, JoinArtifacts, List[PartialSuccessWarning]]:
        """
        Run init and extract join artifacts on the primary over one session.

        Raises InitializationFailed when the init command (or the connection
        and upload it needs) fails. Later failures only add warnings.
        """
        log.info("[%s] initializing cluster on %s", INITIALIZATION, primary.name)
        self.bus.emit(PhaseStarted(phase=INITIALIZATION, hosts=[primary.name], **self._ctx()))

        timeout = self.policy.attempt_timeout
        warnings: List[PartialSuccessWarning] = []
        session = self.session_factory(primary)
        try:
            try:
                session.connect()
                session.put_text(self.init_config, INIT_CONFIG_PATH, mode=0o600)
            except (TransportError, UploadError) as exc:
                kind = exc.kind if isinstance(exc, TransportError) else "upload"
                raise InitializationFailed(primary.name, str(exc), kind) from exc

            init = session.exec(INIT_COMMAND, timeout=timeout, cancel=cancel)
            self._finished(INITIALIZATION, primary, "kubeadm-init", INIT_COMMAND, init)
            if not init.success:
                detail = redact_join_secrets(init.stderr.strip()[-500:])
                raise InitializationFailed(
                    primary.name, f"{init.message}: {detail}" if detail else init.message, init.failure or "exit",
                )

            creds = fetch_admin_credentials(session, timeout)
            self._finished(INITIALIZATION, primary, "fetch-admin-credentials", None, creds, sensitive=True)
            admin = creds.stdout if creds.success and creds.stdout.strip() else None
            if admin is None:
                reason = creds.message if not creds.success else "admin.conf was empty"
                warnings.append(TokenExtractionDegraded(primary.name, f"admin credentials unavailable: {reason}"))

            token = session.exec(CREATE_TOKEN_COMMAND, timeout=timeout, cancel=cancel, display="kubeadm token create")
            self._finished(INITIALIZATION, primary, "create-join-token", None, token, sensitive=True)
            worker_cmd = parse_join_command(token.stdout) if token.success else None
            if worker_cmd is None:
                reason = token.message if not token.success else "no join command in output"
                warnings.append(TokenExtractionDegraded(
                    primary.name, f"join token unavailable, worker and control-plane joins will be skipped: {reason}",
                ))

            control_plane_cmd = None
            if worker_cmd is not None:
                certs = session.exec(UPLOAD_CERTS_COMMAND, timeout=timeout, cancel=cancel)
                self._finished(INITIALIZATION, primary, "upload-certs", None, certs, sensitive=True)
                key = parse_certificate_key(certs.stdout) if certs.success else None
                if key:
                    control_plane_cmd = control_plane_join_command(worker_cmd, key)
                else:
                    reason = certs.message if not certs.success else "no certificate key in output"
                    warnings.append(TokenExtractionDegraded(
                        primary.name,
                        f"join token obtained but control-plane join command unavailable: {reason}",
                    ))
        finally:
            session.close()

        outcome = PhaseOutcome(phase=INITIALIZATION, results={primary.name: init})
        self.bus.emit(PhaseCompleted(phase=INITIALIZATION, succeeded=[primary.name], failed=[], **self._ctx()))
        artifacts = JoinArtifacts(
            worker_join_command=worker_cmd,
            control_plane_join_command=control_plane_cmd,
            admin_credentials=admin,
        )
        return outcome, artifacts, warnings

    # ------------------ phase 3: join ------------------

    def _join_host(
        self,
        host: HostDescriptor,
        group: str,
        command: Optional[str],
        cancel: Optional[threading.Event],
    ) -> ExecutionResult:
        operation = f"join-{group}"
        if command is None:
            result = ExecutionResult.failed(
                f"skipped: no {group} join command was extracted from the primary",
                failure="skipped",
            )
            return self._finished(JOIN, host, operation, None, result)

        rewritten = rewrite_join_command(command)
        display = f"kubeadm join ({group})"

        def _once() -> ExecutionResult:
            with self.session_factory(host) as session:
                return session.exec(
                    rewritten,
                    timeout=self.policy.attempt_timeout,
                    cancel=cancel,
                    display=display,
                )

        executor = RetryExecutor(
            self.policy,
            label=f"join {host.name}",
            sleep=self._sleep,
            on_attempt=self._attempt_hook(JOIN, host, operation),
        )
        return self._finished(JOIN, host, operation, display, executor.run(_once, cancel=cancel))

    def join(
        self,
        report: BootstrapReport,
        control_planes: Sequence[HostDescriptor],
        workers: Sequence[HostDescriptor],
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[PhaseOutcome, List[PartialSuccessWarning]]:
        """
        Join both groups concurrently. A failure in one host or group never
        stops the others.
        """
        if report.state is not BootstrapState.JOINING:
            raise InvalidStateTransition(f"join artifacts read in state {report.state.value}")
        artifacts = report.artifacts

        groups = {h.name: CONTROL_PLANE_GROUP for h in control_planes}
        groups.update({h.name: WORKER_GROUP for h in workers})
        log.info(
            "[%s] joining %d control-plane and %d worker host(s)",
            JOIN, len(control_planes), len(workers),
        )

        tasks: Dict[str, Callable[[], ExecutionResult]] = {}
        for h in control_planes:
            tasks[h.name] = (lambda h=h: self._join_host(
                h, CONTROL_PLANE_GROUP, artifacts.control_plane_join_command, cancel))
        for h in workers:
            tasks[h.name] = (lambda h=h: self._join_host(
                h, WORKER_GROUP, artifacts.worker_join_command, cancel))

        outcome = self._fan_out(JOIN, tasks, cancel)

        warnings: List[PartialSuccessWarning] = []
        for group in (CONTROL_PLANE_GROUP, WORKER_GROUP):
            failures = {
                name: r.message for name, r in outcome.results.items()
                if groups[name] == group and not r.success
            }
            if failures:
                warnings.append(JoinFailed(group, failures))
        return outcome, warnings

    # ------------------ phase 4: verification ------------------

    def verify(self, report: BootstrapReport, expected: int, cancel: Optional[threading.Event] = None) -> None:
        """Compare cluster membership to the expected node count. Never fatal."""
        log.info("[%s] waiting %gs for nodes to settle", VERIFICATION, self.settle_delay)
        self._wait(self.settle_delay, cancel)
        self._check_cancel(report, VERIFICATION, cancel)

        admin = report.artifacts.admin_credentials
        if admin is None:
            self._warn(report, VerificationUnavailable("admin credentials were not extracted"))
            return

        try:
            nodes = self.node_lister.list_nodes(admin)
        except Exception as exc:
            self._warn(report, VerificationUnavailable(f"{type(exc).__name__}: {exc}"))
            return

        report.nodes = list(nodes)
        log.info("[%s] cluster reports %d/%d node(s)", VERIFICATION, len(nodes), expected)
        if len(nodes) != expected:
            self._warn(report, VerificationMismatch(expected, len(nodes)))
