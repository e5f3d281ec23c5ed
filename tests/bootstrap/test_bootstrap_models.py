# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import json
from pathlib import Path

import pytest

from kubestrap.bootstrap.errors import JoinFailed, PreparationFailed, VerificationMismatch
from kubestrap.bootstrap.models import (
    BootstrapReport,
    BootstrapState as S,
    InvalidStateTransition,
    JoinArtifacts,
    PhaseOutcome,
    check_transition,
)
from kubestrap.remote.errors import RemoteCommandError
from kubestrap.remote.models import Credential, ExecutionResult


@pytest.mark.parametrize("current,target", [
    (S.NOT_STARTED, S.PREPARING),
    (S.PREPARING, S.INITIALIZING),
    (S.INITIALIZING, S.TOKENS_EXTRACTED),
    (S.TOKENS_EXTRACTED, S.JOINING),
    (S.JOINING, S.VERIFYING),
    (S.VERIFYING, S.COMPLETE),
    (S.PREPARING, S.FAILED),
    (S.INITIALIZING, S.FAILED),
])
def test_allowed_transitions(current, target):
    check_transition(current, target)


@pytest.mark.parametrize("current,target", [
    (S.NOT_STARTED, S.INITIALIZING),   # skip
    (S.JOINING, S.TOKENS_EXTRACTED),   # backwards
    (S.JOINING, S.FAILED),             # join failures are not fatal
    (S.VERIFYING, S.FAILED),
    (S.COMPLETE, S.NOT_STARTED),
    (S.FAILED, S.PREPARING),
])
def test_rejected_transitions(current, target):
    with pytest.raises(InvalidStateTransition):
        check_transition(current, target)


def test_join_artifacts_repr_hides_values():
    a = JoinArtifacts(worker_join_command="kubeadm join x --token secret", admin_credentials="conf")
    assert "secret" not in repr(a)
    assert "conf" not in repr(a)
    assert a.redacted() == {
        "worker_join_command": True,
        "control_plane_join_command": False,
        "admin_credentials": True,
    }


def test_credential_requires_a_source_and_masks_secrets():
    with pytest.raises(ValueError):
        Credential()
    assert Credential(password="hunter2").kind == "password"
    assert "hunter2" not in repr(Credential(password="hunter2"))
    assert Credential(key_material="-----BEGIN", password="x").kind == "key"
    assert Credential(key_path=Path("~/.ssh/id_ed25519")).kind == "key_path"


def test_execution_result_raise_for_status():
    ok = ExecutionResult.ok("out")
    assert ok.raise_for_status() is ok
    with pytest.raises(RemoteCommandError) as ei:
        ExecutionResult.failed("exit 2", failure="exit", exit_code=2).raise_for_status()
    assert ei.value.result.exit_code == 2
    assert not ei.value.result.timed_out
    assert ExecutionResult.failed("slow", failure="timeout").timed_out


def test_execution_result_failed_and_attempts():
    res = ExecutionResult.failed("exit 2", failure="exit", exit_code=2)
    assert not res.success
    assert (res.exit_code, res.failure, res.attempts) == (2, "exit", 1)
    assert res.with_attempts(3).attempts == 3
    assert ExecutionResult.ok("out").failure is None


def test_phase_outcome():
    p = PhaseOutcome("join", {
        "a": ExecutionResult.ok(),
        "b": ExecutionResult.failed("nope", failure="exit"),
    })
    assert not p.succeeded
    assert p.failed_hosts == ["b"]
    assert p.to_dict()["hosts"]["b"]["message"] == "nope"
    assert PhaseOutcome("empty").succeeded


def test_report_to_dict_is_json_and_masks_artifacts():
    r = BootstrapReport(
        state=S.COMPLETE,
        artifacts=JoinArtifacts(worker_join_command="kubeadm join --token t0k3n"),
        warnings=[JoinFailed("worker", {"c": "exit 1"}), VerificationMismatch(3, 2)],
    )
    d = json.loads(json.dumps(r.to_dict()))

    assert d["success"] is True
    assert d["artifacts"]["worker_join_command"] is True
    assert "t0k3n" not in json.dumps(d)
    assert [w["type"] for w in d["warnings"]] == ["JoinFailed", "VerificationMismatch"]
    assert d["warnings"][1]["message"] == "expected 3 nodes, cluster reports 2"


def test_failed_report():
    r = BootstrapReport(state=S.FAILED, error=PreparationFailed({"b": "exit 100", "c": "timeout"}))
    assert not r.success
    assert r.to_dict()["error"]["type"] == "PreparationFailed"
    assert r.error.hosts == ["b", "c"]
    with pytest.raises(PreparationFailed):
        r.raise_for_error()
