# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import logging
import textwrap

import pytest
from typer.testing import CliRunner

from fakes import FakeChannel, FakeSSHClient

import kubestrap.cli.app as cli
from kubestrap.remote.session import RemoteSession

runner = CliRunner()


@pytest.fixture(autouse=True)
def _sandbox(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("KUBESTRAP_SECRETS_FILE", raising=False)
    monkeypatch.delenv("WORKSPACE_ROOT", raising=False)
    monkeypatch.setattr(cli, "_install_sigint", lambda cancel: None)
    yield
    # init_logging binds handlers to the runner's streams
    logger = logging.getLogger("kubestrap")
    for h in logger.handlers[:]:
        logger.removeHandler(h)
        h.close()
    logger.propagate = True


def _config(tmp_path, hosts):
    p = tmp_path / "cluster.yaml"
    p.write_text(textwrap.dedent("""
        credential: {password: pw}
        retry: {max_attempts: 1, delay: 0}
        hosts:
    """) + textwrap.indent(textwrap.dedent(hosts), "  "))
    return p


def _fake_sessions(monkeypatch, client):
    class FakeRemoteSession:
        @staticmethod
        def for_host(host, settings=None):
            return RemoteSession.for_host(host, settings, client_factory=lambda: client, poll_interval=0.001)

    monkeypatch.setattr(cli, "RemoteSession", FakeRemoteSession)


def test_run_streams_script_output(monkeypatch, tmp_path):
    cfg = _config(tmp_path, """
        - {name: a, address: 10.0.0.1, role: primary}
    """)
    script = tmp_path / "hello.sh"
    script.write_text("echo hello $1\n")
    client = FakeSSHClient(lambda cmd: FakeChannel(stdout="hello world\n"))
    _fake_sessions(monkeypatch, client)

    result = runner.invoke(cli.app, ["run", str(cfg), "a", str(script), "world", "--no-sudo"])

    assert result.exit_code == 0, result.output
    assert "hello world" in result.output
    run_cmd = client.commands[0]
    assert run_cmd.startswith("bash /tmp/hello.")
    assert run_cmd.endswith(" world")
    assert client.commands[1].startswith("rm -f /tmp/hello.")


def test_run_propagates_exit_code(monkeypatch, tmp_path):
    cfg = _config(tmp_path, """
        - {name: a, address: 10.0.0.1, role: primary}
    """)
    script = tmp_path / "fail.sh"
    script.write_text("exit 7\n")
    client = FakeSSHClient(lambda cmd: FakeChannel(rc=0 if cmd.startswith("rm") else 7))
    _fake_sessions(monkeypatch, client)

    result = runner.invoke(cli.app, ["run", str(cfg), "a", str(script)])
    assert result.exit_code == 7


def test_run_timeout_suggests_longer_attempt_timeout(monkeypatch, tmp_path):
    cfg = tmp_path / "cluster.yaml"
    cfg.write_text(textwrap.dedent("""
        credential: {password: pw}
        retry: {max_attempts: 1, delay: 0, attempt_timeout: 0.05}
        hosts:
          - {name: a, address: 10.0.0.1, role: primary}
    """))
    script = tmp_path / "slow.sh"
    script.write_text("sleep 1000\n")
    client = FakeSSHClient(lambda cmd: FakeChannel(hang=not cmd.startswith("rm")))
    _fake_sessions(monkeypatch, client)

    result = runner.invoke(cli.app, ["run", str(cfg), "a", str(script)])

    assert result.exit_code == 1
    assert "retry.attempt_timeout" in result.output


def test_run_unknown_host(tmp_path):
    cfg = _config(tmp_path, """
        - {name: a, address: 10.0.0.1, role: primary}
    """)
    result = runner.invoke(cli.app, ["run", str(cfg), "nope", str(cfg)])
    assert result.exit_code == 2


def test_bootstrap_rejects_two_primaries(monkeypatch, tmp_path):
    cfg = _config(tmp_path, """
        - {name: a, address: 10.0.0.1, role: primary}
        - {name: b, address: 10.0.0.2, role: primary}
    """)
    client = FakeSSHClient()
    _fake_sessions(monkeypatch, client)

    result = runner.invoke(cli.app, ["bootstrap", str(cfg)])

    assert result.exit_code == 2
    assert client.log == []


def test_nodes_missing_kubeconfig(tmp_path):
    result = runner.invoke(cli.app, ["nodes", "--kubeconfig", str(tmp_path / "missing")])
    assert result.exit_code == 1
