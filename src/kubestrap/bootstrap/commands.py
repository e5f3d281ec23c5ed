# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/bootstrap/commands.py
"""
Fixed kubeadm command texts and the parsing applied to their output.
"""

from __future__ import annotations

import re
from typing import Optional

from kubestrap.remote.models import ExecutionResult
from kubestrap.remote.session import RemoteSession

CRI_SOCKET = "/run/cri-dockerd.sock"

INIT_CONFIG_PATH = "/tmp/kubeadm-config.yaml"
ADMIN_CONF_PATH = "/etc/kubernetes/admin.conf"

INIT_COMMAND = f"sudo kubeadm init --config={INIT_CONFIG_PATH}"
FETCH_ADMIN_CONF_COMMAND = f"sudo cat {ADMIN_CONF_PATH}"
CREATE_TOKEN_COMMAND = "sudo kubeadm token create --print-join-command"
UPLOAD_CERTS_COMMAND = "sudo kubeadm init phase upload-certs --upload-certs"

_JOIN_TOKEN = "kubeadm join"
_JOIN_WITH_SOCKET = f"sudo kubeadm join --cri-socket={CRI_SOCKET}"

REDACTED = "<redacted>"
# kubeadm init prints ready-made join commands carrying these values
_SECRET_FLAGS = re.compile(
    r"(--(?:token|discovery-token-ca-cert-hash|certificate-key)(?:=|\s+))(\S+)"
)


def rewrite_join_command(command: str) -> str:
    """
    Insert the container-runtime socket flag into a join command.

    >>> rewrite_join_command("kubeadm join 10.0.0.1:6443 --token abc")
    'sudo kubeadm join --cri-socket=/run/cri-dockerd.sock 10.0.0.1:6443 --token abc'
    """
    return command.replace(_JOIN_TOKEN, _JOIN_WITH_SOCKET, 1)


def redact_join_secrets(text: str) -> str:
    """
    Mask join token, CA cert hash and certificate key values.

    >>> redact_join_secrets("kubeadm join 10.0.0.1:6443 --token abc --certificate-key 0ff")
    'kubeadm join 10.0.0.1:6443 --token <redacted> --certificate-key <redacted>'
    """
    return _SECRET_FLAGS.sub(lambda m: m.group(1) + REDACTED, text)


def parse_join_command(stdout: str) -> Optional[str]:
    """The join command printed by `kubeadm token create --print-join-command`."""
    for line in reversed(stdout.splitlines()):
        line = line.strip()
        if line.startswith(_JOIN_TOKEN):
            return line
    return None


def parse_certificate_key(stdout: str) -> Optional[str]:
    """upload-certs prints the key on its last line."""
    lines = [ln.strip() for ln in stdout.splitlines() if ln.strip()]
    return lines[-1] if lines else None


def control_plane_join_command(worker_join_command: str, certificate_key: str) -> str:
    return f"{worker_join_command} --control-plane --certificate-key {certificate_key}"


def fetch_admin_credentials(session: RemoteSession, timeout: Optional[float] = None) -> ExecutionResult:
    """Read the cluster admin kubeconfig from an initialized control-plane host."""
    return session.exec(FETCH_ADMIN_CONF_COMMAND, timeout=timeout, display="fetch admin.conf")
