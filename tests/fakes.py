# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# tests/fakes.py
"""
In-memory stand-ins for paramiko clients and the cluster API.
"""

from __future__ import annotations

import threading
import time
import types
from typing import Callable, Dict, List, Optional, Tuple

from kubestrap.bootstrap.models import NodeStatus
from kubestrap.remote.session import RemoteSession

# ----------------- Fakes for Paramiko -----------------


class FakeChannel:
    def __init__(self, stdout=(), stderr=(), rc=0, hang=False):
        if isinstance(stdout, (bytes, str)):
            stdout = [stdout]
        if isinstance(stderr, (bytes, str)):
            stderr = [stderr]
        self._out = [c.encode() if isinstance(c, str) else c for c in stdout if c]
        self._err = [c.encode() if isinstance(c, str) else c for c in stderr if c]
        self.rc = rc
        self.hang = hang
        self.closed = False

    def recv_ready(self): return bool(self._out)
    def recv(self, n): return self._out.pop(0)
    def recv_stderr_ready(self): return bool(self._err)
    def recv_stderr(self, n): return self._err.pop(0)
    def exit_status_ready(self): return self.closed or not self.hang
    def recv_exit_status(self): return self.rc
    def close(self): self.closed = True


class _FakeRemoteFile:
    def __init__(self, client, path, mode):
        self.client, self.path, self.mode = client, path, mode
        self._parts: List[str] = []

    def write(self, data): self._parts.append(data)
    def read(self): return self.client.files[self.path].encode()
    def __enter__(self): return self

    def __exit__(self, *exc):
        if "w" in self.mode:
            self.client.files[self.path] = "".join(self._parts)
            self.client.log.append(("put", self.path))


class FakeSFTP:
    def __init__(self, client): self.client = client

    def open(self, path, mode="r"):
        if self.client.sftp_error is not None:
            raise self.client.sftp_error
        return _FakeRemoteFile(self.client, path, mode)

    def chmod(self, path, mode): self.client.modes[path] = mode
    def close(self): pass


class FakeSSHClient:
    def __init__(
        self,
        handler: Optional[Callable[[str], FakeChannel]] = None,
        *,
        log: Optional[list] = None,
        files: Optional[dict] = None,
        connect_error: Optional[Exception] = None,
        sftp_error: Optional[Exception] = None,
    ):
        self.handler = handler or (lambda cmd: FakeChannel())
        self.log = log if log is not None else []
        self.files = files if files is not None else {}
        self.modes: Dict[str, int] = {}
        self.connect_error = connect_error
        self.sftp_error = sftp_error
        self.connect_kwargs = None
        self.keepalive = None
        self.channels: List[FakeChannel] = []
        self.closed = False

    def set_missing_host_key_policy(self, policy): self.policy = policy

    def connect(self, **kw):
        self.connect_kwargs = kw
        self.log.append(("connect", kw["hostname"]))
        if self.connect_error is not None:
            raise self.connect_error

    def get_transport(self):
        return types.SimpleNamespace(set_keepalive=lambda n: setattr(self, "keepalive", n))

    def exec_command(self, command, timeout=None):
        self.log.append(("exec", command))
        ch = self.handler(command)
        self.channels.append(ch)
        return None, types.SimpleNamespace(channel=ch), None

    def open_sftp(self):
        return FakeSFTP(self)

    def close(self):
        self.closed = True
        self.log.append(("close",))

    @property
    def commands(self) -> List[str]:
        return [e[1] for e in self.log if e[0] == "exec"]


# ----------------- A scripted fleet of hosts -----------------

ADMIN_CONF = """apiVersion: v1
kind: Config
clusters:
- cluster:
    server: https://10.0.0.1:6443
  name: kubernetes
users:
- name: kubernetes-admin
  user:
    client-key-data: U0VDUkVULUtFWQ==
"""
JOIN_TOKEN = "abcdef.0123456789abcdef"
JOIN_OUTPUT = f"kubeadm join 10.0.0.1:6443 --token {JOIN_TOKEN} --discovery-token-ca-cert-hash sha256:feed\n"
CERT_KEY = "c0ffee0123456789"
UPLOAD_CERTS_OUTPUT = (
    "[upload-certs] Storing the certificates in Secret \"kubeadm-certs\" in the \"kube-system\" Namespace\n"
    "[upload-certs] Using certificate key:\n"
    f"{CERT_KEY}\n"
)


class FakeFleet:
    """
    Hosts keyed by address that answer kubeadm commands like a healthy
    cluster. fail(), answer() and on() override the answer for a command
    prefix.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.logs: Dict[str, list] = {}
        self.files: Dict[str, dict] = {}
        self.overrides: List[Tuple[str, str, Callable[[str], FakeChannel]]] = []
        self.connect_errors: Dict[str, Exception] = {}
        self.sftp_errors: Dict[str, Exception] = {}

    def fail(self, address: str, prefix: str, rc: int = 1, stderr: str = "boom", stdout: str = ""):
        self.overrides.append((address, prefix, lambda cmd: FakeChannel(stdout=stdout, stderr=stderr, rc=rc)))

    def answer(self, address: str, prefix: str, stdout: str):
        self.overrides.append((address, prefix, lambda cmd: FakeChannel(stdout=stdout)))

    def on(self, address: str, prefix: str, handler: Callable[[str], FakeChannel]):
        self.overrides.append((address, prefix, handler))

    def _handler(self, address: str) -> Callable[[str], FakeChannel]:
        def handle(cmd: str) -> FakeChannel:
            for addr, prefix, make in self.overrides:
                if addr == address and cmd.startswith(prefix):
                    return make(cmd)
            if cmd == "sudo cat /etc/kubernetes/admin.conf":
                return FakeChannel(stdout=ADMIN_CONF)
            if cmd == "sudo kubeadm token create --print-join-command":
                return FakeChannel(stdout=JOIN_OUTPUT)
            if cmd == "sudo kubeadm init phase upload-certs --upload-certs":
                return FakeChannel(stdout=UPLOAD_CERTS_OUTPUT)
            return FakeChannel(stdout="ok\n")
        return handle

    def client_factory(self, address: str) -> Callable[[], FakeSSHClient]:
        with self._lock:
            log = self.logs.setdefault(address, [])
            files = self.files.setdefault(address, {})

        def factory() -> FakeSSHClient:
            return FakeSSHClient(
                self._handler(address),
                log=log,
                files=files,
                connect_error=self.connect_errors.get(address),
                sftp_error=self.sftp_errors.get(address),
            )
        return factory

    def session_factory(self, host) -> RemoteSession:
        return RemoteSession.for_host(host, client_factory=self.client_factory(host.address), poll_interval=0.001)

    def commands(self, address: str) -> List[str]:
        return [e[1] for e in self.logs.get(address, []) if e[0] == "exec"]

    @property
    def touched(self) -> bool:
        return any(self.logs.values())


class Gate:
    """
    Command handler that holds every call until release is set, counting
    how many calls are held at the same time. Use with FakeFleet.on().
    """

    def __init__(self, stdout: str = "ok\n", hold: float = 10.0):
        self.release = threading.Event()
        self.stdout = stdout
        self.hold = hold
        self._cond = threading.Condition()
        self.entered = 0
        self.in_flight = 0
        self.peak = 0

    def __call__(self, cmd: str) -> FakeChannel:
        with self._cond:
            self.entered += 1
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            self._cond.notify_all()
        try:
            self.release.wait(self.hold)
        finally:
            with self._cond:
                self.in_flight -= 1
        return FakeChannel(stdout=self.stdout)

    def wait_entered(self, count: int, timeout: float = 5.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self.entered >= count, timeout)


def eventually(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


# ----------------- Cluster API -----------------


class FakeNodeLister:
    def __init__(self, count: int = 0, error: Optional[Exception] = None):
        self.count = count
        self.error = error
        self.calls: List[str] = []

    def list_nodes(self, admin_credentials: str) -> List[NodeStatus]:
        self.calls.append(admin_credentials)
        if self.error is not None:
            raise self.error
        return [
            NodeStatus(name=f"node-{i}", status="Ready", roles=["worker"], version="v1.31.0", internal_ip=f"10.0.0.{i + 1}")
            for i in range(self.count)
        ]


class RecordingObserver:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def of(self, kind):
        return [e for e in self.events if isinstance(e, kind)]
