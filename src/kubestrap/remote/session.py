# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/remote/session.py

from __future__ import annotations

import codecs
import io
import logging
import shlex
import threading
import time
from enum import Enum
from typing import Callable, Iterator, Optional, Sequence, Union

import paramiko

from .errors import SessionClosedError, TransportError, UploadError
from .models import (
    ConnectionSettings,
    Credential,
    ExecutionResult,
    OutputChunk,
    StreamEnd,
)

log = logging.getLogger("kubestrap")

_KEY_CLASSES = (
    paramiko.RSAKey,
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
)

StreamItem = Union[OutputChunk, StreamEnd]


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    EXECUTING = "executing"
    CLOSED = "closed"


def script_command(remote_path: str, args: Sequence[str] = (), use_elevated: bool = True) -> str:
    """bash <path> <args...>, optionally prefixed with sudo."""
    parts = ["bash", shlex.quote(remote_path)] + [shlex.quote(str(a)) for a in args]
    cmd = " ".join(parts)
    return f"sudo {cmd}" if use_elevated else cmd


def _load_pkey(credential: Credential, address: str) -> Optional[paramiko.PKey]:
    if credential.kind == "password":
        return None

    for key_cls in _KEY_CLASSES:
        try:
            if credential.kind == "key":
                return key_cls.from_private_key(
                    io.StringIO(credential.key_material),
                    password=credential.passphrase,
                )
            return key_cls.from_private_key_file(
                str(credential.key_path.expanduser()),
                password=credential.passphrase,
            )
        except paramiko.SSHException:
            continue
        except OSError as exc:
            raise TransportError("auth", address, f"cannot read private key: {exc}") from exc

    raise TransportError("auth", address, "unsupported private key format")


class RemoteSession:
    """
    One exclusive SSH connection to one host.

    Disconnected -> Connecting -> Ready <-> Executing -> Closed.
    Closed is terminal; any call afterwards raises SessionClosedError.
    """

    def __init__(
        self,
        address: str,
        *,
        port: int = 22,
        username: Optional[str] = None,
        credential: Credential,
        settings: Optional[ConnectionSettings] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        poll_interval: float = 0.1,
    ):
        self.settings = settings or ConnectionSettings()
        self.address = address
        self.port = port
        self.username = username or self.settings.default_username
        self._credential = credential
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None
        self._poll_interval = poll_interval
        self.state = SessionState.DISCONNECTED

    @classmethod
    def for_host(cls, host, settings: Optional[ConnectionSettings] = None, **kwargs) -> "RemoteSession":
        return cls(
            host.address,
            port=host.port,
            username=host.username,
            credential=host.credential,
            settings=settings,
            **kwargs,
        )

    def __repr__(self) -> str:
        return f"RemoteSession({self.username}@{self.address}:{self.port}, state={self.state.value})"

    # ------------------ lifecycle ------------------

    def connect(self) -> "RemoteSession":
        if self.state is SessionState.CLOSED:
            raise SessionClosedError(f"session to {self.address} is closed")
        if self.state in (SessionState.READY, SessionState.EXECUTING):
            return self

        self.state = SessionState.CONNECTING
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            pkey = _load_pkey(self._credential, self.address)
            client.connect(
                hostname=self.address,
                port=self.port,
                username=self.username,
                pkey=pkey,
                password=self._credential.password if pkey is None else None,
                timeout=self.settings.connect_timeout,
                banner_timeout=self.settings.connect_timeout,
                auth_timeout=self.settings.connect_timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except TransportError:
            client.close()
            self.state = SessionState.DISCONNECTED
            raise
        except paramiko.AuthenticationException as exc:
            client.close()
            self.state = SessionState.DISCONNECTED
            raise TransportError("auth", self.address, str(exc) or "authentication rejected") from exc
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            self.state = SessionState.DISCONNECTED
            raise TransportError("connect", self.address, str(exc) or type(exc).__name__) from exc

        transport = client.get_transport()
        if transport is not None:
            transport.set_keepalive(self.settings.keepalive_interval)

        self._client = client
        self.state = SessionState.READY
        log.debug("[%s] connected as %s", self.address, self.username)
        return self

    def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        if self._client is not None:
            try:
                self._client.close()
            finally:
                self._client = None
        log.debug("[%s] connection closed", self.address)

    def __enter__(self) -> "RemoteSession":
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _require_ready(self) -> paramiko.SSHClient:
        if self.state is SessionState.CLOSED:
            raise SessionClosedError(f"session to {self.address} is closed")
        if self.state is not SessionState.READY or self._client is None:
            raise SessionClosedError(f"session to {self.address} is not ready ({self.state.value})")
        return self._client

    # ------------------ execution ------------------

    def stream(
        self,
        command: str,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[StreamItem]:
        """
        Run a command and yield its output as it arrives.

        Yields OutputChunk items followed by exactly one StreamEnd carrying
        the final ExecutionResult. Remaining buffered output is always
        delivered before StreamEnd.
        """
        client = self._require_ready()
        timeout = self.settings.command_timeout if timeout is None else timeout
        self.state = SessionState.EXECUTING

        out_dec = codecs.getincrementaldecoder("utf-8")(errors="replace")
        err_dec = codecs.getincrementaldecoder("utf-8")(errors="replace")
        out_parts, err_parts = [], []

        def _chunk(stream_name: str, raw: bytes, final: bool = False) -> Optional[OutputChunk]:
            dec = out_dec if stream_name == "stdout" else err_dec
            text = dec.decode(raw, final=final)
            if not text:
                return None
            (out_parts if stream_name == "stdout" else err_parts).append(text)
            return OutputChunk(stream=stream_name, data=text)

        def _drain(channel) -> Iterator[OutputChunk]:
            while channel.recv_ready():
                c = _chunk("stdout", channel.recv(4096))
                if c:
                    yield c
            while channel.recv_stderr_ready():
                c = _chunk("stderr", channel.recv_stderr(4096))
                if c:
                    yield c

        channel = None
        try:
            try:
                _stdin, stdout, _stderr = client.exec_command(command, timeout=timeout)
                channel = stdout.channel
                deadline = time.monotonic() + timeout

                while not channel.exit_status_ready():
                    yield from _drain(channel)

                    if cancel is not None and cancel.is_set():
                        channel.close()
                        yield StreamEnd(ExecutionResult.failed(
                            "cancelled", failure="cancelled",
                            stdout="".join(out_parts), stderr="".join(err_parts),
                        ))
                        return

                    if time.monotonic() >= deadline:
                        channel.close()
                        yield StreamEnd(ExecutionResult.failed(
                            f"timeout: command exceeded {timeout:g}s",
                            failure="timeout",
                            stdout="".join(out_parts),
                            stderr="".join(err_parts) or "Command timeout",
                        ))
                        return

                    if cancel is not None:
                        cancel.wait(self._poll_interval)
                    else:
                        time.sleep(self._poll_interval)

                yield from _drain(channel)
                for name in ("stdout", "stderr"):
                    c = _chunk(name, b"", final=True)
                    if c:
                        yield c
                code = channel.recv_exit_status()
            except (paramiko.SSHException, OSError) as exc:
                yield StreamEnd(ExecutionResult.failed(
                    f"transport error: {exc}",
                    failure="transport",
                    stdout="".join(out_parts),
                    stderr="".join(err_parts),
                ))
                return

            stdout_text, stderr_text = "".join(out_parts), "".join(err_parts)
            if code == 0:
                yield StreamEnd(ExecutionResult.ok(stdout_text, stderr_text))
            else:
                yield StreamEnd(ExecutionResult.failed(
                    f"command failed with exit code {code}",
                    failure="exit",
                    exit_code=code,
                    stdout=stdout_text,
                    stderr=stderr_text,
                ))
        finally:
            if self.state is SessionState.EXECUTING:
                self.state = SessionState.READY

    def exec(
        self,
        command: str,
        *,
        timeout: Optional[float] = None,
        on_output: Optional[Callable[[OutputChunk], None]] = None,
        cancel: Optional[threading.Event] = None,
        display: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Run a command and return its ExecutionResult.

        Command failures (non-zero exit, timeout, broken stream) are reported
        inside the result, never raised. display replaces the command text
        in log lines when the command carries secrets.
        """
        shown = display or (command[:60] + ("..." if len(command) > 60 else ""))
        log.debug("[%s] exec: %s", self.address, shown)

        result = None
        for item in self.stream(command, timeout=timeout, cancel=cancel):
            if isinstance(item, StreamEnd):
                result = item.result
            elif on_output is not None:
                on_output(item)

        if result.success:
            log.debug("[%s] exec ok: %s", self.address, shown)
        else:
            log.debug("[%s] exec failed (%s): %s", self.address, result.failure, result.message)
        return result

    # ------------------ content delivery ------------------

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o644) -> None:
        client = self._require_ready()
        self.state = SessionState.EXECUTING
        try:
            sftp = client.open_sftp()
            try:
                with sftp.open(remote_path, "w") as f:
                    f.write(content)
                sftp.chmod(remote_path, mode)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as exc:
            raise UploadError(f"upload to {self.address}:{remote_path} failed: {exc}") from exc
        finally:
            if self.state is SessionState.EXECUTING:
                self.state = SessionState.READY

    def deliver_and_run(
        self,
        content: str,
        remote_path: str,
        *,
        mode: int = 0o755,
        use_elevated: bool = True,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        on_output: Optional[Callable[[OutputChunk], None]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        """
        Upload content, run it with bash, then remove it.

        The remote file is removed whatever the outcome; cleanup failures
        are logged and ignored.
        """
        try:
            try:
                self.put_text(content, remote_path, mode=mode)
            except UploadError as exc:
                return ExecutionResult.failed(str(exc), failure="upload")

            return self.exec(
                script_command(remote_path, args, use_elevated),
                timeout=timeout,
                on_output=on_output,
                cancel=cancel,
            )
        finally:
            self._cleanup(remote_path)

    def _cleanup(self, remote_path: str) -> None:
        if self.state is not SessionState.READY:
            return
        try:
            res = self.exec(f"rm -f {shlex.quote(remote_path)}", timeout=30)
            if not res.success:
                log.debug("[%s] cleanup of %s failed: %s", self.address, remote_path, res.message)
        except SessionClosedError as exc:
            log.debug("[%s] cleanup of %s skipped: %s", self.address, remote_path, exc)

