# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/config/models.py

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from kubestrap.bootstrap.models import HostDescriptor, Role
from kubestrap.remote.models import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_KEEPALIVE_INTERVAL,
    DEFAULT_SSH_PORT,
    DEFAULT_USERNAME,
    ConnectionSettings,
    Credential,
)
from kubestrap.utils.retry import RetryPolicy


class SSHConfig(BaseModel):
    username: str = DEFAULT_USERNAME
    connect_timeout: float = Field(DEFAULT_CONNECT_TIMEOUT, gt=0)
    keepalive_interval: int = Field(DEFAULT_KEEPALIVE_INTERVAL, ge=0)


class RetryConfig(BaseModel):
    max_attempts: int = Field(3, ge=1)
    attempt_timeout: float = Field(300.0, gt=0)
    delay: float = Field(2.0, ge=0)
    retry_on_auth_failure: bool = True


class ConcurrencyConfig(BaseModel):
    max_workers: int = Field(16, ge=1)


class VerificationConfig(BaseModel):
    settle_delay: float = Field(30.0, ge=0)
    context: Optional[str] = None


class KubeadmConfig(BaseModel):
    kubernetes_version: str = "v1.31.0"
    pod_subnet: str = "10.244.0.0/16"
    service_subnet: str = "10.96.0.0/12"
    control_plane_endpoint: Optional[str] = None
    # custom Jinja2 template, rendered with the fields above
    template: Optional[Path] = None

    @property
    def minor_version(self) -> str:
        """v1.31.0 -> v1.31 (apt repository channel)."""
        parts = self.kubernetes_version.lstrip("v").split(".")
        return "v" + ".".join(parts[:2])


class AssetsConfig(BaseModel):
    setup_script: Optional[Path] = None
    cri_dockerd_version: str = "0.3.21"


class CredentialConfig(BaseModel):
    key: Optional[str] = Field(default=None, repr=False)
    key_path: Optional[Path] = None
    password: Optional[str] = Field(default=None, repr=False)
    passphrase: Optional[str] = Field(default=None, repr=False)

    @model_validator(mode="after")
    def _one_source(self) -> "CredentialConfig":
        if not (self.key or self.key_path or self.password):
            raise ValueError("credential needs key, key_path or password")
        return self

    def to_credential(self) -> Credential:
        return Credential(
            key_material=self.key,
            key_path=self.key_path,
            password=self.password,
            passphrase=self.passphrase,
        )


class HostConfig(BaseModel):
    name: str
    address: str
    port: int = DEFAULT_SSH_PORT
    role: Role = Role.WORKER
    username: Optional[str] = None
    credential: Optional[CredentialConfig] = None


class BootstrapConfig(BaseModel):
    environment: str = "default"
    cluster_name: Optional[str] = None
    ssh: SSHConfig = SSHConfig()
    retry: RetryConfig = RetryConfig()
    concurrency: ConcurrencyConfig = ConcurrencyConfig()
    verification: VerificationConfig = VerificationConfig()
    kubeadm: KubeadmConfig = KubeadmConfig()
    assets: AssetsConfig = AssetsConfig()
    # applied to hosts without their own credential
    credential: Optional[CredentialConfig] = None
    hosts: List[HostConfig]

    @field_validator("hosts")
    @classmethod
    def _hosts_not_empty(cls, v: List[HostConfig]) -> List[HostConfig]:
        if not v:
            raise ValueError("at least one host is required")
        return v

    @model_validator(mode="after")
    def _every_host_has_credential(self) -> "BootstrapConfig":
        missing = [h.name for h in self.hosts if h.credential is None and self.credential is None]
        if missing:
            raise ValueError(f"no credential for host(s): {', '.join(missing)}")
        return self

    @model_validator(mode="after")
    def _control_planes_need_endpoint(self) -> "BootstrapConfig":
        # kubeadm refuses control-plane joins without a stable controlPlaneEndpoint
        joining = [h.name for h in self.hosts if h.role is Role.CONTROL_PLANE]
        if joining and not self.kubeadm.control_plane_endpoint:
            raise ValueError(
                f"kubeadm.control_plane_endpoint is required for control-plane host(s): {', '.join(joining)}"
            )
        return self

    def host(self, name: str) -> HostDescriptor:
        for h in self.to_hosts():
            if h.name == name:
                return h
        raise KeyError(f"host {name!r} not in config")

    def to_hosts(self) -> List[HostDescriptor]:
        return [
            HostDescriptor(
                name=h.name,
                address=h.address,
                role=h.role,
                credential=(h.credential or self.credential).to_credential(),
                port=h.port,
                username=h.username,
            )
            for h in self.hosts
        ]

    def connection_settings(self) -> ConnectionSettings:
        return ConnectionSettings(
            connect_timeout=self.ssh.connect_timeout,
            keepalive_interval=self.ssh.keepalive_interval,
            default_username=self.ssh.username,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry.max_attempts,
            attempt_timeout=self.retry.attempt_timeout,
            delay=self.retry.delay,
            retry_on_auth_failure=self.retry.retry_on_auth_failure,
        )
