# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/k8s/client.py
from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol

import yaml
from kubernetes import client, config

from kubestrap.bootstrap.models import NodeStatus
from kubestrap.utils.retry import retry

log = logging.getLogger("kubestrap")


class NodeLister(Protocol):
    def list_nodes(self, admin_credentials: str) -> List[NodeStatus]: ...


def node_status(node: Any) -> NodeStatus:
    """Map a V1Node to a NodeStatus record."""
    metadata = node.metadata
    status = node.status

    conditions = (status.conditions if status else None) or []
    ready = next((c for c in conditions if c.type == "Ready"), None)

    labels = (metadata.labels if metadata else None) or {}
    roles: List[str] = []
    if "node-role.kubernetes.io/control-plane" in labels:
        roles.append("control-plane")
    if "node-role.kubernetes.io/master" in labels:
        roles.append("master")
    if not roles:
        roles.append("worker")

    node_info = status.node_info if status else None
    addresses = (status.addresses if status else None) or []
    internal = next((a.address for a in addresses if a.type == "InternalIP"), "")

    return NodeStatus(
        name=(metadata.name if metadata else None) or "",
        status="Ready" if ready is not None and ready.status == "True" else "NotReady",
        roles=roles,
        version=(node_info.kubelet_version if node_info else None) or "unknown",
        internal_ip=internal,
    )


class KubeNodeLister:
    """
    Lists cluster nodes with the admin kubeconfig fetched from the primary.

    Each call builds its own ApiClient so the process-wide default
    kubernetes configuration is never touched.
    """

    def __init__(self, context: Optional[str] = None):
        self.context = context

    def _core_api(self, admin_credentials: str) -> client.CoreV1Api:
        kubeconfig = yaml.safe_load(admin_credentials)
        if not isinstance(kubeconfig, dict):
            raise ValueError("admin credentials are not a kubeconfig document")
        configuration = client.Configuration()
        config.load_kube_config_from_dict(
            kubeconfig,
            context=self.context,
            client_configuration=configuration,
        )
        return client.CoreV1Api(client.ApiClient(configuration))

    @retry(
        retries=3,
        delay=2,
        on_retry=lambda attempt, exc: log.debug("list nodes attempt %d failed: %s", attempt, exc),
    )
    def list_nodes(self, admin_credentials: str) -> List[NodeStatus]:
        api = self._core_api(admin_credentials)
        return [node_status(n) for n in api.list_node().items]
