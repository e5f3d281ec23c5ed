# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from types import SimpleNamespace as NS

import pytest

from kubestrap.k8s import client as k8s_client
from kubestrap.k8s.client import KubeNodeLister, node_status
from kubestrap.utils.retry import RetryError


def _node(name, ready="True", labels=None, version="v1.31.2", ip="10.0.0.7"):
    return NS(
        metadata=NS(name=name, labels=labels),
        status=NS(
            conditions=[NS(type="MemoryPressure", status="False"), NS(type="Ready", status=ready)],
            node_info=NS(kubelet_version=version),
            addresses=[NS(type="Hostname", address=name), NS(type="InternalIP", address=ip)],
        ),
    )


def test_control_plane_node():
    s = node_status(_node("cp-1", labels={"node-role.kubernetes.io/control-plane": ""}))
    assert s.name == "cp-1"
    assert s.status == "Ready"
    assert s.roles == ["control-plane"]
    assert s.version == "v1.31.2"
    assert s.internal_ip == "10.0.0.7"


def test_unlabelled_node_is_worker_and_not_ready():
    s = node_status(_node("w-1", ready="Unknown", labels={"kubernetes.io/os": "linux"}))
    assert s.roles == ["worker"]
    assert s.status == "NotReady"


def test_legacy_master_label():
    s = node_status(_node("m", labels={
        "node-role.kubernetes.io/control-plane": "",
        "node-role.kubernetes.io/master": "",
    }))
    assert s.roles == ["control-plane", "master"]


def test_node_without_status():
    s = node_status(NS(metadata=NS(name="new", labels=None), status=None))
    assert s.status == "NotReady"
    assert s.version == "unknown"
    assert s.internal_ip == ""


def test_list_nodes_builds_private_client(monkeypatch):
    loaded = {}

    def fake_load(cfg, context=None, client_configuration=None):
        loaded["cfg"] = cfg
        loaded["context"] = context
        loaded["configuration"] = client_configuration

    class FakeCore:
        def __init__(self, api_client):
            self.api_client = api_client

        def list_node(self):
            return NS(items=[_node("a"), _node("b", labels={"node-role.kubernetes.io/control-plane": ""})])

    monkeypatch.setattr(k8s_client.config, "load_kube_config_from_dict", fake_load)
    monkeypatch.setattr(k8s_client.client, "CoreV1Api", FakeCore)

    nodes = KubeNodeLister(context="admin@k").list_nodes("apiVersion: v1\nkind: Config\n")

    assert [n.name for n in nodes] == ["a", "b"]
    assert loaded["cfg"] == {"apiVersion": "v1", "kind": "Config"}
    assert loaded["context"] == "admin@k"
    assert loaded["configuration"] is not None


def test_list_nodes_rejects_non_kubeconfig(monkeypatch):
    monkeypatch.setattr("kubestrap.utils.retry.time.sleep", lambda s: None)
    with pytest.raises(RetryError) as ei:
        KubeNodeLister().list_nodes("just a string")
    assert isinstance(ei.value.__cause__, ValueError)
