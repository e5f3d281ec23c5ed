# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/bootstrap/asset_loader.py

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from kubestrap.remote.deployer import Script

from .commands import CRI_SOCKET

ASSETS_DIR = Path(__file__).resolve().parent / "assets"

SETUP_SCRIPT = "setup.sh"
KUBEADM_TEMPLATE = "kubeadm-config.yaml.j2"

_ENV_REF = re.compile(r"\$\{([^}^{]+)\}")


def expand_env_vars(value: str) -> str:
    """${VAR} -> its value; unknown variables are left as written."""
    return _ENV_REF.sub(lambda m: os.getenv(m.group(1), m.group(0)), value)


def setup_script(path: Optional[Path] = None) -> Script:
    """The host preparation script; the bundled one unless path is given."""
    return Script.from_path(path or ASSETS_DIR / SETUP_SCRIPT)


def render_kubeadm_config(
    *,
    kubernetes_version: str,
    pod_subnet: str,
    service_subnet: str = "10.96.0.0/12",
    control_plane_endpoint: Optional[str] = None,
    cri_socket: str = CRI_SOCKET,
    template: Optional[Path] = None,
) -> str:
    """
    Render the kubeadm init configuration.

    A custom template is rendered with the same context, so it may use any
    of the keyword arguments above.
    """
    template = Path(template) if template else ASSETS_DIR / KUBEADM_TEMPLATE
    env = Environment(
        loader=FileSystemLoader(str(template.parent)),
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    context = {
        "kubernetes_version": kubernetes_version,
        "pod_subnet": pod_subnet,
        "service_subnet": service_subnet,
        "control_plane_endpoint": control_plane_endpoint,
        "cri_socket": cri_socket,
    }
    expanded = {k: expand_env_vars(v) if isinstance(v, str) else v for k, v in context.items()}
    return env.get_template(template.name).render(**expanded)
