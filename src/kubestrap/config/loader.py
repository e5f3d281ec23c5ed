# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from .models import BootstrapConfig

log = logging.getLogger("kubestrap")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.

    Host lists are merged by host name so secrets.yaml can carry just
    the credentials of each host.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        elif key == "hosts" and isinstance(base.get(key), list) and isinstance(value, list):
            by_name = {h.get("name"): h for h in base[key] if isinstance(h, dict)}
            for entry in value:
                target = by_name.get(entry.get("name")) if isinstance(entry, dict) else None
                if target is None:
                    log.warning("secrets entry for unknown host %r ignored", entry.get("name") if isinstance(entry, dict) else entry)
                    continue
                _deep_merge(target, entry)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. KUBESTRAP_SECRETS_FILE environment variable (explicit override)
    2. cloud-config/secrets.yaml relative to workspace root
    3. secrets.yaml in the same directory as the cluster config
    """
    env = os.environ.get("KUBESTRAP_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("KUBESTRAP_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    workspace = os.environ.get("WORKSPACE_ROOT")
    if workspace:
        p = Path(workspace) / "cloud-config" / "secrets.yaml"
        if p.is_file():
            return p

    p = config_path.parent / "secrets.yaml"
    if p.is_file() and p.resolve() != config_path.resolve():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def _resolve_paths(data: dict, base: Path) -> None:
    # relative key/script/template paths are relative to the config file
    def _fix(section: dict, key: str) -> None:
        value = section.get(key) if isinstance(section, dict) else None
        if value and not Path(str(value)).expanduser().is_absolute():
            section[key] = str(base / str(value))

    _fix(data.get("assets") or {}, "setup_script")
    _fix(data.get("kubeadm") or {}, "template")
    _fix(data.get("credential") or {}, "key_path")
    for host in data.get("hosts") or []:
        if isinstance(host, dict):
            _fix(host.get("credential") or {}, "key_path")


def load_config(path: str | Path) -> BootstrapConfig:
    """
    Load and validate a kubestrap YAML config.

    Secrets are injected via two methods (both can be used together):

    **Method 1: secrets.yaml file**
        A ``secrets.yaml`` whose structure mirrors the cluster config.
        Hosts are matched by ``name``. Discovery order:
          1. ``KUBESTRAP_SECRETS_FILE`` env var (explicit path)
          2. ``$WORKSPACE_ROOT/cloud-config/secrets.yaml``
          3. ``secrets.yaml`` next to the cluster config file

    **Method 2: environment variables**
        Use ``${ENV_VAR}`` placeholders directly inside the config (or
        secrets.yaml). ``os.path.expandvars`` resolves them at load time.
    """
    path = Path(path)
    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        secrets = _load_yaml(secrets_path)
        _deep_merge(data, secrets)
    else:
        log.debug("No secrets.yaml found, proceeding without secrets merge")

    _resolve_paths(data, path.parent)
    return BootstrapConfig.model_validate(data)
