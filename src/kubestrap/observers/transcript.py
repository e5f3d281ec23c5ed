# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/observers/transcript.py

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from .events import BaseEvent, HostOperationFinished

log = logging.getLogger("kubestrap")

_ANSI = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def strip_ansi(text: str) -> str:
    return _ANSI.sub("", text)


class TranscriptObserver:
    """
    Writes one file per finished host operation:
      <operation>_<host>_<timestamp>.log
    Output of sensitive operations is not written.
    """

    def __init__(self, log_dir: str | Path):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.written: List[Path] = []

    def notify(self, event: BaseEvent) -> None:
        if not isinstance(event, HostOperationFinished):
            return

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        name = _UNSAFE.sub("-", f"{event.operation}_{event.host}_{stamp}") + ".log"
        path = self.log_dir / name

        lines = [
            f"Operation: {event.operation}",
            f"Phase: {event.phase}",
            f"Server: {event.host} ({event.address})",
            f"Time: {event.ts}",
        ]
        if event.command:
            lines.append(f"Command: {event.command}")
        lines += [
            f"Attempts: {event.attempts}",
            f"Success: {event.success}",
            f"Message: {event.message}",
            "",
        ]
        if event.sensitive:
            lines.append("(output withheld)")
        else:
            if event.stdout:
                lines.append("STDOUT:\n" + strip_ansi(event.stdout))
            if event.stderr:
                lines.append("STDERR:\n" + strip_ansi(event.stderr))

        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        self.written.append(path)
        log.debug("transcript saved to %s", path)
